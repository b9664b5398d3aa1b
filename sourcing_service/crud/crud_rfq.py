# sourcing_service/crud/crud_rfq.py
from typing import Optional, List
from datetime import datetime
from sqlalchemy.orm import Session

from sourcing_service.models.rfq import RFQ
from sourcing_service.schemas.rfq import RFQCreate


def create(db: Session, *, buyer_id: str, data: RFQCreate) -> RFQ:
    db_obj = RFQ(**data.model_dump(), buyer_id=buyer_id, status="active")
    db.add(db_obj)
    db.flush()
    return db_obj


def get(db: Session, rfq_id: str) -> Optional[RFQ]:
    return db.query(RFQ).filter(RFQ.id == rfq_id).first()


def get_for_update(db: Session, rfq_id: str) -> Optional[RFQ]:
    return db.query(RFQ).filter(RFQ.id == rfq_id).with_for_update().populate_existing().first()


def transition(db: Session, *, rfq_id: str, from_status: str, new_status: str) -> int:
    """Conditionally move an RFQ between statuses. Returns affected row count."""
    return (
        db.query(RFQ)
        .filter(RFQ.id == rfq_id, RFQ.status == from_status)
        .update({"status": new_status}, synchronize_session="fetch")
    )


def list_overdue_active_ids(db: Session, now: datetime) -> List[str]:
    rows = (
        db.query(RFQ.id)
        .filter(RFQ.status == "active", RFQ.expires_at < now)
        .with_for_update(skip_locked=True)
        .all()
    )
    return [r.id for r in rows]


def expire_many(db: Session, rfq_ids: List[str]) -> int:
    if not rfq_ids:
        return 0
    return (
        db.query(RFQ)
        .filter(RFQ.id.in_(rfq_ids), RFQ.status == "active")
        .update({"status": "expired"}, synchronize_session="fetch")
    )
