# sourcing_service/crud/crud_negotiation.py
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import func

from sourcing_service.models.negotiation_entry import NegotiationEntry


def get(db: Session, entry_id: str) -> Optional[NegotiationEntry]:
    return (
        db.query(NegotiationEntry)
        .options(
            joinedload(NegotiationEntry.from_user),
            joinedload(NegotiationEntry.to_user),
        )
        .filter(NegotiationEntry.id == entry_id)
        .first()
    )


def get_for_update(db: Session, entry_id: str) -> Optional[NegotiationEntry]:
    return (
        db.query(NegotiationEntry)
        .filter(NegotiationEntry.id == entry_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def list_for_quote(db: Session, quote_id: str) -> List[NegotiationEntry]:
    """Full history for a quote in round order."""
    return (
        db.query(NegotiationEntry)
        .options(
            joinedload(NegotiationEntry.from_user),
            joinedload(NegotiationEntry.to_user),
        )
        .filter(NegotiationEntry.quote_id == quote_id)
        .order_by(NegotiationEntry.round_number.asc())
        .all()
    )


def count_for_quote(db: Session, quote_id: str) -> int:
    return (
        db.query(func.count(NegotiationEntry.id))
        .filter(NegotiationEntry.quote_id == quote_id)
        .scalar()
    )


def create(
    db: Session,
    *,
    quote_id: str,
    round_number: int,
    from_user_id: str,
    to_user_id: str,
    offer_type: str,
    price: Decimal,
    terms: Optional[str] = None,
    message: Optional[str] = None,
    valid_until: Optional[datetime] = None,
) -> NegotiationEntry:
    db_obj = NegotiationEntry(
        quote_id=quote_id,
        round_number=round_number,
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        offer_type=offer_type,
        price=price,
        terms=terms,
        message=message,
        status="pending",
        valid_until=valid_until,
    )
    db.add(db_obj)
    db.flush()
    return db_obj


def transition(db: Session, *, entry_id: str, new_status: str, **fields) -> int:
    """Move a pending entry to a terminal status. Returns affected row count."""
    return (
        db.query(NegotiationEntry)
        .filter(NegotiationEntry.id == entry_id, NegotiationEntry.status == "pending")
        .update({"status": new_status, **fields}, synchronize_session="fetch")
    )


def list_overdue_pending(db: Session, now: datetime) -> List[NegotiationEntry]:
    """Unlocked read; callers lock the parent quotes before touching these rows."""
    return (
        db.query(NegotiationEntry)
        .options(joinedload(NegotiationEntry.quote))
        .filter(
            NegotiationEntry.status == "pending",
            NegotiationEntry.valid_until < now,
        )
        .order_by(NegotiationEntry.quote_id, NegotiationEntry.round_number)
        .all()
    )


def expire_many(db: Session, entry_ids: List[str]) -> int:
    if not entry_ids:
        return 0
    return (
        db.query(NegotiationEntry)
        .filter(NegotiationEntry.id.in_(entry_ids), NegotiationEntry.status == "pending")
        .update({"status": "expired"}, synchronize_session="fetch")
    )


def close_pending_for_quotes(db: Session, quote_ids: List[str], new_status: str = "expired") -> int:
    """Close every live entry on the given quotes."""
    if not quote_ids:
        return 0
    return (
        db.query(NegotiationEntry)
        .filter(
            NegotiationEntry.quote_id.in_(quote_ids),
            NegotiationEntry.status == "pending",
        )
        .update({"status": new_status}, synchronize_session="fetch")
    )


def quote_ids_with_pending(db: Session, quote_ids: List[str]) -> set:
    if not quote_ids:
        return set()
    rows = (
        db.query(NegotiationEntry.quote_id)
        .filter(
            NegotiationEntry.quote_id.in_(quote_ids),
            NegotiationEntry.status == "pending",
        )
        .distinct()
        .all()
    )
    return {r.quote_id for r in rows}


def list_auto_conversion_candidates(db: Session, created_before: datetime) -> List[NegotiationEntry]:
    return (
        db.query(NegotiationEntry)
        .options(joinedload(NegotiationEntry.quote))
        .filter(
            NegotiationEntry.status == "pending",
            NegotiationEntry.offer_type == "counter",
            NegotiationEntry.created_at < created_before,
        )
        .order_by(NegotiationEntry.created_at.asc())
        .all()
    )


def list_for_user(db: Session, user_id: str) -> List[NegotiationEntry]:
    """Every entry the user sent or received, with its quote, in round order."""
    return (
        db.query(NegotiationEntry)
        .options(joinedload(NegotiationEntry.quote))
        .filter(
            (NegotiationEntry.from_user_id == user_id)
            | (NegotiationEntry.to_user_id == user_id)
        )
        .order_by(NegotiationEntry.quote_id, NegotiationEntry.round_number.asc())
        .all()
    )
