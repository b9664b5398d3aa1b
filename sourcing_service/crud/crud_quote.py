# sourcing_service/crud/crud_quote.py
import math
from typing import Optional, List, Iterable, Tuple
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy import func

from sourcing_service.models.quote import Quote, QuoteItem
from sourcing_service.schemas.quote import QuoteCreate, QuoteFilters

MAX_PAGE_SIZE = 100


def _with_details(query):
    return query.options(
        joinedload(Quote.seller),
        joinedload(Quote.rfq),
        joinedload(Quote.order_intent),
        selectinload(Quote.items),
    )


def get(db: Session, quote_id: str) -> Optional[Quote]:
    return _with_details(db.query(Quote)).filter(Quote.id == quote_id).first()


def get_for_update(db: Session, quote_id: str) -> Optional[Quote]:
    """Lock the quote row for the rest of the unit of work."""
    return db.query(Quote).filter(Quote.id == quote_id).with_for_update().populate_existing().first()


def get_rfq_id(db: Session, quote_id: str) -> Optional[str]:
    row = db.query(Quote.rfq_id).filter(Quote.id == quote_id).first()
    return row.rfq_id if row else None


def lock_available(db: Session, quote_ids: List[str]) -> List[str]:
    """Lock the given quotes in id order, skipping rows another transaction holds."""
    if not quote_ids:
        return []
    rows = (
        db.query(Quote.id)
        .filter(Quote.id.in_(quote_ids))
        .order_by(Quote.id)
        .with_for_update(skip_locked=True)
        .all()
    )
    return [r.id for r in rows]


def get_by_rfq_and_seller(db: Session, rfq_id: str, seller_id: str) -> Optional[Quote]:
    return (
        db.query(Quote)
        .filter(Quote.rfq_id == rfq_id, Quote.seller_id == seller_id)
        .first()
    )


def create(
    db: Session,
    *,
    seller_id: str,
    data: QuoteCreate,
    valid_until: datetime,
) -> Quote:
    db_obj = Quote(
        rfq_id=data.rfq_id,
        seller_id=seller_id,
        total_price=data.total_price,
        original_price=data.total_price,
        delivery_timeline=data.delivery_timeline,
        terms_conditions=data.terms_conditions,
        valid_until=valid_until,
        status="pending",
    )
    db.add(db_obj)
    db.flush()

    for item in data.items:
        db.add(QuoteItem(
            quote_id=db_obj.id,
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=item.total_price,
        ))
    db.flush()
    return db_obj


def list_filtered(db: Session, filters: QuoteFilters, now: datetime) -> Tuple[List[Quote], int, int]:
    """Returns (quotes, total_count, page_size) for the requested page."""
    page_size = min(filters.page_size, MAX_PAGE_SIZE)
    query = db.query(Quote).filter(Quote.status == filters.status.value)

    if filters.rfq_id:
        query = query.filter(Quote.rfq_id == filters.rfq_id)
    if filters.seller_id:
        query = query.filter(Quote.seller_id == filters.seller_id)
    if filters.valid_only:
        query = query.filter(Quote.valid_until > now)
    if filters.min_price is not None:
        query = query.filter(Quote.total_price >= filters.min_price)
    if filters.max_price is not None:
        query = query.filter(Quote.total_price <= filters.max_price)

    total_count = query.count()

    sort_column = getattr(Quote, filters.sort_by.value)
    order = sort_column.asc() if filters.sort_order.value == "asc" else sort_column.desc()
    offset = (filters.page - 1) * page_size

    quotes = (
        _with_details(query)
        .order_by(order, Quote.id)
        .offset(offset)
        .limit(page_size)
        .all()
    )
    return quotes, total_count, page_size


def total_pages(total_count: int, page_size: int) -> int:
    return math.ceil(total_count / page_size) if page_size > 0 else 0


def transition(
    db: Session,
    *,
    quote_id: str,
    from_statuses: Iterable[str],
    new_status: str,
    **fields,
) -> int:
    """
    Conditionally move a quote to ``new_status`` if it is still in one of
    ``from_statuses``. Returns the affected row count (0 means the pre-state
    no longer holds).
    """
    values = {"status": new_status, **fields}
    return (
        db.query(Quote)
        .filter(Quote.id == quote_id, Quote.status.in_(tuple(from_statuses)))
        .update(values, synchronize_session="fetch")
    )


def reject_siblings(db: Session, *, rfq_id: str, winner_id: str) -> int:
    """Reject every other open quote on the RFQ."""
    return (
        db.query(Quote)
        .filter(
            Quote.rfq_id == rfq_id,
            Quote.id != winner_id,
            Quote.status.in_(("pending", "negotiating")),
        )
        .update({"status": "rejected"}, synchronize_session="fetch")
    )


def revert_to_pending(db: Session, quote_ids: List[str]) -> List[str]:
    """Move negotiating quotes back to pending. Returns the ids that moved."""
    if not quote_ids:
        return []
    reverted = [
        r.id for r in db.query(Quote.id)
        .filter(Quote.id.in_(quote_ids), Quote.status == "negotiating")
        .all()
    ]
    if reverted:
        (
            db.query(Quote)
            .filter(Quote.id.in_(reverted), Quote.status == "negotiating")
            .update({"status": "pending"}, synchronize_session="fetch")
        )
    return reverted


def list_overdue_pending_ids(db: Session, now: datetime) -> List[str]:
    rows = (
        db.query(Quote.id)
        .filter(Quote.status == "pending", Quote.valid_until < now)
        .with_for_update(skip_locked=True)
        .all()
    )
    return [r.id for r in rows]


def list_open_ids_for_rfqs(db: Session, rfq_ids: List[str]) -> List[str]:
    if not rfq_ids:
        return []
    rows = (
        db.query(Quote.id)
        .filter(Quote.rfq_id.in_(rfq_ids), Quote.status.in_(("pending", "negotiating")))
        .all()
    )
    return [r.id for r in rows]


def expire_many(db: Session, quote_ids: List[str], from_statuses: Iterable[str] = ("pending",)) -> int:
    if not quote_ids:
        return 0
    return (
        db.query(Quote)
        .filter(Quote.id.in_(quote_ids), Quote.status.in_(tuple(from_statuses)))
        .update({"status": "expired"}, synchronize_session="fetch")
    )


def status_breakdown(db: Session, seller_id: str) -> List[Tuple[str, int, Optional[Decimal]]]:
    """(status, count, sum of total_price) per status for a seller."""
    return (
        db.query(Quote.status, func.count(Quote.id), func.sum(Quote.total_price))
        .filter(Quote.seller_id == seller_id)
        .group_by(Quote.status)
        .all()
    )


def list_open_siblings(db: Session, *, rfq_id: str, winner_id: str) -> List[Tuple[str, str]]:
    """(quote_id, seller_id) of the other open quotes on an RFQ."""
    rows = (
        db.query(Quote.id, Quote.seller_id)
        .filter(
            Quote.rfq_id == rfq_id,
            Quote.id != winner_id,
            Quote.status.in_(("pending", "negotiating")),
        )
        .all()
    )
    return [(r.id, r.seller_id) for r in rows]
