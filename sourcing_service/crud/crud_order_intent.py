# sourcing_service/crud/crud_order_intent.py
from typing import Optional
from decimal import Decimal
from sqlalchemy.orm import Session

from sourcing_service.models.order_intent import OrderIntent


def create(
    db: Session,
    *,
    rfq_id: str,
    quote_id: str,
    buyer_id: str,
    seller_id: str,
    final_price: Decimal,
    terms: Optional[str] = None,
) -> OrderIntent:
    db_obj = OrderIntent(
        rfq_id=rfq_id,
        quote_id=quote_id,
        buyer_id=buyer_id,
        seller_id=seller_id,
        final_price=final_price,
        terms=terms,
        status="pending",
    )
    db.add(db_obj)
    db.flush()
    return db_obj
