# sourcing_service/services/order_conversion.py
import logging
from decimal import Decimal
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from sourcing_service.crud import crud_order_intent

logger = logging.getLogger(__name__)


class OrderConversionHook(Protocol):
    """Receives every accepted deal. Runs inside the accepting unit of work."""

    def materialize_order(
        self,
        db: Session,
        *,
        rfq_id: str,
        quote_id: str,
        buyer_id: str,
        seller_id: str,
        final_price: Decimal,
        terms: Optional[str],
    ) -> str:
        ...


class OrderIntentHook:
    """Records an order intent for the order service to pick up."""

    def materialize_order(
        self,
        db: Session,
        *,
        rfq_id: str,
        quote_id: str,
        buyer_id: str,
        seller_id: str,
        final_price: Decimal,
        terms: Optional[str],
    ) -> str:
        intent = crud_order_intent.create(
            db,
            rfq_id=rfq_id,
            quote_id=quote_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            final_price=final_price,
            terms=terms,
        )
        logger.info(f"Order intent {intent.id} recorded for quote {quote_id} at {final_price}")
        return intent.id
