# sourcing_service/services/acceptance.py
import logging
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from sourcing_service.core.exceptions import ConflictError
from sourcing_service.crud import crud_negotiation, crud_quote, crud_rfq
from sourcing_service.services.order_conversion import OrderConversionHook

logger = logging.getLogger(__name__)


def finalize_acceptance(
    db: Session,
    *,
    quote_id: str,
    rfq_id: str,
    buyer_id: str,
    seller_id: str,
    from_statuses: Iterable[str],
    final_price: Decimal,
    terms: Optional[str],
    order_hook: OrderConversionHook,
) -> Tuple[str, List[Tuple[str, str]]]:
    """
    Accept one quote and close out its RFQ in the caller's unit of work.

    The winning quote moves to ``accepted`` at ``final_price``, every other
    open quote on the RFQ is rejected along with its live offers, and the
    RFQ is completed. Any pre-state that no longer holds raises
    ConflictError so the caller's unit of work rolls back.

    Callers lock the RFQ, then the winning quote, then its entry. Every
    path takes row locks in that order.

    Returns (order_id, [(rejected_quote_id, seller_id), ...]).
    """
    accepted = crud_quote.transition(
        db,
        quote_id=quote_id,
        from_statuses=from_statuses,
        new_status="accepted",
        total_price=final_price,
        terms_conditions=terms,
    )
    if accepted != 1:
        raise ConflictError("Quote is no longer open for acceptance", quote_id=quote_id)

    if crud_rfq.transition(db, rfq_id=rfq_id, from_status="active", new_status="completed") != 1:
        raise ConflictError("RFQ is no longer active", rfq_id=rfq_id)

    # Quote rows before their entries
    siblings = crud_quote.list_open_siblings(db, rfq_id=rfq_id, winner_id=quote_id)
    sibling_ids = [sibling_id for sibling_id, _ in siblings]
    crud_quote.reject_siblings(db, rfq_id=rfq_id, winner_id=quote_id)
    crud_negotiation.close_pending_for_quotes(db, sibling_ids, new_status="rejected")

    order_id = order_hook.materialize_order(
        db,
        rfq_id=rfq_id,
        quote_id=quote_id,
        buyer_id=buyer_id,
        seller_id=seller_id,
        final_price=final_price,
        terms=terms,
    )

    logger.info(
        f"Quote {quote_id} accepted at {final_price}; RFQ {rfq_id} completed, "
        f"{len(siblings)} sibling quote(s) rejected"
    )
    return order_id, siblings
