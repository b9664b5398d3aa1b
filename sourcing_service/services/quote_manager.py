# sourcing_service/services/quote_manager.py
"""
Quote Manager

Handles the seller side of an RFQ:
- Quote submission with product ownership and stock checks
- Updates and withdrawal while a quote is still open
- Buyer acceptance (single winner per RFQ) and rejection
- Multi-quote comparison with best-value scoring
- Expiry sweeps for quotes and RFQs
"""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from sourcing_service.core.config import settings
from sourcing_service.core.exceptions import (
    AuthorizationError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    ValidationError,
)
from sourcing_service.crud import crud_negotiation, crud_product, crud_quote, crud_rfq
from sourcing_service.db.session import unit_of_work
from sourcing_service.models.quote import Quote
from sourcing_service.models.rfq import RFQ
from sourcing_service.schemas.quote import (
    OPEN_QUOTE_STATUSES,
    Pagination,
    QuoteComparison,
    QuoteCreate,
    QuoteFilters,
    QuoteItemCreate,
    QuoteListResult,
    QuoteResponse,
    QuoteStatus,
    QuoteUpdate,
    SellerQuoteStats,
    SweepResult,
)
from sourcing_service.services import notifier as notifications
from sourcing_service.services.acceptance import finalize_acceptance
from sourcing_service.services.notifier import NotificationChannel, Notifier, Template
from sourcing_service.services.order_conversion import OrderConversionHook, OrderIntentHook
from sourcing_service.services.quote_scoring import build_comparison
from sourcing_service.utils.datetime_utils import is_past, utcnow

logger = logging.getLogger(__name__)

COMPARISON_LIMIT = 100


class QuoteManager:
    """Service for creating, deciding and comparing quotes on RFQs."""

    def __init__(
        self,
        session_factory: sessionmaker,
        notifier: Notifier,
        order_hook: Optional[OrderConversionHook] = None,
        quote_validity_days: int = settings.QUOTE_VALIDITY_DAYS,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.order_hook = order_hook or OrderIntentHook()
        self.quote_validity_days = quote_validity_days

    # ========================================
    # Seller operations
    # ========================================

    def create_quote(self, seller_id: str, data: QuoteCreate) -> QuoteResponse:
        """Submit a priced quote against an active RFQ."""
        now = utcnow()

        with unit_of_work(self.session_factory) as db:
            rfq = crud_rfq.get_for_update(db, data.rfq_id)
            if not rfq:
                raise NotFoundError("RFQ", data.rfq_id)
            if rfq.status != "active":
                raise ConflictError("RFQ is not active", rfq_id=rfq.id, status=rfq.status)
            if is_past(rfq.expires_at, now):
                raise ConflictError("RFQ has expired", rfq_id=rfq.id)

            if crud_quote.get_by_rfq_and_seller(db, rfq.id, seller_id):
                raise ConflictError(
                    "Seller has already submitted a quote for this RFQ",
                    rfq_id=rfq.id,
                    seller_id=seller_id,
                )

            self._validate_items(db, seller_id, data.items)

            valid_until = data.valid_until or now + timedelta(days=self.quote_validity_days)
            try:
                quote = crud_quote.create(db, seller_id=seller_id, data=data, valid_until=valid_until)
            except IntegrityError:
                raise ConflictError(
                    "Seller has already submitted a quote for this RFQ",
                    rfq_id=rfq.id,
                    seller_id=seller_id,
                )

            result = self._to_response(db, quote.id)
            buyer = rfq.buyer
            buyer_channel = (
                NotificationChannel.WHATSAPP if buyer and buyer.phone else NotificationChannel.IN_APP
            )
            payload = self._quote_payload(result, rfq)
            buyer_id = rfq.buyer_id

        logger.info(f"Quote created: {result.id} by seller {seller_id} for RFQ {data.rfq_id}")
        notifications.dispatch(
            self.notifier, buyer_id, Template.QUOTE_RECEIVED, payload, channel=buyer_channel
        )
        return result

    def update_quote(self, quote_id: str, seller_id: str, data: QuoteUpdate) -> QuoteResponse:
        with unit_of_work(self.session_factory) as db:
            quote = self._get_quote_for_update(db, quote_id)
            if quote.seller_id != seller_id:
                raise AuthorizationError("You can only update your own quotes", user_id=seller_id)
            if quote.status != QuoteStatus.PENDING.value:
                raise ConflictError(
                    "Cannot update quote that is not in pending status",
                    quote_id=quote_id,
                    status=quote.status,
                )
            if is_past(quote.valid_until):
                raise ExpiredError("Quote", quote_id)

            rfq = crud_rfq.get(db, quote.rfq_id)
            if rfq.status != "active":
                raise ConflictError("Cannot update quote for inactive RFQ", rfq_id=rfq.id)

            update_data = data.model_dump(exclude_unset=True)
            if "total_price" in update_data and update_data["total_price"] is None:
                raise ValidationError("Total price cannot be cleared", field="total_price")
            for field, value in update_data.items():
                setattr(quote, field, value)
            # Before any counter-offer the updated price is the negotiation baseline
            if "total_price" in update_data and crud_negotiation.count_for_quote(db, quote.id) == 0:
                quote.original_price = update_data["total_price"]
            db.flush()

            result = self._to_response(db, quote_id)

        logger.info(f"Quote updated: {quote_id} by seller {seller_id}")
        return result

    def withdraw_quote(self, quote_id: str, seller_id: str) -> QuoteResponse:
        """Retract an open quote; accepted and other terminal quotes stay as they are."""
        with unit_of_work(self.session_factory) as db:
            quote = self._get_quote_for_update(db, quote_id)
            if quote.seller_id != seller_id:
                raise AuthorizationError("You can only withdraw your own quotes", user_id=seller_id)
            if quote.status == QuoteStatus.ACCEPTED.value:
                raise ConflictError("Cannot withdraw accepted quote", quote_id=quote_id)

            moved = crud_quote.transition(
                db,
                quote_id=quote_id,
                from_statuses=OPEN_QUOTE_STATUSES,
                new_status=QuoteStatus.WITHDRAWN.value,
            )
            if moved != 1:
                raise ConflictError(
                    "Quote can no longer be withdrawn", quote_id=quote_id, status=quote.status
                )
            crud_negotiation.close_pending_for_quotes(db, [quote_id], new_status="rejected")

            result = self._to_response(db, quote_id)

        logger.info(f"Quote withdrawn: {quote_id} by seller {seller_id}")
        return result

    # ========================================
    # Buyer operations
    # ========================================

    def accept_quote(self, quote_id: str, buyer_id: str) -> QuoteResponse:
        """
        Accept a pending quote as the RFQ's buyer.

        In one unit of work the quote is accepted, every other open quote on
        the RFQ is rejected, the RFQ is completed and an order intent is
        recorded. A concurrent acceptance loses with ConflictError.
        """
        with unit_of_work(self.session_factory) as db:
            rfq_id = crud_quote.get_rfq_id(db, quote_id)
            if not rfq_id:
                raise NotFoundError("Quote", quote_id)
            rfq = crud_rfq.get_for_update(db, rfq_id)
            quote = self._get_quote_for_update(db, quote_id)
            self._ensure_buyer(rfq, buyer_id)

            if quote.status != QuoteStatus.PENDING.value:
                raise ConflictError(
                    "Quote is not in pending status", quote_id=quote_id, status=quote.status
                )
            if is_past(quote.valid_until):
                raise ExpiredError("Quote", quote_id)
            if rfq.status != "active":
                raise ConflictError("RFQ is not active", rfq_id=rfq.id, status=rfq.status)

            order_id, rejected = finalize_acceptance(
                db,
                quote_id=quote.id,
                rfq_id=rfq.id,
                buyer_id=buyer_id,
                seller_id=quote.seller_id,
                from_statuses=(QuoteStatus.PENDING.value,),
                final_price=quote.total_price,
                terms=quote.terms_conditions,
                order_hook=self.order_hook,
            )
            db.expire_all()
            result = self._to_response(db, quote_id)
            result.order_id = order_id

        logger.info(f"Quote accepted: {quote_id} by buyer {buyer_id} (order {order_id})")
        payload = {
            "quoteId": result.id,
            "rfqId": result.rfq_id,
            "orderId": order_id,
            "finalPrice": float(result.total_price),
        }
        notifications.dispatch(self.notifier, result.seller_id, Template.QUOTE_ACCEPTED, payload)
        for rejected_id, rejected_seller_id in rejected:
            notifications.dispatch(
                self.notifier,
                rejected_seller_id,
                Template.QUOTE_REJECTED,
                {"quoteId": rejected_id, "rfqId": result.rfq_id, "reason": "Another quote was accepted"},
            )
        return result

    def reject_quote(self, quote_id: str, buyer_id: str, reason: Optional[str] = None) -> QuoteResponse:
        with unit_of_work(self.session_factory) as db:
            quote = self._get_quote_for_update(db, quote_id)
            rfq = crud_rfq.get(db, quote.rfq_id)
            self._ensure_buyer(rfq, buyer_id)

            moved = crud_quote.transition(
                db,
                quote_id=quote_id,
                from_statuses=(QuoteStatus.PENDING.value,),
                new_status=QuoteStatus.REJECTED.value,
                rejection_reason=reason,
            )
            if moved != 1:
                raise ConflictError(
                    "Quote is not in pending status", quote_id=quote_id, status=quote.status
                )
            result = self._to_response(db, quote_id)

        logger.info(f"Quote rejected: {quote_id} by buyer {buyer_id}")
        notifications.dispatch(
            self.notifier,
            result.seller_id,
            Template.QUOTE_REJECTED,
            {"quoteId": result.id, "rfqId": result.rfq_id, "reason": reason},
        )
        return result

    def get_quotes_for_comparison(self, rfq_id: str, buyer_id: str) -> QuoteComparison:
        """Score every valid pending quote on the buyer's RFQ."""
        with unit_of_work(self.session_factory) as db:
            rfq = crud_rfq.get(db, rfq_id)
            if not rfq:
                raise NotFoundError("RFQ", rfq_id)
            self._ensure_buyer(rfq, buyer_id)

        listing = self.get_quotes(
            QuoteFilters(
                rfq_id=rfq_id,
                status=QuoteStatus.PENDING,
                valid_only=True,
                page_size=COMPARISON_LIMIT,
            )
        )
        return QuoteComparison(
            quotes=listing.quotes,
            comparison=build_comparison(listing.quotes),
        )

    # ========================================
    # Reads
    # ========================================

    def get_quote_by_id(self, quote_id: str) -> QuoteResponse:
        with unit_of_work(self.session_factory) as db:
            return self._to_response(db, quote_id)

    def get_quotes(self, filters: Optional[QuoteFilters] = None) -> QuoteListResult:
        filters = filters or QuoteFilters()
        with unit_of_work(self.session_factory) as db:
            quotes, total_count, page_size = crud_quote.list_filtered(db, filters, utcnow())
            return QuoteListResult(
                quotes=[QuoteResponse.model_validate(q) for q in quotes],
                pagination=Pagination(
                    page=filters.page,
                    page_size=page_size,
                    total_count=total_count,
                    total_pages=crud_quote.total_pages(total_count, page_size),
                ),
            )

    def get_seller_quote_stats(self, seller_id: str) -> SellerQuoteStats:
        with unit_of_work(self.session_factory) as db:
            breakdown = crud_quote.status_breakdown(db, seller_id)

        stats = SellerQuoteStats()
        total_value = 0.0
        for status, count, value_sum in breakdown:
            if hasattr(stats, status):
                setattr(stats, status, count)
            stats.total += count
            total_value += float(value_sum or 0)

        if stats.total:
            stats.acceptance_rate = round(stats.accepted / stats.total * 100, 2)
            stats.average_quote_value = round(total_value / stats.total, 2)
        return stats

    # ========================================
    # Sweep entrypoints
    # ========================================

    def process_expired_quotes(self) -> SweepResult:
        """Expire pending quotes past their validity. Safe to re-run."""
        with unit_of_work(self.session_factory) as db:
            quote_ids = crud_quote.list_overdue_pending_ids(db, utcnow())
            if not quote_ids:
                return SweepResult()
            count = crud_quote.expire_many(db, quote_ids)

        logger.info(f"Processed {count} expired quotes")
        return SweepResult(expired_count=count, processed_ids=quote_ids)

    def process_expired_rfqs(self) -> SweepResult:
        """
        Expire active RFQs past ``expires_at`` together with their open
        quotes and any offers still live on those quotes.
        """
        with unit_of_work(self.session_factory) as db:
            # RFQ, then quote, then entry rows; same order as acceptance
            rfq_ids = crud_rfq.list_overdue_active_ids(db, utcnow())
            if not rfq_ids:
                return SweepResult()

            count = crud_rfq.expire_many(db, rfq_ids)
            quote_ids = crud_quote.list_open_ids_for_rfqs(db, rfq_ids)
            crud_quote.expire_many(db, quote_ids, from_statuses=OPEN_QUOTE_STATUSES)
            crud_negotiation.close_pending_for_quotes(db, quote_ids, new_status="expired")

        logger.info(f"Marked {count} RFQs as expired and {len(quote_ids)} related quotes as expired")
        return SweepResult(expired_count=count, processed_ids=rfq_ids, cascaded_ids=quote_ids)

    # ========================================
    # Helpers
    # ========================================

    def _validate_items(self, db: Session, seller_id: str, items: List[QuoteItemCreate]) -> None:
        product_ids = {item.product_id for item in items}
        products = {
            p.id: p
            for p in crud_product.get_active_for_seller(
                db, seller_id=seller_id, product_ids=list(product_ids)
            )
        }

        missing = sorted(product_ids - products.keys())
        if missing:
            raise NotFoundError("Product", ", ".join(missing))

        for item in items:
            product = products[item.product_id]
            if not product.is_service and product.stock_quantity < item.quantity:
                raise ValidationError(f"Insufficient stock for product: {product.title}", field="items")

    @staticmethod
    def _get_quote_for_update(db: Session, quote_id: str) -> Quote:
        quote = crud_quote.get_for_update(db, quote_id)
        if not quote:
            raise NotFoundError("Quote", quote_id)
        return quote

    @staticmethod
    def _ensure_buyer(rfq: RFQ, buyer_id: str) -> None:
        if rfq.buyer_id != buyer_id:
            raise AuthorizationError("You can only act on quotes for your own RFQs", user_id=buyer_id)

    @staticmethod
    def _to_response(db: Session, quote_id: str) -> QuoteResponse:
        quote = crud_quote.get(db, quote_id)
        if not quote:
            raise NotFoundError("Quote", quote_id)
        return QuoteResponse.model_validate(quote)

    @staticmethod
    def _quote_payload(quote: QuoteResponse, rfq: RFQ) -> dict:
        seller_name = "Anonymous Seller"
        if quote.seller:
            full_name = f"{quote.seller.first_name or ''} {quote.seller.last_name or ''}".strip()
            seller_name = quote.seller.business_name or full_name or seller_name
        return {
            "quoteId": quote.id,
            "rfqId": rfq.id,
            "rfqTitle": rfq.title,
            "totalPrice": float(quote.total_price),
            "deliveryTimeline": quote.delivery_timeline,
            "validUntil": quote.valid_until.isoformat() if quote.valid_until else None,
            "sellerName": seller_name,
            "items": [
                {
                    "productId": item.product_id,
                    "quantity": item.quantity,
                    "unitPrice": float(item.unit_price),
                    "totalPrice": float(item.total_price),
                }
                for item in quote.items
            ],
        }
