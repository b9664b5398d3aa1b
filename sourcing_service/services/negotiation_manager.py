# sourcing_service/services/negotiation_manager.py
"""
Negotiation Manager

Runs the counter-offer protocol on a quote:
- Buyer counter-offers (bounded by the max round setting)
- Responses from the addressed party: accept, reject or counter
- Negotiation history and per-user stats
- Sweep entrypoints for expired offers and auto-conversion
"""

import logging
from datetime import timedelta
from decimal import Decimal
from itertools import groupby
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from sourcing_service.core.config import settings as app_settings
from sourcing_service.core.exceptions import (
    AuthorizationError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    ValidationError,
)
from sourcing_service.crud import crud_negotiation, crud_quote, crud_rfq
from sourcing_service.db.session import unit_of_work
from sourcing_service.models.negotiation_entry import NegotiationEntry
from sourcing_service.models.quote import Quote
from sourcing_service.schemas.negotiation import (
    AutoConversionResult,
    AutoConversionSettings,
    ConversionResult,
    CounterOfferCreate,
    CounterOfferReply,
    NegotiationAction,
    NegotiationEntryResponse,
    NegotiationStatus,
    NegotiationSummary,
    NegotiationSummaryStatus,
    NegotiationSweepResult,
    OfferType,
    UserNegotiationStats,
)
from sourcing_service.schemas.quote import QuoteStatus
from sourcing_service.services import notifier as notifications
from sourcing_service.services.acceptance import finalize_acceptance
from sourcing_service.services.notifier import Notifier, Template
from sourcing_service.services.order_conversion import OrderConversionHook, OrderIntentHook
from sourcing_service.utils.datetime_utils import as_utc, is_past, utcnow

logger = logging.getLogger(__name__)


def default_auto_conversion_settings() -> AutoConversionSettings:
    return AutoConversionSettings(
        max_negotiation_rounds=app_settings.MAX_NEGOTIATION_ROUNDS,
        auto_accept_threshold=app_settings.AUTO_ACCEPT_THRESHOLD_PERCENT,
        negotiation_timeout=app_settings.NEGOTIATION_TIMEOUT_HOURS,
    )


def reduction_percentage(original_price, current_price) -> float:
    """(original - current) / original * 100, rounded to 2 places; 0 for a zero original."""
    original = Decimal(original_price or 0)
    if original == 0:
        return 0.0
    return round(float((original - Decimal(current_price)) / original * 100), 2)


class NegotiationManager:
    """Service for counter-offers and their resolution."""

    def __init__(
        self,
        session_factory: sessionmaker,
        notifier: Notifier,
        order_hook: Optional[OrderConversionHook] = None,
        settings: Optional[AutoConversionSettings] = None,
        counter_offer_validity_hours: int = app_settings.COUNTER_OFFER_VALIDITY_HOURS,
        auto_conversion_enabled: bool = app_settings.AUTO_CONVERSION_ENABLED,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.order_hook = order_hook or OrderIntentHook()
        self.settings = settings or default_auto_conversion_settings()
        self.counter_offer_validity_hours = counter_offer_validity_hours
        self.auto_conversion_enabled = auto_conversion_enabled

    # ========================================
    # Counter-offers
    # ========================================

    def create_counter_offer(
        self, buyer_id: str, quote_id: str, data: CounterOfferCreate
    ) -> NegotiationEntryResponse:
        """Open or continue a negotiation with a buyer counter-offer on a pending quote."""
        now = utcnow()

        with unit_of_work(self.session_factory) as db:
            quote = crud_quote.get_for_update(db, quote_id)
            if not quote:
                raise NotFoundError("Quote", quote_id)
            rfq = crud_rfq.get(db, quote.rfq_id)
            if rfq.buyer_id != buyer_id:
                raise AuthorizationError(
                    "Only the RFQ owner can make counter-offers", user_id=buyer_id
                )
            if quote.status != QuoteStatus.PENDING.value:
                raise ConflictError(
                    "Can only counter-offer on pending quotes",
                    quote_id=quote_id,
                    status=quote.status,
                )
            if is_past(quote.valid_until, now):
                raise ExpiredError("Quote", quote_id)

            rounds = self._check_round_limit(db, quote_id)
            entry = self._add_entry(
                db,
                quote_id=quote_id,
                round_number=rounds + 1,
                from_user_id=buyer_id,
                to_user_id=quote.seller_id,
                price=data.counter_price,
                terms=data.counter_terms,
                message=data.message,
                valid_until=data.valid_until or now + timedelta(hours=self.counter_offer_validity_hours),
            )

            quote_fields = {}
            if data.counter_terms:
                quote_fields["terms_conditions"] = data.counter_terms
            moved = crud_quote.transition(
                db,
                quote_id=quote_id,
                from_statuses=(QuoteStatus.PENDING.value,),
                new_status=QuoteStatus.NEGOTIATING.value,
                **quote_fields,
            )
            if moved != 1:
                raise ConflictError("Quote is no longer pending", quote_id=quote_id)

            result = self._entry_response(db, entry.id)
            original_price = quote.original_price

        logger.info(f"Counter-offer created: {result.id} for quote {quote_id} (round {result.round_number})")
        notifications.dispatch(
            self.notifier,
            result.to_user_id,
            Template.COUNTER_OFFER_RECEIVED,
            self._offer_payload(result, original_price),
        )
        return result

    def respond_to_counter_offer(self, user_id: str, negotiation_id: str, reply: CounterOfferReply):
        """
        Apply the addressed party's response to a live offer.

        Returns a ConversionResult for ``accept`` and a NegotiationEntryResponse
        (the rejected entry, or the new counter) for ``reject``/``counter``.
        """
        if reply.action == NegotiationAction.COUNTER and reply.counter_price is None:
            raise ValidationError("Counter price is required for counter action", field="counter_price")

        if reply.action == NegotiationAction.ACCEPT:
            return self._accept_counter_offer(negotiation_id, user_id)
        if reply.action == NegotiationAction.REJECT:
            return self._reject_counter_offer(negotiation_id, user_id, reply.message)
        return self._create_reply_counter_offer(negotiation_id, user_id, reply)

    def _accept_counter_offer(
        self, negotiation_id: str, user_id: str, enforce_validity: bool = True
    ) -> ConversionResult:
        with unit_of_work(self.session_factory) as db:
            entry, quote, rfq = self._lock_live_entry(
                db, negotiation_id, user_id, enforce_validity, with_rfq=True
            )

            if crud_negotiation.transition(
                db, entry_id=entry.id, new_status=NegotiationStatus.ACCEPTED.value
            ) != 1:
                raise ConflictError("Negotiation is no longer pending", negotiation_id=negotiation_id)

            final_price = entry.price
            order_id, rejected = finalize_acceptance(
                db,
                quote_id=quote.id,
                rfq_id=rfq.id,
                buyer_id=rfq.buyer_id,
                seller_id=quote.seller_id,
                from_statuses=(QuoteStatus.NEGOTIATING.value,),
                final_price=final_price,
                terms=entry.terms or quote.terms_conditions,
                order_hook=self.order_hook,
            )
            result = ConversionResult(
                converted=True,
                order_id=order_id,
                quote_id=quote.id,
                negotiation_id=entry.id,
                final_price=final_price,
            )
            offerer_id = entry.from_user_id
            rfq_id = rfq.id

        logger.info(f"Counter-offer accepted: {negotiation_id} by {user_id}")
        notifications.dispatch(
            self.notifier,
            offerer_id,
            Template.COUNTER_OFFER_ACCEPTED,
            {
                "negotiationId": result.negotiation_id,
                "quoteId": result.quote_id,
                "orderId": result.order_id,
                "finalPrice": float(final_price),
            },
        )
        for rejected_id, rejected_seller_id in rejected:
            notifications.dispatch(
                self.notifier,
                rejected_seller_id,
                Template.QUOTE_REJECTED,
                {"quoteId": rejected_id, "rfqId": rfq_id, "reason": "Another quote was accepted"},
            )
        return result

    def _reject_counter_offer(
        self, negotiation_id: str, user_id: str, message: Optional[str] = None
    ) -> NegotiationEntryResponse:
        with unit_of_work(self.session_factory) as db:
            entry, quote, _ = self._lock_live_entry(db, negotiation_id, user_id)

            fields = {"message": message} if message is not None else {}
            if crud_negotiation.transition(
                db, entry_id=entry.id, new_status=NegotiationStatus.REJECTED.value, **fields
            ) != 1:
                raise ConflictError("Negotiation is no longer pending", negotiation_id=negotiation_id)

            # Original quote terms stand again
            crud_quote.revert_to_pending(db, [quote.id])
            result = self._entry_response(db, entry.id)

        logger.info(f"Counter-offer rejected: {negotiation_id}")
        notifications.dispatch(
            self.notifier,
            result.from_user_id,
            Template.COUNTER_OFFER_REJECTED,
            {"negotiationId": result.id, "quoteId": result.quote_id, "message": message},
        )
        return result

    def _create_reply_counter_offer(
        self, negotiation_id: str, user_id: str, reply: CounterOfferReply
    ) -> NegotiationEntryResponse:
        now = utcnow()

        with unit_of_work(self.session_factory) as db:
            entry, quote, _ = self._lock_live_entry(db, negotiation_id, user_id)
            rounds = self._check_round_limit(db, quote.id)

            if crud_negotiation.transition(
                db, entry_id=entry.id, new_status=NegotiationStatus.REJECTED.value
            ) != 1:
                raise ConflictError("Negotiation is no longer pending", negotiation_id=negotiation_id)

            new_entry = self._add_entry(
                db,
                quote_id=quote.id,
                round_number=rounds + 1,
                from_user_id=user_id,
                to_user_id=entry.from_user_id,
                price=reply.counter_price,
                terms=reply.counter_terms,
                message=reply.message,
                valid_until=reply.valid_until or now + timedelta(hours=self.counter_offer_validity_hours),
            )
            if reply.counter_terms:
                quote.terms_conditions = reply.counter_terms
                db.flush()

            result = self._entry_response(db, new_entry.id)
            original_price = quote.original_price

        logger.info(f"Counter-offer {result.id} sent in reply to {negotiation_id} (round {result.round_number})")
        notifications.dispatch(
            self.notifier,
            result.to_user_id,
            Template.COUNTER_OFFER_RECEIVED,
            self._offer_payload(result, original_price),
        )
        return result

    # ========================================
    # Reads
    # ========================================

    def get_negotiation_by_id(self, negotiation_id: str, user_id: Optional[str] = None) -> NegotiationEntryResponse:
        with unit_of_work(self.session_factory) as db:
            result = self._entry_response(db, negotiation_id)
        if user_id is not None and user_id not in (result.from_user_id, result.to_user_id):
            raise AuthorizationError("You are not a party to this negotiation", user_id=user_id)
        return result

    def get_negotiation_history(self, quote_id: str) -> NegotiationSummary:
        with unit_of_work(self.session_factory) as db:
            quote = crud_quote.get(db, quote_id)
            if not quote:
                raise NotFoundError("Quote", quote_id)
            entries = crud_negotiation.list_for_quote(db, quote_id)
            return self._summarize(quote, entries)

    def get_user_negotiation_stats(self, user_id: str) -> UserNegotiationStats:
        """Aggregate every quote negotiation the user took part in on either side."""
        with unit_of_work(self.session_factory) as db:
            entries = crud_negotiation.list_for_user(db, user_id)

            total = active = completed = 0
            total_rounds = 0
            total_reduction = 0.0
            for _, group in groupby(entries, key=lambda e: e.quote_id):
                quote_entries = list(group)
                quote = quote_entries[0].quote
                total += 1
                total_rounds += len(quote_entries)
                if quote.status == QuoteStatus.ACCEPTED.value:
                    completed += 1
                    total_reduction += reduction_percentage(quote.original_price, quote_entries[-1].price)
                elif quote.status == QuoteStatus.NEGOTIATING.value:
                    active += 1

        return UserNegotiationStats(
            total_negotiations=total,
            active_negotiations=active,
            completed_negotiations=completed,
            average_price_reduction=round(total_reduction / completed, 2) if completed else 0,
            success_rate=round(completed / total * 100, 2) if total else 0,
            average_negotiation_rounds=round(total_rounds / total, 2) if total else 0,
        )

    # ========================================
    # Sweep entrypoints
    # ========================================

    def process_expired_negotiations(self) -> NegotiationSweepResult:
        """
        Expire pending offers past ``valid_until`` and revert their quotes to
        pending when no live offer remains. Re-running finds nothing to do.

        With auto-conversion on, lapsed counters inside the price threshold
        stay pending for ``process_auto_conversion`` to accept once they reach
        the negotiation timeout. Quotes locked by a live response are skipped
        and picked up by the next run.
        """
        with unit_of_work(self.session_factory) as db:
            overdue = [
                e for e in crud_negotiation.list_overdue_pending(db, utcnow())
                if not self._awaits_auto_conversion(e)
            ]
            if not overdue:
                return NegotiationSweepResult()

            # Quote rows before their entries
            locked = set(crud_quote.lock_available(db, sorted({e.quote_id for e in overdue})))
            entry_ids = [e.id for e in overdue if e.quote_id in locked]
            count = crud_negotiation.expire_many(db, entry_ids)

            quote_ids = sorted({e.quote_id for e in overdue if e.quote_id in locked})
            still_live = crud_negotiation.quote_ids_with_pending(db, quote_ids)
            reverted = crud_quote.revert_to_pending(
                db, [q for q in quote_ids if q not in still_live]
            )

        logger.info(f"Processed {count} expired negotiations, reverted {len(reverted)} quotes to pending")
        return NegotiationSweepResult(
            expired_count=count,
            processed_negotiations=entry_ids,
            reverted_quotes=reverted,
        )

    def process_auto_conversion(self, settings: Optional[AutoConversionSettings] = None) -> AutoConversionResult:
        """
        Accept stalled counter-offers whose price is within the threshold of
        the quote's original price. Each candidate is converted in its own
        unit of work; one failure does not stop the batch. A lapsed offer
        that fails to convert is expired so it no longer waits on this run.
        """
        settings = settings or self.settings
        result = AutoConversionResult()
        if not settings.auto_accept_threshold:
            return result

        cutoff = utcnow() - timedelta(hours=settings.negotiation_timeout)
        with unit_of_work(self.session_factory) as db:
            candidates = [
                (entry.id, entry.to_user_id)
                for entry in crud_negotiation.list_auto_conversion_candidates(db, cutoff)
                if self._within_threshold(entry, settings.auto_accept_threshold)
            ]

        for negotiation_id, responder_id in candidates:
            try:
                self._accept_counter_offer(negotiation_id, responder_id, enforce_validity=False)
                result.converted_negotiations.append(negotiation_id)
                logger.info(f"Auto-converted negotiation: {negotiation_id}")
            except Exception as e:
                result.failed_negotiations.append(negotiation_id)
                logger.error(f"Failed to auto-convert negotiation {negotiation_id}: {e}", exc_info=True)
                self._expire_lapsed_offer(negotiation_id)

        result.converted_count = len(result.converted_negotiations)
        logger.info(f"Auto-converted {result.converted_count} negotiations")
        return result

    # ========================================
    # Helpers
    # ========================================

    @staticmethod
    def _within_threshold(entry: NegotiationEntry, threshold: Optional[float]) -> bool:
        if not threshold:
            return False
        return abs(reduction_percentage(entry.quote.original_price, entry.price)) <= threshold

    def _awaits_auto_conversion(self, entry: NegotiationEntry) -> bool:
        return (
            self.auto_conversion_enabled
            and entry.offer_type == OfferType.COUNTER.value
            and self._within_threshold(entry, self.settings.auto_accept_threshold)
        )

    def _expire_lapsed_offer(self, negotiation_id: str) -> None:
        try:
            with unit_of_work(self.session_factory) as db:
                entry = crud_negotiation.get(db, negotiation_id)
                if not entry or not is_past(entry.valid_until):
                    return
                crud_quote.get_for_update(db, entry.quote_id)
                if crud_negotiation.expire_many(db, [entry.id]):
                    if not crud_negotiation.quote_ids_with_pending(db, [entry.quote_id]):
                        crud_quote.revert_to_pending(db, [entry.quote_id])
                    logger.info(f"Expired lapsed negotiation {negotiation_id} after failed auto-conversion")
        except Exception as e:
            logger.error(f"Failed to expire negotiation {negotiation_id}: {e}", exc_info=True)

    def _check_round_limit(self, db: Session, quote_id: str) -> int:
        rounds = crud_negotiation.count_for_quote(db, quote_id)
        if rounds >= self.settings.max_negotiation_rounds:
            raise ConflictError(
                f"Maximum negotiation rounds ({self.settings.max_negotiation_rounds}) exceeded",
                quote_id=quote_id,
                rounds=rounds,
            )
        return rounds

    @staticmethod
    def _add_entry(db: Session, **fields) -> NegotiationEntry:
        try:
            return crud_negotiation.create(db, offer_type=OfferType.COUNTER.value, **fields)
        except IntegrityError:
            # Another offer took this round number first
            raise ConflictError("Negotiation changed concurrently", quote_id=fields["quote_id"])

    @staticmethod
    def _lock_live_entry(
        db: Session,
        negotiation_id: str,
        user_id: str,
        enforce_validity: bool = True,
        with_rfq: bool = False,
    ):
        """
        Lock (rfq, quote, entry) in that order and check the entry is a live
        offer for ``user_id``. The RFQ is only locked with ``with_rfq``.
        """
        entry = crud_negotiation.get(db, negotiation_id)
        if not entry:
            raise NotFoundError("Negotiation", negotiation_id)

        rfq = None
        if with_rfq:
            rfq = crud_rfq.get_for_update(db, crud_quote.get_rfq_id(db, entry.quote_id))
        quote = crud_quote.get_for_update(db, entry.quote_id)
        entry = crud_negotiation.get_for_update(db, negotiation_id)

        if entry.to_user_id != user_id:
            raise AuthorizationError("You can only respond to offers addressed to you", user_id=user_id)
        if entry.status != NegotiationStatus.PENDING.value:
            raise ConflictError(
                "Negotiation is no longer pending",
                negotiation_id=negotiation_id,
                status=entry.status,
            )
        if enforce_validity and is_past(entry.valid_until):
            raise ExpiredError("Negotiation", negotiation_id)
        return entry, quote, rfq

    @staticmethod
    def _entry_response(db: Session, negotiation_id: str) -> NegotiationEntryResponse:
        entry = crud_negotiation.get(db, negotiation_id)
        if not entry:
            raise NotFoundError("Negotiation", negotiation_id)
        return NegotiationEntryResponse.model_validate(entry)

    @staticmethod
    def _summarize(quote: Quote, entries: List[NegotiationEntry]) -> NegotiationSummary:
        last = entries[-1] if entries else None
        original_price = Decimal(quote.original_price)
        current_price = Decimal(last.price) if last else Decimal(quote.total_price)

        if quote.status == QuoteStatus.ACCEPTED.value:
            status = NegotiationSummaryStatus.COMPLETED
        elif quote.status in (QuoteStatus.REJECTED.value, QuoteStatus.WITHDRAWN.value):
            status = NegotiationSummaryStatus.CANCELLED
        elif quote.status == QuoteStatus.EXPIRED.value or (
            last is not None and (
                last.status == NegotiationStatus.EXPIRED.value
                or (last.status == NegotiationStatus.PENDING.value and is_past(last.valid_until))
            )
        ):
            status = NegotiationSummaryStatus.EXPIRED
        else:
            status = NegotiationSummaryStatus.ACTIVE

        return NegotiationSummary(
            quote_id=quote.id,
            original_price=float(original_price),
            current_price=float(current_price),
            price_reduction=float(original_price - current_price),
            price_reduction_percentage=reduction_percentage(original_price, current_price),
            negotiation_rounds=len(entries),
            status=status,
            last_activity=as_utc(last.created_at if last else quote.created_at),
            history=[NegotiationEntryResponse.model_validate(e) for e in entries],
        )

    @staticmethod
    def _offer_payload(entry: NegotiationEntryResponse, original_price) -> dict:
        return {
            "negotiationId": entry.id,
            "quoteId": entry.quote_id,
            "originalPrice": float(original_price),
            "counterPrice": float(entry.price),
            "counterTerms": entry.terms,
            "message": entry.message,
            "validUntil": entry.valid_until.isoformat() if entry.valid_until else None,
            "round": entry.round_number,
        }
