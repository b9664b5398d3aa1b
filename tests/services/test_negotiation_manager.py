"""
Tests for NegotiationManager against an in-memory database.

Covers the counter-offer protocol (round bound, responder checks, accept /
reject / counter), negotiation summaries and stats, and both sweeps.
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import ANY

from sourcing_service.core.exceptions import (
    AuthorizationError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    ValidationError,
)
from sourcing_service.crud import crud_negotiation, crud_quote, crud_rfq
from sourcing_service.models.negotiation_entry import NegotiationEntry
from sourcing_service.models.order_intent import OrderIntent
from sourcing_service.models.quote import Quote
from sourcing_service.models.rfq import RFQ
from sourcing_service.schemas.negotiation import (
    AutoConversionSettings,
    ConversionResult,
    CounterOfferCreate,
    CounterOfferReply,
    NegotiationAction,
    NegotiationSummaryStatus,
)
from sourcing_service.services.negotiation_manager import NegotiationManager, reduction_percentage
from sourcing_service.utils.datetime_utils import as_utc, utcnow
from tests.utils.sourcing import (
    create_entry,
    create_quote,
    create_rfq,
    create_user,
    reload,
)


def _counter(price, **fields):
    return CounterOfferCreate(counter_price=Decimal(price), **fields)


def _reply(action, price=None, **fields):
    return CounterOfferReply(
        action=action,
        counter_price=Decimal(price) if price is not None else None,
        **fields,
    )


def _recording_lock(lock, name, locks):
    def record(session, row_id):
        locks.append(name)
        return lock(session, row_id)
    return record


class NegotiationTestBase:

    @pytest.fixture(autouse=True)
    def setup(self, db):
        self.buyer = create_user(db)
        self.seller = create_user(db, tier="standard")
        self.rfq = create_rfq(db, self.buyer.id)
        self.quote = create_quote(db, self.rfq.id, self.seller.id, total_price="1800")


class TestCreateCounterOffer(NegotiationTestBase):

    def test_buyer_counter_moves_quote_to_negotiating(self, negotiation_manager, db):
        entry = negotiation_manager.create_counter_offer(
            self.buyer.id, self.quote.id, _counter("1500", counter_terms="Net 60, delivery to Lagos")
        )

        assert entry.status == "pending"
        assert entry.offer_type == "counter"
        assert entry.round_number == 1
        assert entry.from_user_id == self.buyer.id
        assert entry.to_user_id == self.seller.id
        quote = reload(db, Quote, self.quote.id)
        assert quote.status == "negotiating"
        assert quote.terms_conditions == "Net 60, delivery to Lagos"
        assert quote.total_price == Decimal("1800")

    def test_default_validity_is_twenty_four_hours(self, negotiation_manager):
        entry = negotiation_manager.create_counter_offer(self.buyer.id, self.quote.id, _counter("1500"))

        expected = utcnow() + timedelta(hours=24)
        assert abs(as_utc(entry.valid_until) - expected) < timedelta(minutes=1)

    def test_notifies_seller(self, negotiation_manager, notifier):
        entry = negotiation_manager.create_counter_offer(self.buyer.id, self.quote.id, _counter("1500"))

        notifier.notify.assert_called_once_with(self.seller.id, "in_app", "counter_offer_received", ANY)
        payload = notifier.notify.call_args[0][3]
        assert payload["negotiationId"] == entry.id
        assert payload["originalPrice"] == 1800.0
        assert payload["counterPrice"] == 1500.0

    def test_only_rfq_buyer_can_counter(self, negotiation_manager):
        with pytest.raises(AuthorizationError):
            negotiation_manager.create_counter_offer(self.seller.id, self.quote.id, _counter("1500"))

    def test_missing_quote_raises_not_found(self, negotiation_manager):
        with pytest.raises(NotFoundError):
            negotiation_manager.create_counter_offer(self.buyer.id, "quo_missing", _counter("1500"))

    def test_counter_on_negotiating_quote_raises_conflict(self, negotiation_manager):
        negotiation_manager.create_counter_offer(self.buyer.id, self.quote.id, _counter("1500"))

        with pytest.raises(ConflictError):
            negotiation_manager.create_counter_offer(self.buyer.id, self.quote.id, _counter("1400"))

    def test_counter_on_expired_quote_raises_expired(self, negotiation_manager, db):
        quote = reload(db, Quote, self.quote.id)
        quote.valid_until = utcnow() - timedelta(hours=1)
        db.commit()

        with pytest.raises(ExpiredError):
            negotiation_manager.create_counter_offer(self.buyer.id, self.quote.id, _counter("1500"))

    def test_sixth_round_is_rejected(self, negotiation_manager, db):
        for round_number in range(1, 6):
            create_entry(db, self.quote.id, self.buyer.id, self.seller.id, round_number, status="rejected")

        with pytest.raises(ConflictError):
            negotiation_manager.create_counter_offer(self.buyer.id, self.quote.id, _counter("1500"))

        assert db.query(NegotiationEntry).filter(NegotiationEntry.quote_id == self.quote.id).count() == 5
        assert reload(db, Quote, self.quote.id).status == "pending"


class TestRespondToCounterOffer(NegotiationTestBase):

    @pytest.fixture(autouse=True)
    def open_negotiation(self, setup, negotiation_manager, notifier):
        self.entry = negotiation_manager.create_counter_offer(self.buyer.id, self.quote.id, _counter("1500"))
        notifier.reset_mock()

    def test_seller_accepts_buyer_counter(self, negotiation_manager, db):
        result = negotiation_manager.respond_to_counter_offer(
            self.seller.id, self.entry.id, _reply(NegotiationAction.ACCEPT)
        )

        assert isinstance(result, ConversionResult)
        assert result.converted is True
        assert result.final_price == Decimal("1500")
        assert result.quote_id == self.quote.id
        quote = reload(db, Quote, self.quote.id)
        assert quote.status == "accepted"
        assert quote.total_price == Decimal("1500")
        assert quote.original_price == Decimal("1800")
        assert reload(db, RFQ, self.rfq.id).status == "completed"
        assert reload(db, NegotiationEntry, self.entry.id).status == "accepted"
        intent = db.query(OrderIntent).filter(OrderIntent.quote_id == self.quote.id).one()
        assert result.order_id == intent.id

    def test_accepting_counter_rejects_sibling_quotes(self, negotiation_manager, db, notifier):
        rival = create_user(db)
        rival_quote = create_quote(db, self.rfq.id, rival.id, total_price="1700")

        negotiation_manager.respond_to_counter_offer(self.seller.id, self.entry.id, _reply(NegotiationAction.ACCEPT))

        assert reload(db, Quote, rival_quote.id).status == "rejected"
        notified = {(c.args[0], c.args[2]) for c in notifier.notify.call_args_list}
        assert (self.buyer.id, "counter_offer_accepted") in notified
        assert (rival.id, "quote_rejected") in notified

    def test_second_accept_raises_conflict(self, negotiation_manager):
        negotiation_manager.respond_to_counter_offer(self.seller.id, self.entry.id, _reply(NegotiationAction.ACCEPT))

        with pytest.raises(ConflictError):
            negotiation_manager.respond_to_counter_offer(
                self.seller.id, self.entry.id, _reply(NegotiationAction.ACCEPT)
            )

    def test_accept_after_rfq_closed_rolls_back(self, negotiation_manager, db):
        rfq = reload(db, RFQ, self.rfq.id)
        rfq.status = "cancelled"
        db.commit()

        with pytest.raises(ConflictError):
            negotiation_manager.respond_to_counter_offer(
                self.seller.id, self.entry.id, _reply(NegotiationAction.ACCEPT)
            )

        assert reload(db, NegotiationEntry, self.entry.id).status == "pending"
        assert reload(db, Quote, self.quote.id).status == "negotiating"

    def test_only_recipient_can_respond(self, negotiation_manager):
        with pytest.raises(AuthorizationError):
            negotiation_manager.respond_to_counter_offer(
                self.buyer.id, self.entry.id, _reply(NegotiationAction.ACCEPT)
            )

    def test_responding_to_lapsed_offer_raises_expired(self, negotiation_manager, db):
        entry = reload(db, NegotiationEntry, self.entry.id)
        entry.valid_until = utcnow() - timedelta(minutes=1)
        db.commit()

        with pytest.raises(ExpiredError):
            negotiation_manager.respond_to_counter_offer(
                self.seller.id, self.entry.id, _reply(NegotiationAction.ACCEPT)
            )

    def test_reject_reverts_quote_to_pending(self, negotiation_manager, db, notifier):
        result = negotiation_manager.respond_to_counter_offer(
            self.seller.id, self.entry.id, _reply(NegotiationAction.REJECT, message="Below cost")
        )

        assert result.status == "rejected"
        assert result.message == "Below cost"
        quote = reload(db, Quote, self.quote.id)
        assert quote.status == "pending"
        assert quote.total_price == Decimal("1800")
        notifier.notify.assert_called_once_with(self.buyer.id, "in_app", "counter_offer_rejected", ANY)

    def test_counter_without_price_raises_validation_error(self, negotiation_manager, db):
        with pytest.raises(ValidationError):
            negotiation_manager.respond_to_counter_offer(
                self.seller.id, self.entry.id, _reply(NegotiationAction.COUNTER)
            )

        assert reload(db, NegotiationEntry, self.entry.id).status == "pending"

    def test_seller_counter_supersedes_prior_offer(self, negotiation_manager, db, notifier):
        counter = negotiation_manager.respond_to_counter_offer(
            self.seller.id, self.entry.id, _reply(NegotiationAction.COUNTER, "1650", counter_terms="50% upfront")
        )

        assert counter.round_number == 2
        assert counter.from_user_id == self.seller.id
        assert counter.to_user_id == self.buyer.id
        assert counter.price == Decimal("1650")
        assert reload(db, NegotiationEntry, self.entry.id).status == "rejected"
        quote = reload(db, Quote, self.quote.id)
        assert quote.status == "negotiating"
        assert quote.terms_conditions == "50% upfront"
        notifier.notify.assert_called_once_with(self.buyer.id, "in_app", "counter_offer_received", ANY)

    def test_buyer_accepts_seller_counter(self, negotiation_manager, db):
        counter = negotiation_manager.respond_to_counter_offer(
            self.seller.id, self.entry.id, _reply(NegotiationAction.COUNTER, "1650")
        )

        result = negotiation_manager.respond_to_counter_offer(
            self.buyer.id, counter.id, _reply(NegotiationAction.ACCEPT)
        )

        assert result.final_price == Decimal("1650")
        assert reload(db, Quote, self.quote.id).total_price == Decimal("1650")

    def test_round_limit_blocks_counter_but_last_offer_stays_open(self, session_factory, notifier, db):
        manager = NegotiationManager(
            session_factory, notifier, settings=AutoConversionSettings(max_negotiation_rounds=2)
        )
        counter = manager.respond_to_counter_offer(
            self.seller.id, self.entry.id, _reply(NegotiationAction.COUNTER, "1650")
        )

        with pytest.raises(ConflictError):
            manager.respond_to_counter_offer(self.buyer.id, counter.id, _reply(NegotiationAction.COUNTER, "1600"))

        assert reload(db, NegotiationEntry, counter.id).status == "pending"
        assert db.query(NegotiationEntry).filter(NegotiationEntry.quote_id == self.quote.id).count() == 2

        result = manager.respond_to_counter_offer(self.buyer.id, counter.id, _reply(NegotiationAction.ACCEPT))
        assert result.converted is True

    def test_accept_locks_rfq_then_quote_then_entry(self, negotiation_manager, monkeypatch):
        locks = []
        for module, name in ((crud_rfq, "rfq"), (crud_quote, "quote"), (crud_negotiation, "entry")):
            monkeypatch.setattr(module, "get_for_update", _recording_lock(module.get_for_update, name, locks))

        negotiation_manager.respond_to_counter_offer(self.seller.id, self.entry.id, _reply(NegotiationAction.ACCEPT))

        assert locks == ["rfq", "quote", "entry"]

    def test_missing_negotiation_raises_not_found(self, negotiation_manager):
        with pytest.raises(NotFoundError):
            negotiation_manager.respond_to_counter_offer(
                self.seller.id, "neg_missing", _reply(NegotiationAction.ACCEPT)
            )


class TestNegotiationHistory(NegotiationTestBase):

    def test_reduction_math(self):
        assert reduction_percentage(Decimal("1000"), Decimal("900")) == 10.0
        assert reduction_percentage(Decimal("0"), Decimal("900")) == 0.0
        assert reduction_percentage(Decimal("1800"), Decimal("1500")) == 16.67

    def test_summary_without_history_uses_quote_price(self, negotiation_manager):
        summary = negotiation_manager.get_negotiation_history(self.quote.id)

        assert summary.negotiation_rounds == 0
        assert summary.current_price == 1800
        assert summary.price_reduction == 0
        assert summary.status == NegotiationSummaryStatus.ACTIVE
        assert summary.history == []

    def test_summary_tracks_latest_offer(self, negotiation_manager):
        first = negotiation_manager.create_counter_offer(self.buyer.id, self.quote.id, _counter("1500"))
        negotiation_manager.respond_to_counter_offer(
            self.seller.id, first.id, _reply(NegotiationAction.COUNTER, "1620")
        )

        summary = negotiation_manager.get_negotiation_history(self.quote.id)

        assert summary.original_price == 1800
        assert summary.current_price == 1620
        assert summary.price_reduction == 180
        assert summary.price_reduction_percentage == 10.0
        assert summary.negotiation_rounds == 2
        assert [e.round_number for e in summary.history] == [1, 2]
        assert summary.status == NegotiationSummaryStatus.ACTIVE

    def test_summary_status_follows_quote(self, negotiation_manager, db):
        entry = negotiation_manager.create_counter_offer(self.buyer.id, self.quote.id, _counter("1500"))
        negotiation_manager.respond_to_counter_offer(self.seller.id, entry.id, _reply(NegotiationAction.ACCEPT))

        assert negotiation_manager.get_negotiation_history(self.quote.id).status == NegotiationSummaryStatus.COMPLETED

    def test_summary_of_lapsed_offer_is_expired(self, negotiation_manager, db):
        quote = reload(db, Quote, self.quote.id)
        quote.status = "negotiating"
        db.commit()
        create_entry(db, self.quote.id, self.buyer.id, self.seller.id, 1, valid_until=utcnow() - timedelta(hours=1))

        assert negotiation_manager.get_negotiation_history(self.quote.id).status == NegotiationSummaryStatus.EXPIRED

    def test_summary_of_withdrawn_quote_is_cancelled(self, negotiation_manager, db):
        quote = reload(db, Quote, self.quote.id)
        quote.status = "withdrawn"
        db.commit()

        assert negotiation_manager.get_negotiation_history(self.quote.id).status == NegotiationSummaryStatus.CANCELLED

    def test_get_negotiation_by_id_is_limited_to_parties(self, negotiation_manager, db):
        entry = negotiation_manager.create_counter_offer(self.buyer.id, self.quote.id, _counter("1500"))
        outsider = create_user(db)

        assert negotiation_manager.get_negotiation_by_id(entry.id, user_id=self.seller.id).id == entry.id
        with pytest.raises(AuthorizationError):
            negotiation_manager.get_negotiation_by_id(entry.id, user_id=outsider.id)

    def test_user_negotiation_stats(self, negotiation_manager, db):
        entry = negotiation_manager.create_counter_offer(self.buyer.id, self.quote.id, _counter("1620"))
        negotiation_manager.respond_to_counter_offer(self.seller.id, entry.id, _reply(NegotiationAction.ACCEPT))

        other_rfq = create_rfq(db, self.buyer.id)
        other_quote = create_quote(db, other_rfq.id, self.seller.id, total_price="1000")
        other_entry = negotiation_manager.create_counter_offer(self.buyer.id, other_quote.id, _counter("900"))
        negotiation_manager.respond_to_counter_offer(
            self.seller.id, other_entry.id, _reply(NegotiationAction.COUNTER, "950")
        )

        stats = negotiation_manager.get_user_negotiation_stats(self.seller.id)

        assert stats.total_negotiations == 2
        assert stats.completed_negotiations == 1
        assert stats.active_negotiations == 1
        assert stats.average_price_reduction == 10.0
        assert stats.success_rate == 50.0
        assert stats.average_negotiation_rounds == 1.5


class TestNegotiationSweeps(NegotiationTestBase):

    def _negotiating_quote(self, db):
        quote = reload(db, Quote, self.quote.id)
        quote.status = "negotiating"
        db.commit()

    def test_lapsed_offer_expires_and_quote_reverts(self, negotiation_manager, db):
        self._negotiating_quote(db)
        entry = create_entry(db, self.quote.id, self.buyer.id, self.seller.id, 1, valid_until=utcnow() - timedelta(hours=1))

        result = negotiation_manager.process_expired_negotiations()

        assert result.expired_count == 1
        assert result.processed_negotiations == [entry.id]
        assert result.reverted_quotes == [self.quote.id]
        assert reload(db, NegotiationEntry, entry.id).status == "expired"
        assert reload(db, Quote, self.quote.id).status == "pending"

    def test_sweep_is_idempotent(self, negotiation_manager, db):
        self._negotiating_quote(db)
        create_entry(db, self.quote.id, self.buyer.id, self.seller.id, 1, valid_until=utcnow() - timedelta(hours=1))
        negotiation_manager.process_expired_negotiations()

        second = negotiation_manager.process_expired_negotiations()

        assert second.expired_count == 0
        assert second.processed_negotiations == []
        assert reload(db, Quote, self.quote.id).status == "pending"

    def test_sweep_leaves_live_offers_alone(self, negotiation_manager, db):
        self._negotiating_quote(db)
        entry = create_entry(db, self.quote.id, self.buyer.id, self.seller.id, 1)

        result = negotiation_manager.process_expired_negotiations()

        assert result.expired_count == 0
        assert reload(db, NegotiationEntry, entry.id).status == "pending"
        assert reload(db, Quote, self.quote.id).status == "negotiating"

    def test_auto_converts_stalled_offer_within_threshold(self, negotiation_manager, db):
        self._negotiating_quote(db)
        entry = create_entry(
            db, self.quote.id, self.buyer.id, self.seller.id, 1,
            price="1750", created_at=utcnow() - timedelta(hours=49),
            valid_until=utcnow() - timedelta(hours=25),
        )

        result = negotiation_manager.process_auto_conversion()

        assert result.converted_count == 1
        assert result.converted_negotiations == [entry.id]
        quote = reload(db, Quote, self.quote.id)
        assert quote.status == "accepted"
        assert quote.total_price == Decimal("1750")
        assert reload(db, RFQ, self.rfq.id).status == "completed"

    def test_auto_conversion_skips_offers_outside_threshold(self, negotiation_manager, db):
        self._negotiating_quote(db)
        entry = create_entry(
            db, self.quote.id, self.buyer.id, self.seller.id, 1,
            price="1500", created_at=utcnow() - timedelta(hours=49),
        )

        result = negotiation_manager.process_auto_conversion()

        assert result.converted_count == 0
        assert reload(db, NegotiationEntry, entry.id).status == "pending"

    def test_auto_conversion_skips_recent_offers(self, negotiation_manager, db):
        self._negotiating_quote(db)
        create_entry(db, self.quote.id, self.buyer.id, self.seller.id, 1, price="1790")

        assert negotiation_manager.process_auto_conversion().converted_count == 0

    def test_auto_conversion_isolates_failures(self, negotiation_manager, db):
        self._negotiating_quote(db)
        good = create_entry(
            db, self.quote.id, self.buyer.id, self.seller.id, 1,
            price="1780", created_at=utcnow() - timedelta(hours=50),
        )
        other_seller = create_user(db)
        other_rfq = create_rfq(db, self.buyer.id)
        # Quote left pending, so accepting its offer hits a stale pre-state
        broken_quote = create_quote(db, other_rfq.id, other_seller.id, total_price="1000")
        broken = create_entry(
            db, broken_quote.id, self.buyer.id, other_seller.id, 1,
            price="990", created_at=utcnow() - timedelta(hours=60),
        )

        result = negotiation_manager.process_auto_conversion()

        assert result.converted_negotiations == [good.id]
        assert result.failed_negotiations == [broken.id]
        assert reload(db, NegotiationEntry, broken.id).status == "pending"

    def test_auto_conversion_disabled_without_threshold(self, negotiation_manager, db):
        self._negotiating_quote(db)
        create_entry(
            db, self.quote.id, self.buyer.id, self.seller.id, 1,
            price="1790", created_at=utcnow() - timedelta(hours=49),
        )

        result = negotiation_manager.process_auto_conversion(
            AutoConversionSettings(auto_accept_threshold=None)
        )

        assert result.converted_count == 0

    def test_default_counter_survives_expiry_sweep_until_auto_conversion(self, negotiation_manager, db):
        offer = negotiation_manager.create_counter_offer(self.buyer.id, self.quote.id, _counter("1790"))
        entry = reload(db, NegotiationEntry, offer.id)
        entry.created_at = utcnow() - timedelta(hours=49)
        entry.valid_until = entry.created_at + timedelta(hours=24)
        db.commit()

        swept = negotiation_manager.process_expired_negotiations()
        converted = negotiation_manager.process_auto_conversion()

        assert swept.expired_count == 0
        assert converted.converted_negotiations == [offer.id]
        assert reload(db, NegotiationEntry, offer.id).status == "accepted"
        quote = reload(db, Quote, self.quote.id)
        assert quote.status == "accepted"
        assert quote.total_price == Decimal("1790")

    def test_sweep_expires_candidates_when_auto_conversion_is_off(self, session_factory, notifier, db):
        manager = NegotiationManager(session_factory, notifier, auto_conversion_enabled=False)
        self._negotiating_quote(db)
        entry = create_entry(
            db, self.quote.id, self.buyer.id, self.seller.id, 1,
            price="1790", valid_until=utcnow() - timedelta(hours=1),
        )

        assert manager.process_expired_negotiations().expired_count == 1
        assert reload(db, NegotiationEntry, entry.id).status == "expired"
        assert reload(db, Quote, self.quote.id).status == "pending"

    def test_failed_conversion_of_lapsed_offer_expires_it(self, negotiation_manager, db):
        self._negotiating_quote(db)
        rfq = reload(db, RFQ, self.rfq.id)
        rfq.status = "cancelled"
        db.commit()
        entry = create_entry(
            db, self.quote.id, self.buyer.id, self.seller.id, 1,
            price="1790", created_at=utcnow() - timedelta(hours=49),
            valid_until=utcnow() - timedelta(hours=25),
        )

        result = negotiation_manager.process_auto_conversion()

        assert result.failed_negotiations == [entry.id]
        assert reload(db, NegotiationEntry, entry.id).status == "expired"
        assert reload(db, Quote, self.quote.id).status == "pending"

    def test_sweep_locks_quotes_before_expiring_entries(self, negotiation_manager, db, monkeypatch):
        self._negotiating_quote(db)
        create_entry(db, self.quote.id, self.buyer.id, self.seller.id, 1, valid_until=utcnow() - timedelta(hours=1))
        calls = []
        real_lock, real_expire = crud_quote.lock_available, crud_negotiation.expire_many

        def lock_available(session, quote_ids):
            calls.append("lock quotes")
            return real_lock(session, quote_ids)

        def expire_many(session, entry_ids):
            calls.append("expire entries")
            return real_expire(session, entry_ids)

        monkeypatch.setattr(crud_quote, "lock_available", lock_available)
        monkeypatch.setattr(crud_negotiation, "expire_many", expire_many)

        negotiation_manager.process_expired_negotiations()

        assert calls == ["lock quotes", "expire entries"]

    def test_sweep_skips_offers_on_locked_quotes(self, negotiation_manager, db, monkeypatch):
        self._negotiating_quote(db)
        entry = create_entry(db, self.quote.id, self.buyer.id, self.seller.id, 1, valid_until=utcnow() - timedelta(hours=1))
        monkeypatch.setattr(crud_quote, "lock_available", lambda session, quote_ids: [])

        result = negotiation_manager.process_expired_negotiations()

        assert result.expired_count == 0
        assert reload(db, NegotiationEntry, entry.id).status == "pending"
        assert reload(db, Quote, self.quote.id).status == "negotiating"
