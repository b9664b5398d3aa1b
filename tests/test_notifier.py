from unittest.mock import MagicMock

from sourcing_service.services.notifier import (
    KafkaNotifier,
    NotificationChannel,
    Template,
    dispatch,
)


def test_dispatch_passes_channel_and_template():
    notifier = MagicMock()

    sent = dispatch(notifier, "usr_1", Template.QUOTE_RECEIVED, {"quoteId": "quo_1"}, channel=NotificationChannel.WHATSAPP)

    assert sent is True
    notifier.notify.assert_called_once_with("usr_1", "whatsapp", "quote_received", {"quoteId": "quo_1"})


def test_dispatch_swallows_notifier_errors():
    notifier = MagicMock()
    notifier.notify.side_effect = ConnectionError("broker unreachable")

    assert dispatch(notifier, "usr_1", Template.QUOTE_ACCEPTED, {}) is False


def test_kafka_notifier_publishes_event():
    producer = MagicMock()
    notifier = KafkaNotifier(producer_factory=lambda: producer, topic="test.notifications")

    notifier.notify("usr_1", "in_app", Template.COUNTER_OFFER_RECEIVED, {"negotiationId": "neg_1"})

    producer.send.assert_called_once_with(
        "test.notifications",
        value={
            "type": "counter_offer_received",
            "userId": "usr_1",
            "channel": "in_app",
            "data": {"negotiationId": "neg_1"},
        },
    )
    producer.send.return_value.add_errback.assert_called_once()


def test_kafka_notifier_without_producer_drops_quietly():
    notifier = KafkaNotifier(producer_factory=lambda: None, topic="test.notifications")

    notifier.notify("usr_1", "in_app", Template.QUOTE_REJECTED, {})
