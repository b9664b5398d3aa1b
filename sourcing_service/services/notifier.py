# sourcing_service/services/notifier.py
"""
Fire-and-forget notification dispatch for the negotiation engine.

Managers only call ``dispatch`` after their unit of work has committed; a
failing notifier is logged and never changes the outcome of a transition.
"""
import logging
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from sourcing_service.core.config import settings
from sourcing_service.core.kafka_producer import get_kafka_singleton

logger = logging.getLogger(__name__)


class NotificationChannel(str, Enum):
    WHATSAPP = "whatsapp"
    EMAIL = "email"
    PUSH = "push"
    IN_APP = "in_app"


class Template:
    QUOTE_RECEIVED = "quote_received"
    QUOTE_ACCEPTED = "quote_accepted"
    QUOTE_REJECTED = "quote_rejected"
    COUNTER_OFFER_RECEIVED = "counter_offer_received"
    COUNTER_OFFER_ACCEPTED = "counter_offer_accepted"
    COUNTER_OFFER_REJECTED = "counter_offer_rejected"


class Notifier(Protocol):
    def notify(self, user_id: str, channel: str, template: str, data: dict) -> None:
        ...


class KafkaNotifier:
    """Publishes notification requests for the delivery service to consume."""

    def __init__(
        self,
        producer_factory: Callable[[], Any] = get_kafka_singleton,
        topic: Optional[str] = None,
    ):
        self._producer_factory = producer_factory
        self.topic = topic or settings.NOTIFICATIONS_TOPIC

    def notify(self, user_id: str, channel: str, template: str, data: dict) -> None:
        producer = self._producer_factory()
        if producer is None:
            logger.warning(f"Kafka producer unavailable, dropping {template} for user {user_id}")
            return

        event_data = {
            "type": template,
            "userId": user_id,
            "channel": channel,
            "data": data,
        }
        future = producer.send(self.topic, value=event_data)
        future.add_errback(_log_send_failure, template, user_id)


def _log_send_failure(exc, template: str, user_id: str) -> None:
    logger.error(f"Failed to publish {template} notification for user {user_id}: {exc}")


def dispatch(
    notifier: Notifier,
    user_id: str,
    template: str,
    data: dict,
    channel: NotificationChannel = NotificationChannel.IN_APP,
) -> bool:
    """Send one notification, swallowing and logging any failure."""
    try:
        notifier.notify(user_id, channel.value, template, data)
        return True
    except Exception as e:
        logger.error(f"Failed to send {template} notification to {user_id}: {e}", exc_info=True)
        return False
