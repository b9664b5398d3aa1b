# sourcing_service/core/kafka_producer.py

import json
import logging
import threading
from typing import Optional

from kafka import KafkaProducer
from kafka.errors import KafkaError

from sourcing_service.core.config import settings

logger = logging.getLogger(__name__)

_producer: Optional[KafkaProducer] = None
_lock = threading.Lock()


def get_kafka_singleton() -> Optional[KafkaProducer]:
    """
    Lazily create the process-wide Kafka producer.

    Returns None when no broker is reachable so callers can degrade
    instead of failing the request that triggered the publish.
    """
    global _producer

    if _producer is not None:
        return _producer

    with _lock:
        if _producer is None:
            try:
                _producer = KafkaProducer(
                    bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                    value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
                    request_timeout_ms=5000,
                )
            except KafkaError as e:
                logger.error(f"Failed to create Kafka producer: {e}")
                return None
    return _producer


def close_kafka_singleton() -> None:
    global _producer

    with _lock:
        if _producer is not None:
            _producer.flush()
            _producer.close()
            _producer = None
