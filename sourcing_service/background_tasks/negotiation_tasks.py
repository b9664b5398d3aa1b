# sourcing_service/background_tasks/negotiation_tasks.py
"""
Background tasks for quote and negotiation expiry.

Each task builds its managers on the shared session factory and returns
the sweep result, or None when the sweep itself failed.
"""
import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from sourcing_service.core.config import settings
from sourcing_service.db.session import SessionLocal
from sourcing_service.services.negotiation_manager import NegotiationManager
from sourcing_service.services.notifier import KafkaNotifier, Notifier
from sourcing_service.services.quote_manager import QuoteManager

logger = logging.getLogger(__name__)


def _negotiation_manager(session_factory, notifier) -> NegotiationManager:
    return NegotiationManager(
        session_factory or SessionLocal,
        notifier or KafkaNotifier(),
        auto_conversion_enabled=settings.AUTO_CONVERSION_ENABLED,
    )


def _quote_manager(session_factory, notifier) -> QuoteManager:
    return QuoteManager(session_factory or SessionLocal, notifier or KafkaNotifier())


def expire_negotiations(session_factory: Optional[sessionmaker] = None, notifier: Optional[Notifier] = None):
    """
    Background task: Expire pending counter-offers past their validity and
    revert their quotes to pending.

    Runs every few minutes. Safe to overlap with itself and with live responses.
    """
    try:
        result = _negotiation_manager(session_factory, notifier).process_expired_negotiations()
        if result.expired_count > 0:
            logger.info(
                f"Expired {result.expired_count} negotiations, "
                f"reverted {len(result.reverted_quotes)} quotes"
            )
        return result

    except Exception as e:
        logger.error(f"Error in expire_negotiations task: {str(e)}", exc_info=True)
        return None


def auto_convert_negotiations(session_factory: Optional[sessionmaker] = None, notifier: Optional[Notifier] = None):
    """
    Background task: Auto-accept stalled counter-offers within the configured
    tolerance of the original quote price.
    """
    if not settings.AUTO_CONVERSION_ENABLED:
        logger.debug("Auto-conversion disabled, skipping")
        return None

    try:
        result = _negotiation_manager(session_factory, notifier).process_auto_conversion()
        if result.converted_count > 0 or result.failed_negotiations:
            logger.info(
                f"Auto-conversion: {result.converted_count} converted, "
                f"{len(result.failed_negotiations)} failed"
            )
        return result

    except Exception as e:
        logger.error(f"Error in auto_convert_negotiations task: {str(e)}", exc_info=True)
        return None


def expire_quotes(session_factory: Optional[sessionmaker] = None, notifier: Optional[Notifier] = None):
    """Background task: Expire pending quotes past ``valid_until``."""
    try:
        result = _quote_manager(session_factory, notifier).process_expired_quotes()
        if result.expired_count > 0:
            logger.info(f"Expired {result.expired_count} quotes")
        return result

    except Exception as e:
        logger.error(f"Error in expire_quotes task: {str(e)}", exc_info=True)
        return None


def expire_rfqs(session_factory: Optional[sessionmaker] = None, notifier: Optional[Notifier] = None):
    """
    Background task: Expire active RFQs past ``expires_at`` along with their
    open quotes.

    Runs hourly.
    """
    try:
        result = _quote_manager(session_factory, notifier).process_expired_rfqs()
        if result.expired_count > 0:
            logger.info(
                f"Expired {result.expired_count} RFQs and {len(result.cascaded_ids)} open quotes"
            )
        return result

    except Exception as e:
        logger.error(f"Error in expire_rfqs task: {str(e)}", exc_info=True)
        return None
