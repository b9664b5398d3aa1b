# tests/conftest.py

import os

# Settings are read at import time; point them at SQLite before importing the app.
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("DATABASE_URL_LOCAL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
from unittest.mock import MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sourcing_service.db.base_class import Base
import sourcing_service.models  # noqa: F401
from sourcing_service.schemas.negotiation import AutoConversionSettings
from sourcing_service.services.negotiation_manager import NegotiationManager
from sourcing_service.services.quote_manager import QuoteManager


# --- In-memory Test Database Setup ---
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def session_factory():
    Base.metadata.create_all(bind=engine)
    yield TestingSessionLocal
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db(session_factory):
    """Session for arranging data and reading results back."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def notifier():
    return MagicMock()


@pytest.fixture(scope="function")
def order_hook():
    hook = MagicMock()
    hook.materialize_order.return_value = "ord_test"
    return hook


@pytest.fixture(scope="function")
def quote_manager(session_factory, notifier):
    return QuoteManager(session_factory, notifier)


@pytest.fixture(scope="function")
def negotiation_manager(session_factory, notifier):
    return NegotiationManager(
        session_factory,
        notifier,
        settings=AutoConversionSettings(
            max_negotiation_rounds=5,
            auto_accept_threshold=5.0,
            negotiation_timeout=48,
        ),
        counter_offer_validity_hours=24,
    )
