"""Pytest configuration: in-memory database, document store and billing fixtures."""

import os

# Set test database URL BEFORE any imports from hoa_billing
# This keeps the module-level engine away from the on-disk default database
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

from datetime import datetime  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from hoa_billing.models import Base  # noqa: E402
from hoa_billing.services.bill_cache import BillCache  # noqa: E402
from hoa_billing.services.clock import FixedClock  # noqa: E402
from hoa_billing.services.doc_paths import billing_config_path, unit_path  # noqa: E402
from hoa_billing.services.document_store import DocumentStore  # noqa: E402

CLIENT_ID = "AVII"


def make_billing_config(**overrides) -> dict:
    """Billing config document: 5%/month compounding after 10 days, quarterly dues."""
    config = {
        "penaltyRate": 0.05,
        "penaltyDays": 10,
        "compoundPenalty": True,
        "fiscalYearStartMonth": 1,
        "duesFrequency": "quarterly",
        "dueDay": 1,
        "ratePerUnit": 5000,
        "ancillaryRates": {"carWash": 10000, "boatWash": 20000},
        "minimumCharge": 0,
        "allowNegativeCredit": False,
        "timezone": "America/Cancun",
        "currency": "MXN",
    }
    config.update(overrides)
    return config


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables."""
    test_engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(test_engine)
    yield test_engine
    Base.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    """Create a test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(session_factory):
    """Document store on the test database."""
    return DocumentStore(session_factory)


@pytest.fixture
def clock():
    """Clock frozen at 2026-01-05 09:00 Cancun time."""
    return FixedClock(datetime(2026, 1, 5, 9, 0), "America/Cancun")


@pytest.fixture
def cache():
    return BillCache()


@pytest.fixture
def client_id(store):
    """Client with a billing configuration and three units (one inactive)."""
    store.set(billing_config_path(CLIENT_ID), make_billing_config())
    store.set(unit_path(CLIENT_ID, "101"), {"unitId": "101", "name": "Depto 101", "duesAmount": 100000, "active": True})
    store.set(unit_path(CLIENT_ID, "102"), {"unitId": "102", "name": "Depto 102", "duesAmount": 120000, "active": True})
    store.set(unit_path(CLIENT_ID, "103"), {"unitId": "103", "name": "Depto 103", "duesAmount": 90000, "active": False})
    return CLIENT_ID


@pytest.fixture
def config_factory():
    """Factory for billing config documents with overrides."""
    return make_billing_config
