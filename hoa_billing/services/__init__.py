"""Service layer: document store, billing, payments, credit and reversals."""

from hoa_billing.services.db import SessionLocal, create_db_engine, engine, get_db

__all__ = [
    "engine",
    "SessionLocal",
    "create_db_engine",
    "get_db",
]
