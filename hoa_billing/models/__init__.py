"""SQLAlchemy models: the document table plus relational side tables."""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseModel:
    """Surrogate id and row timestamps shared by every table."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# Model imports register the tables with Base; they need Base defined first
from hoa_billing.models.audit_log import AuditLog  # noqa: E402
from hoa_billing.models.document import Document  # noqa: E402
from hoa_billing.models.meter_reading import MeterReading  # noqa: E402

__all__ = [
    "Base",
    "BaseModel",
    "utcnow",
    "AuditLog",
    "Document",
    "MeterReading",
]
