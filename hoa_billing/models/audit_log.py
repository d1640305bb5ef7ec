"""Audit log model for tracking financial lifecycle events."""

from typing import Any

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from hoa_billing.models import Base, BaseModel


class AuditLog(Base, BaseModel):
    """Audit log entry for payment, bill and credit changes.

    Records who (user_id) did what (action) in which module to which document
    (parent_path, doc_id), with human-readable notes and an optional snapshot
    of the amounts involved (changes).
    """

    __tablename__ = "audit_logs"

    module: Mapped[str] = mapped_column(String(50), index=True)
    """Module that produced the event: "transactions", "bills", "credit"."""

    action: Mapped[str] = mapped_column(String(50), index=False)
    """Action performed: "create", "delete_with_hoa_cleanup", etc."""

    parent_path: Mapped[str] = mapped_column(String(500), index=False)
    """Document path of the affected entity."""

    doc_id: Mapped[str] = mapped_column(String(100), index=True)
    """Id of the affected document."""

    friendly_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    """Display name for audit screens."""

    notes: Mapped[str | None] = mapped_column(Text(), nullable=True)

    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=False)
    """User who performed the action. None for system actions."""

    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True, index=False)
    """Optional JSON snapshot: {"billsReversed": 2, "creditReversalAmount": -30000}."""

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, module={self.module}, action={self.action}, "
            f"doc_id={self.doc_id}, user_id={self.user_id}, created_at={self.created_at})>"
        )


__all__ = ["AuditLog"]
