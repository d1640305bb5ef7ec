"""Audit service for logging payment, bill and credit events."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from hoa_billing.models.audit_log import AuditLog


class AuditService:
    """Service for audit log operations.

    The caller owns the session and decides when to commit.
    """

    @staticmethod
    def log(
        db: Session,
        module: str,
        action: str,
        parent_path: str,
        doc_id: str,
        friendly_name: str | None,
        notes: str | None,
        user_id: str | None = None,
        changes: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Create audit log entry.

        Args:
            db: Database session
            module: Producing module ("transactions", "bills", "credit")
            action: Action performed ("create", "delete_with_hoa_cleanup", etc.)
            parent_path: Path of the affected document
            doc_id: Id of the affected document
            friendly_name: Display name for audit screens
            notes: Human-readable description
            user_id: User who performed the action (optional)
            changes: Optional JSON snapshot of amounts involved

        Returns:
            Created AuditLog object
        """
        audit = AuditLog(
            module=module,
            action=action,
            parent_path=parent_path,
            doc_id=doc_id,
            friendly_name=friendly_name,
            notes=notes,
            user_id=user_id,
            changes=changes,
        )
        db.add(audit)
        return audit

    @staticmethod
    def entries_for(db: Session, doc_id: str) -> list[AuditLog]:
        """Audit entries for one document, oldest first."""
        stmt = select(AuditLog).where(AuditLog.doc_id == doc_id).order_by(AuditLog.id)
        return list(db.execute(stmt).scalars().all())


__all__ = ["AuditService"]
