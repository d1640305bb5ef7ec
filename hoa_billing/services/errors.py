"""Custom exception classes for the billing engine.

Provides domain-specific exceptions for clear error handling and reporting.
Every error carries a ``details`` dict so callers can report structured
information without exposing stack traces.
"""

from typing import Any


class BillingError(Exception):
    """Base exception for billing engine errors."""

    error_type = "billing"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error_type": self.error_type, "message": self.message, "details": self.details}


class ConfigurationError(BillingError):
    """Missing or invalid billing configuration (terminal)."""

    error_type = "configuration"


class ValidationError(BillingError):
    """Invalid input or an allocation that does not reconcile."""

    error_type = "validation"


class InsufficientCreditError(ValidationError):
    """Credit balance would go negative."""

    error_type = "insufficient_credit"


class BillAlreadySettled(ValidationError):
    """Bills for the period already carry payments and cannot be regenerated."""

    error_type = "bill_already_settled"


class TransactionOrderError(ValidationError):
    """A read was attempted after a write inside one unit of work."""

    error_type = "transaction_order"


class ConflictError(BillingError):
    """Concurrent modification aborted the unit of work (retryable)."""

    error_type = "conflict"


class NotFoundError(BillingError):
    """Referenced bill, ledger or transaction document is missing."""

    error_type = "not_found"


__all__ = [
    "BillingError",
    "ConfigurationError",
    "ValidationError",
    "InsufficientCreditError",
    "BillAlreadySettled",
    "TransactionOrderError",
    "ConflictError",
    "NotFoundError",
]
