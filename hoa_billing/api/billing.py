"""Billing API endpoints.

Routes are scoped per client under ``/api/clients/{client_id}``. Domain errors
map to HTTP status codes; configuration errors are reported with
``error_type="configuration"`` so clients can disable billing features until
the configuration is fixed.
"""

import logging
from datetime import date, datetime
from functools import lru_cache
from typing import Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, StrictInt
from sqlalchemy.orm import Session

from hoa_billing.services import get_db
from hoa_billing.services.bill_cache import BillCache
from hoa_billing.services.bill_generation import BILL_DOMAINS, BillingPeriodGenerator
from hoa_billing.services.clock import Clock
from hoa_billing.services.config import Settings, load_settings
from hoa_billing.services.credit_ledger import CreditLedgerService
from hoa_billing.services.document_store import DocumentStore
from hoa_billing.services.errors import (
    BillingError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from hoa_billing.services.payment_service import DEFAULT_ACCOUNT_ID, PaymentService
from hoa_billing.services.penalty_service import PenaltyRecalculationService
from hoa_billing.services.reversal_service import TransactionReversalCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clients/{client_id}", tags=["billing"])


# Error response model
class ErrorResponse(BaseModel):
    """Standard error response."""

    error_type: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


def http_status_for(error: BillingError) -> int:
    if isinstance(error, ConfigurationError):
        return 422
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ConflictError):
        return 409
    if isinstance(error, ValidationError):
        return 400
    return 500


def _raise_http(error: BillingError, endpoint: str) -> NoReturn:
    status_code = http_status_for(error)
    if status_code >= 500:
        logger.error("Unhandled billing error in %s: %s", endpoint, error, exc_info=True)
    else:
        logger.info("%s rejected (%d %s): %s", endpoint, status_code, error.error_type, error.message)
    raise HTTPException(status_code=status_code, detail=error.to_dict()) from error


# Dependencies
@lru_cache
def get_settings() -> Settings:
    return load_settings()


def get_store(db: Session = Depends(get_db)) -> DocumentStore:  # noqa: B008
    return DocumentStore.from_session(db)


def get_bill_cache(request: Request) -> BillCache:
    return request.app.state.bill_cache


def get_clock(settings: Settings = Depends(get_settings)) -> Clock:  # noqa: B008
    return Clock(settings.default_timezone)


# Request/response schemas
class GenerateBillsRequest(BaseModel):
    as_of: datetime | None = None
    due_date: date | None = None


class BillSetResponse(BaseModel):
    client_id: str
    domain: str
    period_id: str
    due_date: date
    penalty_start_date: date
    bill_count: int
    total_charged: int
    bills: dict[str, dict[str, Any]]
    failures: list[dict[str, Any]]
    skipped: list[dict[str, Any]]
    replaced_existing: bool


class PenaltyRecalculationRequest(BaseModel):
    domain: str
    as_of_date: date | None = None


class PenaltyRecalculationResponse(BaseModel):
    domain: str
    as_of_date: date
    bills_processed: int
    bills_updated: int
    documents_updated: int
    total_penalty_delta: int
    failures: list[dict[str, Any]]


class PaymentRequest(BaseModel):
    unit_id: str
    amount: StrictInt
    payment_date: date | None = None
    domains: list[str] = Field(default_factory=lambda: list(BILL_DOMAINS))
    account_id: str = DEFAULT_ACCOUNT_ID
    transaction_id: str | None = None
    use_credit: bool = True
    note: str = ""
    source: str = "payment"
    user_id: str | None = None


class PaymentResponse(BaseModel):
    transaction_id: str
    unit_id: str
    amount: int
    previous_balance: int
    new_balance: int
    account_balance: int
    bills_updated: list[str]
    total_applied: int
    credit_used: int
    residual_credit: int
    allocations: list[dict[str, Any]]


class ReversalResponse(BaseModel):
    success: bool
    transaction_id: str
    kind: str
    state: str
    bills_reversed: int
    credit_reversal_amount: int
    months_cleared: int
    skipped: list[dict[str, Any]]


class CreditResponse(BaseModel):
    unit_id: str
    credit_balance: int
    history: list[dict[str, Any]]


class CreditAdjustmentRequest(BaseModel):
    amount: StrictInt
    note: str = ""
    source: str = "manual"
    transaction_id: str | None = None


class CreditAdjustmentResponse(BaseModel):
    unit_id: str
    previous_balance: int
    new_balance: int
    entry: dict[str, Any]


@router.post("/bills/{domain}/{period_id}", response_model=BillSetResponse)
def generate_bills(
    client_id: str,
    domain: str,
    period_id: str,
    request: GenerateBillsRequest | None = None,
    db: Session = Depends(get_db),  # noqa: B008
    store: DocumentStore = Depends(get_store),  # noqa: B008
    cache: BillCache = Depends(get_bill_cache),  # noqa: B008
    clock: Clock = Depends(get_clock),  # noqa: B008
) -> BillSetResponse:
    """Generate bills for one domain and period.

    Raises:
        400: Invalid period key or domain, or bills already carry payments
        422: Billing configuration missing or invalid
    """
    request = request or GenerateBillsRequest()
    generator = BillingPeriodGenerator(store, session=db, cache=cache, clock=clock)
    try:
        bill_set = generator.generate_period_bills(
            client_id, domain, period_id, as_of=request.as_of, due_date=request.due_date
        )
    except BillingError as e:
        _raise_http(e, "generate_bills")

    return BillSetResponse(
        client_id=client_id,
        domain=domain,
        period_id=bill_set.period_id,
        due_date=bill_set.due_date,
        penalty_start_date=bill_set.penalty_start_date,
        bill_count=len(bill_set.bills),
        total_charged=bill_set.total_charged,
        bills={unit_id: bill.to_document() for unit_id, bill in bill_set.bills.items()},
        failures=bill_set.failures,
        skipped=bill_set.skipped,
        replaced_existing=bill_set.replaced_existing,
    )


@router.post("/penalties/recalculate", response_model=PenaltyRecalculationResponse)
def recalculate_penalties(
    client_id: str,
    request: PenaltyRecalculationRequest,
    store: DocumentStore = Depends(get_store),  # noqa: B008
    cache: BillCache = Depends(get_bill_cache),  # noqa: B008
    clock: Clock = Depends(get_clock),  # noqa: B008
) -> PenaltyRecalculationResponse:
    """Refresh penalties on every unpaid bill of a domain."""
    service = PenaltyRecalculationService(store, cache=cache, clock=clock)
    try:
        if request.domain not in BILL_DOMAINS:
            raise ValidationError(f"Unknown billing domain {request.domain!r}", {"domain": request.domain})
        result = service.recalculate(client_id, request.domain, request.as_of_date)
    except BillingError as e:
        _raise_http(e, "recalculate_penalties")

    return PenaltyRecalculationResponse(
        domain=result.domain,
        as_of_date=result.as_of_date,
        bills_processed=result.bills_processed,
        bills_updated=result.bills_updated,
        documents_updated=result.documents_updated,
        total_penalty_delta=result.total_penalty_delta,
        failures=result.failures,
    )


@router.post("/payments", response_model=PaymentResponse, status_code=201)
def record_payment(
    client_id: str,
    request: PaymentRequest,
    db: Session = Depends(get_db),  # noqa: B008
    store: DocumentStore = Depends(get_store),  # noqa: B008
    cache: BillCache = Depends(get_bill_cache),  # noqa: B008
    clock: Clock = Depends(get_clock),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> PaymentResponse:
    """Record a payment and distribute it across the unit's bills and credit."""
    service = PaymentService(
        store,
        session=db,
        cache=cache,
        clock=clock,
        tolerance=settings.credit_tolerance_centavos,
        locale=settings.locale,
    )
    try:
        receipt = service.record_payment(
            client_id,
            request.unit_id,
            request.amount,
            payment_date=request.payment_date,
            domains=tuple(request.domains),
            account_id=request.account_id,
            transaction_id=request.transaction_id,
            use_credit=request.use_credit,
            note=request.note,
            source=request.source,
            user_id=request.user_id,
        )
    except BillingError as e:
        _raise_http(e, "record_payment")

    distribution = receipt.distribution
    return PaymentResponse(
        transaction_id=receipt.transaction_id,
        unit_id=receipt.unit_id,
        amount=receipt.amount,
        previous_balance=receipt.previous_credit_balance,
        new_balance=receipt.new_credit_balance,
        account_balance=receipt.account_balance,
        bills_updated=receipt.bills_updated,
        total_applied=distribution.total_applied,
        credit_used=distribution.credit_used,
        residual_credit=distribution.residual_credit,
        allocations=[a.to_document() for a in distribution.allocations],
    )


@router.delete("/transactions/{transaction_id}", response_model=ReversalResponse)
def delete_transaction(
    client_id: str,
    transaction_id: str,
    user_id: str | None = None,
    db: Session = Depends(get_db),  # noqa: B008
    store: DocumentStore = Depends(get_store),  # noqa: B008
    cache: BillCache = Depends(get_bill_cache),  # noqa: B008
    clock: Clock = Depends(get_clock),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> ReversalResponse:
    """Reverse every effect of a transaction and delete it.

    Raises:
        404: Transaction not found
        409: Concurrent modification, nothing changed (retry)
        400: Reversal would leave an invalid credit ledger
    """
    coordinator = TransactionReversalCoordinator(
        store,
        session=db,
        cache=cache,
        clock=clock,
        rebuild_balances=settings.rebuild_balances_after_reversal,
        locale=settings.locale,
    )
    try:
        result = coordinator.reverse_and_delete(client_id, transaction_id, user_id=user_id)
    except BillingError as e:
        _raise_http(e, "delete_transaction")

    return ReversalResponse(
        success=result.success,
        transaction_id=result.transaction_id,
        kind=result.kind.value,
        state=result.state.value,
        bills_reversed=result.bills_reversed,
        credit_reversal_amount=result.credit_reversal_amount,
        months_cleared=result.months_cleared,
        skipped=result.skipped,
    )


@router.get("/units/{unit_id}/credit", response_model=CreditResponse)
def get_credit(
    client_id: str,
    unit_id: str,
    limit: int = 50,
    store: DocumentStore = Depends(get_store),  # noqa: B008
    clock: Clock = Depends(get_clock),  # noqa: B008
) -> CreditResponse:
    """Credit balance and most recent history entries for a unit."""
    service = CreditLedgerService(store, clock=clock)
    try:
        history = service.history(client_id, unit_id, limit=limit)
        balance = service.get_balance(client_id, unit_id)
    except BillingError as e:
        _raise_http(e, "get_credit")

    return CreditResponse(unit_id=unit_id, credit_balance=balance, history=history)


@router.post("/units/{unit_id}/credit", response_model=CreditAdjustmentResponse, status_code=201)
def adjust_credit(
    client_id: str,
    unit_id: str,
    request: CreditAdjustmentRequest,
    store: DocumentStore = Depends(get_store),  # noqa: B008
    clock: Clock = Depends(get_clock),  # noqa: B008
) -> CreditAdjustmentResponse:
    """Add or consume credit directly (manual adjustment).

    Raises:
        400: The balance would go negative
    """
    service = CreditLedgerService(store, clock=clock)
    try:
        update = service.append(
            client_id,
            unit_id,
            request.amount,
            request.transaction_id,
            request.note,
            request.source,
        )
    except BillingError as e:
        _raise_http(e, "adjust_credit")

    return CreditAdjustmentResponse(
        unit_id=unit_id,
        previous_balance=update.previous_balance,
        new_balance=update.new_balance,
        entry=update.entry,
    )
