"""Penalty accrual.

Penalties are always computed from scratch from the unpaid base charge, the
due date and the as-of date. The stored ``penaltyAmount`` is a cache of the
last computation and is never used as an input.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from hoa_billing.services.bill_cache import BillCache
from hoa_billing.services.bill_records import BillPeriodDocument, UnitBill
from hoa_billing.services.billing_config import BillingConfig, BillingConfigService
from hoa_billing.services.clock import Clock
from hoa_billing.services.doc_paths import bill_period_path, bills_collection
from hoa_billing.services.document_store import DocumentStore, StoreTransaction
from hoa_billing.services.errors import BillingError, ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

DAYS_PER_PENALTY_MONTH = 30

# Stored penalties within this many centavos of the fresh value are left alone
PENALTY_UPDATE_TOLERANCE = 1


@dataclass(frozen=True)
class PenaltyResult:
    penalty_amount: int
    days_overdue: int
    months_overdue: int
    unresolvable: bool = False


def parse_date(value: Any) -> date | None:
    """Parse a stored date (``date``, ``datetime`` or ISO string); None if invalid."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def calculate_penalty(
    base_charge: int,
    due_date: Any,
    grace_period_days: int,
    penalty_rate: float,
    compounding: bool,
    as_of_date: date,
    base_paid: int = 0,
) -> PenaltyResult:
    """Penalty owed on the unpaid base of a bill as of ``as_of_date``.

    Args:
        base_charge: Original base charge in centavos
        due_date: Bill due date; a missing or malformed value yields an
            unresolvable zero-penalty result instead of an exception
        grace_period_days: Days after the due date before penalties start
        penalty_rate: Monthly rate as a fraction (0.05 = 5%)
        compounding: Compound monthly instead of simple interest
        as_of_date: Date the penalty is evaluated at
        base_paid: Base already paid; penalty applies to the remainder only

    Returns:
        PenaltyResult with the amount rounded half-up to whole centavos
    """
    due = parse_date(due_date)
    if due is None:
        return PenaltyResult(0, 0, 0, unresolvable=True)

    grace_end = due + timedelta(days=grace_period_days)
    days_overdue = max(0, (as_of_date - grace_end).days)
    months_overdue = math.ceil(days_overdue / DAYS_PER_PENALTY_MONTH) if days_overdue > 0 else 0

    unpaid_base = max(0, base_charge - base_paid)
    if months_overdue == 0 or unpaid_base == 0:
        return PenaltyResult(0, days_overdue, months_overdue)

    rate = Decimal(str(penalty_rate))
    if compounding:
        factor = (Decimal(1) + rate) ** months_overdue - Decimal(1)
    else:
        factor = rate * months_overdue
    penalty = (Decimal(unpaid_base) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return PenaltyResult(int(penalty), days_overdue, months_overdue)


def penalty_for_bill(bill: UnitBill, config: BillingConfig, as_of_date: date) -> PenaltyResult:
    """Fresh penalty for one stored bill under a client's configuration."""
    return calculate_penalty(
        base_charge=bill.base_charge,
        due_date=bill.due_date,
        grace_period_days=config.penalty_days,
        penalty_rate=config.penalty_rate,
        compounding=config.compound_penalty,
        as_of_date=as_of_date,
        base_paid=bill.base_paid,
    )


def refresh_bill_penalty(bill: UnitBill, config: BillingConfig, as_of_date: date) -> bool:
    """Update ``bill.penalty_amount`` in place; returns True when it changed.

    Paid bills keep their penalty. A penalty is never lowered below what has
    already been paid toward it.
    """
    if bill.is_paid:
        return False
    result = penalty_for_bill(bill, config, as_of_date)
    if result.unresolvable:
        return False
    new_penalty = max(result.penalty_amount, bill.penalty_paid)
    if abs(new_penalty - bill.penalty_amount) <= PENALTY_UPDATE_TOLERANCE:
        return False
    bill.penalty_amount = new_penalty
    bill.recompute()
    return True


@dataclass
class PenaltyBatchResult:
    """Outcome of a penalty recalculation run."""

    client_id: str
    domain: str
    as_of_date: date
    bills_processed: int = 0
    bills_updated: int = 0
    documents_updated: int = 0
    total_penalty_delta: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "clientId": self.client_id,
            "domain": self.domain,
            "asOfDate": self.as_of_date.isoformat(),
            "billsProcessed": self.bills_processed,
            "billsUpdated": self.bills_updated,
            "documentsUpdated": self.documents_updated,
            "totalPenaltyDelta": self.total_penalty_delta,
            "failures": list(self.failures),
        }


@dataclass
class _DocumentOutcome:
    processed: int = 0
    updated: int = 0
    delta: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)


class PenaltyRecalculationService:
    """Batch penalty refresh over every bill period document of a domain.

    Each document is one atomic write, so an interrupted run leaves finished
    documents updated and can simply be re-run.
    """

    def __init__(self, store: DocumentStore, cache: BillCache | None = None, clock: Clock | None = None):
        self.store = store
        self.cache = cache
        self.clock = clock or Clock()
        self.config_service = BillingConfigService(store)

    def recalculate(self, client_id: str, domain: str, as_of_date: date | None = None) -> PenaltyBatchResult:
        """Recalculate penalties for every unpaid bill of ``domain``.

        Raises:
            ConfigurationError: Billing configuration missing or invalid
        """
        config = self.config_service.load(client_id)
        as_of = as_of_date or self.clock.today()
        result = PenaltyBatchResult(client_id=client_id, domain=domain, as_of_date=as_of)

        period_ids = [doc_id for doc_id, _ in self.store.list(bills_collection(client_id, domain))]
        logger.info(
            "Recalculating penalties for %s/%s as of %s over %d bill documents",
            client_id,
            domain,
            as_of,
            len(period_ids),
        )

        for period_id in period_ids:
            try:
                outcome = self._recalculate_document(client_id, domain, period_id, config, as_of)
            except ConfigurationError:
                raise
            except BillingError as e:
                logger.error(
                    "Penalty recalculation failed for %s/%s/%s: %s",
                    client_id,
                    domain,
                    period_id,
                    e,
                    exc_info=True,
                )
                result.failures.append(
                    {"periodId": period_id, "unitId": None, "reason": e.message, "errorType": e.error_type}
                )
                continue

            result.bills_processed += outcome.processed
            result.bills_updated += outcome.updated
            result.total_penalty_delta += outcome.delta
            result.failures.extend(outcome.failures)
            if outcome.updated:
                result.documents_updated += 1
                if self.cache is not None:
                    self.cache.invalidate((client_id, domain, period_id))

        logger.info(
            "Penalty recalculation for %s/%s: %d bills processed, %d updated, delta %d, %d failures",
            client_id,
            domain,
            result.bills_processed,
            result.bills_updated,
            result.total_penalty_delta,
            len(result.failures),
        )
        return result

    def _recalculate_document(
        self,
        client_id: str,
        domain: str,
        period_id: str,
        config: BillingConfig,
        as_of: date,
    ) -> _DocumentOutcome:
        path = bill_period_path(client_id, domain, period_id)

        def work(txn: StoreTransaction) -> _DocumentOutcome:
            outcome = _DocumentOutcome()
            data = txn.get(path)
            if data is None:
                return outcome
            try:
                period = BillPeriodDocument.from_document(data)
            except ValidationError as e:
                outcome.failures.append(
                    {"periodId": period_id, "unitId": None, "reason": f"Unreadable bill document: {e.message}"}
                )
                return outcome

            for unit_id, bill in period.units.items():
                outcome.processed += 1
                if bill.is_paid:
                    continue
                fresh = penalty_for_bill(bill, config, as_of)
                if fresh.unresolvable:
                    logger.warning(
                        "Bill %s/%s for unit %s has no usable due date (%r); skipped",
                        domain,
                        period_id,
                        unit_id,
                        bill.due_date,
                    )
                    outcome.failures.append(
                        {"periodId": period_id, "unitId": unit_id, "reason": "invalid or missing due date"}
                    )
                    continue
                before = bill.penalty_amount
                if refresh_bill_penalty(bill, config, as_of):
                    outcome.updated += 1
                    outcome.delta += bill.penalty_amount - before

            if outcome.updated:
                txn.set(path, period.to_document())
            return outcome

        return self.store.run_transaction(work)


__all__ = [
    "PenaltyResult",
    "PenaltyBatchResult",
    "PenaltyRecalculationService",
    "calculate_penalty",
    "penalty_for_bill",
    "refresh_bill_penalty",
    "parse_date",
]
