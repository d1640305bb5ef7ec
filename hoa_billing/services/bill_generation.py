"""Billing period generator.

Turns scheduled dues (``hoa``) or metered consumption (``water``) into one bill
period document per domain and period:

    clients/{clientId}/bills/{domain}/{periodId}

The document holds a header (period dates, due dates, a copy of the billing
configuration used) and a ``units`` map with one bill per unit. A period is
regenerated by overwriting its document, which is refused once any unit's
bill carries a payment.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from hoa_billing.services.bill_cache import BillCache
from hoa_billing.services.bill_records import STATUS_UNPAID, BillPeriodDocument, UnitBill
from hoa_billing.services.billing_config import BillingConfig, BillingConfigService
from hoa_billing.services.clock import Clock
from hoa_billing.services.doc_paths import bill_period_path, units_collection
from hoa_billing.services.document_store import DocumentStore, StoreTransaction
from hoa_billing.services.errors import (
    BillAlreadySettled,
    BillingError,
    ConfigurationError,
    ValidationError,
)
from hoa_billing.services.money import to_centavos
from hoa_billing.services.penalty_service import parse_date
from hoa_billing.services.periods import PeriodKey
from hoa_billing.services.reading_service import MeterReadingService

logger = logging.getLogger(__name__)

DOMAIN_HOA = "hoa"
DOMAIN_WATER = "water"
BILL_DOMAINS = (DOMAIN_HOA, DOMAIN_WATER)


def validate_domain(domain: str) -> str:
    if domain not in BILL_DOMAINS:
        raise ValidationError(
            f"Unknown billing domain {domain!r}; expected one of {', '.join(BILL_DOMAINS)}",
            {"domain": domain},
        )
    return domain


@dataclass
class BillSet:
    """Bills produced for one period, plus units that could not be billed."""

    client_id: str
    domain: str
    period_id: str
    due_date: date
    penalty_start_date: date
    bills: dict[str, UnitBill] = field(default_factory=dict)
    failures: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)
    replaced_existing: bool = False

    @property
    def total_charged(self) -> int:
        return sum(bill.base_charge for bill in self.bills.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "clientId": self.client_id,
            "domain": self.domain,
            "periodId": self.period_id,
            "dueDate": self.due_date.isoformat(),
            "penaltyStartDate": self.penalty_start_date.isoformat(),
            "billCount": len(self.bills),
            "totalCharged": self.total_charged,
            "bills": {unit_id: bill.to_document() for unit_id, bill in self.bills.items()},
            "failures": list(self.failures),
            "skipped": list(self.skipped),
            "replacedExisting": self.replaced_existing,
        }


@dataclass
class _UnitCharge:
    unit_id: str
    amount: int
    details: dict[str, Any]


def compute_water_charge(
    consumption: int,
    ancillary_counts: dict[str, int],
    config: BillingConfig,
) -> tuple[int, dict[str, Any]]:
    """Integer charge for metered consumption plus ancillary services.

    Raises:
        ValidationError: Negative consumption or an ancillary service with no rate
    """
    if consumption < 0:
        raise ValidationError(f"Negative consumption ({consumption})", {"consumption": consumption})

    consumption_charge = consumption * config.rate_per_unit
    ancillary_detail = {}
    ancillary_total = 0
    for service, count in sorted(ancillary_counts.items()):
        if count == 0:
            continue
        if service not in config.ancillary_rates:
            raise ValidationError(
                f"No rate configured for ancillary service {service!r}", {"service": service}
            )
        rate = config.ancillary_rates[service]
        amount = count * rate
        ancillary_detail[service] = {"count": count, "rate": rate, "amount": amount}
        ancillary_total += amount

    charge = consumption_charge + ancillary_total
    minimum_applied = charge < config.minimum_charge
    if minimum_applied:
        charge = config.minimum_charge

    details = {
        "consumption": consumption,
        "ratePerUnit": config.rate_per_unit,
        "consumptionCharge": consumption_charge,
        "ancillary": ancillary_detail,
        "ancillaryCharge": ancillary_total,
        "minimumApplied": minimum_applied,
    }
    return charge, details


class BillingPeriodGenerator:
    """Generates and reads bill period documents."""

    def __init__(
        self,
        store: DocumentStore,
        session: Session | None = None,
        cache: BillCache | None = None,
        clock: Clock | None = None,
    ):
        self.store = store
        self.session = session
        self.cache = cache if cache is not None else BillCache()
        self.clock = clock or Clock()

    def get_period_bills(self, client_id: str, domain: str, period_id: str) -> BillPeriodDocument | None:
        """Read a period's bills through the cache."""
        key = (client_id, domain, period_id)
        path = bill_period_path(client_id, domain, period_id)
        data = self.cache.get(key, lambda: self.store.get(path))
        if data is None:
            return None
        return BillPeriodDocument.from_document(copy.deepcopy(data))

    def generate_period_bills(
        self,
        client_id: str,
        domain: str,
        period_key: str | PeriodKey,
        as_of: datetime | None = None,
        due_date: date | str | None = None,
    ) -> BillSet:
        """Generate (or regenerate) every unit's bill for one period.

        Args:
            client_id: Client identifier
            domain: ``hoa`` or ``water``
            period_key: ``YYYY-MM`` (zero-based fiscal month) or ``YYYY-Qn``
            as_of: Generation timestamp recorded on the document
            due_date: Explicit due date overriding the configured due day

        Returns:
            BillSet with the generated bills and per-unit failures

        Raises:
            ConfigurationError: Billing configuration missing or invalid
            BillAlreadySettled: The period already carries payments
            ValidationError: Bad period key, domain or due date
        """
        validate_domain(domain)
        period = period_key if isinstance(period_key, PeriodKey) else PeriodKey.parse(period_key)
        explicit_due = None
        if due_date is not None:
            explicit_due = parse_date(due_date)
            if explicit_due is None:
                raise ValidationError(f"Invalid due date: {due_date!r}", {"due_date": str(due_date)})
        generated_at = (as_of or self.clock.now()).isoformat()
        path = bill_period_path(client_id, domain, period.period_id)

        def work(txn: StoreTransaction) -> BillSet:
            config = BillingConfigService.load_in(txn, client_id)
            if domain == DOMAIN_HOA and period.frequency != config.dues_frequency:
                raise ValidationError(
                    f"Period {period.period_id} is {period.frequency} but client dues are "
                    f"{config.dues_frequency}",
                    {"period_id": period.period_id, "dues_frequency": config.dues_frequency},
                )

            existing = txn.get(path)
            if existing is not None and BillPeriodDocument.from_document(existing).has_payments():
                raise BillAlreadySettled(
                    f"Bills for {domain} period {period.period_id} already have payments; "
                    "reverse the payments before regenerating",
                    {"client_id": client_id, "domain": domain, "period_id": period.period_id},
                )

            start_month = config.fiscal_year_start_month
            due = explicit_due or period.due_date(start_month, config.due_day)
            penalty_start = due + timedelta(days=config.penalty_days)
            bill_set = BillSet(
                client_id=client_id,
                domain=domain,
                period_id=period.period_id,
                due_date=due,
                penalty_start_date=penalty_start,
                replaced_existing=existing is not None,
            )

            if domain == DOMAIN_HOA:
                charges = self._dues_charges(txn, client_id, period, bill_set)
            else:
                previous = txn.get(bill_period_path(client_id, domain, period.previous().period_id))
                charges = self._water_charges(client_id, period, config, previous, bill_set)

            for charge in charges:
                bill_set.bills[charge.unit_id] = UnitBill(
                    unit_id=charge.unit_id,
                    base_charge=charge.amount,
                    penalty_amount=0,
                    status=STATUS_UNPAID,
                    due_date=due.isoformat(),
                    penalty_start_date=penalty_start.isoformat(),
                    payments=[],
                    details=charge.details,
                )

            document = BillPeriodDocument(
                period_id=period.period_id,
                domain=domain,
                units=bill_set.bills,
                header={
                    "periodId": period.period_id,
                    "domain": domain,
                    "fiscalYear": period.fiscal_year,
                    "periodIndex": period.index,
                    "frequency": period.frequency,
                    "periodStart": period.start_date(start_month).isoformat(),
                    "periodEnd": period.end_date(start_month).isoformat(),
                    "dueDate": due.isoformat(),
                    "penaltyStartDate": penalty_start.isoformat(),
                    "generatedAt": generated_at,
                    "configSnapshot": config.snapshot(),
                },
            )
            txn.set(path, document.to_document())
            return bill_set

        bill_set = self.store.run_transaction(work)
        self.cache.invalidate((client_id, domain, period.period_id))
        logger.info(
            "Generated %d %s bills for %s period %s (total %d, %d failures, %d skipped)",
            len(bill_set.bills),
            domain,
            client_id,
            period.period_id,
            bill_set.total_charged,
            len(bill_set.failures),
            len(bill_set.skipped),
        )
        return bill_set

    def _dues_charges(
        self,
        txn: StoreTransaction,
        client_id: str,
        period: PeriodKey,
        bill_set: BillSet,
    ) -> list[_UnitCharge]:
        charges = []
        for unit_id, unit in txn.query(units_collection(client_id)):
            if unit.get("active", True) is False:
                bill_set.skipped.append({"unitId": unit_id, "reason": "inactive"})
                continue
            try:
                dues = to_centavos(unit.get("duesAmount"), field="duesAmount")
                if dues < 0:
                    raise ValidationError("duesAmount cannot be negative", {"field": "duesAmount"})
            except ValidationError as e:
                logger.warning("Unit %s/%s cannot be billed: %s", client_id, unit_id, e.message)
                bill_set.failures.append({"unitId": unit_id, "reason": e.message})
                continue
            amount = dues * period.months
            if amount == 0:
                bill_set.skipped.append({"unitId": unit_id, "reason": "no dues"})
                continue
            charges.append(
                _UnitCharge(unit_id, amount, {"duesAmount": dues, "months": period.months})
            )
        return charges

    def _water_charges(
        self,
        client_id: str,
        period: PeriodKey,
        config: BillingConfig,
        previous_document: dict[str, Any] | None,
        bill_set: BillSet,
    ) -> list[_UnitCharge]:
        if self.session is None:
            raise ConfigurationError(
                "Meter readings are not available for water billing", {"domain": DOMAIN_WATER}
            )
        readings = MeterReadingService(self.session)
        start_month = config.fiscal_year_start_month
        period_end = period.end_date(start_month)

        # Readings after the previous bill's period end are not yet billed
        window_start = period.start_date(start_month) - timedelta(days=1)
        if previous_document is not None:
            previous_end = parse_date(previous_document.get("periodEnd"))
            if previous_end is not None:
                window_start = previous_end

        charges = []
        for unit_id in readings.get_unit_ids(client_id, on_or_before=period_end):
            window = readings.get_readings_in_window(client_id, unit_id, window_start, period_end)
            if not window:
                bill_set.skipped.append({"unitId": unit_id, "reason": "no readings in period"})
                continue
            baseline = readings.get_latest_reading_at_or_before(client_id, unit_id, window_start)
            baseline_from_window = baseline is None
            if baseline_from_window:
                baseline = window[0]
            current = window[-1]
            consumption = current.reading_value - baseline.reading_value
            try:
                amount, details = compute_water_charge(
                    consumption, readings.sum_ancillary(window), config
                )
            except BillingError as e:
                logger.warning(
                    "Water bill for %s/%s period %s not generated: %s",
                    client_id,
                    unit_id,
                    period.period_id,
                    e.message,
                )
                bill_set.failures.append({"unitId": unit_id, "reason": e.message, **e.details})
                continue
            if amount == 0:
                bill_set.skipped.append({"unitId": unit_id, "reason": "no charge"})
                continue
            details["previousReading"] = readings.describe(baseline)
            details["currentReading"] = readings.describe(current)
            details["baselineFromWindow"] = baseline_from_window
            charges.append(_UnitCharge(unit_id, amount, details))
        return charges


__all__ = [
    "BillSet",
    "BillingPeriodGenerator",
    "compute_water_charge",
    "validate_domain",
    "BILL_DOMAINS",
    "DOMAIN_HOA",
    "DOMAIN_WATER",
]
