"""Per-client billing configuration loading and validation."""

import logging
from dataclasses import dataclass, field
from typing import Any

from hoa_billing.services.doc_paths import billing_config_path
from hoa_billing.services.document_store import DocumentStore, StoreTransaction
from hoa_billing.services.errors import ConfigurationError

logger = logging.getLogger(__name__)

DUES_FREQUENCIES = ("monthly", "quarterly")


@dataclass(frozen=True)
class BillingConfig:
    """Validated billing configuration for one client.

    Amounts are integer centavos; ``penalty_rate`` is a monthly fraction
    (0.05 = 5% per month).
    """

    client_id: str
    penalty_rate: float
    penalty_days: int
    compound_penalty: bool = True
    fiscal_year_start_month: int = 1
    dues_frequency: str = "monthly"
    due_day: int = 1
    rate_per_unit: int = 0
    ancillary_rates: dict[str, int] = field(default_factory=dict)
    minimum_charge: int = 0
    allow_negative_credit: bool = False
    timezone: str = "America/Cancun"
    currency: str = "MXN"

    def snapshot(self) -> dict[str, Any]:
        """Config values copied into each generated bill document."""
        return {
            "penaltyRate": self.penalty_rate,
            "penaltyDays": self.penalty_days,
            "compoundPenalty": self.compound_penalty,
            "ratePerUnit": self.rate_per_unit,
            "ancillaryRates": dict(self.ancillary_rates),
            "minimumCharge": self.minimum_charge,
            "currency": self.currency,
        }


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_billing_config(client_id: str, data: dict[str, Any] | None) -> BillingConfig:
    """Validate a raw config document.

    Raises:
        ConfigurationError: Listing every missing or invalid field
    """
    if data is None:
        raise ConfigurationError(
            f"Billing configuration not found for client {client_id}",
            {"client_id": client_id, "missing": ["config/billing"]},
        )

    problems: dict[str, str] = {}

    penalty_rate = data.get("penaltyRate")
    if penalty_rate is None:
        problems["penaltyRate"] = "required"
    elif isinstance(penalty_rate, bool) or not isinstance(penalty_rate, (int, float)) or penalty_rate < 0:
        problems["penaltyRate"] = "must be a non-negative number"

    penalty_days = data.get("penaltyDays")
    if penalty_days is None:
        problems["penaltyDays"] = "required"
    elif not _is_int(penalty_days) or penalty_days < 0:
        problems["penaltyDays"] = "must be a non-negative integer"

    start_month = data.get("fiscalYearStartMonth", 1)
    if not _is_int(start_month) or not 1 <= start_month <= 12:
        problems["fiscalYearStartMonth"] = "must be an integer between 1 and 12"

    frequency = data.get("duesFrequency", "monthly")
    if frequency not in DUES_FREQUENCIES:
        problems["duesFrequency"] = f"must be one of {', '.join(DUES_FREQUENCIES)}"

    due_day = data.get("dueDay", 1)
    if not _is_int(due_day) or not 1 <= due_day <= 28:
        problems["dueDay"] = "must be an integer between 1 and 28"

    for name in ("ratePerUnit", "minimumCharge"):
        value = data.get(name, 0)
        if not _is_int(value) or value < 0:
            problems[name] = "must be a non-negative integer amount of centavos"

    ancillary_rates = data.get("ancillaryRates", {}) or {}
    if not isinstance(ancillary_rates, dict) or not all(
        _is_int(v) and v >= 0 for v in ancillary_rates.values()
    ):
        problems["ancillaryRates"] = "must map service names to non-negative centavos"

    for name in ("compoundPenalty", "allowNegativeCredit"):
        if name in data and not isinstance(data[name], bool):
            problems[name] = "must be true or false"

    if problems:
        logger.error("Invalid billing configuration for client %s: %s", client_id, problems)
        raise ConfigurationError(
            f"Invalid billing configuration for client {client_id}: "
            + ", ".join(f"{k} {v}" for k, v in sorted(problems.items())),
            {"client_id": client_id, "fields": problems},
        )

    return BillingConfig(
        client_id=client_id,
        penalty_rate=float(penalty_rate),
        penalty_days=penalty_days,
        compound_penalty=data.get("compoundPenalty", True),
        fiscal_year_start_month=start_month,
        dues_frequency=frequency,
        due_day=due_day,
        rate_per_unit=data.get("ratePerUnit", 0),
        ancillary_rates=dict(ancillary_rates),
        minimum_charge=data.get("minimumCharge", 0),
        allow_negative_credit=data.get("allowNegativeCredit", False),
        timezone=data.get("timezone", "America/Cancun"),
        currency=data.get("currency", "MXN"),
    )


class BillingConfigService:
    """Loads billing configuration documents."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def load(self, client_id: str) -> BillingConfig:
        return parse_billing_config(client_id, self.store.get(billing_config_path(client_id)))

    @staticmethod
    def load_in(txn: StoreTransaction, client_id: str) -> BillingConfig:
        """Load inside a unit of work (counts as a read of the config document)."""
        return parse_billing_config(client_id, txn.get(billing_config_path(client_id)))


__all__ = ["BillingConfig", "BillingConfigService", "parse_billing_config", "DUES_FREQUENCIES"]
