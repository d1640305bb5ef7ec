"""Bill and payment record types stored inside bill period documents.

A bill's ``basePaid``/``penaltyPaid`` are always the sums over its ``payments``
list, and ``status`` is always derived from them. Nothing here writes either
value independently: ``UnitBill.recompute()`` is called whenever payments or
the penalty change.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from hoa_billing.services.money import to_centavos

logger = logging.getLogger(__name__)

STATUS_UNPAID = "unpaid"
STATUS_PARTIAL = "partial"
STATUS_PAID = "paid"


def compute_status(base_charge: int, penalty_amount: int, base_paid: int, penalty_paid: int) -> str:
    """Status from amounts owed vs amounts paid."""
    paid = base_paid + penalty_paid
    if paid >= base_charge + penalty_amount:
        return STATUS_PAID
    if paid > 0:
        return STATUS_PARTIAL
    return STATUS_UNPAID


@dataclass
class PaymentRecord:
    """One payment applied to a bill by one transaction."""

    transaction_id: str | None
    amount: int
    base_charge_paid: int
    penalty_paid: int
    date: str | None = None
    # Bill penalty before this payment refreshed it; restored when the last payment is reversed
    penalty_before: int | None = None

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "PaymentRecord":
        # Older dues documents stored the transaction id under "reference"
        transaction_id = data.get("transactionId") or data.get("reference")
        penalty_paid = to_centavos(data.get("penaltyPaid", 0) or 0, field="penaltyPaid", strict=False)
        amount_raw = data.get("amount", data.get("paid", 0)) or 0
        amount = to_centavos(amount_raw, field="amount", strict=False)
        if "baseChargePaid" in data:
            base_paid = to_centavos(data["baseChargePaid"] or 0, field="baseChargePaid", strict=False)
        else:
            base_paid = max(0, amount - penalty_paid)
        penalty_before = data.get("penaltyBefore")
        if penalty_before is not None:
            penalty_before = to_centavos(penalty_before, field="penaltyBefore", strict=False)
        return cls(
            transaction_id=transaction_id,
            amount=amount,
            base_charge_paid=base_paid,
            penalty_paid=penalty_paid,
            date=data.get("date"),
            penalty_before=penalty_before,
        )

    def to_document(self) -> dict[str, Any]:
        doc = {
            "transactionId": self.transaction_id,
            "amount": self.amount,
            "baseChargePaid": self.base_charge_paid,
            "penaltyPaid": self.penalty_paid,
            "date": self.date,
        }
        if self.penalty_before is not None:
            doc["penaltyBefore"] = self.penalty_before
        return doc


def _payments_list(raw: Any) -> list[dict[str, Any]]:
    """Accept payments as a list or as an index-keyed dict (legacy shape)."""
    if not raw:
        return []
    if isinstance(raw, dict):
        ordered = sorted(raw.items(), key=lambda item: int(item[0]) if str(item[0]).isdigit() else 0)
        return [value for _, value in ordered if value]
    return [value for value in raw if value]


@dataclass
class UnitBill:
    """A single unit's bill for one billing period."""

    unit_id: str
    base_charge: int
    penalty_amount: int = 0
    base_paid: int = 0
    penalty_paid: int = 0
    status: str = STATUS_UNPAID
    due_date: str | None = None
    penalty_start_date: str | None = None
    payments: list[PaymentRecord] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def total_due(self) -> int:
        return self.base_charge + self.penalty_amount

    @property
    def total_paid(self) -> int:
        return self.base_paid + self.penalty_paid

    @property
    def base_remaining(self) -> int:
        return max(0, self.base_charge - self.base_paid)

    @property
    def penalty_remaining(self) -> int:
        return max(0, self.penalty_amount - self.penalty_paid)

    @property
    def remaining(self) -> int:
        return self.base_remaining + self.penalty_remaining

    @property
    def is_paid(self) -> bool:
        return self.status == STATUS_PAID

    def recompute(self) -> None:
        """Re-derive paid totals and status from the payments list."""
        self.base_paid = sum(p.base_charge_paid for p in self.payments)
        self.penalty_paid = sum(p.penalty_paid for p in self.payments)
        self.status = compute_status(
            self.base_charge, self.penalty_amount, self.base_paid, self.penalty_paid
        )

    def add_payment(self, record: PaymentRecord) -> None:
        self.payments.append(record)
        self.recompute()

    def remove_payments(self, transaction_id: str) -> list[PaymentRecord]:
        """Remove every payment made by ``transaction_id``; returns what was removed.

        When no payments remain, the penalty goes back to what it was before
        the first removed payment refreshed it.
        """
        removed = [p for p in self.payments if p.transaction_id == transaction_id]
        if removed:
            self.payments = [p for p in self.payments if p.transaction_id != transaction_id]
            if not self.payments:
                before = next((p.penalty_before for p in removed if p.penalty_before is not None), None)
                if before is not None:
                    self.penalty_amount = before
            self.recompute()
        return removed

    def paid_by(self, transaction_id: str) -> bool:
        return any(p.transaction_id == transaction_id for p in self.payments)

    @classmethod
    def from_document(cls, unit_id: str, data: dict[str, Any]) -> "UnitBill":
        """Build from a stored bill, tolerating legacy field names.

        Legacy bills may carry ``currentCharge`` instead of ``baseCharge`` and a
        ``paidAmount``/``basePaid`` total with no payment records behind it. Such
        untracked amounts are kept as a payment record without a transaction id
        so that the paid totals keep matching the payments list.
        """
        base_charge = to_centavos(
            data.get("baseCharge", data.get("currentCharge", 0)) or 0,
            field="baseCharge",
            strict=False,
        )
        penalty_amount = to_centavos(data.get("penaltyAmount", 0) or 0, field="penaltyAmount", strict=False)
        payments = [PaymentRecord.from_document(p) for p in _payments_list(data.get("payments"))]

        bill = cls(
            unit_id=data.get("unitId", unit_id),
            base_charge=base_charge,
            penalty_amount=penalty_amount,
            due_date=data.get("dueDate"),
            penalty_start_date=data.get("penaltyStartDate"),
            payments=payments,
            details=dict(data.get("details", {}) or {}),
        )

        stored_penalty_paid = to_centavos(data.get("penaltyPaid", 0) or 0, field="penaltyPaid", strict=False)
        if "basePaid" in data:
            stored_base_paid = to_centavos(data.get("basePaid") or 0, field="basePaid", strict=False)
        else:
            paid_amount = to_centavos(data.get("paidAmount", 0) or 0, field="paidAmount", strict=False)
            stored_base_paid = max(0, paid_amount - stored_penalty_paid)

        untracked_base = stored_base_paid - sum(p.base_charge_paid for p in payments)
        untracked_penalty = stored_penalty_paid - sum(p.penalty_paid for p in payments)
        if untracked_base > 0 or untracked_penalty > 0:
            logger.warning(
                "Bill for unit %s has %d base / %d penalty centavos paid without payment records",
                bill.unit_id,
                max(0, untracked_base),
                max(0, untracked_penalty),
            )
            bill.payments.insert(
                0,
                PaymentRecord(
                    transaction_id=None,
                    amount=max(0, untracked_base) + max(0, untracked_penalty),
                    base_charge_paid=max(0, untracked_base),
                    penalty_paid=max(0, untracked_penalty),
                    date=None,
                ),
            )

        bill.recompute()
        return bill

    def to_document(self) -> dict[str, Any]:
        return {
            "unitId": self.unit_id,
            "baseCharge": self.base_charge,
            "penaltyAmount": self.penalty_amount,
            "basePaid": self.base_paid,
            "penaltyPaid": self.penalty_paid,
            "status": self.status,
            "dueDate": self.due_date,
            "penaltyStartDate": self.penalty_start_date,
            "payments": [p.to_document() for p in self.payments],
            "details": dict(self.details),
        }


@dataclass
class BillPeriodDocument:
    """Bill document for one domain and period, holding every unit's bill."""

    period_id: str
    domain: str
    units: dict[str, UnitBill]
    header: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "BillPeriodDocument":
        raw_units = data.get("units")
        if raw_units is None:
            # Older water documents nested units under bills.units
            raw_units = (data.get("bills") or {}).get("units", {})
        header = {k: v for k, v in data.items() if k not in ("units", "bills")}
        units = {}
        for unit_id, unit_data in (raw_units or {}).items():
            unit = UnitBill.from_document(unit_id, unit_data)
            if unit.due_date is None:
                unit.due_date = data.get("dueDate")
            if unit.penalty_start_date is None:
                unit.penalty_start_date = data.get("penaltyStartDate")
            units[unit_id] = unit
        return cls(
            period_id=data.get("periodId", data.get("billId", "")),
            domain=data.get("domain", ""),
            units=units,
            header=header,
        )

    def has_payments(self) -> bool:
        return any(unit.payments for unit in self.units.values())

    def to_document(self) -> dict[str, Any]:
        data = dict(self.header)
        data["periodId"] = self.period_id
        data["domain"] = self.domain
        data["units"] = {unit_id: unit.to_document() for unit_id, unit in self.units.items()}
        return data


__all__ = [
    "STATUS_UNPAID",
    "STATUS_PARTIAL",
    "STATUS_PAID",
    "compute_status",
    "PaymentRecord",
    "UnitBill",
    "BillPeriodDocument",
]
