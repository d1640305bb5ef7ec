"""Payment distribution across outstanding bills.

Policy: penalties are satisfied before base charges and bills are satisfied
oldest due date first. New cash is applied before existing credit; cash left
over after every target bill is settled becomes credit. Everything here is pure
computation on integer centavos; callers persist the result.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from hoa_billing.services.bill_records import UnitBill
from hoa_billing.services.errors import ValidationError
from hoa_billing.services.money import require_centavos, to_centavos

logger = logging.getLogger(__name__)

ACCOUNT_CREDIT = "account-credit"
FUNDING_CASH = "cash"
FUNDING_CREDIT = "credit"


def base_allocation_type(domain: str) -> str:
    return f"{domain}-base"


def penalty_allocation_type(domain: str) -> str:
    return f"{domain}-penalty"


@dataclass
class BillTarget:
    """A unit bill eligible to receive a payment."""

    domain: str
    period_id: str
    bill: UnitBill

    @property
    def sort_key(self) -> tuple[str, str, str]:
        return (self.bill.due_date or "9999-12-31", self.period_id, self.domain)


@dataclass(frozen=True)
class Allocation:
    """Tagged sub-amount of a payment."""

    type: str
    target_id: str
    amount: int
    data: dict[str, Any] = field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        return {"type": self.type, "targetId": self.target_id, "amount": self.amount, "data": dict(self.data)}


@dataclass
class BillPayment:
    """Total applied to one bill by one payment."""

    domain: str
    period_id: str
    unit_id: str
    base_paid: int = 0
    penalty_paid: int = 0
    cash: int = 0
    credit: int = 0

    @property
    def amount(self) -> int:
        return self.base_paid + self.penalty_paid

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "periodId": self.period_id,
            "unitId": self.unit_id,
            "basePaid": self.base_paid,
            "penaltyPaid": self.penalty_paid,
            "cash": self.cash,
            "credit": self.credit,
        }


@dataclass
class Distribution:
    unit_id: str
    payment_amount: int
    as_of_date: date
    allocations: list[Allocation] = field(default_factory=list)
    bill_payments: list[BillPayment] = field(default_factory=list)
    residual_credit: int = 0
    credit_used: int = 0
    total_applied: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "unitId": self.unit_id,
            "paymentAmount": self.payment_amount,
            "asOfDate": self.as_of_date.isoformat(),
            "allocations": [a.to_document() for a in self.allocations],
            "billPayments": [bp.to_dict() for bp in self.bill_payments],
            "residualCredit": self.residual_credit,
            "creditUsed": self.credit_used,
            "totalApplied": self.total_applied,
        }


class _Outstanding:
    """Mutable remaining balances of one target while funds are applied."""

    def __init__(self, target: BillTarget):
        self.target = target
        self.penalty = target.bill.penalty_remaining
        self.base = target.bill.base_remaining
        self.payment = BillPayment(target.domain, target.period_id, target.bill.unit_id)

    @property
    def remaining(self) -> int:
        return self.penalty + self.base


def _apply_funds(
    funds: int,
    outstanding: list[_Outstanding],
    funding: str,
    allocations: list[Allocation],
) -> int:
    """Apply ``funds`` penalty-first, oldest-first; returns what is left."""
    for item in outstanding:
        if funds <= 0:
            break
        if item.remaining == 0:
            continue
        target = item.target
        data = {
            "domain": target.domain,
            "periodId": target.period_id,
            "unitId": target.bill.unit_id,
            "funding": funding,
        }

        to_penalty = min(funds, item.penalty)
        if to_penalty:
            item.penalty -= to_penalty
            item.payment.penalty_paid += to_penalty
            funds -= to_penalty
            allocations.append(
                Allocation(penalty_allocation_type(target.domain), target.period_id, to_penalty, dict(data))
            )

        to_base = min(funds, item.base)
        if to_base:
            item.base -= to_base
            item.payment.base_paid += to_base
            funds -= to_base
            allocations.append(
                Allocation(base_allocation_type(target.domain), target.period_id, to_base, dict(data))
            )

        if funding == FUNDING_CASH:
            item.payment.cash += to_penalty + to_base
        else:
            item.payment.credit += to_penalty + to_base
    return funds


def distribute(
    unit_id: str,
    payment_amount: int,
    current_credit_balance: int,
    as_of_date: date,
    target_bills: list[BillTarget],
    use_credit: bool = True,
    tolerance: int = 1,
) -> Distribution:
    """Split a payment (and optionally existing credit) across target bills.

    Args:
        unit_id: Unit the payment belongs to
        payment_amount: New cash in centavos (0 to settle from credit only)
        current_credit_balance: Unit's credit balance before this payment
        as_of_date: Payment date
        target_bills: Candidate bills; paid ones are ignored
        use_credit: Also spend existing credit on bills the cash did not cover
        tolerance: Allowed reconciliation difference in centavos

    Returns:
        Distribution with allocations, per-bill totals, residual credit and
        credit consumed

    Raises:
        ValidationError: Invalid amounts, a target for another unit, or
            allocations that do not reconcile to the payment
    """
    payment_amount = require_centavos(payment_amount, "paymentAmount")
    current_credit_balance = to_centavos(current_credit_balance, field="currentCreditBalance")

    for target in target_bills:
        if target.bill.unit_id != unit_id:
            raise ValidationError(
                f"Bill {target.domain}/{target.period_id} belongs to unit {target.bill.unit_id}, "
                f"not {unit_id}",
                {"unit_id": unit_id, "bill_unit_id": target.bill.unit_id},
            )

    ordered = sorted(
        (t for t in target_bills if not t.bill.is_paid and t.bill.remaining > 0),
        key=lambda t: t.sort_key,
    )
    outstanding = [_Outstanding(t) for t in ordered]
    allocations: list[Allocation] = []

    cash_left = _apply_funds(payment_amount, outstanding, FUNDING_CASH, allocations)

    credit_used = 0
    if use_credit and current_credit_balance > 0:
        credit_left = _apply_funds(current_credit_balance, outstanding, FUNDING_CREDIT, allocations)
        credit_used = current_credit_balance - credit_left

    residual_credit = cash_left
    if residual_credit:
        allocations.append(
            Allocation(ACCOUNT_CREDIT, unit_id, residual_credit, {"unitId": unit_id, "funding": FUNDING_CASH})
        )
    if credit_used:
        allocations.append(
            Allocation(ACCOUNT_CREDIT, unit_id, -credit_used, {"unitId": unit_id, "funding": FUNDING_CREDIT})
        )

    bill_payments = [item.payment for item in outstanding if item.payment.amount > 0]
    distribution = Distribution(
        unit_id=unit_id,
        payment_amount=payment_amount,
        as_of_date=as_of_date,
        allocations=allocations,
        bill_payments=bill_payments,
        residual_credit=residual_credit,
        credit_used=credit_used,
        total_applied=sum(bp.amount for bp in bill_payments),
    )
    _reconcile(distribution, tolerance)

    logger.debug(
        "Distributed %d for unit %s: %d to %d bills, %d credit used, %d to credit",
        payment_amount,
        unit_id,
        distribution.total_applied,
        len(bill_payments),
        credit_used,
        residual_credit,
    )
    return distribution


def _reconcile(distribution: Distribution, tolerance: int) -> None:
    """Reject a distribution whose parts do not add back up to its inputs."""
    cash_to_bills = sum(
        a.amount
        for a in distribution.allocations
        if a.type != ACCOUNT_CREDIT and a.data.get("funding") == FUNDING_CASH
    )
    credit_to_bills = sum(
        a.amount
        for a in distribution.allocations
        if a.type != ACCOUNT_CREDIT and a.data.get("funding") == FUNDING_CREDIT
    )
    cash_total = cash_to_bills + distribution.residual_credit
    if abs(cash_total - distribution.payment_amount) > tolerance:
        raise ValidationError(
            f"Allocations ({cash_total}) do not reconcile to payment ({distribution.payment_amount})",
            {"allocated": cash_total, "payment_amount": distribution.payment_amount},
        )
    if credit_to_bills != distribution.credit_used:
        raise ValidationError(
            f"Credit allocations ({credit_to_bills}) do not match credit used ({distribution.credit_used})",
            {"allocated": credit_to_bills, "credit_used": distribution.credit_used},
        )
    per_bill = sum(bp.amount for bp in distribution.bill_payments)
    if per_bill != cash_to_bills + credit_to_bills:
        raise ValidationError(
            "Per-bill totals do not match allocations",
            {"bill_payments": per_bill, "allocations": cash_to_bills + credit_to_bills},
        )
    if any(a.amount < 0 for a in distribution.allocations if a.type != ACCOUNT_CREDIT):
        raise ValidationError("Negative bill allocation", {"unit_id": distribution.unit_id})


__all__ = [
    "ACCOUNT_CREDIT",
    "FUNDING_CASH",
    "FUNDING_CREDIT",
    "Allocation",
    "BillPayment",
    "BillTarget",
    "Distribution",
    "distribute",
    "base_allocation_type",
    "penalty_allocation_type",
]
