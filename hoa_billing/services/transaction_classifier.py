"""Classification of payment transactions for reversal.

A transaction document may come from the current payment recorder (typed
allocations with period targets) or from older tools that marked dues and
water payments through category ids, metadata counters or a
``duesDistribution`` list. ``classify_transaction`` inspects all of these once
and returns an explicit classification that the reversal code works from.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from hoa_billing.services.payment_distribution import ACCOUNT_CREDIT

_PERIOD_ID_RE = re.compile(r"^\d{4}-(\d{2}|Q[1-4])$")

_HOA_ALLOCATION_TYPES = {"hoa-base", "hoa-penalty", "hoa-month", "hoa_month", "hoa_penalty", "hoa_base"}
_WATER_ALLOCATION_TYPES = {"water-base", "water-penalty", "water_bill", "water_penalty", "water_base"}
_CREDIT_ALLOCATION_TYPES = {ACCOUNT_CREDIT, "account_credit", "water_credit", "credit"}

_HOA_CATEGORY_IDS = {"hoa-dues", "hoa_dues"}
_HOA_CATEGORY_NAMES = {"HOA Dues", "HOA Penalties"}
_WATER_CATEGORY_IDS = {"water-consumption", "water_bills", "water_payments"}
_WATER_CATEGORY_NAMES = {"Water Consumption", "Water Penalties", "Water Payments"}


class TransactionKind(str, Enum):
    HOA = "HOA"
    WATER = "WATER"
    UNIFIED = "UNIFIED"
    LEDGER_ONLY = "LEDGER_ONLY"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class BillRef:
    """Bill period documents a transaction may have paid.

    ``period_ids`` lists every period document that can hold the payment;
    older records only name a month or quarter, which maps to either a monthly
    or a quarterly document depending on the client's dues frequency.
    """

    domain: str
    period_ids: tuple[str, ...]
    legacy: bool = False


@dataclass(frozen=True)
class TransactionClassification:
    kind: TransactionKind
    unit_id: str | None
    bill_targets: tuple[BillRef, ...] = ()
    touches_credit: bool = False
    scan_domains: tuple[str, ...] = ()
    reasons: tuple[str, ...] = field(default=())

    @property
    def touches_hoa(self) -> bool:
        return self.kind in (TransactionKind.HOA, TransactionKind.UNIFIED)

    @property
    def touches_water(self) -> bool:
        return self.kind in (TransactionKind.WATER, TransactionKind.UNIFIED)

    @property
    def cleans_bills(self) -> bool:
        return self.touches_hoa or self.touches_water


def _allocation_data(allocation: dict[str, Any]) -> dict[str, Any]:
    merged = dict(allocation.get("metadata") or {})
    merged.update(allocation.get("data") or {})
    return merged


def _legacy_month_periods(year: Any, month: Any) -> tuple[str, ...]:
    """Monthly and quarterly period ids for a zero-based fiscal month."""
    try:
        year, month = int(year), int(month)
    except (TypeError, ValueError):
        return ()
    if not 0 <= month <= 11:
        return ()
    return (f"{year}-{month:02d}", f"{year}-Q{month // 3 + 1}")


def _legacy_quarter_periods(year: Any, quarter: Any) -> tuple[str, ...]:
    """Quarterly and monthly period ids for a zero-based fiscal quarter."""
    try:
        year, quarter = int(year), int(quarter)
    except (TypeError, ValueError):
        return ()
    if not 0 <= quarter <= 3:
        return ()
    months = tuple(f"{year}-{m:02d}" for m in range(quarter * 3, quarter * 3 + 3))
    return (f"{year}-Q{quarter + 1}",) + months


def _positive(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def _find_unit_id(txn: dict[str, Any]) -> str | None:
    if txn.get("unitId"):
        return txn["unitId"]
    metadata = txn.get("metadata") or {}
    if metadata.get("unitId"):
        return metadata["unitId"]
    for allocation in txn.get("allocations") or []:
        unit_id = _allocation_data(allocation).get("unitId")
        if unit_id:
            return unit_id
    for dues in txn.get("duesDistribution") or []:
        if dues.get("unitId"):
            return dues["unitId"]
    return None


def classify_transaction(txn: dict[str, Any]) -> TransactionClassification:
    """Determine which domains a transaction touched and which bills it paid."""
    allocations = [a for a in (txn.get("allocations") or []) if isinstance(a, dict)]
    metadata = txn.get("metadata") or {}
    reasons: list[str] = []
    targets: dict[tuple[str, tuple[str, ...]], BillRef] = {}

    has_hoa = False
    has_water = False
    touches_credit = False
    water_has_explicit_targets = False

    for allocation in allocations:
        alloc_type = allocation.get("type") or ""
        data = _allocation_data(allocation)
        category_id = allocation.get("categoryId")
        category_name = allocation.get("categoryName")

        is_hoa = (
            alloc_type in _HOA_ALLOCATION_TYPES
            or category_id in _HOA_CATEGORY_IDS
            or category_name in _HOA_CATEGORY_NAMES
            or data.get("processingStrategy") == "hoa_dues"
        )
        is_water = (
            alloc_type in _WATER_ALLOCATION_TYPES
            or category_id in _WATER_CATEGORY_IDS
            or category_name in _WATER_CATEGORY_NAMES
            or data.get("processingStrategy") == "water_bills"
        )
        if alloc_type in _CREDIT_ALLOCATION_TYPES:
            touches_credit = True

        target_id = allocation.get("targetId") or data.get("periodId") or data.get("billId")
        if is_hoa:
            has_hoa = True
            if isinstance(target_id, str) and _PERIOD_ID_RE.match(target_id):
                ref = BillRef("hoa", (target_id,))
            elif data.get("quarter") is not None:
                ref = BillRef("hoa", _legacy_quarter_periods(data.get("year"), data.get("quarter")), legacy=True)
            else:
                ref = BillRef("hoa", _legacy_month_periods(data.get("year"), data.get("month")), legacy=True)
            if ref.period_ids:
                targets.setdefault((ref.domain, ref.period_ids), ref)
            else:
                reasons.append(f"hoa allocation without a period: {alloc_type or category_id}")
        elif is_water:
            has_water = True
            if isinstance(target_id, str) and _PERIOD_ID_RE.match(target_id):
                water_has_explicit_targets = True
                targets.setdefault(("water", (target_id,)), BillRef("water", (target_id,)))

    for dues in txn.get("duesDistribution") or []:
        has_hoa = True
        # duesDistribution months are one-based
        month = dues.get("month")
        month_index = month - 1 if isinstance(month, int) and not isinstance(month, bool) else None
        ref = BillRef("hoa", _legacy_month_periods(dues.get("year"), month_index), legacy=True)
        if ref.period_ids:
            targets.setdefault((ref.domain, ref.period_ids), ref)

    category = txn.get("category")
    category_id = txn.get("categoryId")
    category_name = txn.get("categoryName")
    metadata_type = metadata.get("type")

    if (
        category in ("HOA Dues", "hoa-dues")
        or category_id in _HOA_CATEGORY_IDS
        or category_name == "HOA Dues"
        or metadata_type in ("hoa-dues", "hoa_dues")
        or _positive(metadata.get("hoaBillsPaid"))
    ):
        if not has_hoa:
            reasons.append("hoa detected from legacy category or metadata")
        has_hoa = True

    if (
        category in ("water_bills", "water-consumption")
        or category_id in _WATER_CATEGORY_IDS
        or category_name in ("Water Payments", "Water Consumption")
        or metadata_type in ("water-bills", "water_bills", "water-payment")
        or _positive(metadata.get("waterBillsPaid"))
    ):
        if not has_water:
            reasons.append("water detected from legacy category or metadata")
        has_water = True

    if category == "unified-payment" and not (has_hoa or has_water):
        reasons.append("unified payment without bill allocations")

    if _positive(metadata.get("residualCredit")) or _positive(metadata.get("creditUsed")):
        touches_credit = True
    if txn.get("creditBalanceAdded") or txn.get("creditUsed"):
        touches_credit = True

    if has_hoa and has_water:
        kind = TransactionKind.UNIFIED
    elif has_hoa:
        kind = TransactionKind.HOA
    elif has_water:
        kind = TransactionKind.WATER
    elif allocations and all((a.get("type") or "") in _CREDIT_ALLOCATION_TYPES for a in allocations):
        kind = TransactionKind.LEDGER_ONLY
    elif not allocations and touches_credit:
        kind = TransactionKind.LEDGER_ONLY
    else:
        kind = TransactionKind.UNKNOWN

    # Without explicit periods every bill document of the domain is searched
    scan_domains = []
    if has_hoa and not any(ref.domain == "hoa" for ref in targets.values()):
        reasons.append("hoa transaction without identifiable periods")
        scan_domains.append("hoa")
    if has_water and not water_has_explicit_targets:
        scan_domains.append("water")

    return TransactionClassification(
        kind=kind,
        unit_id=_find_unit_id(txn),
        bill_targets=tuple(targets.values()),
        touches_credit=touches_credit,
        scan_domains=tuple(scan_domains),
        reasons=tuple(reasons),
    )


__all__ = ["TransactionKind", "BillRef", "TransactionClassification", "classify_transaction"]
