"""Per-unit credit ledger.

The ledger is an append-only history of signed centavo amounts. The current
balance is always the fold (sum) of the history, never a free-standing counter:
reversing a transaction removes its entries and replays what is left, which
also repairs ``balanceAfter`` values written out of order by earlier tools.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from hoa_billing.services.clock import Clock
from hoa_billing.services.doc_paths import billing_config_path, credit_ledger_path
from hoa_billing.services.document_store import DocumentStore, StoreTransaction
from hoa_billing.services.errors import InsufficientCreditError, ValidationError
from hoa_billing.services.money import require_centavos, to_centavos

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class CreditUpdate:
    """Result of one balance change."""

    unit_id: str
    previous_balance: int
    new_balance: int
    entry: dict[str, Any]


@dataclass(frozen=True)
class CreditReversal:
    """Result of removing a transaction's entries from a ledger."""

    unit_id: str
    transaction_id: str
    removed_entries: list[dict[str, Any]]
    previous_balance: int
    new_balance: int

    @property
    def amount(self) -> int:
        """Change applied to the balance (negative when credit was taken back)."""
        return self.new_balance - self.previous_balance


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return _EPOCH
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return _EPOCH


def empty_ledger(unit_id: str) -> dict[str, Any]:
    return {"unitId": unit_id, "creditBalance": 0, "history": []}


def fold_history(history: list[dict[str, Any]]) -> tuple[int, list[dict[str, Any]]]:
    """Replay entries in chronological order.

    Returns:
        (balance, entries) where entries are sorted by timestamp (stable for
        equal timestamps) and carry a freshly computed ``balanceAfter``
    """
    ordered = sorted(history, key=lambda entry: _parse_timestamp(entry.get("timestamp")))
    balance = 0
    folded = []
    for entry in ordered:
        amount = to_centavos(entry.get("amount", 0) or 0, field="amount", strict=False)
        balance += amount
        refolded = dict(entry)
        refolded["amount"] = amount
        refolded["balanceAfter"] = balance
        refolded.pop("balance", None)
        folded.append(refolded)
    return balance, folded


def normalize_ledger(unit_id: str, data: dict[str, Any] | None) -> dict[str, Any]:
    """Return a ledger document whose balance equals the fold of its history."""
    if data is None:
        return empty_ledger(unit_id)
    balance, history = fold_history(list(data.get("history") or []))
    stored = data.get("creditBalance")
    if stored is not None and to_centavos(stored, field="creditBalance", strict=False) != balance:
        logger.warning(
            "Credit ledger for unit %s stored balance %s but history folds to %d; using history",
            unit_id,
            stored,
            balance,
        )
    ledger = dict(data)
    ledger["unitId"] = data.get("unitId", unit_id)
    ledger["creditBalance"] = balance
    ledger["history"] = history
    return ledger


def append_entry(
    ledger: dict[str, Any],
    amount: int,
    transaction_id: str | None,
    note: str,
    source: str,
    timestamp: str,
    allow_negative: bool = False,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Add one entry to a (normalized) ledger document.

    Returns:
        (new_ledger, entry)

    Raises:
        InsufficientCreditError: If the balance, at the entry or at any later
            entry, would go negative and negative credit is not allowed
    """
    amount = require_centavos(amount, "amount", allow_negative=True)
    entry = {
        "id": f"credit_{uuid.uuid4().hex[:16]}",
        "timestamp": timestamp,
        "amount": amount,
        "balanceAfter": 0,
        "transactionId": transaction_id,
        "note": note,
        "source": source,
    }
    previous = ledger["creditBalance"]
    balance, history = fold_history(list(ledger["history"]) + [entry])
    position = next(i for i, e in enumerate(history) if e["id"] == entry["id"])
    # A back-dated entry shifts every later balanceAfter, not only the final balance
    lowest = min(e["balanceAfter"] for e in history[position:]) if amount < 0 else balance
    if lowest < 0 and not allow_negative:
        raise InsufficientCreditError(
            f"Insufficient credit balance for unit {ledger['unitId']}: "
            f"current {previous}, requested {amount}",
            {
                "unit_id": ledger["unitId"],
                "current_balance": previous,
                "amount": amount,
                "lowest_balance": lowest,
            },
        )
    new_ledger = dict(ledger)
    new_ledger["creditBalance"] = balance
    new_ledger["history"] = history
    stored_entry = history[position]
    return new_ledger, stored_entry


def remove_transaction_entries(
    ledger: dict[str, Any],
    transaction_id: str,
    allow_negative: bool = False,
) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Drop every entry tagged with ``transaction_id`` and refold the rest.

    Raises:
        InsufficientCreditError: If the remaining history folds to a negative
            balance and negative credit is not allowed (a later transaction
            spent the credit being removed)
    """
    removed = [e for e in ledger["history"] if e.get("transactionId") == transaction_id]
    if not removed:
        return ledger, []
    remaining = [e for e in ledger["history"] if e.get("transactionId") != transaction_id]
    balance, history = fold_history(remaining)
    if balance < 0 and not allow_negative:
        raise InsufficientCreditError(
            f"Removing transaction {transaction_id} would leave unit "
            f"{ledger['unitId']} with negative credit ({balance}); "
            "reverse the transaction that spent this credit first",
            {"unit_id": ledger["unitId"], "transaction_id": transaction_id, "balance": balance},
        )
    new_ledger = dict(ledger)
    new_ledger["creditBalance"] = balance
    new_ledger["history"] = history
    return new_ledger, removed


def negative_credit_allowed(config_data: dict[str, Any] | None) -> bool:
    """Negative credit is an explicit per-client exception, never a default."""
    return bool(config_data and config_data.get("allowNegativeCredit") is True)


class CreditLedgerService:
    """Credit balance operations for units."""

    def __init__(self, store: DocumentStore, clock: Clock | None = None):
        self.store = store
        self.clock = clock or Clock()

    def _timestamp(self) -> str:
        return self.clock.now().isoformat()

    def get_balance(self, client_id: str, unit_id: str) -> int:
        ledger = normalize_ledger(unit_id, self.store.get(credit_ledger_path(client_id, unit_id)))
        return ledger["creditBalance"]

    def get_ledger(self, client_id: str, unit_id: str) -> dict[str, Any]:
        return normalize_ledger(unit_id, self.store.get(credit_ledger_path(client_id, unit_id)))

    def history(self, client_id: str, unit_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """Ledger entries, most recent first."""
        if limit <= 0:
            raise ValidationError("limit must be positive", {"limit": limit})
        ledger = self.get_ledger(client_id, unit_id)
        return list(reversed(ledger["history"]))[:limit]

    def append(
        self,
        client_id: str,
        unit_id: str,
        amount_delta: int,
        transaction_id: str | None,
        note: str,
        source: str,
        timestamp: str | None = None,
        allow_negative: bool | None = None,
    ) -> CreditUpdate:
        """Add (positive) or consume (negative) credit in one unit of work.

        ``allow_negative`` overrides the client configuration when given.

        Raises:
            InsufficientCreditError: If the balance would go negative unless the
                client configuration sets ``allowNegativeCredit``
        """
        amount_delta = require_centavos(amount_delta, "amount", allow_negative=True)
        path = credit_ledger_path(client_id, unit_id)
        entry_time = timestamp or self._timestamp()

        def work(txn: StoreTransaction) -> CreditUpdate:
            config_data = txn.get(billing_config_path(client_id))
            negative_ok = (
                negative_credit_allowed(config_data) if allow_negative is None else allow_negative
            )
            ledger = normalize_ledger(unit_id, txn.get(path))
            previous = ledger["creditBalance"]
            new_ledger, entry = append_entry(
                ledger,
                amount_delta,
                transaction_id,
                note,
                source,
                entry_time,
                allow_negative=negative_ok,
            )
            txn.set(path, new_ledger)
            return CreditUpdate(
                unit_id=unit_id,
                previous_balance=previous,
                new_balance=new_ledger["creditBalance"],
                entry=entry,
            )

        result = self.store.run_transaction(work)
        logger.info(
            "Updated credit balance for %s/%s: %d -> %d (source=%s, transaction=%s)",
            client_id,
            unit_id,
            result.previous_balance,
            result.new_balance,
            source,
            transaction_id,
        )
        return result

    def add_history_entry(
        self,
        client_id: str,
        unit_id: str,
        amount: int,
        entry_date: datetime,
        transaction_id: str | None,
        note: str,
        source: str,
    ) -> CreditUpdate:
        """Insert a back-dated entry (historical import or correction)."""
        return self.append(
            client_id,
            unit_id,
            amount,
            transaction_id,
            note,
            source,
            timestamp=entry_date.isoformat(),
        )

    def reverse(self, client_id: str, unit_id: str, transaction_id: str) -> CreditReversal:
        """Remove every entry of ``transaction_id`` and refold the remaining history."""
        path = credit_ledger_path(client_id, unit_id)

        def work(txn: StoreTransaction) -> CreditReversal:
            allow_negative = negative_credit_allowed(txn.get(billing_config_path(client_id)))
            raw = txn.get(path)
            ledger = normalize_ledger(unit_id, raw)
            previous = ledger["creditBalance"]
            new_ledger, removed = remove_transaction_entries(
                ledger, transaction_id, allow_negative=allow_negative
            )
            if removed:
                txn.set(path, new_ledger)
            return CreditReversal(
                unit_id=unit_id,
                transaction_id=transaction_id,
                removed_entries=removed,
                previous_balance=previous,
                new_balance=new_ledger["creditBalance"],
            )

        result = self.store.run_transaction(work)
        logger.info(
            "Reversed %d credit entries of transaction %s for %s/%s: %d -> %d",
            len(result.removed_entries),
            transaction_id,
            client_id,
            unit_id,
            result.previous_balance,
            result.new_balance,
        )
        return result


__all__ = [
    "CreditUpdate",
    "CreditReversal",
    "CreditLedgerService",
    "empty_ledger",
    "fold_history",
    "normalize_ledger",
    "append_entry",
    "remove_transaction_entries",
    "negative_credit_allowed",
]
