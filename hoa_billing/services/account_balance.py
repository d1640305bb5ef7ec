"""Account balance documents.

Each account document carries a signed centavo ``balance``. Payments add their
amount, reversals subtract it, and ``rebuild`` recomputes every balance of a
client from its transaction documents (``openingBalance`` + sum of amounts).
Accounts without an ``openingBalance`` cannot be rebuilt and are left alone.
"""

import logging
from collections import defaultdict
from typing import Any

from hoa_billing.services.doc_paths import account_path, accounts_collection, transactions_collection
from hoa_billing.services.document_store import DocumentStore, StoreTransaction
from hoa_billing.services.money import to_centavos

logger = logging.getLogger(__name__)


def apply_account_delta(account_id: str, data: dict[str, Any] | None, delta: int) -> dict[str, Any]:
    """Return the account document with ``delta`` added to its balance."""
    account = dict(data) if data else {"accountId": account_id, "balance": 0}
    current = to_centavos(account.get("balance", 0) or 0, field="balance", strict=False)
    account["accountId"] = account.get("accountId", account_id)
    account["balance"] = current + delta
    return account


class AccountBalanceService:
    """Reads, adjusts and rebuilds account balances."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def get_balance(self, client_id: str, account_id: str) -> int:
        data = self.store.get(account_path(client_id, account_id))
        if data is None:
            return 0
        return to_centavos(data.get("balance", 0) or 0, field="balance", strict=False)

    @staticmethod
    def apply_delta(txn: StoreTransaction, client_id: str, account_id: str, data: dict[str, Any] | None, delta: int) -> int:
        """Buffer a balance change inside a unit of work.

        ``data`` is the account document read earlier in the same unit of work.

        Returns:
            New balance
        """
        account = apply_account_delta(account_id, data, delta)
        txn.set(account_path(client_id, account_id), account)
        return account["balance"]

    def rebuild(self, client_id: str) -> dict[str, int]:
        """Recompute every account balance from the client's transactions.

        Only accounts whose document records an ``openingBalance`` are
        rewritten; others, including transactions pointing at a missing
        account, are logged and skipped.

        Returns:
            Mapping of account id to rebuilt balance
        """

        def work(txn: StoreTransaction) -> dict[str, int]:
            totals: dict[str, int] = defaultdict(int)
            for _, transaction in txn.query(transactions_collection(client_id)):
                account_id = transaction.get("accountId")
                if not account_id:
                    continue
                totals[account_id] += to_centavos(
                    transaction.get("amount", 0) or 0, field="amount", strict=False
                )
            accounts = dict(txn.query(accounts_collection(client_id)))

            rebuilt = {}
            for account_id in sorted(set(accounts) | set(totals)):
                account = dict(accounts.get(account_id) or {})
                if account.get("openingBalance") is None:
                    logger.warning(
                        "Account %s of client %s has no openingBalance; keeping stored balance %s",
                        account_id,
                        client_id,
                        account.get("balance"),
                    )
                    continue
                opening = to_centavos(account["openingBalance"], field="openingBalance", strict=False)
                balance = opening + totals.get(account_id, 0)
                rebuilt[account_id] = balance
                if account.get("balance") != balance:
                    account["balance"] = balance
                    txn.set(account_path(client_id, account_id), account)
            return rebuilt

        rebuilt = self.store.run_transaction(work, max_attempts=3)
        logger.info("Rebuilt %d account balances for client %s", len(rebuilt), client_id)
        return rebuilt


__all__ = ["AccountBalanceService", "apply_account_delta"]
