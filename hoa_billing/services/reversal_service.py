"""Transaction reversal.

Deleting a payment transaction undoes everything it produced, in one unit of
work:

* gather: the transaction, its account balance, the unit's credit ledger and
  every bill period document the transaction may have paid;
* mutate: delete the transaction, subtract its amount from the account,
  remove its credit ledger entries and refold the history, and remove its
  payment records from each bill (re-deriving paid totals and status).

Documents that no longer exist are skipped and reported instead of failing
the reversal. Any other error aborts the unit of work with nothing written.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hoa_billing.services.account_balance import AccountBalanceService
from hoa_billing.services.audit_service import AuditService
from hoa_billing.services.bill_cache import BillCache
from hoa_billing.services.bill_records import BillPeriodDocument
from hoa_billing.services.clock import Clock
from hoa_billing.services.credit_ledger import negative_credit_allowed, normalize_ledger, remove_transaction_entries
from hoa_billing.services.doc_paths import (
    account_path,
    bill_period_path,
    billing_config_path,
    bills_collection,
    credit_ledger_path,
    transaction_path,
)
from hoa_billing.services.document_store import DocumentStore, StoreTransaction
from hoa_billing.services.errors import BillingError, NotFoundError
from hoa_billing.services.money import format_centavos, to_centavos
from hoa_billing.services.penalty_service import parse_date
from hoa_billing.services.transaction_classifier import (
    TransactionClassification,
    TransactionKind,
    classify_transaction,
)

logger = logging.getLogger(__name__)


class ReversalState(str, Enum):
    ACTIVE = "ACTIVE"
    REVERSING = "REVERSING"
    DELETED = "DELETED"
    REVERSAL_FAILED = "REVERSAL_FAILED"


_AUDIT_ACTIONS = {
    TransactionKind.HOA: "delete_with_hoa_cleanup",
    TransactionKind.WATER: "delete_with_water_cleanup",
    TransactionKind.UNIFIED: "delete_with_multi_cleanup",
}


@dataclass
class ReversalResult:
    """Outcome of a reverse-and-delete."""

    success: bool
    transaction_id: str
    kind: TransactionKind
    state: ReversalState
    bills_reversed: int = 0
    credit_reversal_amount: int = 0
    months_cleared: int = 0
    skipped: list[dict[str, Any]] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "transactionId": self.transaction_id,
            "kind": self.kind.value,
            "state": self.state.value,
            "billsReversed": self.bills_reversed,
            "creditReversalAmount": self.credit_reversal_amount,
            "monthsCleared": self.months_cleared,
            "skipped": list(self.skipped),
            "details": dict(self.details),
        }


@dataclass
class _Gathered:
    """Everything read in the gather phase."""

    transaction: dict[str, Any]
    classification: TransactionClassification
    account_id: str | None
    account: dict[str, Any] | None
    ledger: dict[str, Any] | None
    allow_negative_credit: bool
    bills: dict[tuple[str, str], dict[str, Any]]
    missing_refs: list[dict[str, Any]]


class TransactionReversalCoordinator:
    """Reverses and deletes payment transactions atomically."""

    def __init__(
        self,
        store: DocumentStore,
        session: Session | None = None,
        cache: BillCache | None = None,
        clock: Clock | None = None,
        rebuild_balances: bool = True,
        max_attempts: int = 1,
        locale: str = "es_MX",
    ):
        self.store = store
        self.session = session
        self.cache = cache
        self.clock = clock or Clock()
        self.rebuild_balances = rebuild_balances
        self.max_attempts = max_attempts
        self.locale = locale

    def _gather(self, txn: StoreTransaction, client_id: str, transaction_id: str) -> _Gathered:
        data = txn.get(transaction_path(client_id, transaction_id))
        if data is None:
            raise NotFoundError(
                f"Transaction {transaction_id} not found",
                {"client_id": client_id, "transaction_id": transaction_id},
            )
        classification = classify_transaction(data)
        unit_id = classification.unit_id

        account_id = data.get("accountId")
        account = txn.get(account_path(client_id, account_id)) if account_id else None
        ledger = txn.get(credit_ledger_path(client_id, unit_id)) if unit_id else None
        allow_negative = negative_credit_allowed(txn.get(billing_config_path(client_id)))

        bills: dict[tuple[str, str], dict[str, Any]] = {}
        missing_refs: list[dict[str, Any]] = []
        if classification.cleans_bills:
            for ref in classification.bill_targets:
                found = False
                for period_id in ref.period_ids:
                    if (ref.domain, period_id) in bills:
                        found = True
                        continue
                    bill_data = txn.get(bill_period_path(client_id, ref.domain, period_id))
                    if bill_data is not None:
                        bills[(ref.domain, period_id)] = bill_data
                        found = True
                if not found:
                    missing_refs.append({"domain": ref.domain, "periodIds": list(ref.period_ids)})

            for domain in classification.scan_domains:
                for period_id, bill_data in txn.query(bills_collection(client_id, domain)):
                    if (domain, period_id) in bills:
                        continue
                    period = BillPeriodDocument.from_document(bill_data)
                    if any(unit.paid_by(transaction_id) for unit in period.units.values()):
                        bills[(domain, period_id)] = bill_data

        return _Gathered(
            transaction=data,
            classification=classification,
            account_id=account_id,
            account=account,
            ledger=ledger,
            allow_negative_credit=allow_negative,
            bills=bills,
            missing_refs=missing_refs,
        )

    def reverse_and_delete(
        self,
        client_id: str,
        transaction_id: str,
        user_id: str | None = None,
    ) -> ReversalResult:
        """Undo every effect of a transaction and delete it.

        Args:
            client_id: Client identifier
            transaction_id: Transaction to reverse
            user_id: User requesting the deletion, for the audit log

        Returns:
            ReversalResult in state DELETED

        Raises:
            NotFoundError: The transaction does not exist
            ConflictError: Concurrent modification; nothing was written
            ValidationError: Reversal would leave an invalid ledger; nothing was written
        """
        def work(txn: StoreTransaction) -> ReversalResult:
            gathered = self._gather(txn, client_id, transaction_id)
            classification = gathered.classification
            result = ReversalResult(
                success=False,
                transaction_id=transaction_id,
                kind=classification.kind,
                state=ReversalState.REVERSING,
                details={"unitId": classification.unit_id, "reasons": list(classification.reasons)},
            )
            for ref in gathered.missing_refs:
                logger.warning(
                    "Bill document for %s %s not found while reversing %s; skipped",
                    ref["domain"],
                    "/".join(ref["periodIds"]),
                    transaction_id,
                )
                result.skipped.append({"type": "bill", "reason": "document not found", **ref})

            # Mutate
            txn.delete(transaction_path(client_id, transaction_id))
            amount = to_centavos(gathered.transaction.get("amount", 0) or 0, field="amount", strict=False)
            self._reverse_account(txn, client_id, gathered, amount, result)
            self._reverse_credit(txn, client_id, transaction_id, gathered, result)
            self._reverse_bills(txn, client_id, transaction_id, gathered, result)

            result.details["amount"] = amount
            result.details["date"] = gathered.transaction.get("date")
            return result

        try:
            result = self.store.run_transaction(work, max_attempts=self.max_attempts)
        except BillingError as e:
            e.details.setdefault("state", ReversalState.REVERSAL_FAILED.value)
            e.details.setdefault("transaction_id", transaction_id)
            logger.error(
                "Reversal of transaction %s for client %s failed (%s); nothing was written",
                transaction_id,
                client_id,
                e.error_type,
                exc_info=True,
            )
            raise

        result.state = ReversalState.DELETED
        result.success = True
        logger.info(
            "Reversed transaction %s (%s) for client %s: %d bills, credit %d, %d skipped",
            transaction_id,
            result.kind.value,
            client_id,
            result.bills_reversed,
            result.credit_reversal_amount,
            len(result.skipped),
        )

        if self.cache is not None:
            for key in result.details.get("billDocuments", []):
                domain, period_id = key.split("/", 1)
                self.cache.invalidate((client_id, domain, period_id))

        self._audit(client_id, result, user_id)
        if self.rebuild_balances:
            self._rebuild_balances(client_id, result)
        return result

    def _reverse_account(
        self,
        txn: StoreTransaction,
        client_id: str,
        gathered: _Gathered,
        amount: int,
        result: ReversalResult,
    ) -> None:
        if not gathered.account_id:
            result.skipped.append({"type": "account", "reason": "transaction has no account"})
            return
        if gathered.account is None:
            logger.warning(
                "Account %s not found while reversing %s; balance not adjusted",
                gathered.account_id,
                result.transaction_id,
            )
            result.skipped.append(
                {"type": "account", "accountId": gathered.account_id, "reason": "document not found"}
            )
            return
        new_balance = AccountBalanceService.apply_delta(
            txn, client_id, gathered.account_id, gathered.account, -amount
        )
        result.details["accountId"] = gathered.account_id
        result.details["accountBalance"] = new_balance

    def _reverse_credit(
        self,
        txn: StoreTransaction,
        client_id: str,
        transaction_id: str,
        gathered: _Gathered,
        result: ReversalResult,
    ) -> None:
        unit_id = gathered.classification.unit_id
        if gathered.ledger is None:
            if gathered.classification.touches_credit:
                logger.warning(
                    "Credit ledger for unit %s not found while reversing %s; skipped",
                    unit_id,
                    transaction_id,
                )
                result.skipped.append(
                    {"type": "creditLedger", "unitId": unit_id, "reason": "document not found"}
                )
            return

        ledger = normalize_ledger(unit_id, gathered.ledger)
        new_ledger, removed = remove_transaction_entries(
            ledger, transaction_id, allow_negative=gathered.allow_negative_credit
        )
        if not removed:
            return
        txn.set(credit_ledger_path(client_id, unit_id), new_ledger)
        result.credit_reversal_amount = new_ledger["creditBalance"] - ledger["creditBalance"]
        result.details["creditBalanceBefore"] = ledger["creditBalance"]
        result.details["creditBalanceAfter"] = new_ledger["creditBalance"]
        result.details["creditEntriesRemoved"] = len(removed)

    def _reverse_bills(
        self,
        txn: StoreTransaction,
        client_id: str,
        transaction_id: str,
        gathered: _Gathered,
        result: ReversalResult,
    ) -> None:
        touched = []
        for (domain, period_id), data in gathered.bills.items():
            period = BillPeriodDocument.from_document(data)
            units_cleared = 0
            for unit in period.units.values():
                if unit.remove_payments(transaction_id):
                    units_cleared += 1
            if not units_cleared:
                result.skipped.append(
                    {
                        "type": "bill",
                        "domain": domain,
                        "periodIds": [period_id],
                        "reason": "no payment from this transaction",
                    }
                )
                continue
            txn.set(bill_period_path(client_id, domain, period_id), period.to_document())
            touched.append(f"{domain}/{period_id}")
            result.bills_reversed += units_cleared
            if domain == "hoa":
                months = 3 if data.get("frequency") == "quarterly" or "-Q" in period_id else 1
                result.months_cleared += months * units_cleared
        result.details["billDocuments"] = touched

    def _audit(self, client_id: str, result: ReversalResult, user_id: str | None) -> None:
        if self.session is None:
            return
        action = _AUDIT_ACTIONS.get(result.kind, "delete")
        amount = result.details.get("amount", 0)
        paid_on = parse_date(result.details.get("date"))
        notes = f"Deleted transaction of {format_centavos(amount, locale=self.locale)}"
        if paid_on is not None:
            notes += f" dated {self.clock.format_date(paid_on, self.locale)}"
        if result.bills_reversed:
            notes += f"; {result.bills_reversed} bills reversed"
        if result.credit_reversal_amount:
            notes += f"; credit {format_centavos(result.credit_reversal_amount, locale=self.locale)}"
        try:
            AuditService.log(
                self.session,
                module="transactions",
                action=action,
                parent_path=transaction_path(client_id, result.transaction_id),
                doc_id=result.transaction_id,
                friendly_name=f"Transaction {result.transaction_id}",
                notes=notes,
                user_id=user_id,
                changes={
                    "kind": result.kind.value,
                    "billsReversed": result.bills_reversed,
                    "creditReversalAmount": result.credit_reversal_amount,
                    "monthsCleared": result.months_cleared,
                    "skipped": result.skipped,
                },
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(
                "Audit entry for reversal of %s could not be written",
                result.transaction_id,
                exc_info=True,
            )

    def _rebuild_balances(self, client_id: str, result: ReversalResult) -> None:
        try:
            AccountBalanceService(self.store).rebuild(client_id)
            result.details["balanceRebuild"] = "completed"
        except (BillingError, SQLAlchemyError):
            logger.warning(
                "Balance rebuild after reversing %s failed; reversal stands",
                result.transaction_id,
                exc_info=True,
            )
            result.details["balanceRebuild"] = "failed"


__all__ = ["ReversalState", "ReversalResult", "TransactionReversalCoordinator"]
