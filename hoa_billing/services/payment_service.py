"""Payment recording.

One payment is one unit of work: the unit's outstanding bills, credit ledger,
account balance and billing configuration are read first, the payment is
distributed in memory, and the bill payment records, credit entries, account
balance and transaction document are then written together. Any error leaves
every document untouched.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hoa_billing.services.account_balance import AccountBalanceService
from hoa_billing.services.audit_service import AuditService
from hoa_billing.services.bill_cache import BillCache
from hoa_billing.services.bill_generation import BILL_DOMAINS, validate_domain
from hoa_billing.services.bill_records import BillPeriodDocument, PaymentRecord
from hoa_billing.services.billing_config import BillingConfig, BillingConfigService
from hoa_billing.services.clock import Clock
from hoa_billing.services.credit_ledger import append_entry, normalize_ledger
from hoa_billing.services.doc_paths import (
    account_path,
    bill_period_path,
    bills_collection,
    credit_ledger_path,
    transaction_path,
)
from hoa_billing.services.document_store import DocumentStore, StoreTransaction
from hoa_billing.services.errors import ValidationError
from hoa_billing.services.money import format_centavos, require_centavos
from hoa_billing.services.payment_distribution import BillTarget, Distribution, distribute
from hoa_billing.services.penalty_service import refresh_bill_penalty

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_ID = "bank"


@dataclass
class PaymentReceipt:
    """Outcome of a recorded payment."""

    transaction_id: str
    client_id: str
    unit_id: str
    amount: int
    distribution: Distribution
    previous_credit_balance: int
    new_credit_balance: int
    account_id: str
    account_balance: int
    bills_updated: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "transactionId": self.transaction_id,
            "clientId": self.client_id,
            "unitId": self.unit_id,
            "amount": self.amount,
            "previousBalance": self.previous_credit_balance,
            "newBalance": self.new_credit_balance,
            "accountId": self.account_id,
            "accountBalance": self.account_balance,
            "billsUpdated": list(self.bills_updated),
            "distribution": self.distribution.to_dict(),
        }


@dataclass
class _PaymentPlan:
    config: BillingConfig
    distribution: Distribution
    periods: dict[tuple[str, str], BillPeriodDocument]
    ledger: dict[str, Any]
    account: dict[str, Any] | None
    # Penalty per (domain, period_id) as stored, before the refresh for this payment
    penalties_before: dict[tuple[str, str], int]


def _category_for(distribution: Distribution) -> str:
    domains = {bp.domain for bp in distribution.bill_payments}
    if len(domains) > 1:
        return "unified-payment"
    if domains == {"hoa"}:
        return "hoa-dues"
    if domains == {"water"}:
        return "water-consumption"
    return "account-credit"


class PaymentService:
    """Records payments against a unit's bills and credit."""

    def __init__(
        self,
        store: DocumentStore,
        session: Session | None = None,
        cache: BillCache | None = None,
        clock: Clock | None = None,
        tolerance: int = 1,
        locale: str = "es_MX",
    ):
        self.store = store
        self.session = session
        self.cache = cache
        self.clock = clock or Clock()
        self.tolerance = tolerance
        self.locale = locale

    def _gather_and_plan(
        self,
        txn: StoreTransaction,
        client_id: str,
        unit_id: str,
        amount: int,
        payment_date: date,
        domains: tuple[str, ...],
        account_id: str,
        use_credit: bool,
    ) -> _PaymentPlan:
        config = BillingConfigService.load_in(txn, client_id)

        periods: dict[tuple[str, str], BillPeriodDocument] = {}
        penalties_before: dict[tuple[str, str], int] = {}
        targets: list[BillTarget] = []
        for domain in domains:
            for period_id, data in txn.query(bills_collection(client_id, domain)):
                period = BillPeriodDocument.from_document(data)
                bill = period.units.get(unit_id)
                if bill is None or bill.is_paid:
                    continue
                penalties_before[(domain, period_id)] = bill.penalty_amount
                refresh_bill_penalty(bill, config, payment_date)
                periods[(domain, period_id)] = period
                targets.append(BillTarget(domain, period_id, bill))

        ledger = normalize_ledger(unit_id, txn.get(credit_ledger_path(client_id, unit_id)))
        account = txn.get(account_path(client_id, account_id))

        distribution = distribute(
            unit_id,
            amount,
            ledger["creditBalance"],
            payment_date,
            targets,
            use_credit=use_credit,
            tolerance=self.tolerance,
        )
        return _PaymentPlan(config, distribution, periods, ledger, account, penalties_before)

    def preview_payment(
        self,
        client_id: str,
        unit_id: str,
        amount: int,
        payment_date: date | None = None,
        domains: tuple[str, ...] = BILL_DOMAINS,
        account_id: str = DEFAULT_ACCOUNT_ID,
        use_credit: bool = True,
    ) -> Distribution:
        """Compute how a payment would be distributed without writing anything."""
        amount = require_centavos(amount, "amount")
        for domain in domains:
            validate_domain(domain)
        on = payment_date or self.clock.today()

        def work(txn: StoreTransaction) -> Distribution:
            plan = self._gather_and_plan(txn, client_id, unit_id, amount, on, domains, account_id, use_credit)
            return plan.distribution

        return self.store.run_transaction(work)

    def record_payment(
        self,
        client_id: str,
        unit_id: str,
        amount: int,
        payment_date: date | None = None,
        domains: tuple[str, ...] = BILL_DOMAINS,
        account_id: str = DEFAULT_ACCOUNT_ID,
        transaction_id: str | None = None,
        use_credit: bool = True,
        note: str = "",
        source: str = "payment",
        user_id: str | None = None,
    ) -> PaymentReceipt:
        """Record a payment and distribute it across the unit's outstanding bills.

        Args:
            client_id: Client identifier
            unit_id: Paying unit
            amount: Cash received, in centavos
            payment_date: Date of payment (penalties are refreshed as of this date)
            domains: Bill domains eligible for the payment
            account_id: Account receiving the cash
            transaction_id: Id for the new transaction (generated when omitted)
            use_credit: Also spend existing credit on outstanding bills
            note: Free-text note stored on the transaction and credit entries
            source: Tag recorded on credit ledger entries
            user_id: User recording the payment, for the audit log

        Returns:
            PaymentReceipt

        Raises:
            ConfigurationError: Billing configuration missing or invalid
            ValidationError: Bad input, duplicate transaction id, or nothing to apply
            ConflictError: Concurrent modification; nothing was written
        """
        amount = require_centavos(amount, "amount")
        for domain in domains:
            validate_domain(domain)
        on = payment_date or self.clock.today()
        txn_id = transaction_id or f"txn_{on.strftime('%Y%m%d')}_{uuid.uuid4().hex[:12]}"
        created_at = self.clock.now().isoformat()

        def work(txn: StoreTransaction) -> PaymentReceipt:
            # Gather
            if txn.get(transaction_path(client_id, txn_id)) is not None:
                raise ValidationError(
                    f"Transaction {txn_id} already exists", {"transaction_id": txn_id}
                )
            plan = self._gather_and_plan(txn, client_id, unit_id, amount, on, domains, account_id, use_credit)
            distribution = plan.distribution
            if amount == 0 and distribution.credit_used == 0:
                raise ValidationError(
                    "Nothing to apply: zero payment and no credit used",
                    {"unit_id": unit_id},
                )

            # Mutate
            bills_updated = []
            for bill_payment in distribution.bill_payments:
                key = (bill_payment.domain, bill_payment.period_id)
                period = plan.periods[key]
                period.units[unit_id].add_payment(
                    PaymentRecord(
                        transaction_id=txn_id,
                        amount=bill_payment.amount,
                        base_charge_paid=bill_payment.base_paid,
                        penalty_paid=bill_payment.penalty_paid,
                        date=on.isoformat(),
                        penalty_before=plan.penalties_before[key],
                    )
                )
                txn.set(
                    bill_period_path(client_id, bill_payment.domain, bill_payment.period_id),
                    period.to_document(),
                )
                bills_updated.append(f"{bill_payment.domain}/{bill_payment.period_id}")

            ledger = plan.ledger
            previous_credit = ledger["creditBalance"]
            if distribution.credit_used:
                ledger, _ = append_entry(
                    ledger,
                    -distribution.credit_used,
                    txn_id,
                    note or "Credit applied to bills",
                    source,
                    created_at,
                    allow_negative=plan.config.allow_negative_credit,
                )
            if distribution.residual_credit:
                ledger, _ = append_entry(
                    ledger,
                    distribution.residual_credit,
                    txn_id,
                    note or "Overpayment added to credit",
                    source,
                    created_at,
                    allow_negative=plan.config.allow_negative_credit,
                )
            if distribution.credit_used or distribution.residual_credit:
                txn.set(credit_ledger_path(client_id, unit_id), ledger)

            account_balance = AccountBalanceService.apply_delta(txn, client_id, account_id, plan.account, amount)

            txn.set(
                transaction_path(client_id, txn_id),
                {
                    "id": txn_id,
                    "clientId": client_id,
                    "unitId": unit_id,
                    "accountId": account_id,
                    "amount": amount,
                    "date": on.isoformat(),
                    "category": _category_for(distribution),
                    "note": note,
                    "allocations": [a.to_document() for a in distribution.allocations],
                    "metadata": {
                        "source": source,
                        "domains": list(domains),
                        "creditUsed": distribution.credit_used,
                        "residualCredit": distribution.residual_credit,
                        "createdAt": created_at,
                        "createdBy": user_id,
                    },
                },
            )
            return PaymentReceipt(
                transaction_id=txn_id,
                client_id=client_id,
                unit_id=unit_id,
                amount=amount,
                distribution=distribution,
                previous_credit_balance=previous_credit,
                new_credit_balance=ledger["creditBalance"],
                account_id=account_id,
                account_balance=account_balance,
                bills_updated=bills_updated,
            )

        try:
            receipt = self.store.run_transaction(work)
        except Exception:
            logger.error(
                "Payment %s for %s/%s failed; nothing was written",
                txn_id,
                client_id,
                unit_id,
                exc_info=True,
            )
            raise

        if self.cache is not None:
            for bill_payment in receipt.distribution.bill_payments:
                self.cache.invalidate((client_id, bill_payment.domain, bill_payment.period_id))

        logger.info(
            "Recorded payment %s for %s/%s: %d applied to %d bills, credit %d -> %d",
            txn_id,
            client_id,
            unit_id,
            receipt.distribution.total_applied,
            len(receipt.bills_updated),
            receipt.previous_credit_balance,
            receipt.new_credit_balance,
        )
        self._audit(receipt, user_id)
        return receipt

    def _audit(self, receipt: PaymentReceipt, user_id: str | None) -> None:
        if self.session is None:
            return
        try:
            AuditService.log(
                self.session,
                module="transactions",
                action="create",
                parent_path=transaction_path(receipt.client_id, receipt.transaction_id),
                doc_id=receipt.transaction_id,
                friendly_name=f"Payment {receipt.unit_id}",
                notes=(
                    f"Payment of {format_centavos(receipt.amount, locale=self.locale)} "
                    f"applied to {len(receipt.bills_updated)} bills"
                ),
                user_id=user_id,
                changes={
                    "billsUpdated": receipt.bills_updated,
                    "creditUsed": receipt.distribution.credit_used,
                    "residualCredit": receipt.distribution.residual_credit,
                },
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(
                "Audit entry for payment %s could not be written",
                receipt.transaction_id,
                exc_info=True,
            )


__all__ = ["PaymentService", "PaymentReceipt", "DEFAULT_ACCOUNT_ID"]
