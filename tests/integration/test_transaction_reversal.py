"""Integration tests for reversing and deleting payment transactions."""

from datetime import date

import pytest

from hoa_billing.services.account_balance import AccountBalanceService
from hoa_billing.services.audit_service import AuditService
from hoa_billing.services.bill_generation import BillingPeriodGenerator
from hoa_billing.services.credit_ledger import CreditLedgerService
from hoa_billing.services.doc_paths import account_path, bill_period_path, transaction_path
from hoa_billing.services.errors import InsufficientCreditError, NotFoundError
from hoa_billing.services.payment_service import PaymentService
from hoa_billing.services.reading_service import MeterReadingService
from hoa_billing.services.reversal_service import ReversalState, TransactionReversalCoordinator
from hoa_billing.services.transaction_classifier import TransactionKind

PAID_ON = date(2026, 1, 5)


@pytest.fixture
def generator(store, db_session, cache, clock):
    return BillingPeriodGenerator(store, session=db_session, cache=cache, clock=clock)


@pytest.fixture
def billed(store, db_session, generator, client_id):
    """HOA Q1 dues (300000 for 101) and January water (70000 for 101, due 2026-02-10)."""
    readings = MeterReadingService(db_session)
    readings.add_reading(client_id, "101", date(2025, 12, 31), 1000)
    readings.add_reading(client_id, "101", date(2026, 1, 31), 1012, {"carWash": 1})
    generator.generate_period_bills(client_id, "hoa", "2026-Q1")
    generator.generate_period_bills(client_id, "water", "2026-00", due_date="2026-02-10")
    store.set(account_path(client_id, "bank"), {"accountId": "bank", "openingBalance": 0, "balance": 0})
    return client_id


@pytest.fixture
def payments(store, db_session, cache, clock):
    return PaymentService(store, session=db_session, cache=cache, clock=clock)


@pytest.fixture
def coordinator(store, db_session, cache, clock):
    return TransactionReversalCoordinator(store, session=db_session, cache=cache, clock=clock)


def _bill_docs(store, client_id):
    return {
        "hoa": store.get(bill_period_path(client_id, "hoa", "2026-Q1")),
        "water": store.get(bill_period_path(client_id, "water", "2026-00")),
    }


class TestReverseAndDelete:
    """Test TransactionReversalCoordinator.reverse_and_delete."""

    def test_round_trip_restores_bill_documents(self, payments, coordinator, store, billed):
        """Test paying then reversing leaves bill documents exactly as generated."""
        before = _bill_docs(store, billed)
        receipt = payments.record_payment(billed, "101", 200000, payment_date=PAID_ON)

        result = coordinator.reverse_and_delete(billed, receipt.transaction_id)

        assert result.success is True
        assert result.state == ReversalState.DELETED
        assert result.kind == TransactionKind.HOA
        assert result.bills_reversed == 1
        assert result.months_cleared == 3
        assert _bill_docs(store, billed) == before
        assert store.get(transaction_path(billed, receipt.transaction_id)) is None
        assert AccountBalanceService(store).get_balance(billed, "bank") == 0
        assert result.details["balanceRebuild"] == "completed"

    def test_overdue_round_trip_restores_penalty(self, payments, coordinator, store, billed):
        """Test reversing a payment that refreshed an overdue penalty restores the stored penalty."""
        before = _bill_docs(store, billed)
        assert before["hoa"]["units"]["101"]["penaltyAmount"] == 0
        receipt = payments.record_payment(billed, "101", 100000, payment_date=date(2026, 2, 20), domains=("hoa",))
        paid = store.get(bill_period_path(billed, "hoa", "2026-Q1"))["units"]["101"]
        assert paid["penaltyAmount"] == 30750
        assert paid["payments"][0]["penaltyBefore"] == 0

        coordinator.reverse_and_delete(billed, receipt.transaction_id)

        assert _bill_docs(store, billed) == before

    def test_rebuild_keeps_balance_seeded_without_opening(self, payments, coordinator, store, billed):
        """Test an account seeded with only a balance keeps it after reversal."""
        store.set(account_path(billed, "bank"), {"accountId": "bank", "balance": 100000})
        receipt = payments.record_payment(billed, "101", 50000, payment_date=PAID_ON)
        assert AccountBalanceService(store).get_balance(billed, "bank") == 150000

        result = coordinator.reverse_and_delete(billed, receipt.transaction_id)

        assert result.details["accountBalance"] == 100000
        assert result.details["balanceRebuild"] == "completed"
        assert store.get(account_path(billed, "bank")) == {"accountId": "bank", "balance": 100000}

    def test_unified_payment_with_credit_restores_everything(
        self, payments, coordinator, store, billed, clock, db_session
    ):
        """Test a unified overpayment reversal keeps unrelated credit history."""
        before = _bill_docs(store, billed)
        ledger = CreditLedgerService(store, clock)
        ledger.append(billed, "101", 1000, None, "Manual adjustment", "manual")
        receipt = payments.record_payment(
            billed, "101", 375000, payment_date=PAID_ON, use_credit=False, transaction_id="txn-c", user_id="admin"
        )
        assert receipt.distribution.residual_credit == 5000
        assert ledger.get_balance(billed, "101") == 6000

        result = coordinator.reverse_and_delete(billed, "txn-c", user_id="admin")

        assert result.kind == TransactionKind.UNIFIED
        assert result.bills_reversed == 2
        assert result.credit_reversal_amount == -5000
        assert sorted(result.details["billDocuments"]) == ["hoa/2026-Q1", "water/2026-00"]
        assert _bill_docs(store, billed) == before
        history = ledger.get_ledger(billed, "101")["history"]
        assert [(e["amount"], e["transactionId"], e["balanceAfter"]) for e in history] == [(1000, None, 1000)]
        assert ledger.get_balance(billed, "101") == 1000
        assert [entry.action for entry in AuditService.entries_for(db_session, "txn-c")] == [
            "create",
            "delete_with_multi_cleanup",
        ]

    def test_missing_bill_document_is_skipped(self, payments, coordinator, store, billed):
        """Test a deleted bill document is reported while the rest is reversed."""
        hoa_before = _bill_docs(store, billed)["hoa"]
        receipt = payments.record_payment(billed, "101", 350000, payment_date=PAID_ON)
        store.delete(bill_period_path(billed, "water", "2026-00"))

        result = coordinator.reverse_and_delete(billed, receipt.transaction_id)

        assert result.success is True
        assert {
            "type": "bill",
            "reason": "document not found",
            "domain": "water",
            "periodIds": ["2026-00"],
        } in result.skipped
        assert store.get(bill_period_path(billed, "hoa", "2026-Q1")) == hoa_before
        assert store.get(transaction_path(billed, receipt.transaction_id)) is None

    def test_legacy_water_transaction_found_by_scan(self, payments, coordinator, store, billed, db_session):
        """Test a legacy transaction without period targets is found by scanning water bills."""
        water_before = _bill_docs(store, billed)["water"]
        payments.record_payment(
            billed, "101", 70000, payment_date=PAID_ON, domains=("water",), transaction_id="legacy-1"
        )
        txn = store.get(transaction_path(billed, "legacy-1"))
        store.set(
            transaction_path(billed, "legacy-1"),
            {
                "unitId": "101",
                "accountId": txn["accountId"],
                "amount": txn["amount"],
                "date": txn["date"],
                "categoryId": "water_payments",
                "metadata": {"waterBillsPaid": 1},
            },
        )

        result = coordinator.reverse_and_delete(billed, "legacy-1")

        assert result.kind == TransactionKind.WATER
        assert result.details["billDocuments"] == ["water/2026-00"]
        assert store.get(bill_period_path(billed, "water", "2026-00")) == water_before
        assert AuditService.entries_for(db_session, "legacy-1")[-1].action == "delete_with_water_cleanup"

    def test_spent_credit_blocks_reversal(self, payments, coordinator, store, billed, generator, clock):
        """Test credit already spent by a later payment cannot be taken back."""
        first = payments.record_payment(billed, "101", 400000, payment_date=PAID_ON)
        generator.generate_period_bills(billed, "hoa", "2026-Q2")
        second = payments.record_payment(billed, "101", 0, payment_date=PAID_ON, domains=("hoa",))
        assert second.distribution.credit_used == 30000
        docs_before = _bill_docs(store, billed)

        with pytest.raises(InsufficientCreditError) as exc_info:
            coordinator.reverse_and_delete(billed, first.transaction_id)

        assert exc_info.value.details["state"] == ReversalState.REVERSAL_FAILED.value
        assert store.get(transaction_path(billed, first.transaction_id)) is not None
        assert _bill_docs(store, billed) == docs_before
        assert AccountBalanceService(store).get_balance(billed, "bank") == 400000

        coordinator.reverse_and_delete(billed, second.transaction_id)
        result = coordinator.reverse_and_delete(billed, first.transaction_id)
        assert result.success is True
        assert CreditLedgerService(store, clock).get_balance(billed, "101") == 0

    def test_missing_transaction(self, coordinator, billed):
        """Test reversing an unknown transaction fails without side effects."""
        with pytest.raises(NotFoundError) as exc_info:
            coordinator.reverse_and_delete(billed, "txn-missing")

        assert exc_info.value.details["state"] == "REVERSAL_FAILED"

    def test_missing_account_is_skipped(self, payments, coordinator, store, billed):
        """Test a transaction whose account document is gone still reverses its bills."""
        receipt = payments.record_payment(billed, "101", 100000, payment_date=PAID_ON)
        store.delete(account_path(billed, "bank"))
        coordinator.rebuild_balances = False

        result = coordinator.reverse_and_delete(billed, receipt.transaction_id)

        assert {"type": "account", "accountId": "bank", "reason": "document not found"} in result.skipped
        assert result.bills_reversed == 1
