"""Integration tests for recording unified payments."""

from datetime import date

import pytest

from hoa_billing.services.account_balance import AccountBalanceService
from hoa_billing.services.audit_service import AuditService
from hoa_billing.services.bill_generation import BillingPeriodGenerator
from hoa_billing.services.credit_ledger import CreditLedgerService
from hoa_billing.services.doc_paths import account_path, bill_period_path, transaction_path
from hoa_billing.services.errors import InsufficientCreditError, ValidationError
from hoa_billing.services.payment_service import PaymentService
from hoa_billing.services.reading_service import MeterReadingService


@pytest.fixture
def billed(store, db_session, cache, clock, client_id):
    """HOA Q1 dues plus January water (due 2026-02-10) for units 101 and 102."""
    readings = MeterReadingService(db_session)
    readings.add_reading(client_id, "101", date(2025, 12, 31), 1000)
    readings.add_reading(client_id, "101", date(2026, 1, 31), 1012, {"carWash": 1})
    generator = BillingPeriodGenerator(store, session=db_session, cache=cache, clock=clock)
    generator.generate_period_bills(client_id, "hoa", "2026-Q1")
    generator.generate_period_bills(client_id, "water", "2026-00", due_date="2026-02-10")
    store.set(account_path(client_id, "bank"), {"accountId": "bank", "openingBalance": 0, "balance": 0})
    return client_id


@pytest.fixture
def payments(store, db_session, cache, clock):
    return PaymentService(store, session=db_session, cache=cache, clock=clock)


class TestRecordPayment:
    """Test PaymentService.record_payment."""

    def test_unified_payment_refreshes_penalty_and_pays_oldest_first(self, payments, store, billed, db_session):
        """Test HOA (with its refreshed penalty) is paid before the later water bill."""
        receipt = payments.record_payment(
            billed, "101", 370000, payment_date=date(2026, 1, 20), transaction_id="txn-1", user_id="admin"
        )

        hoa = store.get(bill_period_path(billed, "hoa", "2026-Q1"))["units"]["101"]
        assert hoa["penaltyAmount"] == 15000
        assert (hoa["penaltyPaid"], hoa["basePaid"], hoa["status"]) == (15000, 300000, "paid")
        assert hoa["payments"] == [
            {
                "transactionId": "txn-1",
                "amount": 315000,
                "baseChargePaid": 300000,
                "penaltyPaid": 15000,
                "date": "2026-01-20",
                "penaltyBefore": 0,
            }
        ]

        water = store.get(bill_period_path(billed, "water", "2026-00"))["units"]["101"]
        assert (water["basePaid"], water["status"]) == (55000, "partial")

        txn = store.get(transaction_path(billed, "txn-1"))
        assert txn["category"] == "unified-payment"
        assert txn["amount"] == 370000
        assert [a["type"] for a in txn["allocations"]] == ["hoa-penalty", "hoa-base", "water-base"]
        assert sum(a["amount"] for a in txn["allocations"]) == 370000
        assert txn["metadata"]["createdBy"] == "admin"

        assert receipt.new_credit_balance == 0
        assert receipt.bills_updated == ["hoa/2026-Q1", "water/2026-00"]
        assert AccountBalanceService(store).get_balance(billed, "bank") == 370000

        [audit] = AuditService.entries_for(db_session, "txn-1")
        assert audit.action == "create"
        assert audit.user_id == "admin"

    def test_overpayment_becomes_credit(self, payments, store, billed, clock):
        """Test cash left after every bill is added to the unit's credit."""
        receipt = payments.record_payment(billed, "101", 400000, payment_date=date(2026, 1, 5))

        assert receipt.distribution.residual_credit == 30000
        assert receipt.previous_credit_balance == 0
        assert receipt.new_credit_balance == 30000
        ledger = CreditLedgerService(store, clock).get_ledger(billed, "101")
        assert [(e["amount"], e["transactionId"]) for e in ledger["history"]] == [
            (30000, receipt.transaction_id)
        ]
        assert receipt.transaction_id.startswith("txn_20260105_")

    def test_existing_credit_settles_remaining_bills(self, payments, store, billed, clock):
        """Test credit is spent after the cash and recorded as a negative entry."""
        CreditLedgerService(store, clock).append(billed, "101", 50000, None, "Prepayment", "manual")

        receipt = payments.record_payment(billed, "101", 340000, payment_date=date(2026, 1, 5))

        assert receipt.distribution.credit_used == 30000
        assert receipt.new_credit_balance == 20000
        water = store.get(bill_period_path(billed, "water", "2026-00"))["units"]["101"]
        assert water["status"] == "paid"

    def test_credit_only_payment(self, payments, store, billed, clock):
        """Test a zero amount applies existing credit."""
        CreditLedgerService(store, clock).append(billed, "101", 100000, None, "Prepayment", "manual")

        receipt = payments.record_payment(billed, "101", 0, payment_date=date(2026, 1, 5), domains=("hoa",))

        assert receipt.distribution.credit_used == 100000
        assert store.get(transaction_path(billed, receipt.transaction_id))["category"] == "hoa-dues"

    def test_zero_payment_without_credit_rejected(self, payments, store, billed):
        """Test a zero payment that applies nothing writes nothing."""
        with pytest.raises(ValidationError, match="Nothing to apply"):
            payments.record_payment(billed, "101", 0, transaction_id="txn-zero")
        assert store.get(transaction_path(billed, "txn-zero")) is None

    def test_fractional_amount_rejected(self, payments, billed):
        with pytest.raises(ValidationError):
            payments.record_payment(billed, "101", 1000.5)

    def test_duplicate_transaction_id_rejected(self, payments, store, billed):
        """Test a transaction id can only be used once."""
        payments.record_payment(billed, "101", 1000, payment_date=date(2026, 1, 5), transaction_id="txn-dup")

        with pytest.raises(ValidationError, match="already exists"):
            payments.record_payment(billed, "101", 1000, payment_date=date(2026, 1, 5), transaction_id="txn-dup")
        assert AccountBalanceService(store).get_balance(billed, "bank") == 1000

    def test_negative_credit_never_written(self, store, billed, clock):
        """Test credit consumption beyond the balance is refused."""
        with pytest.raises(InsufficientCreditError):
            CreditLedgerService(store, clock).append(billed, "101", -1, None, "Overdraw", "manual")

    def test_preview_writes_nothing(self, payments, store, billed):
        """Test previews return the distribution without touching documents."""
        hoa_version = store.version(bill_period_path(billed, "hoa", "2026-Q1"))

        distribution = payments.preview_payment(billed, "101", 370000, payment_date=date(2026, 1, 20))

        assert distribution.total_applied == 370000
        assert distribution.bill_payments[0].penalty_paid == 15000
        assert store.version(bill_period_path(billed, "hoa", "2026-Q1")) == hoa_version
        assert store.get(bill_period_path(billed, "hoa", "2026-Q1"))["units"]["101"]["penaltyAmount"] == 0
        assert AccountBalanceService(store).get_balance(billed, "bank") == 0
