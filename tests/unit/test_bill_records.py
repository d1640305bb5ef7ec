"""Unit tests for bill and payment record types."""

from hoa_billing.services.bill_records import (
    STATUS_PAID,
    STATUS_PARTIAL,
    STATUS_UNPAID,
    BillPeriodDocument,
    PaymentRecord,
    UnitBill,
    compute_status,
)


def _payment(txn_id, base, penalty=0):
    return PaymentRecord(
        transaction_id=txn_id,
        amount=base + penalty,
        base_charge_paid=base,
        penalty_paid=penalty,
        date="2026-01-20",
    )


class TestComputeStatus:
    """Test status derivation."""

    def test_statuses(self):
        """Test unpaid, partial and paid boundaries."""
        assert compute_status(1000, 200, 0, 0) == STATUS_UNPAID
        assert compute_status(1000, 200, 500, 0) == STATUS_PARTIAL
        assert compute_status(1000, 200, 1000, 200) == STATUS_PAID
        assert compute_status(1000, 0, 1000, 0) == STATUS_PAID


class TestUnitBill:
    """Test UnitBill invariants."""

    def test_paid_totals_follow_payments(self):
        """Test basePaid and penaltyPaid always equal the sums over payments."""
        bill = UnitBill(unit_id="101", base_charge=1000, penalty_amount=200)

        bill.add_payment(_payment("txn-1", 300, 200))
        bill.add_payment(_payment("txn-2", 700))

        assert bill.base_paid == sum(p.base_charge_paid for p in bill.payments) == 1000
        assert bill.penalty_paid == sum(p.penalty_paid for p in bill.payments) == 200
        assert bill.status == STATUS_PAID
        assert bill.remaining == 0

    def test_remove_payments_by_transaction(self):
        """Test removing one transaction's records re-derives totals and status."""
        bill = UnitBill(unit_id="101", base_charge=1000)
        bill.add_payment(_payment("txn-1", 400))
        bill.add_payment(_payment("txn-2", 600))

        removed = bill.remove_payments("txn-2")

        assert [p.transaction_id for p in removed] == ["txn-2"]
        assert bill.base_paid == 400
        assert bill.status == STATUS_PARTIAL
        assert bill.paid_by("txn-1")
        assert not bill.paid_by("txn-2")

    def test_removing_last_payment_restores_prior_penalty(self):
        """Test the penalty refreshed for a payment goes back when that payment is removed."""
        bill = UnitBill(unit_id="101", base_charge=1000, penalty_amount=50)
        bill.penalty_amount = 80
        bill.add_payment(
            PaymentRecord("txn-1", 300, 220, 80, "2026-02-20", penalty_before=50)
        )

        bill.remove_payments("txn-1")

        assert bill.penalty_amount == 50
        assert (bill.base_paid, bill.penalty_paid, bill.status) == (0, 0, STATUS_UNPAID)

    def test_penalty_kept_while_other_payments_remain(self):
        """Test the refreshed penalty stays when an earlier payment still stands."""
        bill = UnitBill(unit_id="101", base_charge=1000, penalty_amount=80)
        bill.add_payment(PaymentRecord("txn-1", 100, 20, 80, "2026-02-20", penalty_before=0))
        bill.add_payment(PaymentRecord("txn-2", 200, 200, 0, "2026-03-01", penalty_before=80))

        bill.remove_payments("txn-2")

        assert bill.penalty_amount == 80
        assert bill.base_paid == 20

    def test_penalty_before_stored_only_when_known(self):
        """Test penaltyBefore is written when set and older records parse without it."""
        record = PaymentRecord("txn-1", 300, 300, 0, "2026-01-20", penalty_before=1500)

        assert record.to_document()["penaltyBefore"] == 1500
        assert PaymentRecord.from_document(record.to_document()) == record
        assert "penaltyBefore" not in _payment("txn-2", 100).to_document()
        assert PaymentRecord.from_document({"transactionId": "t", "amount": 100}).penalty_before is None

    def test_remove_unknown_transaction_is_noop(self):
        """Test removing a transaction with no records changes nothing."""
        bill = UnitBill(unit_id="101", base_charge=1000)
        bill.add_payment(_payment("txn-1", 400))

        assert bill.remove_payments("txn-9") == []
        assert bill.base_paid == 400

    def test_document_round_trip(self):
        """Test to_document/from_document preserve the stored shape."""
        bill = UnitBill(
            unit_id="101",
            base_charge=300000,
            due_date="2026-01-01",
            penalty_start_date="2026-01-11",
            details={"duesAmount": 100000, "months": 3},
        )
        bill.add_payment(_payment("txn-1", 1000))
        stored = bill.to_document()

        assert UnitBill.from_document("101", stored).to_document() == stored

    def test_legacy_fields(self):
        """Test currentCharge and paidAmount without payment records."""
        bill = UnitBill.from_document(
            "101",
            {"currentCharge": 90000.0, "paidAmount": 30000, "penaltyAmount": 0},
        )

        assert bill.base_charge == 90000
        assert bill.base_paid == 30000
        assert len(bill.payments) == 1
        assert bill.payments[0].transaction_id is None
        assert bill.status == STATUS_PARTIAL

    def test_legacy_reference_and_indexed_payments(self):
        """Test payments stored as an index-keyed dict with a reference field."""
        bill = UnitBill.from_document(
            "101",
            {
                "baseCharge": 1000,
                "basePaid": 1000,
                "payments": {"1": {"reference": "txn-b", "amount": 600}, "0": {"reference": "txn-a", "amount": 400}},
            },
        )

        assert [p.transaction_id for p in bill.payments] == ["txn-a", "txn-b"]
        assert bill.base_paid == 1000
        assert bill.status == STATUS_PAID


class TestBillPeriodDocument:
    """Test bill period documents."""

    def test_legacy_nested_units_and_header_due_date(self):
        """Test units under bills.units inherit the header due date."""
        period = BillPeriodDocument.from_document(
            {
                "billId": "2026-00",
                "dueDate": "2026-02-10",
                "bills": {"units": {"101": {"currentCharge": 70000}}},
            }
        )

        assert period.period_id == "2026-00"
        assert period.units["101"].due_date == "2026-02-10"
        assert not period.has_payments()

    def test_has_payments(self):
        """Test any unit with a payment marks the period as paid into."""
        period = BillPeriodDocument(
            period_id="2026-Q1",
            domain="hoa",
            units={"101": UnitBill(unit_id="101", base_charge=1000), "102": UnitBill(unit_id="102", base_charge=1000)},
        )
        period.units["102"].add_payment(_payment("txn-1", 10))

        assert period.has_payments()
