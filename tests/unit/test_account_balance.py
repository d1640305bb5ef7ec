"""Unit tests for account balance rebuilds."""

from hoa_billing.services.account_balance import AccountBalanceService, apply_account_delta
from hoa_billing.services.doc_paths import account_path, transaction_path


class TestApplyAccountDelta:
    def test_missing_account_starts_at_zero(self):
        assert apply_account_delta("bank", None, 2500) == {"accountId": "bank", "balance": 2500}


class TestRebuild:
    """Test AccountBalanceService.rebuild."""

    def test_rebuilds_only_accounts_with_opening_balance(self, store):
        """Test balances are recomputed from transactions only where an opening is recorded."""
        store.set(account_path("AVII", "bank"), {"accountId": "bank", "openingBalance": 1000, "balance": 7})
        store.set(account_path("AVII", "cash"), {"accountId": "cash", "balance": 90000})
        store.set(transaction_path("AVII", "t1"), {"accountId": "bank", "amount": 5000})
        store.set(transaction_path("AVII", "t2"), {"accountId": "cash", "amount": 4000})
        store.set(transaction_path("AVII", "t3"), {"accountId": "petty", "amount": 300})

        rebuilt = AccountBalanceService(store).rebuild("AVII")

        assert rebuilt == {"bank": 6000}
        assert store.get(account_path("AVII", "bank"))["balance"] == 6000
        assert store.get(account_path("AVII", "cash")) == {"accountId": "cash", "balance": 90000}
        assert store.get(account_path("AVII", "petty")) is None
