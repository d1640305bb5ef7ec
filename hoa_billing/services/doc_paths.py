"""Document path builders for the per-client document hierarchy."""


def client_root(client_id: str) -> str:
    return f"clients/{client_id}"


def billing_config_path(client_id: str) -> str:
    return f"clients/{client_id}/config/billing"


def units_collection(client_id: str) -> str:
    return f"clients/{client_id}/units"


def unit_path(client_id: str, unit_id: str) -> str:
    return f"clients/{client_id}/units/{unit_id}"


def bills_collection(client_id: str, domain: str) -> str:
    return f"clients/{client_id}/bills/{domain}"


def bill_period_path(client_id: str, domain: str, period_id: str) -> str:
    return f"clients/{client_id}/bills/{domain}/{period_id}"


def credit_ledger_path(client_id: str, unit_id: str) -> str:
    return f"clients/{client_id}/creditBalances/{unit_id}"


def transactions_collection(client_id: str) -> str:
    return f"clients/{client_id}/transactions"


def transaction_path(client_id: str, transaction_id: str) -> str:
    return f"clients/{client_id}/transactions/{transaction_id}"


def accounts_collection(client_id: str) -> str:
    return f"clients/{client_id}/accounts"


def account_path(client_id: str, account_id: str) -> str:
    return f"clients/{client_id}/accounts/{account_id}"
