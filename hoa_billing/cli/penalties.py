"""CLI entry point for the scheduled penalty recalculation.

Usage:
    python -m hoa_billing.cli.penalties AVII hoa
    python -m hoa_billing.cli.penalties AVII water --as-of 2026-02-15 --rebuild-balances

Exit Codes:
    0 - Success: every bill document was processed
    1 - Failure: configuration error, or some bills could not be processed

Logging:
    LOG_LEVEL level logs to stdout (and LOG_FILE when set)
    Each document is its own atomic write, so a failed run can be re-run
"""

import argparse
import logging
import os
import sys
from datetime import date

from dotenv import load_dotenv
from sqlalchemy.orm import sessionmaker

from hoa_billing.models import Base
from hoa_billing.services.account_balance import AccountBalanceService
from hoa_billing.services.bill_generation import BILL_DOMAINS
from hoa_billing.services.clock import Clock
from hoa_billing.services.config import load_settings
from hoa_billing.services.db import create_db_engine
from hoa_billing.services.document_store import DocumentStore
from hoa_billing.services.errors import BillingError
from hoa_billing.services.logging import setup_server_logging
from hoa_billing.services.penalty_service import PenaltyRecalculationService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Recalculate penalties on unpaid bills")
    parser.add_argument("client_id")
    parser.add_argument("domain", choices=BILL_DOMAINS)
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="YYYY-MM-DD (default: today)")
    parser.add_argument(
        "--rebuild-balances",
        action="store_true",
        help="Also recompute account balances from transactions",
    )
    return parser


def run(argv: list[str] | None = None, store: DocumentStore | None = None) -> int:
    """Run the batch; returns the process exit code."""
    args = build_parser().parse_args(argv)
    settings = load_settings()

    if store is None:
        engine = create_db_engine(settings.database_url)
        Base.metadata.create_all(engine)
        store = DocumentStore(sessionmaker(bind=engine, autoflush=False))

    service = PenaltyRecalculationService(store, clock=Clock(settings.default_timezone))
    try:
        result = service.recalculate(args.client_id, args.domain, args.as_of)
        if args.rebuild_balances:
            AccountBalanceService(store).rebuild(args.client_id)
    except BillingError as e:
        logger.error("Penalty run for %s/%s failed: %s", args.client_id, args.domain, e.message)
        return 1

    for failure in result.failures:
        logger.warning(
            "Not processed: %s unit %s (%s)",
            failure.get("periodId"),
            failure.get("unitId"),
            failure.get("reason"),
        )
    logger.info(
        "Penalty run finished: %d bills updated, delta %d centavos",
        result.bills_updated,
        result.total_penalty_delta,
    )
    return 1 if result.failures else 0


def main() -> int:
    load_dotenv()
    setup_server_logging(os.getenv("LOG_FILE") or None)
    return run()


if __name__ == "__main__":
    sys.exit(main())
