"""CLI utility to generate the monthly invoices, suitable for cron."""

from __future__ import annotations

import argparse
import logging
from typing import Optional

from ..database import session_scope
from ..services.invoice_runner import InvoiceGenerationError, MonthlyInvoiceRunner

LOGGER = logging.getLogger(__name__)

EXIT_INVALID_PARAMETERS = 2


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate the invoices of a billing month for every eligible client."
    )
    parser.add_argument("--month", required=True, help="Billing month (1-12).")
    parser.add_argument("--year", required=True, help="Billing year (e.g. 2026).")
    parser.add_argument(
        "--client-id",
        default=None,
        help="Restrict the run to a single client.",
    )
    parser.add_argument(
        "--requested-by",
        default="billing-cli",
        help="Name recorded as the creator of the invoices.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log every skipped object and service.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)

    try:
        with session_scope() as db:
            invoices = MonthlyInvoiceRunner().run(
                db,
                args.month,
                args.year,
                args.requested_by,
                args.client_id,
            )
            summary = [(invoice.invoice_number, invoice.total_amount) for invoice in invoices]
    except InvoiceGenerationError as exc:
        LOGGER.error("Invalid parameters: %s", exc)
        return EXIT_INVALID_PARAMETERS

    for number, total in summary:
        LOGGER.debug("Invoice %s total %s", number, total)
    LOGGER.info("Invoice generation finished: %d invoices created", len(summary))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
