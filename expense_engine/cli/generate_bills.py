"""CLI entry point for recurring bill generation.

Meant to be run by an external scheduler (cron, systemd timer). Every
active template due on or before ``--now`` gets exactly one bill; running
the command again for the same date generates nothing new.

Usage:
    python -m expense_engine.cli.generate_bills
    python -m expense_engine.cli.generate_bills --now 2024-04-30T06:00:00

Exit Codes:
    0 - Success: every due template generated (or was already generated)
    1 - Failure: at least one template failed; it keeps its due date and is
        retried on the next run

Logging:
    Level and file come from LOG_LEVEL and LOG_FILE (environment or .env)
"""

import argparse
import sys
from datetime import datetime, timezone
from typing import Optional, Sequence

from expense_engine.config import get_settings
from expense_engine.services.db import get_session_factory
from expense_engine.services.logging import setup_logging
from expense_engine.services.recurring_bill_service import RecurringBillService


def parse_now(value: str) -> datetime:
    """Parse an ISO 8601 timestamp or date; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid ISO 8601 timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="expense-engine-generate",
        description="Generate bills for recurring templates that are due.",
    )
    parser.add_argument(
        "--now",
        type=parse_now,
        default=None,
        help="Reference time (ISO 8601); defaults to the current UTC time",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point for the generation CLI.

    Returns:
        Exit code: 0 for success, 1 for failure
    """
    args = build_parser().parse_args(argv)
    now = args.now or datetime.now(timezone.utc)

    settings = get_settings()
    logger = setup_logging(settings.log_file, settings.log_level)
    logger.info("Starting recurring bill generation for %s", now.isoformat())

    try:
        db = get_session_factory()()
        try:
            report = RecurringBillService(db).generate_due_bills_report(now)
        finally:
            db.close()
    except KeyboardInterrupt:
        logger.warning("Generation interrupted by user")
        return 1
    except Exception as e:
        logger.error("Generation failed: %s", e, exc_info=True)
        return 1

    for template_id, message in report.failed.items():
        logger.error("Template %d failed: %s", template_id, message)
    logger.info(
        "Generated %d bill(s), skipped %d, failed %d",
        len(report.generated),
        len(report.skipped),
        len(report.failed),
    )
    return 0 if report.success else 1


def run() -> None:
    """Console script wrapper."""
    sys.exit(main())


if __name__ == "__main__":
    run()
