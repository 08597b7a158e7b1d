"""
Backfill monthly invoices over a range of months.

Usage:
    backfill-monthly-invoices --from=2025-01 --to=2025-03 --force
    backfill-monthly-invoices --from=2025-01 --to=2025-03 --branchId=2 --dryRun --force
    FORCE_MONTHLY_BACKFILL=true backfill-monthly-invoices --from=2025-01 --to=2025-01 --consolidate=false

Each month is generated with the same duplicate protection as a manual run, so
re-running a range only fills the gaps.
"""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from school_billing.core.config import settings
from school_billing.core.exceptions import AppException, ValidationError
from school_billing.core.logging import configure_logging
from school_billing.modules.invoices.periods import months_between
from school_billing.modules.invoices.schemas import InvoiceGenerationResult

logger = logging.getLogger(__name__)

USAGE = (
    "backfill-monthly-invoices --from=YYYY-MM --to=YYYY-MM "
    "[--branchId=ID] [--dryRun] [--consolidate=false] --force"
)

GenerateMonthly = Callable[..., Awaitable[InvoiceGenerationResult]]


async def run_backfill(
    generate: GenerateMonthly,
    from_month: str | None,
    to_month: str | None,
    branch_id: int | None = None,
    initiated_by_id: int | None = None,
    dry_run: bool = False,
    consolidate: bool = True,
) -> list[dict[str, Any]]:
    """
    Call ``generate`` (``generate_monthly_invoices``) once per month, inclusive.

    A dry run lists the months without generating anything. Returns one summary
    dict per month.
    """
    if not from_month or not to_month:
        raise ValidationError("Both 'from' and 'to' months are required (YYYY-MM)", field="from")

    summaries: list[dict[str, Any]] = []
    for year, month in months_between(from_month, to_month):
        label = f"{year}-{month:02d}"
        if dry_run:
            logger.info("[dry run] would generate invoices for %s", label)
            summaries.append(
                {"month": label, "created": 0, "skipped": 0, "dry_run": True}
            )
            continue

        logger.info("Generating invoices for %s", label)
        result = await generate(
            period_year=year,
            period_month=month,
            branch_id=branch_id,
            initiated_by_id=initiated_by_id,
            consolidate=consolidate,
        )
        summaries.append(
            {
                "month": label,
                "created": result.created,
                "skipped": result.skipped,
                "notifications_sent": result.notifications_sent,
            }
        )
    return summaries


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "y"):
        return True
    if lowered in ("0", "false", "no", "n"):
        return False
    raise argparse.ArgumentTypeError(f"expected true/false, got '{value}'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="backfill-monthly-invoices",
        usage=USAGE,
        description="Generate monthly invoices for every month in a range.",
    )
    parser.add_argument("--from", dest="from_month", help="First month, YYYY-MM")
    parser.add_argument("--to", dest="to_month", help="Last month (inclusive), YYYY-MM")
    parser.add_argument("--branchId", "--branch-id", dest="branch_id", type=int, default=None)
    parser.add_argument("--initiatedBy", "--initiated-by", dest="initiated_by_id", type=int, default=None)
    parser.add_argument(
        "--dryRun", "--dry-run", dest="dry_run", action="store_true", help="List months only"
    )
    parser.add_argument(
        "--consolidate",
        type=_parse_bool,
        nargs="?",
        const=True,
        default=True,
        help="One invoice per student per month (default true)",
    )
    parser.add_argument("--force", action="store_true", help="Required to actually run")
    return parser


async def _generate_with_session(**kwargs: Any) -> InvoiceGenerationResult:
    """Run one month in its own session."""
    from school_billing.core.database.session import async_session
    from school_billing.modules.invoices.service import InvoiceGenerationService

    async with async_session() as session:
        service = InvoiceGenerationService(session)
        return await service.generate_monthly_invoices(**kwargs)


def main(argv: Sequence[str] | None = None, generate: GenerateMonthly | None = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    configure_logging()

    if not args.force and not settings.force_monthly_backfill:
        print(
            "Refusing to run without --force (or FORCE_MONTHLY_BACKFILL=true).\n"
            f"Usage: {USAGE}",
            file=sys.stderr,
        )
        return 1
    if not args.from_month or not args.to_month:
        print(f"Usage: {USAGE}", file=sys.stderr)
        return 1

    try:
        summaries = asyncio.run(
            run_backfill(
                generate or _generate_with_session,
                args.from_month,
                args.to_month,
                branch_id=args.branch_id,
                initiated_by_id=args.initiated_by_id,
                dry_run=args.dry_run,
                consolidate=args.consolidate,
            )
        )
    except AppException as e:
        logger.error("Backfill failed: %s", e.message)
        return 1
    except Exception:
        logger.exception("Backfill failed")
        return 1

    print(json.dumps(summaries, indent=2))
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
