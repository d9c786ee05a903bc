#!/usr/bin/env python3
"""
Historical Metrics Backfill Script

Runs backfill batches in a loop until the whole range is stored, the same
way the scheduler would by following progress.nextOffset.

Usage:
    python scripts/backfill.py PLATFORM [--days 90] [--batch-size 30]
    python scripts/backfill.py PLATFORM --start 2024-01-01 --end 2024-03-31
    python scripts/backfill.py --email-signups [--days 730]

Examples:
    # Last 90 days of Shopify, 30 dates per batch
    python scripts/backfill.py shopify --days 90

    # Every platform for Q1
    python scripts/backfill.py all --start 2024-01-01 --end 2024-03-31

    # Two years of Klaviyo daily signups (for YoY)
    python scripts/backfill.py --email-signups --days 730
"""
import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from metrics_dashboard.config import get_settings
from metrics_dashboard.services.metrics_store import MetricsStore
from metrics_dashboard.services.sync_service import PLATFORMS, SyncService
from metrics_dashboard.utils.helpers import parse_date
from metrics_dashboard.utils.logger import log


async def backfill_metrics(
    platform: str,
    days: int = None,
    start=None,
    end=None,
    batch_size: int = 30,
    offset: int = 0
):
    """
    Backfill one platform (or all) batch by batch.

    Args:
        platform: Platform name or "all"
        days: Days ending today (ignored when start is given)
        start: First date of an explicit range
        end: Last date of an explicit range, today when only start is given
        batch_size: Dates per batch
        offset: Resume from this offset
    """
    settings = get_settings()
    store = MetricsStore()
    store.ensure_schema()
    service = SyncService.from_settings(settings, store)

    errors = 0
    while True:
        result = await service.backfill(
            platform,
            start_date=start,
            end_date=end,
            days=days,
            offset=offset,
            batch_size=batch_size,
        )
        progress = result["progress"]
        batch_errors = [key for key, value in result["synced"].items() if value.get("status") == "error"]
        errors += len(batch_errors)

        print(
            f"  {result['dateRange']['from']} to {result['dateRange']['to']}: "
            f"{progress['processed']}/{progress['total']} dates"
            + (f", {len(batch_errors)} errors" if batch_errors else "")
        )

        if not progress["hasMore"]:
            break
        offset = progress["nextOffset"]

    print(f"\nBackfill complete for {platform}: {progress['total']} dates, {errors} errors")
    return errors


async def backfill_email_signups(days: int = 730, start=None, end=None):
    """Backfill Klaviyo daily signups in one paginated pass"""
    settings = get_settings()
    store = MetricsStore()
    store.ensure_schema()
    service = SyncService.from_settings(settings, store)

    end = end or service.today()
    start = start or end - timedelta(days=days - 1)

    result = await service.backfill_email_signups(start, end)
    print(f"Stored signups for {start} to {end}: {result['total']} total")
    return result


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Backfill historical marketing metrics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "platform", nargs="?", default="all",
        choices=list(PLATFORMS) + ["all"],
        help="Platform to backfill (default: all)"
    )
    parser.add_argument(
        "--days", type=int, default=None,
        help="Days ending today (default: 30, or 730 with --email-signups)"
    )
    parser.add_argument("--start", type=str, default=None, help="First date, YYYY-MM-DD")
    parser.add_argument("--end", type=str, default=None, help="Last date, YYYY-MM-DD")
    parser.add_argument(
        "--batch-size", type=int, default=30,
        help="Dates per batch (default: 30)"
    )
    parser.add_argument(
        "--offset", type=int, default=0,
        help="Resume from this offset (default: 0)"
    )
    parser.add_argument(
        "--email-signups", action="store_true",
        help="Backfill Klaviyo daily signups instead of daily metrics"
    )

    args = parser.parse_args()

    start_date = parse_date(args.start) if args.start else None
    end_date = parse_date(args.end) if args.end else None

    try:
        if args.email_signups:
            asyncio.run(backfill_email_signups(days=args.days or 730, start=start_date, end=end_date))
        else:
            failed = asyncio.run(backfill_metrics(
                args.platform,
                days=args.days,
                start=start_date,
                end=end_date,
                batch_size=args.batch_size,
                offset=args.offset,
            ))
            sys.exit(1 if failed else 0)
    except KeyboardInterrupt:
        log.warning("Backfill interrupted")
        sys.exit(130)
