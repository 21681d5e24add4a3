"""Command-line entry for calendarsync.

Both commands work against the SQLite store named by CALSYNC_DATABASE_PATH.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta
from typing import Optional

from . import __version__
from .config_manager import ConfigManager, SyncSettings
from .exceptions import CalendarSyncError
from .expander import expand_recurring_events
from .fetcher import ICSFetcher
from .logging_config import configure_logging
from .reconciler import CalendarSyncService
from .sqlite_store import SQLiteEventStore
from .timezone_utils import ensure_utc, now_utc, to_iso_z

logger = logging.getLogger(__name__)


def _iso_datetime(value: str) -> datetime:
    try:
        return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 datetime: {value!r}") from e


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the calendarsync CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="calendarsync",
        description="Sync ICS feeds into a local store and expand recurring events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m calendarsync sync --calendar-id work --url https://example.com/work.ics
  python -m calendarsync expand --calendar-id work --start 2024-01-01T00:00:00Z --end 2024-01-31T00:00:00Z
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Fetch a feed and reconcile it into the store")
    sync_parser.add_argument("--calendar-id", required=True, help="Local calendar ID")
    sync_parser.add_argument("--url", required=True, help="http(s) or webcal URL of the ICS feed")

    expand_parser = subparsers.add_parser("expand", help="List occurrences in a time window")
    expand_parser.add_argument("--calendar-id", required=True, help="Local calendar ID")
    expand_parser.add_argument(
        "--start", type=_iso_datetime, help="Window start (ISO-8601, default: now)"
    )
    expand_parser.add_argument(
        "--end",
        type=_iso_datetime,
        help="Window end (ISO-8601, default: start + CALSYNC_DEFAULT_WINDOW_DAYS)",
    )
    expand_parser.add_argument("--json", action="store_true", help="Print occurrences as JSON")

    return parser


async def _run_sync(settings: SyncSettings, calendar_id: str, url: str) -> int:
    store = SQLiteEventStore(settings.database_path)
    async with ICSFetcher(settings) as fetcher:
        result = await CalendarSyncService(store, fetcher).sync_calendar(calendar_id, url)

    print(
        f"{calendar_id}: {result.inserted} inserted, {result.updated} updated, "
        f"{result.unchanged} unchanged, {result.deleted} deleted, {result.skipped} skipped"
    )
    return 0


async def _run_expand(
    settings: SyncSettings,
    calendar_id: str,
    start: Optional[datetime],
    end: Optional[datetime],
    as_json: bool,
) -> int:
    range_start = start or now_utc()
    range_end = end or range_start + timedelta(days=settings.default_window_days)

    store = SQLiteEventStore(settings.database_path)
    events = await store.list_by_calendar(calendar_id)
    occurrences = expand_recurring_events(events, range_start, range_end)

    if as_json:
        print(json.dumps([occurrence.model_dump(mode="json") for occurrence in occurrences], indent=2))
    else:
        for occurrence in occurrences:
            print(f"{to_iso_z(occurrence.start_time)}  {to_iso_z(occurrence.end_time)}  {occurrence.title}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Run the calendarsync CLI.

    Returns:
        Process exit code: 0 on success, 1 on a calendarsync error
    """
    args = _create_parser().parse_args(argv)

    settings = ConfigManager().load_settings()
    configure_logging(debug_mode=args.debug, level_name=settings.log_level)

    try:
        if args.command == "sync":
            return asyncio.run(_run_sync(settings, args.calendar_id, args.url))
        return asyncio.run(
            _run_expand(settings, args.calendar_id, args.start, args.end, args.json)
        )
    except CalendarSyncError as e:
        logger.error("%s failed: %s", args.command, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
