"""Sync reconciler: makes a calendar's persisted events mirror its feed."""

import asyncio
import logging
from collections.abc import Iterable
from typing import Optional

from .event_store import EventStore
from .fetcher import ICSFetcher
from .ics_parser import ICSParser
from .models import EventData, RawEvent, SyncResult
from .timezone_utils import now_utc

logger = logging.getLogger(__name__)


def collapse_duplicate_uids(raw_events: Iterable[RawEvent]) -> list[RawEvent]:
    """Reduce the feed to one record per UID.

    RECURRENCE-ID children share their master's UID; the record carrying the
    RRULE wins, otherwise the first one seen. Feed order is otherwise kept.
    """
    chosen: dict[str, RawEvent] = {}
    duplicates = 0
    for raw in raw_events:
        current = chosen.get(raw.uid)
        if current is None:
            chosen[raw.uid] = raw
            continue
        duplicates += 1
        if raw.rrule and not current.rrule:
            chosen[raw.uid] = raw

    if duplicates:
        logger.debug("Collapsed %d feed entries sharing a UID", duplicates)
    return list(chosen.values())


class CalendarSyncService:
    """Fetches, parses and reconciles calendar feeds into an event store.

    The service is the only writer of events. At most one reconciliation per
    calendar runs at a time; different calendars proceed in parallel.
    """

    def __init__(
        self,
        store: EventStore,
        fetcher: ICSFetcher,
        parser: Optional[ICSParser] = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.parser = parser or ICSParser()
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, calendar_id: str) -> asyncio.Lock:
        lock = self._locks.get(calendar_id)
        if lock is None:
            lock = self._locks[calendar_id] = asyncio.Lock()
        return lock

    async def sync_calendar(self, calendar_id: str, source_url: str) -> SyncResult:
        """Fetch ``source_url`` and reconcile ``calendar_id`` against it.

        Args:
            calendar_id: Local calendar whose events are replaced
            source_url: http(s) or webcal URL of the ICS feed

        Returns:
            Counts of inserted, updated, unchanged, deleted and skipped events

        Raises:
            FetchError: Source unreachable or answered non-2xx. Nothing is
                written in that case.
            EventStoreError: Persisting the result failed. The store is left
                as it was before the sync.
        """
        async with self._lock_for(calendar_id):
            response = await self.fetcher.fetch(source_url)
            if response.not_modified:
                unchanged = len(await self.store.list_by_calendar(calendar_id))
                result = SyncResult(calendar_id=calendar_id, unchanged=unchanged)
                await self.store.mark_synced(calendar_id, result.synced_at)
                logger.info("Calendar %s not modified since last sync", calendar_id)
                return result

            report = self.parser.parse_with_report(response.content)
            if not report.success:
                unchanged = len(await self.store.list_by_calendar(calendar_id))
                logger.warning(
                    "Calendar %s feed could not be parsed, keeping stored events: %s",
                    calendar_id,
                    report.error_message,
                )
                return SyncResult(calendar_id=calendar_id, unchanged=unchanged)

            return await self._reconcile_locked(calendar_id, report.events, report.skipped_count)

    async def reconcile(
        self, calendar_id: str, raw_events: Iterable[RawEvent], skipped: int = 0
    ) -> SyncResult:
        """Reconcile already-parsed feed events into the store."""
        async with self._lock_for(calendar_id):
            return await self._reconcile_locked(calendar_id, raw_events, skipped)

    async def _reconcile_locked(
        self, calendar_id: str, raw_events: Iterable[RawEvent], skipped: int
    ) -> SyncResult:
        feed = collapse_duplicate_uids(raw_events)
        existing = {event.external_id: event for event in await self.store.list_by_calendar(calendar_id)}
        result = SyncResult(calendar_id=calendar_id, skipped=skipped)

        upserts: list[EventData] = []
        for raw in feed:
            data = EventData.from_raw_event(raw)
            current = existing.get(data.external_id)
            if current is not None and not data.differs_from(current):
                result.unchanged += 1
                continue

            upserts.append(data)
            if current is None:
                result.inserted += 1
            else:
                result.updated += 1

        result.synced_at = now_utc()
        result.deleted = await self.store.apply_snapshot(
            calendar_id, upserts, [raw.uid for raw in feed], result.synced_at
        )

        logger.info(
            "Synced calendar %s: %d inserted, %d updated, %d unchanged, %d deleted, %d skipped",
            calendar_id,
            result.inserted,
            result.updated,
            result.unchanged,
            result.deleted,
            result.skipped,
        )
        return result
