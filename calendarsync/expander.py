"""Recurrence expansion for persisted calendar events.

Turns the stored event set of a calendar (standalone events, recurring
masters and override instances) into the concrete occurrences that fall in a
query window. Expansion is pure: inputs are never mutated and nothing is
persisted.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime

from .exceptions import InvalidRangeError, RecurrenceRuleError
from .models import CalendarEvent
from .rrule_utils import iter_occurrences
from .timezone_utils import ensure_utc, epoch_millis, is_same_local_day, to_iso_z

logger = logging.getLogger(__name__)

DedupKey = tuple[str, str, int]


def normalize_title(title: str) -> str:
    """Collapse whitespace and case-fold a title for duplicate detection."""
    return " ".join(title.split()).casefold()


def dedup_key(event: CalendarEvent) -> DedupKey:
    """``(calendar_id, normalized title, start epoch millis)``."""
    return (event.calendar_id, normalize_title(event.title), epoch_millis(event.start_time))


class RecurrenceExpander:
    """Expands recurring masters into occurrences and merges overrides.

    Matching an override to the occurrence it replaces is done at calendar
    day granularity: an occurrence is accounted for when an instance of the
    same master has its ``original_start_time`` or its own ``start_time`` on
    the same local day. This tolerates overrides whose time of day moved.
    """

    def expand(
        self,
        events: Sequence[CalendarEvent],
        range_start: datetime,
        range_end: datetime,
    ) -> list[CalendarEvent]:
        """Expand ``events`` into the occurrences overlapping ``[range_start, range_end]``.

        Args:
            events: Every persisted event of the calendar(s) being queried
            range_start: Window start (naive values are taken as UTC)
            range_end: Window end, inclusive

        Returns:
            Deduplicated occurrences sorted by start time. Synthesized
            occurrences have ``is_recurrence_instance`` set.

        Raises:
            InvalidRangeError: If ``range_end`` precedes ``range_start``
        """
        range_start = ensure_utc(range_start)
        range_end = ensure_utc(range_end)
        if range_end < range_start:
            raise InvalidRangeError(
                f"range_end {range_end.isoformat()} precedes range_start {range_start.isoformat()}"
            )

        instances_by_master = self._index_instances(events)
        result: list[CalendarEvent] = []

        for event in events:
            if not event.is_master:
                # Standalone events and override instances carry concrete bounds
                if event.overlaps(range_start, range_end):
                    result.append(event)
                continue

            result.extend(
                self._expand_master(
                    event,
                    instances_by_master.get(event.external_id, []),
                    range_start,
                    range_end,
                )
            )

        deduplicated = self.deduplicate(result)
        deduplicated.sort(key=lambda e: e.start_time)

        logger.debug(
            "Expanded %d events into %d occurrences for %s..%s",
            len(events),
            len(deduplicated),
            range_start.isoformat(),
            range_end.isoformat(),
        )
        return deduplicated

    def _index_instances(
        self, events: Iterable[CalendarEvent]
    ) -> dict[str, list[CalendarEvent]]:
        """Group override instances by the external_id of their master."""
        instances_by_master: dict[str, list[CalendarEvent]] = defaultdict(list)
        for event in events:
            if event.recurring_event_id:
                instances_by_master[event.recurring_event_id].append(event)
        return instances_by_master

    def _expand_master(
        self,
        master: CalendarEvent,
        instances: list[CalendarEvent],
        range_start: datetime,
        range_end: datetime,
    ) -> list[CalendarEvent]:
        """Synthesize the occurrences of one master not already covered by an instance."""
        try:
            occurrences = iter_occurrences(
                master.recurrence_rule or "", master.start_time, range_start, range_end
            )
        except RecurrenceRuleError as e:
            logger.warning(
                "Invalid RRULE on event %s (%r), treating as single event: %s",
                master.id,
                master.recurrence_rule,
                e,
            )
            return [master] if master.overlaps(range_start, range_end) else []

        expanded = []
        suppressed = 0
        for occurrence in occurrences:
            if self._is_accounted_for(occurrence, instances):
                suppressed += 1
                continue
            expanded.append(self._synthesize_occurrence(master, occurrence))

        if suppressed:
            logger.debug(
                "Suppressed %d occurrences of %s replaced by stored instances",
                suppressed,
                master.external_id,
            )
        return expanded

    def _is_accounted_for(self, occurrence: datetime, instances: list[CalendarEvent]) -> bool:
        return any(
            (instance.original_start_time is not None
             and is_same_local_day(instance.original_start_time, occurrence))
            or is_same_local_day(instance.start_time, occurrence)
            for instance in instances
        )

    def _synthesize_occurrence(self, master: CalendarEvent, occurrence: datetime) -> CalendarEvent:
        return master.model_copy(
            update={
                "id": f"{master.id}_{to_iso_z(occurrence)}",
                "start_time": occurrence,
                "end_time": occurrence + master.duration,
                "is_recurrence_instance": True,
                "original_event_id": master.id,
            }
        )

    def deduplicate(self, events: Iterable[CalendarEvent]) -> list[CalendarEvent]:
        """Keep the first event per ``(calendar_id, normalized title, start)``.

        Guards against duplicate rows left behind by overlapping sync runs.
        """
        seen: set[DedupKey] = set()
        deduplicated = []
        dropped = 0
        for event in events:
            key = dedup_key(event)
            if key in seen:
                dropped += 1
                continue
            seen.add(key)
            deduplicated.append(event)

        if dropped:
            logger.debug("Removed %d duplicate occurrences", dropped)
        return deduplicated


def expand_recurring_events(
    events: Sequence[CalendarEvent],
    range_start: datetime,
    range_end: datetime,
) -> list[CalendarEvent]:
    """Expand events for a window; see RecurrenceExpander.expand."""
    return RecurrenceExpander().expand(events, range_start, range_end)
