"""calendarsync - ICS feed sync and recurrence expansion.

Fetches ICS feeds, reconciles them into a persisted event store and expands
recurring events into concrete occurrences for a time window.
"""

__version__ = "0.1.0"

from .exceptions import (
    CalendarSyncError,
    EventStoreError,
    FetchError,
    InvalidRangeError,
    MalformedEventError,
    RecurrenceRuleError,
)
from .expander import RecurrenceExpander, expand_recurring_events
from .ics_parser import ICSParser, parse_ics
from .models import CalendarEvent, EventStatus, RawEvent, RRuleOptions, SyncResult
from .rrule_utils import generate_rrule, parse_rrule_components

__all__ = [
    "CalendarEvent",
    "CalendarSyncError",
    "EventStatus",
    "EventStoreError",
    "FetchError",
    "ICSParser",
    "InvalidRangeError",
    "MalformedEventError",
    "RRuleOptions",
    "RawEvent",
    "RecurrenceExpander",
    "RecurrenceRuleError",
    "SyncResult",
    "__version__",
    "expand_recurring_events",
    "generate_rrule",
    "parse_ics",
    "parse_rrule_components",
]
