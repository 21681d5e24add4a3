"""Exception hierarchy for calendarsync.

Fetch failures abort a sync before anything is written. Per-event parse
failures and bad recurrence rules are contained by the component that
detects them and never reach the caller.
"""

from typing import Optional


class CalendarSyncError(Exception):
    """Base exception for all calendarsync errors."""


class FetchError(CalendarSyncError):
    """Fetching a calendar source failed (network or HTTP status).

    Raised when:
    - The source host cannot be reached after all retries
    - The source answers with a non-success HTTP status
    - The response body is empty

    Aborts the sync; the previously persisted snapshot stays untouched.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class FetchAuthError(FetchError):
    """Source rejected the request (HTTP 401/403)."""


class FetchNetworkError(FetchError):
    """Connection-level failure talking to the source."""


class FetchTimeoutError(FetchError):
    """Source did not answer within the configured timeout."""


class InvalidSourceURLError(FetchError):
    """Source URL is not an http(s) URL with a hostname."""


class MalformedEventError(CalendarSyncError):
    """A single VEVENT could not be turned into an event record.

    The parser logs and drops the event; the rest of the feed is kept.
    """

    def __init__(self, message: str, uid: Optional[str] = None):
        super().__init__(message)
        self.uid = uid


class RecurrenceRuleError(CalendarSyncError):
    """A recurrence rule string is invalid or unsupported.

    The expander treats the owning master as a single non-recurring event.
    """

    def __init__(self, message: str, rule: Optional[str] = None):
        super().__init__(message)
        self.rule = rule


class InvalidRangeError(CalendarSyncError, ValueError):
    """Query window is structurally invalid (end before start)."""


class EventStoreError(CalendarSyncError):
    """Persisted event store failed to read or write."""
