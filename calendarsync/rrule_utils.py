"""RRULE parsing, enumeration and building.

Enumeration is delegated to ``dateutil.rrule``; this module validates the
supported subset (FREQ/INTERVAL/UNTIL/COUNT/BYDAY/BYMONTHDAY) and makes rule
strings coming from ICS feeds safe to anchor at an aware UTC start.
"""

import logging
import re
from datetime import date, datetime, time
from typing import Any

from dateutil.rrule import rrule, rrulestr

from .exceptions import RecurrenceRuleError
from .models import RecurrenceFrequency, RRuleOptions
from .timezone_utils import ensure_utc, local_to_utc

logger = logging.getLogger(__name__)

SUPPORTED_FREQUENCIES = frozenset({"DAILY", "WEEKLY", "MONTHLY", "YEARLY"})

_FREQ_MAP = {
    RecurrenceFrequency.DAILY: "DAILY",
    RecurrenceFrequency.WEEKLY: "WEEKLY",
    RecurrenceFrequency.MONTHLY: "MONTHLY",
    RecurrenceFrequency.YEARLY: "YEARLY",
}

_UNTIL_DATE = re.compile(r"^\d{8}$")
_UNTIL_FLOATING = re.compile(r"^\d{8}T\d{6}$")


def format_rrule_datetime(dt: datetime) -> str:
    """Format an instant as an ICS UTC basic datetime (``YYYYMMDDTHHMMSSZ``)."""
    return ensure_utc(dt).strftime("%Y%m%dT%H%M%SZ")


def generate_rrule(options: RRuleOptions) -> str:
    """Build an RRULE value string from structured options.

    ``INTERVAL`` is omitted when 1 and ``UNTIL`` takes precedence over
    ``COUNT`` since the two are mutually exclusive.

    Example:
        >>> generate_rrule(RRuleOptions(frequency="weekly", count=3, by_day=["MO"]))
        'FREQ=WEEKLY;COUNT=3;BYDAY=MO'
    """
    parts = [f"FREQ={_FREQ_MAP[RecurrenceFrequency(options.frequency)]}"]

    if options.interval > 1:
        parts.append(f"INTERVAL={options.interval}")

    if options.until is not None:
        parts.append(f"UNTIL={format_rrule_datetime(options.until)}")
    elif options.count:
        parts.append(f"COUNT={options.count}")

    if options.by_day:
        parts.append(f"BYDAY={','.join(options.by_day)}")

    if options.by_month_day:
        parts.append(f"BYMONTHDAY={','.join(str(day) for day in options.by_month_day)}")

    return ";".join(parts)


def parse_rrule_components(rule_string: str) -> dict[str, Any]:
    """Split an RRULE value into its components.

    Args:
        rule_string: RRULE value, optionally prefixed with ``RRULE:``

    Returns:
        Dictionary keyed by lower-cased component name. ``interval`` and
        ``count`` are ints, ``byday`` is a list of upper-cased day codes.

    Raises:
        RecurrenceRuleError: If the rule is empty, multi-part, lacks FREQ or
            uses a frequency outside the supported subset
    """
    rule = _strip_prefix(rule_string)
    if not rule:
        raise RecurrenceRuleError("Empty RRULE string", rule_string)
    if "\n" in rule or "\r" in rule:
        raise RecurrenceRuleError("Multi-part recurrence rules are not supported", rule_string)

    components: dict[str, Any] = {}
    try:
        for part in rule.split(";"):
            if not part.strip():
                continue
            if "=" not in part:
                raise RecurrenceRuleError(f"Malformed RRULE component {part!r}", rule_string)
            key, value = part.split("=", 1)
            key = key.strip().lower()
            value = value.strip()

            if key == "freq":
                components["freq"] = value.upper()
            elif key in ("interval", "count"):
                components[key] = int(value)
            elif key == "byday":
                components["byday"] = [day.strip().upper() for day in value.split(",")]
            else:
                components[key] = value
    except ValueError as e:
        raise RecurrenceRuleError(f"Invalid RRULE format: {rule_string}", rule_string) from e

    freq = components.get("freq")
    if not freq:
        raise RecurrenceRuleError("RRULE missing required FREQ parameter", rule_string)
    if freq not in SUPPORTED_FREQUENCIES:
        raise RecurrenceRuleError(f"Unsupported RRULE frequency {freq}", rule_string)
    if "until" in components and "count" in components:
        raise RecurrenceRuleError("RRULE cannot combine UNTIL and COUNT", rule_string)

    return components


def parse_rrule(rule_string: str, dtstart: datetime) -> rrule:
    """Parse an RRULE value anchored at ``dtstart``.

    Floating and date-only ``UNTIL`` values are converted to UTC first, since
    dateutil refuses to mix them with an aware start.

    Raises:
        RecurrenceRuleError: If the rule is invalid or unsupported
    """
    parse_rrule_components(rule_string)

    try:
        rule = _normalize_until(_strip_prefix(rule_string))
        parsed = rrulestr(rule, dtstart=ensure_utc(dtstart))
    except (ValueError, TypeError, KeyError, IndexError) as e:
        raise RecurrenceRuleError(f"Failed to parse RRULE {rule_string!r}: {e}", rule_string) from e

    if not isinstance(parsed, rrule):
        raise RecurrenceRuleError(f"RRULE {rule_string!r} did not yield a single rule", rule_string)
    return parsed


def iter_occurrences(
    rule_string: str,
    dtstart: datetime,
    range_start: datetime,
    range_end: datetime,
) -> list[datetime]:
    """Occurrence starts of a rule inside ``[range_start, range_end]`` (inclusive).

    ``COUNT`` and ``UNTIL`` bound the result; the window only clips it.
    """
    parsed = parse_rrule(rule_string, dtstart)
    return [
        ensure_utc(occurrence)
        for occurrence in parsed.between(ensure_utc(range_start), ensure_utc(range_end), inc=True)
    ]


def _strip_prefix(rule_string: str) -> str:
    rule = (rule_string or "").strip()
    if rule.upper().startswith("RRULE:"):
        rule = rule[len("RRULE:"):]
    return rule


def _normalize_until(rule: str) -> str:
    parts = []
    for part in rule.split(";"):
        key, _, value = part.partition("=")
        if key.strip().upper() == "UNTIL":
            value = value.strip()
            if _UNTIL_DATE.match(value):
                # Date-only UNTIL includes the whole local day
                day = date(int(value[:4]), int(value[4:6]), int(value[6:8]))
                until = local_to_utc(datetime.combine(day, time.max.replace(microsecond=0)))
                part = f"UNTIL={format_rrule_datetime(until)}"
            elif _UNTIL_FLOATING.match(value):
                until = local_to_utc(datetime.strptime(value, "%Y%m%dT%H%M%S"))
                part = f"UNTIL={format_rrule_datetime(until)}"
        parts.append(part)
    return ";".join(parts)
