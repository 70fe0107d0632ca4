"""
Timestamp helpers shared by the activity parser and the repositories.

Two conventions live here:
  - Provider ``createdAt`` strings look like ``2025-01-15 14:03:27.123456+0000``
    (fraction optional, offset as ``±HH``, ``±HHMM``, ``±HH:MM`` or ``Z``).
  - Everything written to SQLite is canonical UTC ISO-8601 with microseconds,
    so ``event_time`` compares equal in the natural key whenever the instants
    are equal, whatever offset the provider used.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from pure_ingest.errors import EventTimeParseError

_EVENT_TIME_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<offset>Z|[+-]\d{2}(?::?\d{2})?)$"
)


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def parse_event_time(value: str) -> datetime:
    """Parse a provider ``createdAt`` string into an aware UTC datetime.

    Fractions longer than six digits are truncated to microseconds. The
    offset is mandatory.

    Raises:
        EventTimeParseError: If ``value`` does not match the format or names
            an impossible date/time/offset.
    """
    match = _EVENT_TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise EventTimeParseError(str(value), "expected 'YYYY-MM-DD HH:MM:SS[.f]±HHMM'")

    try:
        base = datetime.strptime(match["base"], "%Y-%m-%d %H:%M:%S")
    except ValueError as exc:
        raise EventTimeParseError(value, str(exc)) from exc

    fraction = match["fraction"]
    if fraction:
        base = base.replace(microsecond=int(fraction[:6].ljust(6, "0")))

    tz = _parse_offset(match["offset"], value)
    return base.replace(tzinfo=tz).astimezone(timezone.utc)


def _parse_offset(offset: str, value: str) -> timezone:
    if offset == "Z":
        return timezone.utc
    sign = -1 if offset[0] == "-" else 1
    digits = offset[1:].replace(":", "")
    hours = int(digits[:2])
    minutes = int(digits[2:4]) if len(digits) > 2 else 0
    if hours > 23 or minutes > 59:
        raise EventTimeParseError(value, f"offset out of range: {offset}")
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


def to_db_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime as canonical UTC text for storage.

    Naive datetimes are taken to already be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Inverse of ``to_db_timestamp``; also accepts SQLite's ``...Z`` defaults."""
    if value is None:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
