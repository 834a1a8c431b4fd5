"""Utility functions for time handling.

All persisted timestamps are UTC and timezone-aware, stored as ISO-8601
strings with an offset (e.g. "+00:00"). Action clock times ("08:00") are
local to the plant and are resolved with :func:`local_datetime`.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    """Return current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


def iso_now(*, timespec: str | None = None) -> str:
    """Return current UTC time as an ISO8601 string (timezone-aware)."""
    now = utc_now()
    if timespec:
        return now.isoformat(timespec=timespec)
    return now.isoformat()


def coerce_datetime(value: Any) -> datetime | None:
    """
    Coerce value to datetime, returning None on failure.

    Args:
        value: String or datetime to coerce

    Returns:
        Datetime in timezone.utc or None if invalid
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw.replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    else:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed


def coerce_date(value: Any) -> date | None:
    """Coerce an ISO date / datetime string or object to a ``date``."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        raw = value.strip()
        try:
            return date.fromisoformat(raw[:10])
        except ValueError:
            return None
    return None


def parse_clock_time(value: str | None, default: str = "08:00") -> time:
    """Parse an ``HH:MM`` clock string; malformed input falls back to *default*."""
    for candidate in (value, default):
        if not candidate:
            continue
        try:
            hours, _, minutes = candidate.strip().partition(":")
            return time(int(hours), int(minutes or 0))
        except ValueError:
            continue
    return time(8, 0)


def resolve_timezone(name: str | None) -> ZoneInfo | timezone:
    """Return the named zone, or UTC when the name is unknown."""
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def local_datetime(day: date, clock: str | None, tz_name: str | None) -> datetime:
    """Combine a plan date and an action clock time into an aware UTC datetime."""
    tz = resolve_timezone(tz_name)
    local = datetime.combine(day, parse_clock_time(clock), tzinfo=tz)
    return local.astimezone(timezone.utc)


def local_today(tz_name: str | None, now: datetime | None = None) -> date:
    """Return today's date in the given timezone."""
    current = now or utc_now()
    return current.astimezone(resolve_timezone(tz_name)).date()


def sortable_iso(value: datetime) -> str:
    """UTC ISO string with fixed microsecond precision, safe for lexical comparison in SQL."""
    return coerce_datetime(value).isoformat(timespec="microseconds")
