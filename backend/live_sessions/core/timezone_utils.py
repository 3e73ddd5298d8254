"""
Timezone utilities for the live sessions engine.

Availability windows are declared as wall-clock times in the provider's
timezone; everything persisted or compared is a timezone-aware UTC instant.
"""

from datetime import date, datetime, time, timezone

import pytz


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_timezone(name: str) -> pytz.BaseTzInfo:
    """
    Resolve a timezone name.

    Raises:
        ValueError: if the name is not a known IANA timezone
    """
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


def local_to_utc(day: date, wall_time: time, tz_name: str) -> datetime:
    """
    Convert a wall-clock time on a given date in ``tz_name`` to aware UTC.

    pytz.localize picks the standard-time offset for ambiguous times.
    """
    tz = get_timezone(tz_name)
    local_dt = tz.localize(datetime.combine(day, wall_time))
    return local_dt.astimezone(pytz.UTC)


def hours_between(start: datetime, end: datetime) -> float:
    """Signed number of hours from ``start`` to ``end``."""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 3600
