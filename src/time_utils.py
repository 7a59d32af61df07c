"""Time zone helpers for UTC storage and local-time arithmetic."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import settings


def get_local_timezone() -> ZoneInfo:
    """Return the configured local timezone."""
    timezone_name = settings.user.timezone
    try:
        return ZoneInfo(timezone_name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Invalid timezone: {timezone_name}") from exc


def to_local(value: datetime) -> datetime:
    """Convert a datetime to the configured local timezone."""
    local_tz = get_local_timezone()
    if value.tzinfo is None:
        return value.replace(tzinfo=local_tz)
    return value.astimezone(local_tz)


def to_utc(value: datetime) -> datetime:
    """Convert a datetime to UTC."""
    local_value = to_local(value)
    return local_value.astimezone(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Tag naive timestamps loaded from storage as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_moment(value: date | datetime) -> datetime:
    """Normalize a date or datetime to a UTC instant.

    Date-only values resolve to local midnight of that day.
    """
    if isinstance(value, datetime):
        return to_utc(value)
    local_midnight = datetime.combine(value, time(0, 0), tzinfo=get_local_timezone())
    return local_midnight.astimezone(timezone.utc)


def add_days(start: datetime, days: int) -> datetime:
    """Offset a UTC instant by whole days."""
    return start + timedelta(days=days)


def parse_time_of_day(value: str) -> time:
    """Parse an ``HH:MM`` string into a time value."""
    try:
        parsed = datetime.strptime(value.strip(), "%H:%M")
    except ValueError as exc:
        raise ValueError(f"Invalid time of day: {value!r}, expected HH:MM.") from exc
    return parsed.time()


def at_local_time(moment: datetime, at: time) -> datetime:
    """Return the UTC instant for ``at`` local time on the local day of ``moment``."""
    local_day = to_local(moment).date()
    local_value = datetime.combine(local_day, at, tzinfo=get_local_timezone())
    return local_value.astimezone(timezone.utc)


def next_local_occurrence(at: time, now: datetime) -> datetime:
    """Return the next UTC instant strictly after ``now`` at ``at`` local time."""
    candidate = at_local_time(now, at)
    if candidate <= to_utc(now):
        local_next_day = to_local(now).date() + timedelta(days=1)
        candidate = datetime.combine(
            local_next_day, at, tzinfo=get_local_timezone()
        ).astimezone(timezone.utc)
    return candidate
