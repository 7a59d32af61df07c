"""Unit tests for UTC storage and local-time helpers."""

from __future__ import annotations

from datetime import date, datetime, time, timezone

import pytest

from config import settings
from time_utils import (
    add_days,
    at_local_time,
    ensure_utc,
    next_local_occurrence,
    normalize_moment,
    parse_time_of_day,
    to_utc,
)


def test_ensure_utc_tags_naive_values() -> None:
    """Naive values loaded from storage are interpreted as UTC."""
    value = ensure_utc(datetime(2026, 3, 2, 9, 0))

    assert value == datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    assert ensure_utc(None) is None


def test_to_utc_treats_naive_values_as_local(monkeypatch) -> None:
    """Naive inputs are read in the configured local zone."""
    monkeypatch.setattr(settings.user, "timezone", "Europe/Berlin")

    value = to_utc(datetime(2026, 1, 15, 9, 0))

    assert value == datetime(2026, 1, 15, 8, 0, tzinfo=timezone.utc)


def test_normalize_moment_maps_dates_to_local_midnight(monkeypatch) -> None:
    """Date-only values resolve to local midnight of that day."""
    monkeypatch.setattr(settings.user, "timezone", "America/New_York")

    value = normalize_moment(date(2026, 1, 15))

    assert value == datetime(2026, 1, 15, 5, 0, tzinfo=timezone.utc)


def test_add_days_is_exact_24h_offset() -> None:
    """Instant offsets ignore calendar shifts."""
    start = datetime(2026, 3, 28, 12, 0, tzinfo=timezone.utc)

    assert add_days(start, 2) == datetime(2026, 3, 30, 12, 0, tzinfo=timezone.utc)


def test_parse_time_of_day() -> None:
    """HH:MM strings parse into time values; anything else fails."""
    assert parse_time_of_day(" 09:30 ") == time(9, 30)

    with pytest.raises(ValueError, match="expected HH:MM"):
        parse_time_of_day("25:00")


def test_at_local_time_uses_local_calendar_day(monkeypatch) -> None:
    """Fixed hours are placed on the local day of the given moment."""
    monkeypatch.setattr(settings.user, "timezone", "Europe/Berlin")
    moment = datetime(2026, 1, 15, 23, 30, tzinfo=timezone.utc)

    value = at_local_time(moment, time(9, 0))

    # 23:30 UTC is already 00:30 on Jan 16 in Berlin.
    assert value == datetime(2026, 1, 16, 8, 0, tzinfo=timezone.utc)


def test_next_local_occurrence_rolls_to_tomorrow() -> None:
    """Occurrences not strictly after now move to the next local day."""
    now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    assert next_local_occurrence(time(9, 0), now) == datetime(
        2026, 3, 3, 9, 0, tzinfo=timezone.utc
    )
    assert next_local_occurrence(time(21, 0), now) == datetime(
        2026, 3, 2, 21, 0, tzinfo=timezone.utc
    )
