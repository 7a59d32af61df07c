"""Unit tests for shared input validation helpers."""

from __future__ import annotations

import pytest

from config import settings
from errors import ValidationError
from models import ReminderChannel, TaskStatus
from validation import (
    optional_text,
    parse_choice,
    parse_choices,
    require_non_empty,
    require_reason,
)


def test_require_non_empty_trims_and_truncates() -> None:
    """Required strings are trimmed and cut to the maximum length."""
    assert require_non_empty("  Take pills  ", "title", max_length=4) == "Take"

    with pytest.raises(ValidationError) as excinfo:
        require_non_empty("   ", "title")

    assert excinfo.value.details == {"field": "title"}


def test_optional_text_maps_blank_to_none() -> None:
    """Blank optional text is stored as None."""
    assert optional_text(None, max_length=10) is None
    assert optional_text("  ", max_length=10) is None
    assert optional_text(" note ", max_length=10) == "note"


def test_require_reason_enforces_minimum_length() -> None:
    """Reasons shorter than the minimum after trimming are rejected."""
    assert require_reason("  too busy  ") == "too busy"

    with pytest.raises(ValidationError) as excinfo:
        require_reason(" no ")

    assert excinfo.value.details["min_length"] == 3

    with pytest.raises(ValidationError):
        require_reason(None)


def test_require_reason_truncates_before_checking(monkeypatch) -> None:
    """Overlong reasons are cut to the configured maximum."""
    monkeypatch.setattr(settings.care_plan, "reason_max_length", 5)

    assert require_reason("abcdefghij") == "abcde"


def test_parse_choice_is_closed() -> None:
    """Unknown enum values fail instead of falling back."""
    assert parse_choice(TaskStatus, "snoozed", "status") is TaskStatus.SNOOZED
    assert parse_choice(TaskStatus, TaskStatus.ACTIVE, "status") is TaskStatus.ACTIVE

    with pytest.raises(ValidationError, match="Invalid status"):
        parse_choice(TaskStatus, "ARCHIVED", "status")

    with pytest.raises(ValidationError, match="status is required"):
        parse_choice(TaskStatus, None, "status")


def test_parse_choices_deduplicates_in_order() -> None:
    """Repeated values collapse while preserving first occurrence."""
    parsed = parse_choices(ReminderChannel, ["sms", "PUSH", "sms"], "channels")

    assert parsed == [ReminderChannel.SMS, ReminderChannel.PUSH]
