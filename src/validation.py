"""Reusable validation helpers for care-plan inputs."""

from __future__ import annotations

import enum
from typing import Iterable, TypeVar

from config import settings
from errors import ValidationError

EnumT = TypeVar("EnumT", bound=enum.Enum)


def require_non_empty(value: str | None, field: str, *, max_length: int | None = None) -> str:
    """Ensure a string field is present and non-empty, trimming and truncating it."""
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required.", {"field": field})
    normalized = value.strip()
    if max_length is not None:
        normalized = normalized[:max_length]
    return normalized


def optional_text(value: str | None, *, max_length: int) -> str | None:
    """Trim and truncate an optional free-text value, mapping blanks to None."""
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized[:max_length]


def require_reason(reason: str | None, field: str = "reason") -> str:
    """Ensure a justification is present and long enough.

    The reason is truncated to the configured maximum before the length check.
    """
    limits = settings.care_plan
    normalized = (reason or "")[: limits.reason_max_length].strip()
    if len(normalized) < limits.min_reason_length:
        raise ValidationError(
            f"{field} must be at least {limits.min_reason_length} characters.",
            {"field": field, "min_length": limits.min_reason_length},
        )
    return normalized


def parse_choice(enum_cls: type[EnumT], value: EnumT | str | None, field: str) -> EnumT:
    """Resolve a value into a member of a closed enum.

    Unknown or missing values fail; there is no silent fallback.
    """
    if isinstance(value, enum_cls):
        return value
    if value is None:
        raise ValidationError(f"{field} is required.", {"field": field})
    normalized = str(value).strip().upper()
    try:
        return enum_cls[normalized]
    except KeyError as exc:
        allowed = ", ".join(member.name for member in enum_cls)
        raise ValidationError(
            f"Invalid {field}: {value!r}. Expected one of: {allowed}.",
            {"field": field, "value": str(value)},
        ) from exc


def parse_choices(
    enum_cls: type[EnumT], values: Iterable[EnumT | str], field: str
) -> list[EnumT]:
    """Resolve many values into enum members, preserving order and removing duplicates."""
    members = [parse_choice(enum_cls, value, field) for value in values]
    return list(dict.fromkeys(members))
