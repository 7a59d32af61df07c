"""Unit tests for capability values and permission payloads."""

from __future__ import annotations

import pytest

from access import (
    DIARY_READ,
    DIARY_WRITE,
    MEDICATIONS_WRITE,
    REMINDERS_READ,
    Capability,
    CarePermissions,
)
from errors import ValidationError


def test_capability_parses_legacy_encoding() -> None:
    """``<domain>_<mode>`` strings map to capability values."""
    assert Capability.parse("diary_write") == DIARY_WRITE
    assert Capability.parse(" Reminders_Read ") == REMINDERS_READ
    assert str(MEDICATIONS_WRITE) == "medications_write"


@pytest.mark.parametrize("raw", ["diary", "diary_delete", "calendar_read", ""])
def test_capability_rejects_unknown_values(raw: str) -> None:
    """Unknown domains or modes are rejected."""
    with pytest.raises(ValidationError):
        Capability.parse(raw)


def test_default_grant_is_full_access() -> None:
    """A missing permissions payload grants read and write everywhere."""
    permissions = CarePermissions.from_payload(None)

    assert permissions.allows(DIARY_READ)
    assert permissions.allows(MEDICATIONS_WRITE)
    assert permissions.allows(REMINDERS_READ)


def test_partial_grant_only_allows_named_modes() -> None:
    """Unlisted domains and modes default to denied."""
    permissions = CarePermissions.from_payload({"diary": {"read": True}})

    assert permissions.allows(DIARY_READ)
    assert not permissions.allows(DIARY_WRITE)
    assert not permissions.allows(REMINDERS_READ)


def test_invalid_payload_is_a_validation_error() -> None:
    """Unknown domains in a grant payload are rejected."""
    with pytest.raises(ValidationError) as excinfo:
        CarePermissions.from_payload({"billing": {"read": True}})

    assert excinfo.value.details["field"] == "permissions"


def test_malformed_stored_permissions_grant_nothing() -> None:
    """Stored maps that fail validation deny every capability."""
    permissions = CarePermissions.from_stored({"diary": "everything"})

    assert not permissions.allows(DIARY_READ)
    assert CarePermissions.from_stored(None) == CarePermissions()
