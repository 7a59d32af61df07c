"""Access control: capabilities, caretaker grants and doctor relationships."""

from access.capabilities import (
    DIARY_READ,
    DIARY_WRITE,
    MEDICATIONS_READ,
    MEDICATIONS_WRITE,
    REMINDERS_READ,
    REMINDERS_WRITE,
    AccessMode,
    Capability,
    CareDomain,
)
from access.permissions import CarePermissions, DomainPermission
from access.resolver import CaretakerAccessResolver, Principal, resolve_patient_id

__all__ = [
    "DIARY_READ",
    "DIARY_WRITE",
    "MEDICATIONS_READ",
    "MEDICATIONS_WRITE",
    "REMINDERS_READ",
    "REMINDERS_WRITE",
    "AccessMode",
    "Capability",
    "CareDomain",
    "CarePermissions",
    "CaretakerAccessResolver",
    "DomainPermission",
    "Principal",
    "resolve_patient_id",
]
