"""Capability values gating delegated caretaker actions."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from errors import ValidationError


class CareDomain(str, enum.Enum):
    """Patient data domains a caretaker can be granted access to."""

    DIARY = "diary"
    MEDICATIONS = "medications"
    REMINDERS = "reminders"


class AccessMode(str, enum.Enum):
    """Access modes within a domain."""

    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class Capability:
    """A (domain, mode) pair gating one kind of delegated action."""

    domain: CareDomain
    mode: AccessMode

    @classmethod
    def parse(cls, raw: str) -> "Capability":
        """Parse the legacy ``<domain>_<mode>`` encoding, e.g. ``diary_write``."""
        normalized = (raw or "").strip().lower()
        domain_part, _, mode_part = normalized.rpartition("_")
        try:
            return cls(CareDomain(domain_part), AccessMode(mode_part))
        except ValueError as exc:
            raise ValidationError(
                f"Invalid capability: {raw!r}.", {"field": "capability", "value": str(raw)}
            ) from exc

    def __str__(self) -> str:
        return f"{self.domain.value}_{self.mode.value}"


DIARY_READ = Capability(CareDomain.DIARY, AccessMode.READ)
DIARY_WRITE = Capability(CareDomain.DIARY, AccessMode.WRITE)
MEDICATIONS_READ = Capability(CareDomain.MEDICATIONS, AccessMode.READ)
MEDICATIONS_WRITE = Capability(CareDomain.MEDICATIONS, AccessMode.WRITE)
REMINDERS_READ = Capability(CareDomain.REMINDERS, AccessMode.READ)
REMINDERS_WRITE = Capability(CareDomain.REMINDERS, AccessMode.WRITE)
