"""Permission payloads stored on caretaker relationships."""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from access.capabilities import AccessMode, Capability
from errors import ValidationError


class DomainPermission(BaseModel):
    """Read/write flags for one data domain."""

    model_config = ConfigDict(extra="forbid")

    read: bool = False
    write: bool = False


class CarePermissions(BaseModel):
    """Per-domain permissions a patient grants to a caretaker."""

    model_config = ConfigDict(extra="forbid")

    diary: DomainPermission = Field(default_factory=DomainPermission)
    medications: DomainPermission = Field(default_factory=DomainPermission)
    reminders: DomainPermission = Field(default_factory=DomainPermission)

    @classmethod
    def full_access(cls) -> "CarePermissions":
        """Return the default grant: read and write on every domain."""
        full = {"read": True, "write": True}
        return cls(diary=full, medications=full, reminders=full)

    @classmethod
    def from_stored(cls, raw: Mapping[str, Any] | None) -> "CarePermissions":
        """Load a stored permission map; missing or malformed data grants nothing."""
        if not raw:
            return cls()
        try:
            return cls.model_validate(dict(raw))
        except PydanticValidationError:
            return cls()

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any] | None) -> "CarePermissions":
        """Validate a user-supplied permission map."""
        if raw is None:
            return cls.full_access()
        try:
            return cls.model_validate(dict(raw))
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid permissions payload.",
                {"field": "permissions", "errors": exc.errors(include_url=False)},
            ) from exc

    def allows(self, capability: Capability) -> bool:
        """Return True when the grant covers the capability."""
        domain = getattr(self, capability.domain.value)
        if capability.mode is AccessMode.READ:
            return domain.read
        return domain.write
