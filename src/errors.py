"""Error taxonomy shared by every care-plan operation.

Each error carries a stable machine-readable ``code``, a user-addressable
message, optional structured ``details`` and the status a transport adapter
should surface it as.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class CarePlanError(Exception):
    """Base exception for care-plan engine failures."""

    http_status = 500

    def __init__(self, code: str, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize the error with a machine-readable code and details."""
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, object]:
        """Return a structured payload suitable for API responses."""
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


class AuthenticationError(CarePlanError):
    """Raised when the acting principal is missing or invalid."""

    http_status = 401

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize an authentication error with optional details."""
        super().__init__("unauthenticated", message, details)


class AuthorizationError(CarePlanError):
    """Raised when the principal lacks a capability, ownership or relationship."""

    http_status = 403

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a forbidden error with optional details."""
        super().__init__("forbidden", message, details)


class ValidationError(CarePlanError):
    """Raised when inputs fail validation."""

    http_status = 400

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a validation error with optional details."""
        super().__init__("validation_error", message, details)


class NotFoundError(CarePlanError):
    """Raised when a task, protocol, reminder or link is missing or not visible."""

    http_status = 404

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a not-found error with optional details."""
        super().__init__("not_found", message, details)


class ConflictError(CarePlanError):
    """Raised when a mutation conflicts with the current task state."""

    http_status = 409

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a conflict error with optional details."""
        super().__init__("conflict", message, details)


class InternalError(CarePlanError):
    """Raised when persistence fails; all writes of the unit are rolled back."""

    http_status = 500

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize an internal error with optional details."""
        super().__init__("internal_error", message, details)


def map_exception(exc: Exception) -> CarePlanError:
    """Map generic exceptions into care-plan errors."""
    if isinstance(exc, CarePlanError):
        return exc
    if isinstance(exc, SQLAlchemyError):
        logger.exception("Persistence failure: %s", exc.__class__.__name__)
        return InternalError(
            "Persistence failure; no changes were saved.",
            {"error": exc.__class__.__name__},
        )
    logger.exception("Unexpected care-plan failure: %s", exc.__class__.__name__)
    return InternalError(
        "Unexpected care-plan error.",
        {"error": exc.__class__.__name__},
    )


__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "CarePlanError",
    "ConflictError",
    "InternalError",
    "NotFoundError",
    "ValidationError",
    "map_exception",
]
