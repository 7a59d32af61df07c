"""Caretaker access resolution for patient-scoped operations.

Every diary, medication and reminder operation calls the resolver before it
reads or writes. Grants are looked up on every call; nothing is cached.
"""

from __future__ import annotations

import logging
from contextlib import closing
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from access.capabilities import Capability
from access.permissions import CarePermissions
from errors import AuthenticationError, AuthorizationError
from models import CareRelationship

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Authenticated actor on whose behalf an operation runs."""

    user_id: int | None


def require_principal(principal: Principal | None) -> int:
    """Return the principal's user id or raise when unauthenticated."""
    if principal is None or principal.user_id is None:
        raise AuthenticationError("Authentication required.")
    return principal.user_id


def fetch_relationship(
    session: Session, caretaker_id: int, patient_id: int
) -> CareRelationship | None:
    """Return the caretaker link for the pair, if any."""
    return (
        session.query(CareRelationship)
        .filter(
            CareRelationship.caretaker_id == caretaker_id,
            CareRelationship.patient_id == patient_id,
        )
        .one_or_none()
    )


def resolve_patient_id(
    session: Session,
    principal: Principal | None,
    requested_patient_id: int | None,
    capability: Capability,
) -> int:
    """Resolve the effective patient id for an operation.

    A principal acting on their own data is always allowed. Acting on another
    patient requires a caretaker link whose permissions cover ``capability``.
    """
    user_id = require_principal(principal)
    if requested_patient_id is None or requested_patient_id == user_id:
        return user_id

    link = fetch_relationship(session, user_id, requested_patient_id)
    if link is None:
        logger.warning(
            "Caretaker access denied, no relationship: actor_id=%s patient_id=%s capability=%s",
            user_id,
            requested_patient_id,
            capability,
        )
        raise AuthorizationError(
            "No access to this patient's data.",
            {"patient_id": requested_patient_id, "capability": str(capability)},
        )
    if not CarePermissions.from_stored(link.permissions).allows(capability):
        logger.warning(
            "Caretaker access denied, missing capability: actor_id=%s patient_id=%s capability=%s",
            user_id,
            requested_patient_id,
            capability,
        )
        raise AuthorizationError(
            "Insufficient caretaker permissions.",
            {"patient_id": requested_patient_id, "capability": str(capability)},
        )
    return requested_patient_id


class CaretakerAccessResolver:
    """Resolver that opens a fresh session for each lookup."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize the resolver with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def resolve(
        self,
        principal: Principal | None,
        requested_patient_id: int | None,
        capability: Capability,
    ) -> int:
        """Resolve the effective patient id or raise an access error."""
        with closing(self._session_factory()) as session:
            return resolve_patient_id(session, principal, requested_patient_id, capability)
