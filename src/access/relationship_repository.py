"""Repository for caretaker links granted by patients."""

from __future__ import annotations

import logging
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from sqlalchemy import or_
from sqlalchemy.orm import Session

from access.accounts import fetch_user, find_user_by_email
from access.permissions import CarePermissions
from access.resolver import fetch_relationship
from errors import AuthorizationError, NotFoundError, ValidationError, map_exception
from models import CareRelationship, UserRole
from time_utils import to_utc
from validation import require_non_empty

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CareLinkGrantInput:
    """Input payload for granting a caretaker access to a patient."""

    patient_id: int
    caretaker_email: str
    permissions: Mapping[str, Any] | None = None


class CareRelationshipRepository:
    """Repository for caretaker grant, revoke and listing operations."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def grant_access(
        self,
        payload: CareLinkGrantInput,
        *,
        now: datetime | None = None,
    ) -> CareRelationship:
        """Create or replace the caretaker link for the pair.

        Only patient accounts may grant access, never to themselves. A repeated
        grant to the same caretaker replaces the stored permissions.
        """
        permissions = CarePermissions.from_payload(payload.permissions)
        email = require_non_empty(payload.caretaker_email, "caretaker_email", max_length=320)

        def handler(session: Session) -> CareRelationship:
            patient = fetch_user(session, payload.patient_id)
            if patient is None or patient.role != UserRole.PATIENT:
                raise AuthorizationError(
                    "Only patients can grant caretaker access.",
                    {"patient_id": payload.patient_id},
                )
            if patient.email.lower() == email.lower():
                raise ValidationError(
                    "Cannot grant caretaker access to yourself.",
                    {"field": "caretaker_email"},
                )
            caretaker = find_user_by_email(session, email)
            if caretaker is None:
                raise NotFoundError(
                    "No account with this email.", {"caretaker_email": email.lower()}
                )

            timestamp = to_utc(now or datetime.now(timezone.utc))
            stored = permissions.model_dump()
            link = fetch_relationship(session, caretaker.id, patient.id)
            if link is None:
                link = CareRelationship(
                    caretaker_id=caretaker.id,
                    patient_id=patient.id,
                    permissions=stored,
                    created_at=timestamp,
                    updated_at=timestamp,
                )
                session.add(link)
            else:
                link.permissions = stored
                link.updated_at = timestamp
            session.flush()
            logger.info(
                "Caretaker access granted: link_id=%s patient_id=%s caretaker_id=%s",
                link.id,
                patient.id,
                caretaker.id,
            )
            return link

        return self._execute(handler)

    def revoke(self, link_id: int, acting_user_id: int) -> None:
        """Delete a link; either the patient or the caretaker may revoke it."""

        def handler(session: Session) -> None:
            link = session.get(CareRelationship, link_id)
            if link is None or acting_user_id not in {link.patient_id, link.caretaker_id}:
                raise NotFoundError("Care link not found.", {"link_id": link_id})
            session.delete(link)
            session.flush()
            logger.info(
                "Caretaker access revoked: link_id=%s actor_id=%s", link_id, acting_user_id
            )
            return None

        self._execute(handler)

    def list_for_user(self, user_id: int) -> list[CareRelationship]:
        """Return links where the user is either the patient or the caretaker."""

        def handler(session: Session) -> list[CareRelationship]:
            return (
                session.query(CareRelationship)
                .filter(
                    or_(
                        CareRelationship.patient_id == user_id,
                        CareRelationship.caretaker_id == user_id,
                    )
                )
                .order_by(CareRelationship.created_at.desc(), CareRelationship.id.desc())
                .all()
            )

        return self._execute(handler)

    def _execute(self, handler):
        """Execute repository work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception as exc:
                session.rollback()
                raise map_exception(exc) from exc
        return result
