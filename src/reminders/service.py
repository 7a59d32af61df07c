"""Patient-scoped reminder operations gated by caretaker access."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
from typing import Callable, Iterable

from sqlalchemy.orm import Session

from access.capabilities import REMINDERS_READ, REMINDERS_WRITE, Capability
from access.resolver import Principal, resolve_patient_id
from errors import map_exception
from models import Recurrence, Reminder, ReminderChannel
from reminders.channels import parse_channels
from reminders.repository import (
    ReminderCreateInput,
    ReminderUpdateInput,
    apply_reminder_updates,
    create_reminder_record,
    delete_reminder_record,
    fetch_owned_reminder,
    list_reminders_for_user,
)
from time_utils import to_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdHocReminderInput:
    """Input payload for a manually created reminder."""

    title: str
    due_at: date | datetime | None
    description: str | None = None
    recurrence: Recurrence | str = Recurrence.NONE
    channels: Iterable[ReminderChannel | str] | None = None


class ReminderService:
    """Create, update, delete and list a patient's reminders."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the service with a SQLAlchemy session factory."""
        self._session_factory = session_factory
        self._now_provider = now_provider or (lambda: datetime.now(timezone.utc))

    def create_ad_hoc(
        self,
        principal: Principal | None,
        payload: AdHocReminderInput,
        *,
        patient_id: int | None = None,
    ) -> Reminder:
        """Create a reminder for the resolved patient.

        Manual reminders name their channels; the patient's preference only
        applies to reminders derived from care-plan tasks.
        """

        def handler(session: Session, user_id: int) -> Reminder:
            reminder = create_reminder_record(
                session,
                ReminderCreateInput(
                    user_id=user_id,
                    title=payload.title,
                    description=payload.description,
                    due_at=payload.due_at,
                    recurrence=payload.recurrence,
                    channels=parse_channels(payload.channels),
                ),
                now=self._now(),
            )
            logger.info(
                "Ad-hoc reminder created: reminder_id=%s user_id=%s", reminder.id, user_id
            )
            return reminder

        return self._execute(principal, patient_id, REMINDERS_WRITE, handler)

    def update(
        self,
        principal: Principal | None,
        reminder_id: int,
        updates: ReminderUpdateInput,
        *,
        patient_id: int | None = None,
    ) -> Reminder:
        """Update a reminder owned by the resolved patient."""

        def handler(session: Session, user_id: int) -> Reminder:
            reminder = fetch_owned_reminder(session, reminder_id, user_id)
            apply_reminder_updates(reminder, updates)
            reminder.updated_at = self._now()
            session.flush()
            return reminder

        return self._execute(principal, patient_id, REMINDERS_WRITE, handler)

    def delete(
        self,
        principal: Principal | None,
        reminder_id: int,
        *,
        patient_id: int | None = None,
    ) -> None:
        """Delete a reminder owned by the resolved patient."""

        def handler(session: Session, user_id: int) -> None:
            reminder = fetch_owned_reminder(session, reminder_id, user_id)
            delete_reminder_record(session, reminder.id)
            logger.info("Reminder deleted: reminder_id=%s user_id=%s", reminder_id, user_id)
            return None

        self._execute(principal, patient_id, REMINDERS_WRITE, handler)

    def list_for_patient(
        self,
        principal: Principal | None,
        *,
        patient_id: int | None = None,
    ) -> list[Reminder]:
        """Return the resolved patient's reminders ordered by due time."""
        return self._execute(
            principal,
            patient_id,
            REMINDERS_READ,
            lambda session, user_id: list_reminders_for_user(session, user_id),
        )

    def _now(self) -> datetime:
        return to_utc(self._now_provider())

    def _execute(
        self,
        principal: Principal | None,
        patient_id: int | None,
        capability: Capability,
        handler: Callable[[Session, int], object],
    ):
        """Resolve access and run the handler inside one transaction."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                user_id = resolve_patient_id(session, principal, patient_id, capability)
                result = handler(session, user_id)
                session.commit()
            except Exception as exc:
                session.rollback()
                raise map_exception(exc) from exc
        return result
