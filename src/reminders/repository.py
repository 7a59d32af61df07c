"""Repository helpers for reminder and delivery persistence."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
from typing import Callable, Iterable

from sqlalchemy.orm import Session

from config import settings
from errors import NotFoundError, ValidationError, map_exception
from models import (
    DeliveryStatus,
    Recurrence,
    Reminder,
    ReminderChannel,
    ReminderDelivery,
)
from reminders.channels import parse_channels, resolve_user_channels, serialize_channels
from time_utils import normalize_moment, to_utc
from validation import optional_text, parse_choice, require_non_empty

UNSET = object()
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderCreateInput:
    """Input payload for creating a reminder record.

    When ``channels`` is None the user's stored preference is resolved.
    """

    user_id: int
    title: str
    due_at: date | datetime | None
    description: str | None = None
    recurrence: Recurrence | str = Recurrence.NONE
    channels: Iterable[ReminderChannel | str] | None = None
    analysis_id: int | None = None
    document_id: int | None = None
    task_id: int | None = None


@dataclass(frozen=True)
class ReminderUpdateInput:
    """Input payload for updating reminder fields."""

    title: str | object = UNSET
    description: str | None | object = UNSET
    due_at: date | datetime | object = UNSET
    recurrence: Recurrence | str | object = UNSET
    channels: Iterable[ReminderChannel | str] | object = UNSET


@dataclass(frozen=True)
class DeliveryCreateInput:
    """Input payload for recording one delivery attempt."""

    reminder_id: int
    channel: ReminderChannel | str
    status: DeliveryStatus | str
    error: str | None = None
    attempted_at: datetime | None = None


class ReminderRepository:
    """Repository for reminder rows and their delivery log."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def create(self, payload: ReminderCreateInput, *, now: datetime | None = None) -> Reminder:
        """Create and persist a reminder record."""
        return self._execute(lambda session: create_reminder_record(session, payload, now=now))

    def get(self, reminder_id: int) -> Reminder | None:
        """Fetch a reminder by its primary key."""
        return self._execute(lambda session: session.get(Reminder, reminder_id))

    def list_for_user(self, user_id: int) -> list[Reminder]:
        """Return the user's reminders ordered by due time."""
        return self._execute(lambda session: list_reminders_for_user(session, user_id))

    def append_delivery(
        self,
        payload: DeliveryCreateInput,
        *,
        now: datetime | None = None,
    ) -> ReminderDelivery:
        """Record a delivery attempt made by the external dispatcher."""

        def handler(session: Session) -> ReminderDelivery:
            if session.get(Reminder, payload.reminder_id) is None:
                raise NotFoundError("Reminder not found.", {"reminder_id": payload.reminder_id})
            attempted_at = to_utc(payload.attempted_at or now or datetime.now(timezone.utc))
            delivery = ReminderDelivery(
                reminder_id=payload.reminder_id,
                channel=parse_choice(ReminderChannel, payload.channel, "channel"),
                status=parse_choice(DeliveryStatus, payload.status, "status"),
                error=optional_text(payload.error, max_length=2000),
                attempted_at=attempted_at,
            )
            session.add(delivery)
            session.flush()
            logger.info(
                "Reminder delivery recorded: reminder_id=%s channel=%s status=%s",
                delivery.reminder_id,
                delivery.channel.value,
                delivery.status.value,
            )
            return delivery

        return self._execute(handler)

    def list_deliveries(self, reminder_id: int) -> list[ReminderDelivery]:
        """Return delivery attempts for a reminder, oldest first."""

        def handler(session: Session) -> list[ReminderDelivery]:
            return (
                session.query(ReminderDelivery)
                .filter(ReminderDelivery.reminder_id == reminder_id)
                .order_by(ReminderDelivery.attempted_at.asc(), ReminderDelivery.id.asc())
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


def create_reminder_record(
    session: Session,
    payload: ReminderCreateInput,
    *,
    now: datetime | None = None,
) -> Reminder:
    """Create a reminder using an existing session."""
    limits = settings.care_plan
    if payload.due_at is None:
        raise ValidationError("due_at is required.", {"field": "due_at"})
    if payload.channels is None:
        channels = resolve_user_channels(session, payload.user_id)
    else:
        channels = parse_channels(payload.channels)
    timestamp = to_utc(now or datetime.now(timezone.utc))
    reminder = Reminder(
        user_id=payload.user_id,
        title=require_non_empty(payload.title, "title", max_length=limits.title_max_length),
        description=optional_text(
            payload.description, max_length=limits.description_max_length
        ),
        due_at=normalize_moment(payload.due_at),
        recurrence=parse_choice(Recurrence, payload.recurrence, "recurrence"),
        channels=serialize_channels(channels),
        analysis_id=payload.analysis_id,
        document_id=payload.document_id,
        task_id=payload.task_id,
        created_at=timestamp,
        updated_at=timestamp,
    )
    session.add(reminder)
    session.flush()
    return reminder


def apply_reminder_updates(reminder: Reminder, updates: ReminderUpdateInput) -> None:
    """Validate and apply updates to a reminder instance."""
    limits = settings.care_plan
    if updates.title is not UNSET:
        reminder.title = require_non_empty(
            updates.title, "title", max_length=limits.title_max_length
        )
    if updates.description is not UNSET:
        reminder.description = optional_text(
            updates.description, max_length=limits.description_max_length
        )
    if updates.due_at is not UNSET:
        if updates.due_at is None:
            raise ValidationError("due_at is required.", {"field": "due_at"})
        reminder.due_at = normalize_moment(updates.due_at)
    if updates.recurrence is not UNSET:
        reminder.recurrence = parse_choice(Recurrence, updates.recurrence, "recurrence")
    if updates.channels is not UNSET:
        reminder.channels = serialize_channels(parse_channels(updates.channels))


def fetch_owned_reminder(session: Session, reminder_id: int, user_id: int) -> Reminder:
    """Return a reminder owned by the user or raise NotFoundError."""
    reminder = session.get(Reminder, reminder_id)
    if reminder is None or reminder.user_id != user_id:
        raise NotFoundError("Reminder not found.", {"reminder_id": reminder_id})
    return reminder


def list_reminders_for_user(session: Session, user_id: int) -> list[Reminder]:
    """Return a user's reminders ordered by due time."""
    return (
        session.query(Reminder)
        .filter(Reminder.user_id == user_id)
        .order_by(Reminder.due_at.asc(), Reminder.id.asc())
        .all()
    )


def delete_reminder_record(session: Session, reminder_id: int | None) -> bool:
    """Delete a reminder and its deliveries; return False when already gone."""
    if reminder_id is None:
        return False
    reminder = session.get(Reminder, reminder_id)
    if reminder is None:
        return False
    session.delete(reminder)
    session.flush()
    return True


def find_recurring_reminder(
    session: Session,
    *,
    user_id: int,
    title: str,
    marker: str,
) -> Reminder | None:
    """Return an existing DAILY reminder carrying ``marker`` in its description."""
    return (
        session.query(Reminder)
        .filter(
            Reminder.user_id == user_id,
            Reminder.recurrence == Recurrence.DAILY,
            Reminder.title == title,
            Reminder.description.contains(marker, autoescape=True),
        )
        .order_by(Reminder.id.asc())
        .first()
    )
