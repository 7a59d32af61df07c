"""Derivation of concrete reminders from tasks and recurring obligations.

The scheduler only writes reminder rows. Delivery is left to an external
dispatcher that polls for due reminders, so recurring obligations with a fixed
local hour are expanded into single-fire instances up front.
"""

from __future__ import annotations

from datetime import datetime, time
import logging
from typing import Iterable

from sqlalchemy.orm import Session

from models import CarePlanTask, Recurrence, Reminder, ReminderChannel
from reminders.repository import (
    ReminderCreateInput,
    create_reminder_record,
    find_recurring_reminder,
)
from time_utils import add_days, at_local_time, next_local_occurrence, to_utc

logger = logging.getLogger(__name__)


def materialize_reminder(
    session: Session,
    task: CarePlanTask,
    *,
    now: datetime | None = None,
) -> Reminder:
    """Create the reminder for a task with a due date.

    Title, description, due date and recurrence are copied from the task and
    the channel set is resolved from the patient's preference.
    """
    if task.due_at is None:
        raise ValueError(f"Task has no due date to remind about: task_id={task.id}")
    reminder = create_reminder_record(
        session,
        ReminderCreateInput(
            user_id=task.patient_id,
            title=task.title,
            description=task.description,
            due_at=task.due_at,
            recurrence=task.recurrence,
            analysis_id=task.analysis_id,
            document_id=task.document_id,
            task_id=task.id,
        ),
        now=now,
    )
    logger.info(
        "Reminder materialized: task_id=%s reminder_id=%s due_at=%s channels=%s",
        task.id,
        reminder.id,
        reminder.due_at.isoformat(),
        ",".join(reminder.channels),
    )
    return reminder


def expand_daily_instances(
    start: datetime,
    days: int,
    at: time,
    now: datetime,
) -> list[datetime]:
    """Return one instant per day at local ``at``, skipping any not after ``now``."""
    if days < 1:
        raise ValueError("days must be >= 1.")
    current = to_utc(now)
    instants = []
    for offset in range(days):
        instant = at_local_time(add_days(to_utc(start), offset), at)
        if instant <= current:
            continue
        instants.append(instant)
    return instants


def schedule_daily_instances(
    session: Session,
    *,
    user_id: int,
    title: str,
    description: str | None,
    start: datetime,
    days: int,
    at: time,
    now: datetime,
    task_id: int | None = None,
) -> list[Reminder]:
    """Create one single-fire reminder per remaining daily instant."""
    reminders = [
        create_reminder_record(
            session,
            ReminderCreateInput(
                user_id=user_id,
                title=title,
                description=description,
                due_at=instant,
                recurrence=Recurrence.NONE,
                task_id=task_id,
            ),
            now=now,
        )
        for instant in expand_daily_instances(start, days, at, now)
    ]
    logger.info(
        "Daily reminder instances scheduled: user_id=%s task_id=%s count=%s",
        user_id,
        task_id,
        len(reminders),
    )
    return reminders


def ensure_recurring_reminder(
    session: Session,
    *,
    user_id: int,
    title: str,
    marker: str,
    at: time,
    note: str | None = None,
    channels: Iterable[ReminderChannel | str] | None = None,
    now: datetime,
) -> tuple[Reminder, bool]:
    """Return the DAILY reminder for ``marker``, creating it only when missing.

    The boolean is True when a new reminder was created.
    """
    existing = find_recurring_reminder(session, user_id=user_id, title=title, marker=marker)
    if existing is not None:
        return existing, False
    description = f"{marker}\n{note or ''}".strip()
    reminder = create_reminder_record(
        session,
        ReminderCreateInput(
            user_id=user_id,
            title=title,
            description=description,
            due_at=next_local_occurrence(at, now),
            recurrence=Recurrence.DAILY,
            channels=channels,
        ),
        now=now,
    )
    return reminder, True
