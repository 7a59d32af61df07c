"""Daily medication reminder plans."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import re
from typing import Callable, Iterable, Sequence

from sqlalchemy.orm import Session

from access.capabilities import MEDICATIONS_WRITE
from access.resolver import Principal, resolve_patient_id
from errors import ValidationError, map_exception
from models import Reminder, ReminderChannel
from reminders.scheduler import ensure_recurring_reminder
from time_utils import parse_time_of_day, to_utc
from validation import optional_text, require_non_empty

logger = logging.getLogger(__name__)

MAX_DAILY_DOSES = 6
_TIME_PATTERN = re.compile(r"^\d{2}:\d{2}$")

DEFAULT_TIMES_BY_FREQUENCY: dict[int, tuple[str, ...]] = {
    1: ("09:00",),
    2: ("09:00", "21:00"),
    3: ("09:00", "15:00", "21:00"),
    4: ("09:00", "13:00", "17:00", "21:00"),
    5: ("08:00", "11:00", "14:00", "17:00", "20:00"),
    6: ("08:00", "12:00", "16:00", "20:00", "22:00", "23:30"),
}


@dataclass(frozen=True)
class MedicationPlanInput:
    """Input payload for planning reminders for one medication."""

    medication_id: str
    name: str
    times: Sequence[str] | None = None
    frequency_per_day: int | None = None
    note: str | None = None
    channels: Iterable[ReminderChannel | str] | None = None


@dataclass(frozen=True)
class MedicationPlanResult:
    """Outcome of a planning run."""

    patient_id: int
    times: tuple[str, ...]
    created: tuple[Reminder, ...]
    existing: tuple[Reminder, ...]


def default_times(frequency_per_day: int) -> tuple[str, ...]:
    """Return default dose times for a daily frequency, clamped to 1..6."""
    frequency = max(1, min(MAX_DAILY_DOSES, int(frequency_per_day)))
    return DEFAULT_TIMES_BY_FREQUENCY[frequency]


def medication_marker(medication_id: str, time_of_day: str) -> str:
    """Return the marker identifying one dose slot in a reminder description."""
    return f"[MED:{medication_id}][TIME:{time_of_day}]"


def medication_title(name: str, time_of_day: str) -> str:
    """Return the reminder title for one dose slot."""
    return f"Medication: {name} ({time_of_day})"


def resolve_dose_times(payload: MedicationPlanInput) -> tuple[str, ...]:
    """Return the validated dose times for a plan."""
    if payload.times:
        normalized = [str(value).strip() for value in payload.times]
        invalid = [value for value in normalized if not _TIME_PATTERN.match(value)]
        if invalid:
            raise ValidationError(
                "Dose times must use HH:MM.", {"field": "times", "invalid": invalid}
            )
        for value in normalized:
            try:
                parse_time_of_day(value)
            except ValueError as exc:
                raise ValidationError(str(exc), {"field": "times", "value": value}) from exc
        return tuple(dict.fromkeys(normalized))[:MAX_DAILY_DOSES]
    return default_times(payload.frequency_per_day or 1)


class MedicationReminderPlanner:
    """Creates idempotent DAILY reminders for a medication schedule."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the planner with a SQLAlchemy session factory."""
        self._session_factory = session_factory
        self._now_provider = now_provider or (lambda: datetime.now(timezone.utc))

    def plan(
        self,
        principal: Principal | None,
        payload: MedicationPlanInput,
        *,
        patient_id: int | None = None,
    ) -> MedicationPlanResult:
        """Ensure one DAILY reminder exists per dose time.

        Reminders already carrying the same marker and title are reused so a
        plan can be regenerated without duplicates.
        """
        medication_id = require_non_empty(payload.medication_id, "medication_id", max_length=100)
        name = require_non_empty(payload.name, "name", max_length=150)
        note = optional_text(payload.note, max_length=500)
        times = resolve_dose_times(payload)
        channels = list(payload.channels) if payload.channels is not None else None
        now = to_utc(self._now_provider())

        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                resolved_patient_id = resolve_patient_id(
                    session, principal, patient_id, MEDICATIONS_WRITE
                )
                created: list[Reminder] = []
                existing: list[Reminder] = []
                for time_of_day in times:
                    reminder, was_created = ensure_recurring_reminder(
                        session,
                        user_id=resolved_patient_id,
                        title=medication_title(name, time_of_day),
                        marker=medication_marker(medication_id, time_of_day),
                        at=parse_time_of_day(time_of_day),
                        note=note,
                        channels=channels,
                        now=now,
                    )
                    (created if was_created else existing).append(reminder)
                session.commit()
            except Exception as exc:
                session.rollback()
                raise map_exception(exc) from exc

        logger.info(
            "Medication reminders planned: patient_id=%s medication_id=%s created=%s reused=%s",
            resolved_patient_id,
            medication_id,
            len(created),
            len(existing),
        )
        return MedicationPlanResult(
            patient_id=resolved_patient_id,
            times=times,
            created=tuple(created),
            existing=tuple(existing),
        )
