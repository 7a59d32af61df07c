"""Unit tests for daily medication reminder plans."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from access.relationship_repository import CareLinkGrantInput, CareRelationshipRepository
from access.resolver import Principal
from errors import AuthorizationError, ValidationError
from models import Recurrence, Reminder
from reminders.medication_plan import (
    MedicationPlanInput,
    MedicationReminderPlanner,
    default_times,
    medication_marker,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _planner(factory: sessionmaker) -> MedicationReminderPlanner:
    return MedicationReminderPlanner(factory, now_provider=lambda: NOW)


@pytest.mark.parametrize(
    ("frequency", "expected"),
    [
        (0, ("09:00",)),
        (2, ("09:00", "21:00")),
        (3, ("09:00", "15:00", "21:00")),
        (9, ("08:00", "12:00", "16:00", "20:00", "22:00", "23:30")),
    ],
)
def test_default_times_clamp_frequency(frequency: int, expected: tuple[str, ...]) -> None:
    assert default_times(frequency) == expected


def test_plan_creates_one_daily_reminder_per_time(
    sqlite_session_factory: sessionmaker, accounts
) -> None:
    """Each dose slot gets a DAILY reminder tagged with its marker."""
    result = _planner(sqlite_session_factory).plan(
        Principal(user_id=accounts.patient_id),
        MedicationPlanInput(medication_id="med-7", name="Lisinopril", frequency_per_day=2),
    )

    assert result.patient_id == accounts.patient_id
    assert result.times == ("09:00", "21:00")
    assert result.existing == ()
    titles = [reminder.title for reminder in result.created]
    assert titles == ["Medication: Lisinopril (09:00)", "Medication: Lisinopril (21:00)"]
    for reminder, time_of_day in zip(result.created, result.times):
        assert reminder.recurrence is Recurrence.DAILY
        assert medication_marker("med-7", time_of_day) in reminder.description
    assert result.created[0].due_at == datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc)
    assert result.created[1].due_at == datetime(2026, 3, 2, 21, 0, tzinfo=timezone.utc)


def test_rerunning_a_plan_reuses_existing_slots(
    sqlite_session_factory: sessionmaker, accounts
) -> None:
    """Regenerating adds only the new dose times."""
    planner = _planner(sqlite_session_factory)
    patient = Principal(user_id=accounts.patient_id)
    planner.plan(patient, MedicationPlanInput(medication_id="med-7", name="Lisinopril"))

    result = planner.plan(
        patient,
        MedicationPlanInput(
            medication_id="med-7", name="Lisinopril", times=["09:00", "21:00", "09:00"]
        ),
    )

    assert result.times == ("09:00", "21:00")
    assert [reminder.title for reminder in result.existing] == ["Medication: Lisinopril (09:00)"]
    assert [reminder.title for reminder in result.created] == ["Medication: Lisinopril (21:00)"]
    with sqlite_session_factory() as session:
        assert session.query(Reminder).count() == 2


@pytest.mark.parametrize("times", [["9:00"], ["25:00"], ["noon"]])
def test_plan_rejects_bad_times(
    sqlite_session_factory: sessionmaker, accounts, times: list[str]
) -> None:
    with pytest.raises(ValidationError):
        _planner(sqlite_session_factory).plan(
            Principal(user_id=accounts.patient_id),
            MedicationPlanInput(medication_id="med-7", name="Lisinopril", times=times),
        )


def test_plan_requires_identity_fields(sqlite_session_factory: sessionmaker, accounts) -> None:
    with pytest.raises(ValidationError, match="medication_id"):
        _planner(sqlite_session_factory).plan(
            Principal(user_id=accounts.patient_id),
            MedicationPlanInput(medication_id=" ", name="Lisinopril"),
        )


def test_caretaker_needs_medication_write(sqlite_session_factory: sessionmaker, accounts) -> None:
    """Medication planning for a patient is gated on medications write."""
    planner = _planner(sqlite_session_factory)
    repo = CareRelationshipRepository(sqlite_session_factory)
    caretaker = Principal(user_id=accounts.caretaker_id)
    payload = MedicationPlanInput(medication_id="med-1", name="Metformin")
    repo.grant_access(
        CareLinkGrantInput(
            patient_id=accounts.patient_id,
            caretaker_email="care@example.test",
            permissions={"medications": {"read": True}},
        ),
        now=NOW,
    )

    with pytest.raises(AuthorizationError):
        planner.plan(caretaker, payload, patient_id=accounts.patient_id)

    repo.grant_access(
        CareLinkGrantInput(patient_id=accounts.patient_id, caretaker_email="care@example.test"),
        now=NOW,
    )
    result = planner.plan(caretaker, payload, patient_id=accounts.patient_id)

    assert result.patient_id == accounts.patient_id
    assert result.created[0].user_id == accounts.patient_id
