"""Unit tests for care-plan task persistence and listings."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from care_plan.check_in_repository import (
    CheckInCreateInput,
    create_check_in_record,
    list_recent_check_ins,
)
from care_plan.task_repository import CarePlanTaskRepository, TaskCreateInput
from care_plan.transition_service import CarePlanTransitionService
from errors import NotFoundError, ValidationError
from models import (
    ApprovalStatus,
    CarePlanCheckIn,
    CarePlanTask,
    CheckInType,
    Recurrence,
    Reminder,
    TaskKind,
    TaskStatus,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _create(repo: CarePlanTaskRepository, patient_id: int, title: str, **kwargs) -> CarePlanTask:
    """Create a patient-authored task."""
    return repo.create(TaskCreateInput(patient_id=patient_id, title=title, **kwargs), now=NOW)


def test_create_task_normalizes_fields(sqlite_session_factory: sessionmaker, accounts) -> None:
    """Patient-authored tasks start approved and active with trimmed fields."""
    repo = CarePlanTaskRepository(sqlite_session_factory)

    task = _create(
        repo,
        accounts.patient_id,
        "  Walk daily  ",
        description="   ",
        due_at=date(2026, 3, 5),
        recurrence="daily",
        analysis_id=11,
    )

    assert task.title == "Walk daily"
    assert task.description is None
    assert task.due_at == datetime(2026, 3, 5, tzinfo=timezone.utc)
    assert task.recurrence is Recurrence.DAILY
    assert task.kind is TaskKind.REGULAR
    assert task.approval_status is ApprovalStatus.APPROVED
    assert task.status is TaskStatus.ACTIVE
    assert task.approved_at == NOW
    assert task.created_by_doctor_id is None
    assert task.analysis_id == 11


def test_create_task_validation(sqlite_session_factory: sessionmaker, accounts) -> None:
    """Missing titles and unknown recurrences are rejected."""
    repo = CarePlanTaskRepository(sqlite_session_factory)

    with pytest.raises(ValidationError):
        _create(repo, accounts.patient_id, "   ")
    with pytest.raises(ValidationError, match="Invalid recurrence"):
        _create(repo, accounts.patient_id, "Walk", recurrence="HOURLY")


def test_list_orders_by_status_then_due_date(
    sqlite_session_factory: sessionmaker, accounts
) -> None:
    """Active tasks come first, then snoozed, then completed; undated last."""
    repo = CarePlanTaskRepository(sqlite_session_factory)
    transitions = CarePlanTransitionService(sqlite_session_factory, now_provider=lambda: NOW)
    undated = _create(repo, accounts.patient_id, "Undated")
    later = _create(repo, accounts.patient_id, "Later", due_at=NOW + timedelta(days=5))
    sooner = _create(repo, accounts.patient_id, "Sooner", due_at=NOW + timedelta(days=1))
    snoozed = _create(repo, accounts.patient_id, "Snoozed", due_at=NOW)
    done = _create(repo, accounts.patient_id, "Done", due_at=NOW)
    transitions.snooze(snoozed.id, accounts.patient_id, "not now")
    transitions.complete(done.id, accounts.patient_id)
    _create(repo, accounts.other_patient_id, "Someone else")

    views = repo.list_for_patient(accounts.patient_id)

    assert [view.task.id for view in views] == [
        sooner.id,
        later.id,
        undated.id,
        snoozed.id,
        done.id,
    ]


def test_list_filters_by_status(sqlite_session_factory: sessionmaker, accounts) -> None:
    """A status filter narrows the listing and rejects unknown values."""
    repo = CarePlanTaskRepository(sqlite_session_factory)
    transitions = CarePlanTransitionService(sqlite_session_factory, now_provider=lambda: NOW)
    open_task = _create(repo, accounts.patient_id, "Open")
    done = _create(repo, accounts.patient_id, "Done")
    transitions.complete(done.id, accounts.patient_id)

    active = repo.list_for_patient(accounts.patient_id, status="active")
    assert [view.task.id for view in active] == [open_task.id]
    with pytest.raises(ValidationError):
        repo.list_for_patient(accounts.patient_id, status="ARCHIVED")


def test_list_hides_unapproved_unless_requested(
    sqlite_session_factory: sessionmaker, accounts
) -> None:
    """Pending tasks only appear with include_pending."""
    repo = CarePlanTaskRepository(sqlite_session_factory)
    approved = _create(repo, accounts.patient_id, "Mine")
    with sqlite_session_factory() as session:
        pending = CarePlanTask(
            patient_id=accounts.patient_id,
            created_by_doctor_id=accounts.doctor_id,
            title="Proposed",
            approval_status=ApprovalStatus.PENDING,
            approval_requested_at=NOW,
        )
        session.add(pending)
        session.commit()
        pending_id = pending.id

    assert [view.task.id for view in repo.list_for_patient(accounts.patient_id)] == [approved.id]
    everything = repo.list_for_patient(accounts.patient_id, include_pending=True)
    ids = {view.task.id for view in everything}
    assert ids == {approved.id, pending_id}
    assert [task.id for task in repo.list_pending_approvals(accounts.patient_id)] == [pending_id]


def test_list_includes_recent_check_ins_newest_first(
    sqlite_session_factory: sessionmaker, accounts
) -> None:
    """Each task carries its three most recent check-ins."""
    repo = CarePlanTaskRepository(sqlite_session_factory)
    task = _create(repo, accounts.patient_id, "Journal")
    with sqlite_session_factory() as session:
        for offset in range(5):
            create_check_in_record(
                session,
                CheckInCreateInput(
                    task_id=task.id, type=CheckInType.NOTE, reason=f"note {offset}"
                ),
                now=NOW + timedelta(minutes=offset),
            )
        session.commit()

    view = repo.list_for_patient(accounts.patient_id)[0]

    assert [item.reason for item in view.recent_check_ins] == ["note 4", "note 3", "note 2"]


def test_get_respects_visibility(sqlite_session_factory: sessionmaker, accounts) -> None:
    """Tasks are visible to their patient only when patient-authored."""
    repo = CarePlanTaskRepository(sqlite_session_factory)
    task = _create(repo, accounts.patient_id, "Private")

    assert repo.get(task.id, viewer_id=accounts.patient_id).id == task.id
    with pytest.raises(NotFoundError):
        repo.get(task.id, viewer_id=accounts.doctor_id)


def test_delete_removes_task_and_history(
    sqlite_session_factory: sessionmaker, accounts
) -> None:
    """Deleting a task drops its check-ins; other owners cannot delete it."""
    repo = CarePlanTaskRepository(sqlite_session_factory)
    task = _create(repo, accounts.patient_id, "Temporary")
    CarePlanTransitionService(sqlite_session_factory, now_provider=lambda: NOW).note(
        task.id, accounts.patient_id, "remember this"
    )

    with pytest.raises(NotFoundError):
        repo.delete(task.id, patient_id=accounts.other_patient_id)

    repo.delete(task.id, patient_id=accounts.patient_id)

    with sqlite_session_factory() as session:
        assert session.query(CarePlanTask).count() == 0
        assert session.query(CarePlanCheckIn).count() == 0


def test_delete_removes_materialized_reminder(
    sqlite_session_factory: sessionmaker, accounts
) -> None:
    """The reminder of an approved task goes with the task."""
    with sqlite_session_factory() as session:
        proposed = CarePlanTask(
            patient_id=accounts.patient_id,
            created_by_doctor_id=accounts.doctor_id,
            title="Lipid panel",
            due_at=NOW + timedelta(days=7),
            recurrence=Recurrence.NONE,
            status=TaskStatus.ACTIVE,
            approval_status=ApprovalStatus.PENDING,
            approval_requested_at=NOW,
        )
        session.add(proposed)
        session.commit()
        task_id = proposed.id
    approved = CarePlanTransitionService(sqlite_session_factory, now_provider=lambda: NOW).approve(
        task_id, accounts.patient_id
    )
    assert approved.reminder_id is not None

    CarePlanTaskRepository(sqlite_session_factory).delete(task_id, patient_id=accounts.patient_id)

    with sqlite_session_factory() as session:
        assert session.query(CarePlanTask).count() == 0
        assert session.query(Reminder).count() == 0


def test_check_ins_are_append_only(sqlite_session_factory: sessionmaker, accounts) -> None:
    """Updating a stored check-in is refused."""
    repo = CarePlanTaskRepository(sqlite_session_factory)
    task = _create(repo, accounts.patient_id, "Audit")

    with sqlite_session_factory() as session:
        create_check_in_record(
            session,
            CheckInCreateInput(task_id=task.id, type=CheckInType.NOTE, reason="original"),
            now=NOW,
        )
        session.commit()
        check_in = list_recent_check_ins(session, task.id)[0]
        check_in.reason = "rewritten"
        with pytest.raises(ValueError, match="append-only"):
            session.flush()
