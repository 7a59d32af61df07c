"""Repository helpers for care-plan task persistence."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
from typing import Callable, Mapping

from sqlalchemy import case
from sqlalchemy.orm import Session

from care_plan.check_in_repository import list_recent_check_ins
from config import settings
from errors import ConflictError, NotFoundError, map_exception
from models import (
    ApprovalStatus,
    CarePlanCheckIn,
    CarePlanTask,
    Recurrence,
    TaskKind,
    TaskStatus,
)
from reminders.repository import delete_reminder_record
from time_utils import normalize_moment, to_utc
from validation import optional_text, parse_choice, require_non_empty

UNSET = object()
logger = logging.getLogger(__name__)

_STATUS_ORDER = case(
    (CarePlanTask.status == TaskStatus.ACTIVE, 0),
    (CarePlanTask.status == TaskStatus.SNOOZED, 1),
    else_=2,
)


@dataclass(frozen=True)
class TaskCreateInput:
    """Input payload for a patient-authored task."""

    patient_id: int
    title: str
    description: str | None = None
    due_at: date | datetime | None = None
    recurrence: Recurrence | str = Recurrence.NONE
    analysis_id: int | None = None
    document_id: int | None = None


@dataclass(frozen=True)
class TaskUpdateInput:
    """Input payload for updating task fields."""

    title: str | object = UNSET
    description: str | None | object = UNSET
    due_at: date | datetime | None | object = UNSET
    status: TaskStatus | object = UNSET
    approval_status: ApprovalStatus | object = UNSET


@dataclass(frozen=True)
class TaskWithCheckIns:
    """A task together with its most recent check-ins, newest first."""

    task: CarePlanTask
    recent_check_ins: tuple[CarePlanCheckIn, ...]


class CarePlanTaskRepository:
    """Repository for task creation, lookup and listing."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def create(self, payload: TaskCreateInput, *, now: datetime | None = None) -> CarePlanTask:
        """Create a patient-authored task; it starts approved and active."""

        def handler(session: Session) -> CarePlanTask:
            limits = settings.care_plan
            timestamp = to_utc(now or datetime.now(timezone.utc))
            task = CarePlanTask(
                patient_id=payload.patient_id,
                created_by_doctor_id=None,
                kind=TaskKind.REGULAR,
                title=require_non_empty(
                    payload.title, "title", max_length=limits.title_max_length
                ),
                description=optional_text(
                    payload.description, max_length=limits.description_max_length
                ),
                due_at=_normalize_optional_moment(payload.due_at),
                recurrence=parse_choice(Recurrence, payload.recurrence, "recurrence"),
                status=TaskStatus.ACTIVE,
                approval_status=ApprovalStatus.APPROVED,
                approved_at=timestamp,
                analysis_id=payload.analysis_id,
                document_id=payload.document_id,
                created_at=timestamp,
                updated_at=timestamp,
            )
            session.add(task)
            session.flush()
            logger.info(
                "Patient task created: task_id=%s patient_id=%s", task.id, task.patient_id
            )
            return task

        return self._execute(handler)

    def get(self, task_id: int, *, viewer_id: int) -> CarePlanTask:
        """Return a task visible to the viewer (owning patient or creating doctor)."""
        return self._execute(lambda session: fetch_visible_task(session, task_id, viewer_id))

    def list_for_patient(
        self,
        patient_id: int,
        *,
        status: TaskStatus | str | None = None,
        include_pending: bool = False,
    ) -> list[TaskWithCheckIns]:
        """Return the patient's tasks with a preview of recent check-ins.

        Without ``include_pending`` only approved tasks are returned.
        """
        status_filter = parse_choice(TaskStatus, status, "status") if status is not None else None

        def handler(session: Session) -> list[TaskWithCheckIns]:
            query = session.query(CarePlanTask).filter(CarePlanTask.patient_id == patient_id)
            if not include_pending:
                query = query.filter(CarePlanTask.approval_status == ApprovalStatus.APPROVED)
            if status_filter is not None:
                query = query.filter(CarePlanTask.status == status_filter)
            tasks = query.order_by(
                _STATUS_ORDER,
                CarePlanTask.due_at.is_(None),
                CarePlanTask.due_at.asc(),
                CarePlanTask.created_at.desc(),
                CarePlanTask.id.desc(),
            ).all()
            preview_size = settings.care_plan.check_in_preview_size
            return [
                TaskWithCheckIns(
                    task=task,
                    recent_check_ins=tuple(
                        list_recent_check_ins(session, task.id, limit=preview_size)
                    ),
                )
                for task in tasks
            ]

        return self._execute(handler)

    def list_pending_approvals(self, patient_id: int) -> list[CarePlanTask]:
        """Return the patient's tasks awaiting approval, newest request first."""

        def handler(session: Session) -> list[CarePlanTask]:
            return (
                session.query(CarePlanTask)
                .filter(
                    CarePlanTask.patient_id == patient_id,
                    CarePlanTask.approval_status == ApprovalStatus.PENDING,
                )
                .order_by(
                    CarePlanTask.approval_requested_at.desc(),
                    CarePlanTask.created_at.desc(),
                    CarePlanTask.id.desc(),
                )
                .all()
            )

        return self._execute(handler)

    def list_open_requests(self, patient_id: int) -> list[CarePlanTask]:
        """Return approved, not yet completed doctor requests for the patient."""

        def handler(session: Session) -> list[CarePlanTask]:
            return (
                session.query(CarePlanTask)
                .filter(
                    CarePlanTask.patient_id == patient_id,
                    CarePlanTask.kind == TaskKind.REQUEST,
                    CarePlanTask.approval_status == ApprovalStatus.APPROVED,
                    CarePlanTask.status != TaskStatus.COMPLETED,
                )
                .order_by(CarePlanTask.due_at.asc(), CarePlanTask.id.asc())
                .all()
            )

        return self._execute(handler)

    def delete(self, task_id: int, *, patient_id: int) -> None:
        """Delete a task owned by the patient with its check-ins and reminder."""

        def handler(session: Session) -> None:
            task = fetch_patient_task(session, task_id, patient_id)
            reminder_id = task.reminder_id
            session.delete(task)
            session.flush()
            delete_reminder_record(session, reminder_id)
            logger.info(
                "Task deleted: task_id=%s patient_id=%s reminder_id=%s",
                task_id,
                patient_id,
                reminder_id,
            )
            return None

        self._execute(handler)

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


def fetch_task(session: Session, task_id: int, *, for_update: bool = False) -> CarePlanTask:
    """Return a task or raise NotFoundError."""
    query = session.query(CarePlanTask).filter(CarePlanTask.id == task_id)
    if for_update:
        query = query.with_for_update()
    task = query.one_or_none()
    if task is None:
        raise NotFoundError("Task not found.", {"task_id": task_id})
    return task


def fetch_patient_task(
    session: Session,
    task_id: int,
    patient_id: int,
    *,
    for_update: bool = False,
) -> CarePlanTask:
    """Return a task owned by the patient; other owners look like a missing task."""
    task = fetch_task(session, task_id, for_update=for_update)
    if task.patient_id != patient_id:
        raise NotFoundError("Task not found.", {"task_id": task_id})
    return task


def fetch_visible_task(
    session: Session,
    task_id: int,
    viewer_id: int,
    *,
    for_update: bool = False,
) -> CarePlanTask:
    """Return a task visible to its owning patient or creating doctor."""
    task = fetch_task(session, task_id, for_update=for_update)
    if viewer_id not in {task.patient_id, task.created_by_doctor_id}:
        raise NotFoundError("Task not found.", {"task_id": task_id})
    return task


def guarded_task_update(
    session: Session,
    task: CarePlanTask,
    *,
    expected_approval: ApprovalStatus,
    expected_status: TaskStatus | None = None,
    values: Mapping[str, object],
) -> None:
    """Write ``values`` only if the row still holds the expected state.

    The check and the write are one statement, so a concurrent writer that
    resolved the task first makes this call raise ConflictError.
    """
    query = session.query(CarePlanTask).filter(
        CarePlanTask.id == task.id,
        CarePlanTask.approval_status == expected_approval,
    )
    if expected_status is not None:
        query = query.filter(CarePlanTask.status == expected_status)
    updated = query.update(dict(values), synchronize_session="fetch")
    if updated != 1:
        logger.warning(
            "Task changed concurrently: task_id=%s expected_approval=%s expected_status=%s",
            task.id,
            expected_approval.value,
            expected_status.value if expected_status is not None else None,
        )
        raise ConflictError(
            "Task was modified by another request.",
            {"task_id": task.id, "expected_approval": expected_approval.value},
        )
    session.refresh(task)


def apply_task_updates(
    task: CarePlanTask,
    updates: TaskUpdateInput,
    *,
    allow_state_change: bool = False,
) -> None:
    """Validate and apply field updates to a task instance."""
    limits = settings.care_plan
    if updates.title is not UNSET:
        task.title = require_non_empty(updates.title, "title", max_length=limits.title_max_length)
    if updates.description is not UNSET:
        task.description = optional_text(
            updates.description, max_length=limits.description_max_length
        )
    if updates.due_at is not UNSET:
        task.due_at = _normalize_optional_moment(updates.due_at)
    if updates.status is not UNSET or updates.approval_status is not UNSET:
        if not allow_state_change:
            raise ValueError("Task state updates must use the transition service.")
        if updates.status is not UNSET:
            task.status = updates.status
        if updates.approval_status is not UNSET:
            task.approval_status = updates.approval_status


def _normalize_optional_moment(value: date | datetime | None) -> datetime | None:
    """Normalize optional date or datetime values to UTC instants."""
    if value is None:
        return None
    return normalize_moment(value)
