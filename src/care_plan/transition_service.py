"""Atomic care-plan task transitions with check-in audit records.

Every public method runs as one transaction: the task row is re-read and its
approval/activity state is checked by the same conditional UPDATE that writes
the new state, so a concurrent writer that got there first yields
ConflictError instead of a double transition.
"""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import date, datetime, timezone
import enum
import logging
from typing import Callable

from sqlalchemy.orm import Session

from care_plan.check_in_repository import CheckInCreateInput, create_check_in_record
from care_plan.task_repository import (
    UNSET,
    TaskUpdateInput,
    apply_task_updates,
    fetch_patient_task,
    fetch_visible_task,
    guarded_task_update,
)
from config import settings
from errors import AuthorizationError, ConflictError, map_exception
from models import ApprovalStatus, CarePlanTask, CheckInType, TaskStatus
from observability import ACTOR_ID, OPERATION, TASK_ID, log_context
from reminders.repository import delete_reminder_record
from reminders.scheduler import materialize_reminder
from time_utils import normalize_moment, to_utc
from validation import optional_text, parse_choice, require_reason

logger = logging.getLogger(__name__)


class TaskAction(str, enum.Enum):
    """Actions accepted by the task PATCH surface."""

    COMPLETE = "complete"
    REOPEN = "reopen"
    SNOOZE = "snooze"
    NOTE = "note"
    UPDATE = "update"


@dataclass(frozen=True)
class ActivityTransition:
    """Allowed source states, target state and audit type for one action."""

    from_states: frozenset[TaskStatus]
    to_state: TaskStatus
    check_in_type: CheckInType


_ALLOWED_ACTIVITY_TRANSITIONS: dict[TaskAction, ActivityTransition] = {
    TaskAction.COMPLETE: ActivityTransition(
        frozenset({TaskStatus.ACTIVE, TaskStatus.SNOOZED}),
        TaskStatus.COMPLETED,
        CheckInType.COMPLETE,
    ),
    TaskAction.REOPEN: ActivityTransition(
        frozenset({TaskStatus.COMPLETED, TaskStatus.SNOOZED}),
        TaskStatus.ACTIVE,
        CheckInType.REOPEN,
    ),
    TaskAction.SNOOZE: ActivityTransition(
        frozenset({TaskStatus.ACTIVE, TaskStatus.SNOOZED}),
        TaskStatus.SNOOZED,
        CheckInType.SNOOZE,
    ),
}

_REMINDER_FIELDS = ("title", "description", "due_at")


@dataclass(frozen=True)
class TaskActionInput:
    """Input payload for one PATCH-style task action.

    Field values may accompany any action; they are applied before the action
    in the same transaction.
    """

    action: TaskAction | str = TaskAction.UPDATE
    reason: str | None = None
    snoozed_until: date | datetime | None = None
    title: str | object = UNSET
    description: str | None | object = UNSET
    due_at: date | datetime | None | object = UNSET

    def field_updates(self) -> TaskUpdateInput:
        """Return the descriptive field updates carried by the payload."""
        return TaskUpdateInput(title=self.title, description=self.description, due_at=self.due_at)

    def has_field_updates(self) -> bool:
        """Return True when any descriptive field is set."""
        return any(getattr(self, name) is not UNSET for name in _REMINDER_FIELDS)


class CarePlanTransitionService:
    """Service for approval and activity transitions of care-plan tasks."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the service with a SQLAlchemy session factory."""
        self._session_factory = session_factory
        self._now_provider = now_provider or (lambda: datetime.now(timezone.utc))

    def approve(self, task_id: int, acting_patient_id: int) -> CarePlanTask:
        """Approve a pending task and materialize its reminder when it has a due date."""
        with log_context({TASK_ID: task_id, ACTOR_ID: acting_patient_id, OPERATION: "approve"}):
            return self._execute(
                lambda session, now: self._approve(session, task_id, acting_patient_id, now)
            )

    def reject(self, task_id: int, acting_patient_id: int, reason: str | None) -> CarePlanTask:
        """Reject a pending task with a mandatory reason; no reminder is created."""
        normalized = require_reason(reason)
        with log_context({TASK_ID: task_id, ACTOR_ID: acting_patient_id, OPERATION: "reject"}):
            return self._execute(
                lambda session, now: self._reject(
                    session, task_id, acting_patient_id, normalized, now
                )
            )

    def complete(self, task_id: int, actor_id: int) -> CarePlanTask:
        """Mark an approved task completed."""
        return self.apply_action(task_id, actor_id, TaskActionInput(action=TaskAction.COMPLETE))

    def reopen(self, task_id: int, actor_id: int) -> CarePlanTask:
        """Return a completed or snoozed task to active."""
        return self.apply_action(task_id, actor_id, TaskActionInput(action=TaskAction.REOPEN))

    def snooze(
        self,
        task_id: int,
        actor_id: int,
        reason: str | None,
        *,
        until: date | datetime | None = None,
    ) -> CarePlanTask:
        """Defer a task; a reason is mandatory."""
        return self.apply_action(
            task_id,
            actor_id,
            TaskActionInput(action=TaskAction.SNOOZE, reason=reason, snoozed_until=until),
        )

    def note(self, task_id: int, actor_id: int, reason: str | None) -> CarePlanTask:
        """Append a free-form note without changing task state."""
        return self.apply_action(
            task_id, actor_id, TaskActionInput(action=TaskAction.NOTE, reason=reason)
        )

    def update_fields(self, task_id: int, actor_id: int, updates: TaskUpdateInput) -> CarePlanTask:
        """Edit title, description or due date."""
        return self.apply_action(
            task_id,
            actor_id,
            TaskActionInput(
                action=TaskAction.UPDATE,
                title=updates.title,
                description=updates.description,
                due_at=updates.due_at,
            ),
        )

    def apply_action(self, task_id: int, actor_id: int, payload: TaskActionInput) -> CarePlanTask:
        """Validate and apply one task action atomically."""
        action = parse_choice(TaskAction, payload.action, "action")
        if action in {TaskAction.SNOOZE, TaskAction.NOTE}:
            reason = require_reason(payload.reason)
        else:
            reason = optional_text(
                payload.reason, max_length=settings.care_plan.reason_max_length
            )
        until = normalize_moment(payload.snoozed_until) if payload.snoozed_until else None

        def handler(session: Session, now: datetime) -> CarePlanTask:
            task = fetch_visible_task(session, task_id, actor_id, for_update=True)
            if payload.has_field_updates():
                self._update_fields(session, task, payload.field_updates(), now)
            if action is TaskAction.NOTE:
                self._append_check_in(session, task, CheckInType.NOTE, reason, now)
            elif action is not TaskAction.UPDATE:
                self._transition_activity(
                    session, task, actor_id, action, reason=reason, until=until, now=now
                )
            return task

        with log_context({TASK_ID: task_id, ACTOR_ID: actor_id, OPERATION: action.value}):
            return self._execute(handler)

    def _approve(
        self,
        session: Session,
        task_id: int,
        patient_id: int,
        now: datetime,
    ) -> CarePlanTask:
        task = fetch_patient_task(session, task_id, patient_id, for_update=True)
        _require_pending(task)
        guarded_task_update(
            session,
            task,
            expected_approval=ApprovalStatus.PENDING,
            values={
                "approval_status": ApprovalStatus.APPROVED,
                "approved_at": now,
                "rejected_at": None,
                "rejection_reason": None,
                "updated_at": now,
            },
        )
        if task.due_at is not None:
            reminder = materialize_reminder(session, task, now=now)
            task.reminder_id = reminder.id
            session.flush()
        self._append_check_in(session, task, CheckInType.NOTE, "Patient approved the task.", now)
        logger.info("Task approved: task_id=%s reminder_id=%s", task.id, task.reminder_id)
        return task

    def _reject(
        self,
        session: Session,
        task_id: int,
        patient_id: int,
        reason: str,
        now: datetime,
    ) -> CarePlanTask:
        task = fetch_patient_task(session, task_id, patient_id, for_update=True)
        _require_pending(task)
        guarded_task_update(
            session,
            task,
            expected_approval=ApprovalStatus.PENDING,
            values={
                "approval_status": ApprovalStatus.REJECTED,
                "rejected_at": now,
                "rejection_reason": reason,
                "updated_at": now,
            },
        )
        self._append_check_in(
            session, task, CheckInType.NOTE, f"Patient rejected the task: {reason}", now
        )
        logger.info("Task rejected: task_id=%s", task.id)
        return task

    def _transition_activity(
        self,
        session: Session,
        task: CarePlanTask,
        actor_id: int,
        action: TaskAction,
        *,
        reason: str | None,
        until: datetime | None,
        now: datetime,
    ) -> None:
        if actor_id != task.patient_id:
            raise AuthorizationError(
                "Only the patient can change the task status.",
                {"task_id": task.id, "action": action.value},
            )
        if task.approval_status != ApprovalStatus.APPROVED:
            raise ConflictError(
                "Task is not approved.",
                {"task_id": task.id, "approval_status": task.approval_status.value},
            )
        transition = _ALLOWED_ACTIVITY_TRANSITIONS[action]
        from_state = task.status
        if from_state not in transition.from_states:
            raise ConflictError(
                f"Cannot {action.value} a task in state {from_state.value}.",
                {"task_id": task.id, "status": from_state.value, "action": action.value},
            )
        values: dict[str, object] = {"status": transition.to_state, "updated_at": now}
        if action is TaskAction.SNOOZE:
            values["snoozed_until"] = until or task.due_at
        else:
            values["snoozed_until"] = None
        guarded_task_update(
            session,
            task,
            expected_approval=ApprovalStatus.APPROVED,
            expected_status=from_state,
            values=values,
        )
        self._append_check_in(session, task, transition.check_in_type, reason, now)
        logger.info(
            "Task status changed: task_id=%s from_state=%s to_state=%s",
            task.id,
            from_state.value,
            transition.to_state.value,
        )

    def _update_fields(
        self,
        session: Session,
        task: CarePlanTask,
        updates: TaskUpdateInput,
        now: datetime,
    ) -> None:
        """Apply descriptive edits and re-derive the task's reminder.

        A linked reminder is replaced by a fresh one built from the edited
        task; clearing the due date only removes it. Giving an approved
        undated task a due date materializes its first reminder.
        """
        apply_task_updates(task, updates)
        task.updated_at = now
        session.flush()
        if task.approval_status != ApprovalStatus.APPROVED:
            return
        gains_due_date = updates.due_at is not UNSET and task.due_at is not None
        if task.reminder_id is None and not gains_due_date:
            return
        previous_reminder_id = task.reminder_id
        if previous_reminder_id is not None:
            task.reminder_id = None
            session.flush()
            delete_reminder_record(session, previous_reminder_id)
        if task.due_at is not None:
            reminder = materialize_reminder(session, task, now=now)
            task.reminder_id = reminder.id
            session.flush()
        logger.info(
            "Task reminder re-derived: task_id=%s previous_reminder_id=%s reminder_id=%s",
            task.id,
            previous_reminder_id,
            task.reminder_id,
        )

    def _append_check_in(
        self,
        session: Session,
        task: CarePlanTask,
        check_in_type: CheckInType,
        reason: str | None,
        now: datetime,
    ) -> None:
        create_check_in_record(
            session,
            CheckInCreateInput(task_id=task.id, type=check_in_type, reason=reason),
            now=now,
        )

    def _execute(self, handler: Callable[[Session, datetime], CarePlanTask]) -> CarePlanTask:
        """Run transition work inside one transaction."""
        now = to_utc(self._now_provider())
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session, now)
                session.commit()
            except Exception as exc:
                session.rollback()
                raise map_exception(exc) from exc
        return result


def _require_pending(task: CarePlanTask) -> None:
    """Raise ConflictError when the approval has already been resolved."""
    if task.approval_status != ApprovalStatus.PENDING:
        raise ConflictError(
            "Task approval has already been resolved.",
            {"task_id": task.id, "approval_status": task.approval_status.value},
        )
