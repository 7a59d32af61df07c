"""Care-plan operations exposed to transport adapters.

Each method takes the acting principal, resolves it and delegates to the
generator, the transition service or the repositories.
"""

from __future__ import annotations

from contextlib import closing
from datetime import date, datetime, timezone
import logging
from typing import Callable

from sqlalchemy.orm import Session

from access.resolver import Principal, require_principal
from care_plan.check_in_repository import list_recent_check_ins
from care_plan.generator import CarePlanTaskGenerator
from care_plan.requests import DoctorRequestInput, DoctorRequestResult, DoctorRequestService
from care_plan.task_repository import (
    CarePlanTaskRepository,
    TaskCreateInput,
    TaskWithCheckIns,
    fetch_visible_task,
)
from care_plan.transition_service import CarePlanTransitionService, TaskActionInput
from errors import map_exception
from models import CarePlanCheckIn, CarePlanTask, TaskStatus

logger = logging.getLogger(__name__)


class CarePlanService:
    """Facade over protocol application, approvals, task actions and listings."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the service with a SQLAlchemy session factory."""
        self._session_factory = session_factory
        provider = now_provider or (lambda: datetime.now(timezone.utc))
        self._generator = CarePlanTaskGenerator(session_factory, now_provider=provider)
        self._transitions = CarePlanTransitionService(session_factory, now_provider=provider)
        self._requests = DoctorRequestService(session_factory, now_provider=provider)
        self._tasks = CarePlanTaskRepository(session_factory)
        self._now_provider = provider

    def apply_protocol(
        self,
        principal: Principal | None,
        *,
        patient_id: int,
        protocol_key: str,
        start_date: date | datetime | None = None,
    ) -> list[CarePlanTask]:
        """Apply a protocol as the acting doctor."""
        doctor_id = require_principal(principal)
        return self._generator.apply_protocol(
            protocol_key=protocol_key,
            patient_id=patient_id,
            doctor_id=doctor_id,
            start_date=start_date,
        )

    def approve_task(self, principal: Principal | None, task_id: int) -> CarePlanTask:
        """Approve a pending task as its patient."""
        return self._transitions.approve(task_id, require_principal(principal))

    def reject_task(
        self, principal: Principal | None, task_id: int, reason: str | None
    ) -> CarePlanTask:
        """Reject a pending task as its patient."""
        return self._transitions.reject(task_id, require_principal(principal), reason)

    def task_action(
        self, principal: Principal | None, task_id: int, payload: TaskActionInput
    ) -> CarePlanTask:
        """Apply complete/reopen/snooze/note/update to a task."""
        return self._transitions.apply_action(task_id, require_principal(principal), payload)

    def create_task(self, principal: Principal | None, payload: TaskCreateInput) -> CarePlanTask:
        """Create a patient-authored task for the acting patient."""
        patient_id = require_principal(principal)
        return self._tasks.create(
            TaskCreateInput(
                patient_id=patient_id,
                title=payload.title,
                description=payload.description,
                due_at=payload.due_at,
                recurrence=payload.recurrence,
                analysis_id=payload.analysis_id,
                document_id=payload.document_id,
            ),
            now=self._now_provider(),
        )

    def delete_task(self, principal: Principal | None, task_id: int) -> None:
        """Delete one of the acting patient's tasks."""
        self._tasks.delete(task_id, patient_id=require_principal(principal))

    def list_tasks(
        self,
        principal: Principal | None,
        *,
        status: TaskStatus | str | None = None,
        include_pending: bool = False,
    ) -> list[TaskWithCheckIns]:
        """List the acting patient's tasks with recent check-ins."""
        return self._tasks.list_for_patient(
            require_principal(principal), status=status, include_pending=include_pending
        )

    def list_pending_approvals(self, principal: Principal | None) -> list[CarePlanTask]:
        """List tasks awaiting the acting patient's decision."""
        return self._tasks.list_pending_approvals(require_principal(principal))

    def list_open_requests(self, principal: Principal | None) -> list[CarePlanTask]:
        """List open doctor requests addressed to the acting patient."""
        return self._tasks.list_open_requests(require_principal(principal))

    def create_doctor_request(
        self,
        principal: Principal | None,
        *,
        patient_id: int,
        request_type: str,
        appointment_id: int | None = None,
        note: str | None = None,
    ) -> DoctorRequestResult:
        """Create a data request as the acting doctor."""
        return self._requests.create_request(
            DoctorRequestInput(
                doctor_id=require_principal(principal),
                patient_id=patient_id,
                request_type=request_type,
                appointment_id=appointment_id,
                note=note,
            )
        )

    def list_check_ins(
        self,
        principal: Principal | None,
        task_id: int,
        *,
        limit: int | None = None,
    ) -> list[CarePlanCheckIn]:
        """Return a visible task's check-ins, newest first."""
        viewer_id = require_principal(principal)
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                fetch_visible_task(session, task_id, viewer_id)
                check_ins = list_recent_check_ins(session, task_id, limit=limit)
                session.commit()
            except Exception as exc:
                session.rollback()
                raise map_exception(exc) from exc
        return check_ins
