"""Doctor data requests: pre-approved REQUEST tasks with derived reminders.

A request is created already approved because it is addressed to a patient
the doctor treats and it asks for data rather than proposing care.
"""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Callable

from sqlalchemy.orm import Session

from access.accounts import (
    require_doctor_account,
    require_doctor_relationship,
    require_patient_account,
)
from care_plan.check_in_repository import CheckInCreateInput, create_check_in_record
from config import settings
from errors import NotFoundError, ValidationError, map_exception
from models import (
    Appointment,
    ApprovalStatus,
    CarePlanTask,
    CheckInType,
    Recurrence,
    Reminder,
    RequestType,
    TaskKind,
    TaskStatus,
    User,
)
from observability import ACTOR_ID, OPERATION, PATIENT_ID, log_context
from reminders.repository import ReminderCreateInput, create_reminder_record
from reminders.scheduler import schedule_daily_instances
from time_utils import at_local_time, parse_time_of_day, to_local, to_utc
from validation import optional_text, parse_choice

logger = logging.getLogger(__name__)

REQUEST_CREATED_NOTE = "Request created by doctor."


@dataclass(frozen=True)
class DoctorRequestInput:
    """Input payload for a doctor data request."""

    doctor_id: int
    patient_id: int
    request_type: RequestType | str
    appointment_id: int | None = None
    note: str | None = None


@dataclass(frozen=True)
class DoctorRequestResult:
    """Created request task and the reminders derived from it."""

    task: CarePlanTask
    reminders: tuple[Reminder, ...]


@dataclass(frozen=True)
class _RequestContext:
    session: Session
    doctor: User
    patient: User
    payload: DoctorRequestInput
    note: str | None
    now: datetime


class DoctorRequestService:
    """Creates REQUEST tasks for patients a doctor already treats."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the service with a SQLAlchemy session factory."""
        self._session_factory = session_factory
        self._now_provider = now_provider or (lambda: datetime.now(timezone.utc))
        self._builders = {
            RequestType.PREVISIT_QUESTIONNAIRE: self._previsit_questionnaire,
            RequestType.BP_7_DAYS: self._blood_pressure_week,
            RequestType.UPLOAD_ANALYSIS: self._upload_analysis,
        }

    def create_request(self, payload: DoctorRequestInput) -> DoctorRequestResult:
        """Create one request task, its check-in and its reminders atomically."""
        request_type = parse_choice(RequestType, payload.request_type, "type")
        note = optional_text(payload.note, max_length=settings.care_plan.reason_max_length)
        if request_type is RequestType.PREVISIT_QUESTIONNAIRE and payload.appointment_id is None:
            raise ValidationError(
                "appointment_id is required for a pre-visit questionnaire.",
                {"field": "appointment_id"},
            )
        now = to_utc(self._now_provider())

        context_values = {
            ACTOR_ID: payload.doctor_id,
            PATIENT_ID: payload.patient_id,
            OPERATION: "doctor_request",
        }
        with log_context(context_values), closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                doctor = require_doctor_account(session, payload.doctor_id)
                require_doctor_relationship(session, doctor.id, payload.patient_id)
                patient = require_patient_account(session, payload.patient_id)
                context = _RequestContext(
                    session=session,
                    doctor=doctor,
                    patient=patient,
                    payload=payload,
                    note=note,
                    now=now,
                )
                result = self._builders[request_type](context)
                session.commit()
            except Exception as exc:
                session.rollback()
                raise map_exception(exc) from exc

            logger.info(
                "Doctor request created: task_id=%s request_type=%s reminders=%s",
                result.task.id,
                request_type.value,
                len(result.reminders),
            )
        return result

    def _previsit_questionnaire(self, context: _RequestContext) -> DoctorRequestResult:
        appointment = (
            context.session.query(Appointment)
            .filter(
                Appointment.id == context.payload.appointment_id,
                Appointment.doctor_id == context.doctor.id,
                Appointment.patient_id == context.patient.id,
            )
            .one_or_none()
        )
        if appointment is None:
            raise NotFoundError(
                "Appointment not found.", {"appointment_id": context.payload.appointment_id}
            )
        config = settings.reminders
        due_at = appointment.scheduled_at - timedelta(hours=config.previsit_lead_hours)
        if due_at <= context.now:
            due_at = context.now + timedelta(minutes=config.previsit_fallback_minutes)
        scheduled_label = to_local(appointment.scheduled_at).strftime("%Y-%m-%d %H:%M")
        task = _create_request_task(
            context,
            RequestType.PREVISIT_QUESTIONNAIRE,
            title="Fill in the pre-visit questionnaire",
            instructions="Please fill in the questionnaire 24-48 hours before the appointment.",
            link=f"/pre-visit/{appointment.id}",
            due_at=due_at,
            meta={"appointment_id": appointment.id},
        )
        reminder = create_reminder_record(
            context.session,
            ReminderCreateInput(
                user_id=context.patient.id,
                title="Pre-visit questionnaire",
                description=(
                    f"Fill in the questionnaire before your appointment ({scheduled_label}). "
                    f"Open: /pre-visit/{appointment.id}"
                ),
                due_at=due_at,
                task_id=task.id,
            ),
            now=context.now,
        )
        task.reminder_id = reminder.id
        context.session.flush()
        return DoctorRequestResult(task=task, reminders=(reminder,))

    def _blood_pressure_week(self, context: _RequestContext) -> DoctorRequestResult:
        config = settings.reminders
        days = config.blood_pressure_days
        task = _create_request_task(
            context,
            RequestType.BP_7_DAYS,
            title=f"Log blood pressure for {days} days",
            instructions=(
                "Please record blood pressure (systolic/diastolic) and pulse "
                "once or twice a day in the diary."
            ),
            link="/diary",
            due_at=context.now + timedelta(days=days),
            meta={"start_date": context.now.isoformat(), "days": days},
        )
        reminders = schedule_daily_instances(
            context.session,
            user_id=context.patient.id,
            title="Blood pressure: log a reading",
            description="Doctor request: add blood pressure and pulse to the diary. Open: /diary",
            start=context.now,
            days=days,
            at=parse_time_of_day(config.blood_pressure_reminder_time),
            now=context.now,
            task_id=task.id,
        )
        return DoctorRequestResult(task=task, reminders=tuple(reminders))

    def _upload_analysis(self, context: _RequestContext) -> DoctorRequestResult:
        config = settings.reminders
        task = _create_request_task(
            context,
            RequestType.UPLOAD_ANALYSIS,
            title="Upload a lab result or document",
            instructions="Please upload the lab result or document to the Documents section.",
            link="/documents",
            due_at=context.now + timedelta(days=config.upload_analysis_due_days),
            meta={"requested_at": context.now.isoformat()},
        )
        remind_at = at_local_time(
            context.now + timedelta(days=1),
            parse_time_of_day(config.upload_analysis_reminder_time),
        )
        reminders: tuple[Reminder, ...] = ()
        if remind_at > context.now:
            reminder = create_reminder_record(
                context.session,
                ReminderCreateInput(
                    user_id=context.patient.id,
                    title="Upload your lab result",
                    description="Doctor request: upload a lab result or document. Open: /documents",
                    due_at=remind_at,
                    task_id=task.id,
                ),
                now=context.now,
            )
            reminders = (reminder,)
        return DoctorRequestResult(task=task, reminders=reminders)


def _create_request_task(
    context: _RequestContext,
    request_type: RequestType,
    *,
    title: str,
    instructions: str,
    link: str,
    due_at: datetime,
    meta: dict[str, object],
) -> CarePlanTask:
    """Persist the REQUEST task and its creation check-in."""
    doctor_name = context.doctor.name or context.doctor.email
    lines = [f"Request from doctor: {doctor_name}.", instructions]
    if context.note:
        lines.append(f"Comment: {context.note}")
    lines.append(f"Link: {link}")
    task = CarePlanTask(
        patient_id=context.patient.id,
        created_by_doctor_id=context.doctor.id,
        kind=TaskKind.REQUEST,
        request_type=request_type,
        request_meta=meta,
        title=title,
        description="\n".join(lines),
        due_at=due_at,
        recurrence=Recurrence.NONE,
        status=TaskStatus.ACTIVE,
        approval_status=ApprovalStatus.APPROVED,
        approved_at=context.now,
        created_at=context.now,
        updated_at=context.now,
    )
    context.session.add(task)
    context.session.flush()
    create_check_in_record(
        context.session,
        CheckInCreateInput(task_id=task.id, type=CheckInType.NOTE, reason=REQUEST_CREATED_NOTE),
        now=context.now,
    )
    return task
