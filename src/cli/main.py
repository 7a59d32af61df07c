"""Care-plan command-line interface implemented with Typer."""

from __future__ import annotations

import dataclasses
import json
import sys
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable

import typer
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from access.accounts import AccountRepository, UserCreateInput
from access.relationship_repository import CareLinkGrantInput, CareRelationshipRepository
from access.resolver import Principal
from care_plan.service import CarePlanService
from care_plan.task_repository import UNSET, TaskCreateInput, TaskWithCheckIns
from care_plan.transition_service import TaskAction, TaskActionInput
from config import settings
from diary.service import DiaryEntryInput, DiaryService
from errors import AuthenticationError, CarePlanError, ValidationError
from models import Base
from observability import configure_logging
from protocols import list_protocols
from reminders.medication_plan import MedicationPlanInput, MedicationReminderPlanner
from reminders.preference_repository import ReminderPreferenceInput, ReminderPreferenceRepository
from reminders.service import AdHocReminderInput, ReminderService
from services.database import (
    build_engine,
    check_connection,
    get_session_factory,
    get_sync_engine,
    init_db,
    run_migrations_sync,
)

SUCCESS_EXIT_CODE = 0
DOMAIN_ERROR_EXIT_CODE = 3

_MOMENT_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M"]


@dataclass(frozen=True)
class CliConfig:
    """Global CLI runtime options."""

    actor: int | None
    as_json: bool
    engine: Engine
    session_factory: Callable[[], Session]

    @property
    def principal(self) -> Principal:
        return Principal(user_id=self.actor)


def _serialize(value: Any) -> Any:
    """Convert result objects to JSON-serializable structures."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Base):
        return {
            column.key: _serialize(getattr(value, column.key))
            for column in value.__table__.columns
        }
    if dataclasses.is_dataclass(value):
        return {
            field.name: _serialize(getattr(value, field.name))
            for field in dataclasses.fields(value)
        }
    if isinstance(value, dict):
        return {str(key): _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_serialize(item) for item in value]
    if hasattr(value, "model_dump"):
        return _serialize(value.model_dump(mode="python"))
    return str(value)


def _emit_output(result: Any, as_json: bool) -> None:
    """Render command output in requested format."""
    data = _serialize(result)
    if as_json:
        typer.echo(json.dumps(data, sort_keys=True, separators=(",", ":")))
        return
    rendered = _render_human(data)
    if rendered is not None:
        typer.echo(rendered)
        return
    if data is None:
        typer.echo("ok")
        return
    typer.echo(str(data))


def _emit_error(exc: CarePlanError, as_json: bool) -> None:
    """Render mapped domain errors to stderr."""
    if as_json:
        typer.echo(json.dumps({"error": exc.to_dict()}), err=True)
        return
    typer.echo(f"error: {exc.message}", err=True)


def _render_human(data: Any) -> str | None:
    """Return human-oriented rendering for recognized response shapes."""
    if isinstance(data, list) and data and all(_looks_like_task(item) for item in data):
        return "\n".join(_render_task(item) for item in data)
    if isinstance(data, list) and data and all(_looks_like_task_view(item) for item in data):
        return "\n".join(_render_task_view(item) for item in data)
    if isinstance(data, list) and not data:
        return "No entries found."
    if isinstance(data, (dict, list)):
        return json.dumps(data, indent=2, sort_keys=True)
    return None


def _looks_like_task(value: Any) -> bool:
    """Return True for serialized task rows."""
    return isinstance(value, dict) and "approval_status" in value and "title" in value


def _looks_like_task_view(value: Any) -> bool:
    """Return True for tasks listed with their check-in preview."""
    return isinstance(value, dict) and "task" in value and "recent_check_ins" in value


def _render_task(task: dict[str, Any]) -> str:
    """Render one task row."""
    due = task.get("due_at") or "no due date"
    return (
        f"#{task['id']} [{task['approval_status']}/{task['status']}] "
        f"{task['title']} (due: {due})"
    )


def _render_task_view(view: dict[str, Any]) -> str:
    """Render one task with its recent check-ins."""
    lines = [_render_task(view["task"])]
    for check_in in view["recent_check_ins"]:
        reason = check_in.get("reason") or ""
        lines.append(f"  {check_in['created_at']} {check_in['type']} {reason}".rstrip())
    return "\n".join(lines)


def _run_command(cfg: CliConfig, invoke: Callable[[], Any]) -> None:
    """Execute one operation and map outputs/errors to process semantics."""
    try:
        result = invoke()
    except CarePlanError as exc:
        _emit_error(exc, cfg.as_json)
        raise typer.Exit(code=DOMAIN_ERROR_EXIT_CODE) from exc

    _emit_output(result, cfg.as_json)
    raise typer.Exit(code=SUCCESS_EXIT_CODE)


def _require_config(ctx: typer.Context) -> CliConfig:
    """Return required CLI config from Typer context."""
    config = ctx.obj
    if not isinstance(config, CliConfig):
        raise RuntimeError("CLI configuration not initialized")
    return config


def _as_date(value: datetime | None) -> date | datetime | None:
    """Treat midnight values parsed from a date-only string as calendar dates."""
    if value is None:
        return None
    if value.hour == 0 and value.minute == 0 and value.second == 0:
        return value.date()
    return value


def _parse_permissions(raw: str | None) -> dict[str, Any] | None:
    """Parse a JSON permissions map passed on the command line."""
    if raw is None:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError("permissions must be valid JSON.", {"field": "permissions"}) from exc
    if not isinstance(parsed, dict):
        raise ValidationError("permissions must be a JSON object.", {"field": "permissions"})
    return parsed


app = typer.Typer(no_args_is_help=True, help="Care-plan task and reminder engine")


@app.callback()
def main(
    ctx: typer.Context,
    actor: int | None = typer.Option(None, "--actor", help="Acting user id"),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON output"),
    database_url: str | None = typer.Option(
        None, "--database-url", envvar="DATABASE_URL", help="Override the database URL"
    ),
) -> None:
    """Store global options for all commands."""
    configure_logging(level=settings.log_level, json_output=settings.log_json, stream=sys.stderr)
    if database_url:
        engine = build_engine(database_url)
        session_factory = sessionmaker(bind=engine)
    else:
        engine = get_sync_engine()
        session_factory = get_session_factory()
    ctx.obj = CliConfig(
        actor=actor, as_json=as_json, engine=engine, session_factory=session_factory
    )


@app.command("init-db")
def init_db_command(
    ctx: typer.Context,
    migrate: bool = typer.Option(False, "--migrate", help="Apply Alembic migrations instead"),
) -> None:
    """Create the schema in the configured database."""
    cfg = _require_config(ctx)
    if migrate:
        run_migrations_sync(cfg.engine.url.render_as_string(hide_password=False))
    else:
        init_db(cfg.engine)
    if not check_connection(cfg.engine):
        typer.echo("error: database connection check failed", err=True)
        raise typer.Exit(code=DOMAIN_ERROR_EXIT_CODE)
    _emit_output({"schema": "ready"}, cfg.as_json)


@app.command("add-user")
def add_user_command(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Account email"),
    role: str = typer.Argument(..., help="PATIENT, DOCTOR, CARETAKER or ADMIN"),
    name: str | None = typer.Option(None, help="Display name"),
) -> None:
    """Register an account."""
    cfg = _require_config(ctx)
    repo = AccountRepository(cfg.session_factory)
    _run_command(cfg, lambda: repo.create_user(UserCreateInput(email=email, role=role, name=name)))


@app.command("link-patient")
def link_patient_command(
    ctx: typer.Context,
    patient_id: int = typer.Argument(..., help="Patient user id"),
) -> None:
    """Record a clinical relationship between the acting doctor and a patient."""
    cfg = _require_config(ctx)
    repo = AccountRepository(cfg.session_factory)
    _run_command(
        cfg,
        lambda: repo.ensure_patient_record(_actor_id(cfg), patient_id),
    )


@app.command("protocols")
def protocols_command(ctx: typer.Context) -> None:
    """List the protocol catalog."""
    cfg = _require_config(ctx)
    _run_command(cfg, list_protocols)


@app.command("apply-protocol")
def apply_protocol_command(
    ctx: typer.Context,
    patient_id: int = typer.Argument(..., help="Patient user id"),
    protocol_key: str = typer.Argument(..., help="Protocol key"),
    start_date: datetime | None = typer.Option(None, formats=_MOMENT_FORMATS, help="Start date"),
) -> None:
    """Apply a protocol to a patient as the acting doctor."""
    cfg = _require_config(ctx)
    service = CarePlanService(cfg.session_factory)
    _run_command(
        cfg,
        lambda: service.apply_protocol(
            cfg.principal,
            patient_id=patient_id,
            protocol_key=protocol_key,
            start_date=_as_date(start_date),
        ),
    )


@app.command("approvals")
def approvals_command(ctx: typer.Context) -> None:
    """List tasks awaiting the acting patient's approval."""
    cfg = _require_config(ctx)
    service = CarePlanService(cfg.session_factory)
    _run_command(cfg, lambda: service.list_pending_approvals(cfg.principal))


@app.command("approve")
def approve_command(
    ctx: typer.Context, task_id: int = typer.Argument(..., help="Task id")
) -> None:
    """Approve a pending task."""
    cfg = _require_config(ctx)
    service = CarePlanService(cfg.session_factory)
    _run_command(cfg, lambda: service.approve_task(cfg.principal, task_id))


@app.command("reject")
def reject_command(
    ctx: typer.Context,
    task_id: int = typer.Argument(..., help="Task id"),
    reason: str = typer.Argument(..., help="Why the task is rejected"),
) -> None:
    """Reject a pending task."""
    cfg = _require_config(ctx)
    service = CarePlanService(cfg.session_factory)
    _run_command(cfg, lambda: service.reject_task(cfg.principal, task_id, reason))


@app.command("task")
def task_command(
    ctx: typer.Context,
    task_id: int = typer.Argument(..., help="Task id"),
    action: TaskAction = typer.Argument(..., case_sensitive=False, help="Action to apply"),
    reason: str | None = typer.Option(None, help="Reason or note text"),
    until: datetime | None = typer.Option(None, formats=_MOMENT_FORMATS, help="Snooze until"),
    title: str | None = typer.Option(None, help="New title"),
    description: str | None = typer.Option(None, help="New description"),
    due: datetime | None = typer.Option(None, formats=_MOMENT_FORMATS, help="New due date"),
    clear_due: bool = typer.Option(False, "--clear-due", help="Remove the due date"),
) -> None:
    """Complete, reopen, snooze, annotate or edit a task."""
    cfg = _require_config(ctx)
    service = CarePlanService(cfg.session_factory)
    due_value: object = UNSET
    if clear_due:
        due_value = None
    elif due is not None:
        due_value = due
    payload = TaskActionInput(
        action=action,
        reason=reason,
        snoozed_until=until,
        title=title if title is not None else UNSET,
        description=description if description is not None else UNSET,
        due_at=due_value,
    )
    _run_command(cfg, lambda: service.task_action(cfg.principal, task_id, payload))


@app.command("tasks")
def tasks_command(
    ctx: typer.Context,
    status: str | None = typer.Option(None, help="ACTIVE, SNOOZED or COMPLETED"),
    include_pending: bool = typer.Option(False, "--include-pending", help="Include unapproved"),
) -> None:
    """List the acting patient's tasks with recent check-ins."""
    cfg = _require_config(ctx)
    service = CarePlanService(cfg.session_factory)

    def invoke() -> list[TaskWithCheckIns]:
        return service.list_tasks(cfg.principal, status=status, include_pending=include_pending)

    _run_command(cfg, invoke)


@app.command("requests")
def requests_command(ctx: typer.Context) -> None:
    """List open doctor requests for the acting patient."""
    cfg = _require_config(ctx)
    service = CarePlanService(cfg.session_factory)
    _run_command(cfg, lambda: service.list_open_requests(cfg.principal))


@app.command("request")
def request_command(
    ctx: typer.Context,
    patient_id: int = typer.Argument(..., help="Patient user id"),
    request_type: str = typer.Argument(
        ..., help="PREVISIT_QUESTIONNAIRE, BP_7_DAYS or UPLOAD_ANALYSIS"
    ),
    appointment_id: int | None = typer.Option(None, help="Appointment for questionnaires"),
    note: str | None = typer.Option(None, help="Comment for the patient"),
) -> None:
    """Create a data request as the acting doctor."""
    cfg = _require_config(ctx)
    service = CarePlanService(cfg.session_factory)
    _run_command(
        cfg,
        lambda: service.create_doctor_request(
            cfg.principal,
            patient_id=patient_id,
            request_type=request_type,
            appointment_id=appointment_id,
            note=note,
        ),
    )


@app.command("history")
def history_command(
    ctx: typer.Context,
    task_id: int = typer.Argument(..., help="Task id"),
    limit: int | None = typer.Option(None, min=1, help="Maximum entries"),
) -> None:
    """Show a task's check-ins, newest first."""
    cfg = _require_config(ctx)
    service = CarePlanService(cfg.session_factory)
    _run_command(cfg, lambda: service.list_check_ins(cfg.principal, task_id, limit=limit))


@app.command("add-task")
def add_task_command(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Task title"),
    description: str | None = typer.Option(None, help="Task description"),
    due: datetime | None = typer.Option(None, formats=_MOMENT_FORMATS, help="Due date"),
    recurrence: str = typer.Option("NONE", help="NONE, DAILY, WEEKLY, MONTHLY or YEARLY"),
) -> None:
    """Create a task for the acting patient; it starts approved."""
    cfg = _require_config(ctx)
    service = CarePlanService(cfg.session_factory)
    payload = TaskCreateInput(
        patient_id=0,
        title=title,
        description=description,
        due_at=_as_date(due),
        recurrence=recurrence,
    )
    _run_command(cfg, lambda: service.create_task(cfg.principal, payload))


@app.command("delete-task")
def delete_task_command(
    ctx: typer.Context, task_id: int = typer.Argument(..., help="Task id")
) -> None:
    """Delete one of the acting patient's tasks and its history."""
    cfg = _require_config(ctx)
    service = CarePlanService(cfg.session_factory)
    _run_command(cfg, lambda: service.delete_task(cfg.principal, task_id))


@app.command("reminders")
def reminders_command(
    ctx: typer.Context,
    patient_id: int | None = typer.Option(None, "--patient", help="Patient user id"),
) -> None:
    """List reminders for the acting user or a patient they care for."""
    cfg = _require_config(ctx)
    service = ReminderService(cfg.session_factory)
    _run_command(cfg, lambda: service.list_for_patient(cfg.principal, patient_id=patient_id))


@app.command("remind")
def remind_command(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Reminder title"),
    due: datetime = typer.Argument(..., formats=_MOMENT_FORMATS, help="Due moment"),
    recurrence: str = typer.Option("NONE", help="NONE, DAILY, WEEKLY, MONTHLY or YEARLY"),
    channel: list[str] | None = typer.Option(
        None, "--channel", help="EMAIL, PUSH or SMS; at least one is required"
    ),
    description: str | None = typer.Option(None, help="Reminder text"),
    patient_id: int | None = typer.Option(None, "--patient", help="Patient user id"),
) -> None:
    """Create an ad-hoc reminder."""
    cfg = _require_config(ctx)
    service = ReminderService(cfg.session_factory)
    payload = AdHocReminderInput(
        title=title,
        due_at=due,
        description=description,
        recurrence=recurrence,
        channels=channel or None,
    )
    _run_command(
        cfg, lambda: service.create_ad_hoc(cfg.principal, payload, patient_id=patient_id)
    )


@app.command("unremind")
def unremind_command(
    ctx: typer.Context,
    reminder_id: int = typer.Argument(..., help="Reminder id"),
    patient_id: int | None = typer.Option(None, "--patient", help="Patient user id"),
) -> None:
    """Delete a reminder."""
    cfg = _require_config(ctx)
    service = ReminderService(cfg.session_factory)
    _run_command(
        cfg, lambda: service.delete(cfg.principal, reminder_id, patient_id=patient_id)
    )


@app.command("preferences")
def preferences_command(
    ctx: typer.Context,
    email: bool = typer.Option(False, "--email/--no-email", help="Deliver by email"),
    push: bool = typer.Option(True, "--push/--no-push", help="Deliver by push"),
    sms: bool = typer.Option(False, "--sms/--no-sms", help="Deliver by SMS"),
) -> None:
    """Store the acting user's reminder channel preferences."""
    cfg = _require_config(ctx)
    repo = ReminderPreferenceRepository(cfg.session_factory)
    _run_command(
        cfg,
        lambda: repo.upsert(
            _actor_id(cfg), ReminderPreferenceInput(email=email, push=push, sms=sms)
        ),
    )


@app.command("medication-plan")
def medication_plan_command(
    ctx: typer.Context,
    medication_id: str = typer.Argument(..., help="Medication id"),
    name: str = typer.Argument(..., help="Medication name"),
    time: list[str] | None = typer.Option(None, "--time", help="Dose time HH:MM"),
    frequency: int | None = typer.Option(None, min=1, help="Doses per day"),
    note: str | None = typer.Option(None, help="Dosage note"),
    patient_id: int | None = typer.Option(None, "--patient", help="Patient user id"),
) -> None:
    """Create daily reminders for a medication schedule."""
    cfg = _require_config(ctx)
    planner = MedicationReminderPlanner(cfg.session_factory)
    payload = MedicationPlanInput(
        medication_id=medication_id,
        name=name,
        times=time or None,
        frequency_per_day=frequency,
        note=note,
    )
    _run_command(cfg, lambda: planner.plan(cfg.principal, payload, patient_id=patient_id))


@app.command("diary-add")
def diary_add_command(
    ctx: typer.Context,
    systolic: int | None = typer.Option(None, help="Systolic pressure"),
    diastolic: int | None = typer.Option(None, help="Diastolic pressure"),
    pulse: int | None = typer.Option(None, help="Pulse"),
    notes: str | None = typer.Option(None, help="Free-text notes"),
    entry_date: datetime | None = typer.Option(
        None, "--date", formats=_MOMENT_FORMATS, help="Entry date"
    ),
    patient_id: int | None = typer.Option(None, "--patient", help="Patient user id"),
) -> None:
    """Record a diary entry for the acting user or a patient they care for."""
    cfg = _require_config(ctx)
    service = DiaryService(cfg.session_factory)
    payload = DiaryEntryInput(
        entry_date=_as_date(entry_date),
        systolic=systolic,
        diastolic=diastolic,
        pulse=pulse,
        notes=notes,
    )
    _run_command(cfg, lambda: service.create_entry(cfg.principal, payload, patient_id=patient_id))


@app.command("diary")
def diary_command(
    ctx: typer.Context,
    patient_id: int | None = typer.Option(None, "--patient", help="Patient user id"),
    limit: int | None = typer.Option(None, min=1, help="Maximum entries"),
) -> None:
    """List diary entries, newest first."""
    cfg = _require_config(ctx)
    service = DiaryService(cfg.session_factory)
    _run_command(
        cfg, lambda: service.list_entries(cfg.principal, patient_id=patient_id, limit=limit)
    )


@app.command("grant-access")
def grant_access_command(
    ctx: typer.Context,
    caretaker_email: str = typer.Argument(..., help="Caretaker account email"),
    permissions: str | None = typer.Option(
        None, help='JSON map, e.g. {"diary": {"read": true, "write": false}}'
    ),
) -> None:
    """Grant a caretaker access to the acting patient's data."""
    cfg = _require_config(ctx)
    repo = CareRelationshipRepository(cfg.session_factory)
    _run_command(
        cfg,
        lambda: repo.grant_access(
            CareLinkGrantInput(
                patient_id=_actor_id(cfg),
                caretaker_email=caretaker_email,
                permissions=_parse_permissions(permissions),
            )
        ),
    )


@app.command("care-links")
def care_links_command(ctx: typer.Context) -> None:
    """List caretaker links in both directions."""
    cfg = _require_config(ctx)
    repo = CareRelationshipRepository(cfg.session_factory)
    _run_command(cfg, lambda: repo.list_for_user(_actor_id(cfg)))


@app.command("revoke-access")
def revoke_access_command(
    ctx: typer.Context, link_id: int = typer.Argument(..., help="Care link id")
) -> None:
    """Revoke a caretaker link as either party."""
    cfg = _require_config(ctx)
    repo = CareRelationshipRepository(cfg.session_factory)
    _run_command(cfg, lambda: repo.revoke(link_id, _actor_id(cfg)))


def _actor_id(cfg: CliConfig) -> int:
    """Return the acting user id or raise when --actor is missing."""
    if cfg.actor is None:
        raise AuthenticationError("--actor is required for this command.")
    return cfg.actor


if __name__ == "__main__":
    app()
