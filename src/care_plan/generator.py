"""Expansion of clinical protocol templates into pending care-plan tasks."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
import logging
from typing import Callable

from sqlalchemy.orm import Session

from access.accounts import (
    require_doctor_account,
    require_doctor_relationship,
    require_patient_account,
)
from care_plan.check_in_repository import CheckInCreateInput, create_check_in_record
from errors import map_exception
from models import ApprovalStatus, CarePlanTask, CheckInType, Recurrence, TaskKind, TaskStatus
from protocols import ProtocolItem, ProtocolTemplate, require_protocol
from time_utils import add_days, normalize_moment, to_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskBlueprint:
    """A concrete task derived from one protocol item."""

    item_key: str
    title: str
    description: str
    due_at: datetime
    recurrence: Recurrence


def describe_protocol_item(protocol: ProtocolTemplate, item: ProtocolItem) -> str:
    """Return the task description annotated with the protocol and approval notice."""
    lines = [f"Protocol: {protocol.name}"]
    if item.description:
        lines.append(item.description)
    lines.append("Status: pending patient approval.")
    return "\n".join(lines)


def build_protocol_tasks(
    protocol: ProtocolTemplate,
    start: date | datetime,
) -> list[TaskBlueprint]:
    """Expand a protocol against a start moment, preserving item order."""
    return [
        TaskBlueprint(
            item_key=item.key,
            title=item.title,
            description=describe_protocol_item(protocol, item),
            due_at=_offset_moment(start, item.due_in_days),
            recurrence=item.recurrence,
        )
        for item in protocol.items
    ]


def _offset_moment(start: date | datetime, days: int) -> datetime:
    """Offset a start moment by whole days; dates count in local calendar days."""
    if isinstance(start, datetime):
        return add_days(normalize_moment(start), days)
    return normalize_moment(start + timedelta(days=days))


class CarePlanTaskGenerator:
    """Applies protocol templates to patients as pending tasks."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the generator with a SQLAlchemy session factory."""
        self._session_factory = session_factory
        self._now_provider = now_provider or (lambda: datetime.now(timezone.utc))

    def apply_protocol(
        self,
        *,
        protocol_key: str,
        patient_id: int,
        doctor_id: int,
        start_date: date | datetime | None = None,
    ) -> list[CarePlanTask]:
        """Create one pending task per protocol item in a single transaction.

        Raises NotFoundError for an unknown protocol, AuthorizationError when
        the doctor has no clinical relationship with the patient and
        ValidationError when the target is not a patient account.
        """
        protocol = require_protocol(protocol_key)
        now = to_utc(self._now_provider())
        blueprints = build_protocol_tasks(protocol, start_date or now)

        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                require_doctor_account(session, doctor_id)
                require_patient_account(session, patient_id)
                require_doctor_relationship(session, doctor_id, patient_id)
                tasks = []
                for blueprint in blueprints:
                    task = CarePlanTask(
                        patient_id=patient_id,
                        created_by_doctor_id=doctor_id,
                        kind=TaskKind.REGULAR,
                        title=blueprint.title,
                        description=blueprint.description,
                        due_at=blueprint.due_at,
                        recurrence=blueprint.recurrence,
                        status=TaskStatus.ACTIVE,
                        approval_status=ApprovalStatus.PENDING,
                        approval_requested_at=now,
                        protocol_key=protocol.key,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(task)
                    session.flush()
                    create_check_in_record(
                        session,
                        CheckInCreateInput(
                            task_id=task.id,
                            type=CheckInType.NOTE,
                            reason=(
                                f'Created by doctor from protocol "{protocol.name}". '
                                "Pending patient approval."
                            ),
                        ),
                        now=now,
                    )
                    tasks.append(task)
                session.commit()
            except Exception as exc:
                session.rollback()
                raise map_exception(exc) from exc

        logger.info(
            "Protocol applied: protocol_key=%s patient_id=%s doctor_id=%s tasks=%s",
            protocol.key,
            patient_id,
            doctor_id,
            len(tasks),
        )
        return tasks
