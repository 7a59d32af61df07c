"""Repository helpers for the append-only check-in audit trail."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from models import CarePlanCheckIn, CheckInType
from time_utils import to_utc


@dataclass(frozen=True)
class CheckInCreateInput:
    """Input payload for appending a check-in to a task."""

    task_id: int
    type: CheckInType
    reason: str | None = None
    created_at: datetime | None = None


def create_check_in_record(
    session: Session,
    payload: CheckInCreateInput,
    *,
    now: datetime | None = None,
) -> CarePlanCheckIn:
    """Append a check-in using an existing session."""
    created_at = to_utc(payload.created_at or now or datetime.now(timezone.utc))
    check_in = CarePlanCheckIn(
        task_id=payload.task_id,
        type=payload.type,
        reason=payload.reason,
        created_at=created_at,
    )
    session.add(check_in)
    session.flush()
    return check_in


def list_recent_check_ins(
    session: Session,
    task_id: int,
    *,
    limit: int | None = None,
) -> list[CarePlanCheckIn]:
    """Return check-ins for a task ordered by created_at desc."""
    query = (
        session.query(CarePlanCheckIn)
        .filter(CarePlanCheckIn.task_id == task_id)
        .order_by(CarePlanCheckIn.created_at.desc(), CarePlanCheckIn.id.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    return list(query.all())
