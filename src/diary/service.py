"""Patient health diary gated by delegated caretaker access."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
from typing import Callable

from sqlalchemy.orm import Session

from access.capabilities import DIARY_READ, DIARY_WRITE
from access.resolver import Principal, require_principal, resolve_patient_id
from errors import ValidationError, map_exception
from models import DiaryEntry
from time_utils import normalize_moment, to_utc
from validation import optional_text

logger = logging.getLogger(__name__)

_VITAL_RANGES: dict[str, tuple[int, int]] = {
    "systolic": (50, 300),
    "diastolic": (30, 200),
    "pulse": (20, 250),
}


@dataclass(frozen=True)
class DiaryEntryInput:
    """Input payload for one diary entry."""

    entry_date: date | datetime | None = None
    systolic: int | None = None
    diastolic: int | None = None
    pulse: int | None = None
    notes: str | None = None


def validate_vitals(payload: DiaryEntryInput) -> None:
    """Ensure the entry records something and vitals are plausible."""
    values = {name: getattr(payload, name) for name in _VITAL_RANGES}
    if all(value is None for value in values.values()) and not (payload.notes or "").strip():
        raise ValidationError("Diary entry is empty.", {"field": "entry"})
    for name, value in values.items():
        if value is None:
            continue
        low, high = _VITAL_RANGES[name]
        if not low <= value <= high:
            raise ValidationError(
                f"{name} must be between {low} and {high}.",
                {"field": name, "value": value},
            )


class DiaryService:
    """Create and list diary entries for the resolved patient."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the service with a SQLAlchemy session factory."""
        self._session_factory = session_factory
        self._now_provider = now_provider or (lambda: datetime.now(timezone.utc))

    def create_entry(
        self,
        principal: Principal | None,
        payload: DiaryEntryInput,
        *,
        patient_id: int | None = None,
    ) -> DiaryEntry:
        """Write an entry for the patient; caretakers need diary write access."""
        validate_vitals(payload)
        now = to_utc(self._now_provider())

        def handler(session: Session) -> DiaryEntry:
            user_id = resolve_patient_id(session, principal, patient_id, DIARY_WRITE)
            entry = DiaryEntry(
                user_id=user_id,
                author_id=require_principal(principal),
                entry_date=normalize_moment(payload.entry_date or now),
                systolic=payload.systolic,
                diastolic=payload.diastolic,
                pulse=payload.pulse,
                notes=optional_text(payload.notes, max_length=2000),
                created_at=now,
            )
            session.add(entry)
            session.flush()
            logger.info(
                "Diary entry created: entry_id=%s user_id=%s author_id=%s",
                entry.id,
                entry.user_id,
                entry.author_id,
            )
            return entry

        return self._execute(handler)

    def list_entries(
        self,
        principal: Principal | None,
        *,
        patient_id: int | None = None,
        limit: int | None = None,
    ) -> list[DiaryEntry]:
        """Return the patient's entries, newest first."""

        def handler(session: Session) -> list[DiaryEntry]:
            user_id = resolve_patient_id(session, principal, patient_id, DIARY_READ)
            query = (
                session.query(DiaryEntry)
                .filter(DiaryEntry.user_id == user_id)
                .order_by(DiaryEntry.entry_date.desc(), DiaryEntry.id.desc())
            )
            if limit is not None:
                query = query.limit(limit)
            return list(query.all())

        return self._execute(handler)

    def _execute(self, handler):
        """Execute diary work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception as exc:
                session.rollback()
                raise map_exception(exc) from exc
        return result
