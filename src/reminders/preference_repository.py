"""Repository for per-user reminder channel preferences."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Callable

from sqlalchemy.orm import Session

from errors import map_exception
from models import ReminderPreference
from reminders.channels import fetch_preference
from time_utils import to_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderPreferenceInput:
    """Input payload for storing channel preferences."""

    email: bool = False
    push: bool = True
    sms: bool = False


class ReminderPreferenceRepository:
    """Repository for reading and upserting reminder preferences."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def get(self, user_id: int) -> ReminderPreference | None:
        """Return the stored preference for the user."""
        return self._execute(lambda session: fetch_preference(session, user_id))

    def upsert(
        self,
        user_id: int,
        payload: ReminderPreferenceInput,
        *,
        now: datetime | None = None,
    ) -> ReminderPreference:
        """Create or replace the user's channel flags."""

        def handler(session: Session) -> ReminderPreference:
            timestamp = to_utc(now or datetime.now(timezone.utc))
            preference = fetch_preference(session, user_id)
            if preference is None:
                preference = ReminderPreference(user_id=user_id)
                session.add(preference)
            preference.email = bool(payload.email)
            preference.push = bool(payload.push)
            preference.sms = bool(payload.sms)
            preference.updated_at = timestamp
            session.flush()
            logger.info(
                "Reminder preference stored: user_id=%s email=%s push=%s sms=%s",
                user_id,
                preference.email,
                preference.push,
                preference.sms,
            )
            return preference

        return self._execute(handler)

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
