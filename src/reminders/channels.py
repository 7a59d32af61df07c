"""Channel resolution for reminders."""

from __future__ import annotations

from typing import Iterable

from sqlalchemy.orm import Session

from config import settings
from errors import ValidationError
from models import ReminderChannel, ReminderPreference
from validation import parse_choices


def default_channels() -> list[ReminderChannel]:
    """Return the configured fallback channel set."""
    return [ReminderChannel(value) for value in settings.reminders.default_channels]


def resolve_channels(preference: ReminderPreference | None) -> list[ReminderChannel]:
    """Resolve a preference row into a concrete, non-empty channel list.

    A missing row or a row with every flag off falls back to the default set.
    """
    if preference is None:
        return default_channels()
    resolved: list[ReminderChannel] = []
    if preference.email:
        resolved.append(ReminderChannel.EMAIL)
    if preference.push:
        resolved.append(ReminderChannel.PUSH)
    if preference.sms:
        resolved.append(ReminderChannel.SMS)
    return resolved or default_channels()


def fetch_preference(session: Session, user_id: int) -> ReminderPreference | None:
    """Return the user's channel preference row, if any."""
    return (
        session.query(ReminderPreference)
        .filter(ReminderPreference.user_id == user_id)
        .one_or_none()
    )


def resolve_user_channels(session: Session, user_id: int) -> list[ReminderChannel]:
    """Resolve the channel set for a machine-generated reminder."""
    return resolve_channels(fetch_preference(session, user_id))


def parse_channels(values: Iterable[ReminderChannel | str] | None) -> list[ReminderChannel]:
    """Validate an explicit channel list; it must name at least one channel."""
    if values is None:
        raise ValidationError("channels are required.", {"field": "channels"})
    channels = parse_choices(ReminderChannel, values, "channels")
    if not channels:
        raise ValidationError("channels must not be empty.", {"field": "channels"})
    return channels


def serialize_channels(channels: Iterable[ReminderChannel]) -> list[str]:
    """Return the JSON-storable form of a channel list."""
    return [channel.value for channel in channels]
