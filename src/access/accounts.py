"""Account lookups and the doctor-patient clinical relationship."""

from __future__ import annotations

import logging
from contextlib import closing
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from errors import AuthorizationError, NotFoundError, ValidationError, map_exception
from models import Appointment, PatientRecord, User, UserRole
from validation import parse_choice, require_non_empty

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserCreateInput:
    """Input payload for registering an account."""

    email: str
    role: UserRole | str
    name: str | None = None


def fetch_user(session: Session, user_id: int) -> User | None:
    """Return a user by id."""
    return session.get(User, user_id)


def find_user_by_email(session: Session, email: str) -> User | None:
    """Return a user by case-insensitive email."""
    normalized = email.strip().lower()
    return session.query(User).filter(User.email == normalized).one_or_none()


def require_patient_account(session: Session, patient_id: int) -> User:
    """Return the target user, requiring a PATIENT-role account."""
    user = fetch_user(session, patient_id)
    if user is None:
        raise NotFoundError("Patient not found.", {"patient_id": patient_id})
    if user.role != UserRole.PATIENT:
        raise ValidationError(
            "Target user is not a patient account.",
            {"patient_id": patient_id, "role": user.role.value},
        )
    return user


def require_doctor_account(session: Session, doctor_id: int) -> User:
    """Return the acting doctor, requiring a DOCTOR-role account."""
    user = fetch_user(session, doctor_id)
    if user is None or user.role != UserRole.DOCTOR:
        raise AuthorizationError("Doctor profile not found.", {"doctor_id": doctor_id})
    return user


def doctor_can_access_patient(session: Session, doctor_id: int, patient_id: int) -> bool:
    """Return True when the doctor has a patient record or appointment history."""
    record = (
        session.query(PatientRecord.id)
        .filter(PatientRecord.doctor_id == doctor_id, PatientRecord.patient_id == patient_id)
        .first()
    )
    if record is not None:
        return True
    appointment = (
        session.query(Appointment.id)
        .filter(Appointment.doctor_id == doctor_id, Appointment.patient_id == patient_id)
        .first()
    )
    return appointment is not None


def require_doctor_relationship(session: Session, doctor_id: int, patient_id: int) -> None:
    """Raise AuthorizationError unless the doctor already treats the patient."""
    if not doctor_can_access_patient(session, doctor_id, patient_id):
        logger.warning(
            "Doctor has no clinical relationship: doctor_id=%s patient_id=%s",
            doctor_id,
            patient_id,
        )
        raise AuthorizationError(
            "No clinical relationship with this patient.",
            {"doctor_id": doctor_id, "patient_id": patient_id},
        )


def ensure_patient_record(session: Session, doctor_id: int, patient_id: int) -> PatientRecord:
    """Return the doctor-patient record, creating it when missing."""
    record = (
        session.query(PatientRecord)
        .filter(PatientRecord.doctor_id == doctor_id, PatientRecord.patient_id == patient_id)
        .one_or_none()
    )
    if record is not None:
        return record
    record = PatientRecord(doctor_id=doctor_id, patient_id=patient_id)
    session.add(record)
    session.flush()
    logger.info(
        "Patient record created: doctor_id=%s patient_id=%s", doctor_id, patient_id
    )
    return record


class AccountRepository:
    """Repository for accounts and doctor-patient records."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def create_user(self, payload: UserCreateInput) -> User:
        """Register a new account."""

        def handler(session: Session) -> User:
            email = require_non_empty(payload.email, "email", max_length=320).lower()
            if find_user_by_email(session, email) is not None:
                raise ValidationError("Email is already registered.", {"field": "email"})
            user = User(
                email=email,
                name=payload.name,
                role=parse_choice(UserRole, payload.role, "role"),
            )
            session.add(user)
            session.flush()
            return user

        return self._execute(handler)

    def get_user(self, user_id: int) -> User | None:
        """Fetch an account by primary key."""
        return self._execute(lambda session: fetch_user(session, user_id))

    def ensure_patient_record(self, doctor_id: int, patient_id: int) -> PatientRecord:
        """Idempotently establish a doctor-patient relationship."""

        def handler(session: Session) -> PatientRecord:
            require_doctor_account(session, doctor_id)
            require_patient_account(session, patient_id)
            return ensure_patient_record(session, doctor_id, patient_id)

        return self._execute(handler)

    def doctor_can_access_patient(self, doctor_id: int, patient_id: int) -> bool:
        """Return True when the doctor has a relationship with the patient."""
        return self._execute(
            lambda session: doctor_can_access_patient(session, doctor_id, patient_id)
        )

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
