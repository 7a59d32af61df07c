"""Pytest configuration for the care-plan test suite."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

import pytest


def _ensure_test_env() -> None:
    """Seed environment variables so settings load deterministically."""
    os.environ.setdefault("USER_TIMEZONE", "UTC")


_ensure_test_env()

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from access.accounts import AccountRepository, UserCreateInput  # noqa: E402
from config import settings  # noqa: E402
from models import Base, UserRole  # noqa: E402
from services.database import build_engine  # noqa: E402

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Accounts:
    """Ids of the accounts seeded for a test."""

    doctor_id: int
    patient_id: int
    caretaker_id: int
    other_patient_id: int
    stranger_doctor_id: int


@pytest.fixture(autouse=True)
def utc_locale(monkeypatch) -> None:
    """Pin local-time arithmetic to UTC unless a test overrides it."""
    monkeypatch.setattr(settings.user, "timezone", "UTC")


@pytest.fixture()
def sqlite_session_factory() -> Generator[sessionmaker, None, None]:
    """Provide an in-memory sqlite session factory with foreign keys enforced."""
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture()
def accounts(sqlite_session_factory: sessionmaker) -> Accounts:
    """Seed a doctor treating a patient, a caretaker and unrelated accounts."""
    repo = AccountRepository(sqlite_session_factory)
    doctor = repo.create_user(
        UserCreateInput(email="house@clinic.test", role=UserRole.DOCTOR, name="Dr. House")
    )
    patient = repo.create_user(UserCreateInput(email="pat@example.test", role=UserRole.PATIENT))
    caretaker = repo.create_user(
        UserCreateInput(email="care@example.test", role=UserRole.CARETAKER)
    )
    other = repo.create_user(UserCreateInput(email="other@example.test", role="patient"))
    stranger = repo.create_user(
        UserCreateInput(email="wilson@clinic.test", role=UserRole.DOCTOR)
    )
    repo.ensure_patient_record(doctor.id, patient.id)
    return Accounts(
        doctor_id=doctor.id,
        patient_id=patient.id,
        caretaker_id=caretaker.id,
        other_patient_id=other.id,
        stranger_doctor_id=stranger.id,
    )
