"""Unit tests for caretaker link grant, revoke and listing."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from access.relationship_repository import CareLinkGrantInput, CareRelationshipRepository
from errors import AuthorizationError, NotFoundError, ValidationError
from models import CareRelationship


def test_grant_defaults_to_full_access(sqlite_session_factory: sessionmaker, accounts) -> None:
    """A grant without permissions allows every domain."""
    repo = CareRelationshipRepository(sqlite_session_factory)
    now = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    link = repo.grant_access(
        CareLinkGrantInput(patient_id=accounts.patient_id, caretaker_email="CARE@example.test"),
        now=now,
    )

    assert link.caretaker_id == accounts.caretaker_id
    assert link.patient_id == accounts.patient_id
    assert link.permissions == {
        "diary": {"read": True, "write": True},
        "medications": {"read": True, "write": True},
        "reminders": {"read": True, "write": True},
    }
    assert link.created_at == now


def test_regrant_replaces_permissions(sqlite_session_factory: sessionmaker, accounts) -> None:
    """Granting the same caretaker again updates the existing link."""
    repo = CareRelationshipRepository(sqlite_session_factory)
    first = repo.grant_access(
        CareLinkGrantInput(patient_id=accounts.patient_id, caretaker_email="care@example.test")
    )

    second = repo.grant_access(
        CareLinkGrantInput(
            patient_id=accounts.patient_id,
            caretaker_email="care@example.test",
            permissions={"reminders": {"read": True}},
        )
    )

    assert second.id == first.id
    assert second.permissions["reminders"] == {"read": True, "write": False}
    assert second.permissions["diary"] == {"read": False, "write": False}
    with sqlite_session_factory() as session:
        assert session.query(CareRelationship).count() == 1


def test_only_patients_can_grant(sqlite_session_factory: sessionmaker, accounts) -> None:
    """Doctors and caretakers cannot grant access."""
    repo = CareRelationshipRepository(sqlite_session_factory)

    with pytest.raises(AuthorizationError):
        repo.grant_access(
            CareLinkGrantInput(patient_id=accounts.doctor_id, caretaker_email="care@example.test")
        )


def test_cannot_grant_to_self(sqlite_session_factory: sessionmaker, accounts) -> None:
    """Self-grants are rejected."""
    repo = CareRelationshipRepository(sqlite_session_factory)

    with pytest.raises(ValidationError):
        repo.grant_access(
            CareLinkGrantInput(patient_id=accounts.patient_id, caretaker_email="pat@example.test")
        )


def test_unknown_caretaker_email(sqlite_session_factory: sessionmaker, accounts) -> None:
    """Granting to an unregistered email fails."""
    repo = CareRelationshipRepository(sqlite_session_factory)

    with pytest.raises(NotFoundError):
        repo.grant_access(
            CareLinkGrantInput(patient_id=accounts.patient_id, caretaker_email="nobody@x.test")
        )


def test_invalid_permissions_payload(sqlite_session_factory: sessionmaker, accounts) -> None:
    """Malformed permission maps are rejected before anything is stored."""
    repo = CareRelationshipRepository(sqlite_session_factory)

    with pytest.raises(ValidationError):
        repo.grant_access(
            CareLinkGrantInput(
                patient_id=accounts.patient_id,
                caretaker_email="care@example.test",
                permissions={"diary": {"delete": True}},
            )
        )


def test_list_returns_both_directions(sqlite_session_factory: sessionmaker, accounts) -> None:
    """Links are listed for the patient and for the caretaker."""
    repo = CareRelationshipRepository(sqlite_session_factory)
    link = repo.grant_access(
        CareLinkGrantInput(patient_id=accounts.patient_id, caretaker_email="care@example.test")
    )

    assert [item.id for item in repo.list_for_user(accounts.patient_id)] == [link.id]
    assert [item.id for item in repo.list_for_user(accounts.caretaker_id)] == [link.id]
    assert repo.list_for_user(accounts.other_patient_id) == []


def test_either_party_may_revoke(sqlite_session_factory: sessionmaker, accounts) -> None:
    """The caretaker can revoke; outsiders see a missing link."""
    repo = CareRelationshipRepository(sqlite_session_factory)
    link = repo.grant_access(
        CareLinkGrantInput(patient_id=accounts.patient_id, caretaker_email="care@example.test")
    )

    with pytest.raises(NotFoundError):
        repo.revoke(link.id, accounts.other_patient_id)

    repo.revoke(link.id, accounts.caretaker_id)

    assert repo.list_for_user(accounts.patient_id) == []
    with pytest.raises(NotFoundError):
        repo.revoke(link.id, accounts.patient_id)
