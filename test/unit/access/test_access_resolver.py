"""Unit tests for caretaker access resolution."""

from __future__ import annotations

import pytest
from sqlalchemy.orm import sessionmaker

from access import (
    DIARY_READ,
    DIARY_WRITE,
    MEDICATIONS_WRITE,
    REMINDERS_WRITE,
    CaretakerAccessResolver,
    Principal,
)
from access.relationship_repository import CareLinkGrantInput, CareRelationshipRepository
from errors import AuthenticationError, AuthorizationError
from models import CareRelationship


def _grant(factory: sessionmaker, patient_id: int, permissions=None) -> None:
    """Grant the seeded caretaker access to the patient."""
    CareRelationshipRepository(factory).grant_access(
        CareLinkGrantInput(
            patient_id=patient_id,
            caretaker_email="care@example.test",
            permissions=permissions,
        )
    )


def test_self_access_is_always_allowed(sqlite_session_factory: sessionmaker, accounts) -> None:
    """Acting on one's own data needs no link."""
    resolver = CaretakerAccessResolver(sqlite_session_factory)
    principal = Principal(user_id=accounts.patient_id)

    assert resolver.resolve(principal, None, DIARY_WRITE) == accounts.patient_id
    assert resolver.resolve(principal, accounts.patient_id, DIARY_WRITE) == accounts.patient_id


def test_missing_principal_is_unauthenticated(sqlite_session_factory: sessionmaker) -> None:
    """Anonymous calls fail before any lookup."""
    resolver = CaretakerAccessResolver(sqlite_session_factory)

    with pytest.raises(AuthenticationError):
        resolver.resolve(None, 1, DIARY_READ)
    with pytest.raises(AuthenticationError):
        resolver.resolve(Principal(user_id=None), None, DIARY_READ)


def test_no_link_is_forbidden(sqlite_session_factory: sessionmaker, accounts) -> None:
    """Acting for another patient without a link fails."""
    resolver = CaretakerAccessResolver(sqlite_session_factory)

    with pytest.raises(AuthorizationError, match="No access"):
        resolver.resolve(
            Principal(user_id=accounts.caretaker_id), accounts.patient_id, DIARY_READ
        )


def test_link_permissions_gate_capabilities(
    sqlite_session_factory: sessionmaker, accounts
) -> None:
    """A diary read-only link allows diary reads and nothing else."""
    _grant(sqlite_session_factory, accounts.patient_id, {"diary": {"read": True, "write": False}})
    resolver = CaretakerAccessResolver(sqlite_session_factory)
    caretaker = Principal(user_id=accounts.caretaker_id)

    assert resolver.resolve(caretaker, accounts.patient_id, DIARY_READ) == accounts.patient_id
    with pytest.raises(AuthorizationError, match="Insufficient"):
        resolver.resolve(caretaker, accounts.patient_id, DIARY_WRITE)
    with pytest.raises(AuthorizationError):
        resolver.resolve(caretaker, accounts.patient_id, REMINDERS_WRITE)


def test_permissions_are_read_on_every_call(
    sqlite_session_factory: sessionmaker, accounts
) -> None:
    """Narrowing a grant takes effect on the next resolution."""
    _grant(sqlite_session_factory, accounts.patient_id)
    resolver = CaretakerAccessResolver(sqlite_session_factory)
    caretaker = Principal(user_id=accounts.caretaker_id)
    assert resolver.resolve(caretaker, accounts.patient_id, MEDICATIONS_WRITE)

    _grant(sqlite_session_factory, accounts.patient_id, {"medications": {"read": True}})

    with pytest.raises(AuthorizationError):
        resolver.resolve(caretaker, accounts.patient_id, MEDICATIONS_WRITE)


def test_corrupted_stored_permissions_deny(
    sqlite_session_factory: sessionmaker, accounts
) -> None:
    """A stored payload that no longer validates grants nothing."""
    _grant(sqlite_session_factory, accounts.patient_id)
    with sqlite_session_factory() as session:
        link = session.query(CareRelationship).one()
        link.permissions = {"diary": {"read": "sometimes", "admin": True}}
        session.commit()

    resolver = CaretakerAccessResolver(sqlite_session_factory)
    with pytest.raises(AuthorizationError):
        resolver.resolve(
            Principal(user_id=accounts.caretaker_id), accounts.patient_id, DIARY_READ
        )
