"""Tests for engine setup and schema bootstrap."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import inspect, text

from config import settings
from models import Base
from services.database import (
    build_engine,
    check_connection,
    get_sync_engine,
    init_db,
    reset_engine,
    run_migrations_sync,
)


def test_sqlite_engines_enforce_foreign_keys() -> None:
    engine = build_engine("sqlite://")

    with engine.connect() as conn:
        assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1


def test_init_db_creates_every_table(tmp_path: Path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'schema.db'}")

    init_db(engine)

    assert set(inspect(engine).get_table_names()) == set(Base.metadata.tables)
    assert check_connection(engine) is True


def test_check_connection_reports_failure(tmp_path: Path) -> None:
    """Unreachable databases return False instead of raising."""
    engine = build_engine(f"sqlite:///{tmp_path / 'missing' / 'nested' / 'db.sqlite'}")

    assert check_connection(engine) is False


def test_migrations_match_model_tables(tmp_path: Path) -> None:
    """Upgrading to head creates the same tables as the models declare."""
    url = f"sqlite:///{tmp_path / 'migrated.db'}"

    run_migrations_sync(url)

    engine = build_engine(url)
    tables = set(inspect(engine).get_table_names()) - {"alembic_version"}
    assert tables == set(Base.metadata.tables)


def test_process_engine_follows_settings(tmp_path: Path, monkeypatch) -> None:
    """The cached engine is rebuilt from settings after a reset."""
    url = f"sqlite:///{tmp_path / 'configured.db'}"
    monkeypatch.setattr(settings.database, "url", url)
    reset_engine()
    try:
        assert str(get_sync_engine().url) == url
    finally:
        reset_engine()
