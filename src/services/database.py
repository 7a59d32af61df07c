"""Database engine, session management and schema bootstrap."""

from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from config import settings
from models import Base

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """Turn on SQLite foreign key enforcement for every new connection."""
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(url: str, *, echo: bool = False, **engine_options: object) -> Engine:
    """Create an engine for the URL with backend-specific setup applied."""
    engine = create_engine(url, echo=echo, pool_pre_ping=True, **engine_options)
    enable_sqlite_foreign_keys(engine)
    return engine


def get_sync_engine() -> Engine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url, echo=settings.database.echo)
    return _engine


def get_session_factory() -> sessionmaker:
    """Return the process-wide session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_sync_engine())
    return _session_factory


def reset_engine() -> None:
    """Dispose the cached engine so the next call picks up new settings."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def init_db(engine: Engine | None = None) -> None:
    """Create all tables directly from model metadata."""
    Base.metadata.create_all(engine or get_sync_engine())
    logger.info("Database schema created")


def run_migrations_sync(url: str | None = None) -> None:
    """Upgrade the database to the latest Alembic revision.

    Defaults to the configured database URL.
    """
    alembic_ini = Path(__file__).resolve().parents[2] / "alembic.ini"
    alembic_cfg = Config(str(alembic_ini))
    # configparser interpolation treats % as special.
    target_url = url or settings.database_url
    alembic_cfg.set_main_option("sqlalchemy.url", target_url.replace("%", "%%"))
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations applied")


def check_connection(engine: Engine | None = None) -> bool:
    """Check if database connection is working."""
    try:
        with (engine or get_sync_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.error("Database connection check failed: %s", exc)
        return False
