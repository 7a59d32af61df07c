"""Infrastructure services for the care-plan engine."""

from services.database import (
    build_engine,
    get_session_factory,
    init_db,
    run_migrations_sync,
)

__all__ = [
    "build_engine",
    "get_session_factory",
    "init_db",
    "run_migrations_sync",
]
