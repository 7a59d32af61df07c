"""Logging configuration with structured operation context.

Log lines carry the acting principal, patient and task ids bound through
``contextvars`` so one operation can be followed across modules.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Mapping, TextIO

_LOG_CONTEXT: ContextVar[dict[str, str]] = ContextVar("careplan_log_context", default={})

# Canonical context keys.
ACTOR_ID = "actor_id"
PATIENT_ID = "patient_id"
TASK_ID = "task_id"
OPERATION = "operation"


def get_context() -> dict[str, str]:
    """Return a shallow copy of current logging context."""
    return dict(_LOG_CONTEXT.get())


@contextmanager
def log_context(values: Mapping[str, object]) -> Iterator[None]:
    """Bind logging context for the duration of a block.

    ``None`` values are skipped; everything else is stringified.
    """
    current = _LOG_CONTEXT.get().copy()
    current.update({str(key): str(value) for key, value in values.items() if value is not None})
    token = _LOG_CONTEXT.set(current)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


class ContextFilter(logging.Filter):
    """Attach the bound context to each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = get_context()
        return True


class JsonFormatter(logging.Formatter):
    """Emit newline-delimited JSON logs with stable core fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(getattr(record, "context", {}))

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, separators=(",", ":"))


class PlainFormatter(logging.Formatter):
    """Human-readable formatter that appends the bound context."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = getattr(record, "context", {})
        if not context:
            return message
        suffix = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
        return f"{message} {suffix}"


def configure_logging(
    *, level: str = "INFO", json_output: bool = False, stream: TextIO | None = None
) -> None:
    """Configure root logging with a single stream handler (stdout by default).

    Existing root handlers are replaced so repeated calls do not duplicate output.
    """
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(stream=stream or sys.stdout)
    handler.setLevel(level.upper())
    handler.addFilter(ContextFilter())
    handler.setFormatter(JsonFormatter() if json_output else PlainFormatter())
    root.addHandler(handler)
