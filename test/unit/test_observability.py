"""Unit tests for logging configuration and context propagation."""

from __future__ import annotations

import io
import json
import logging

from observability import ACTOR_ID, TASK_ID, configure_logging, get_context, log_context


def test_log_context_is_scoped() -> None:
    """Context bound in a block is removed when the block exits."""
    with log_context({TASK_ID: 7, ACTOR_ID: None}):
        assert get_context() == {TASK_ID: "7"}

    assert get_context() == {}


def test_nested_log_context_restores_outer_values() -> None:
    """Inner blocks extend the outer context and restore it on exit."""
    with log_context({ACTOR_ID: 1}):
        with log_context({TASK_ID: 2, ACTOR_ID: 9}):
            assert get_context() == {ACTOR_ID: "9", TASK_ID: "2"}

        assert get_context() == {ACTOR_ID: "1"}


def test_json_logging_includes_context() -> None:
    """JSON output carries the message and bound context fields."""
    stream = io.StringIO()
    configure_logging(level="INFO", json_output=True, stream=stream)

    with log_context({TASK_ID: 42, ACTOR_ID: 5}):
        logging.getLogger("care_plan.test").info("Task approved: task_id=%s", 42)

    payload = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert payload["level"] == "INFO"
    assert payload["logger"] == "care_plan.test"
    assert payload["message"] == "Task approved: task_id=42"
    assert payload[TASK_ID] == "42"
    assert payload[ACTOR_ID] == "5"


def test_plain_logging_appends_context() -> None:
    """Plain output appends sorted key=value context pairs."""
    stream = io.StringIO()
    configure_logging(level="INFO", json_output=False, stream=stream)

    with log_context({TASK_ID: 3}):
        logging.getLogger("care_plan.test").warning("Task changed concurrently")

    line = stream.getvalue().strip().splitlines()[-1]
    assert "WARNING care_plan.test Task changed concurrently" in line
    assert line.endswith("task_id=3")


def test_configure_logging_replaces_handlers() -> None:
    """Repeated configuration keeps a single root handler."""
    configure_logging(level="DEBUG", stream=io.StringIO())
    configure_logging(level="INFO", stream=io.StringIO())

    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert root.level == logging.INFO
