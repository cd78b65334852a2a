"""Unit tests for the structured logging configuration.

Verifies that ``configure_logging()`` produces well-formed output, that the
iteration bound with ``bind_iteration()`` is propagated, and that secret
values never reach the rendered record.
"""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest
import structlog

from overlap_tracker.core.logging_config import bind_iteration, configure_logging


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _capture_log_output(log_level: str, message: str, **extra) -> str:
    """Emit a single log record and capture the raw text written to stdout.

    Args:
        log_level: Logging level string (e.g. ``"INFO"``).
        message: Log message to emit.
        **extra: Additional fields passed via ``extra=`` to the logger.

    Returns:
        The raw text captured from the stream handler's output.
    """
    configure_logging(log_level)

    # Replace the root handler's stream with our own StringIO buffer so we
    # can inspect what would have been written to stdout.
    buffer = StringIO()
    root = logging.getLogger()
    original_streams = []
    for handler in root.handlers:
        if hasattr(handler, "stream"):
            original_streams.append((handler, handler.stream))
            handler.stream = buffer

    logger = logging.getLogger("test.logging_config")
    logger.info(message, extra=extra if extra else {})

    # Flush and restore
    for handler, stream in original_streams:
        handler.flush()
        handler.stream = stream

    return buffer.getvalue()


def _find_record(output: str, event: str) -> dict:
    lines = [line for line in output.strip().splitlines() if line.strip()]
    records = [json.loads(line) for line in lines]
    target = next((r for r in records if r.get("event") == event), None)
    assert target is not None, f"No record with event={event!r} in output: {output!r}"
    return target


@pytest.fixture(autouse=True)
def _clear_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestConfigureLoggingJson:
    """Verify INFO-level (production) JSON output."""

    def test_every_line_is_a_json_object(self) -> None:
        output = _capture_log_output("INFO", "json_lines_test")

        lines = [line for line in output.strip().splitlines() if line.strip()]
        assert lines, "Expected at least one log line, got none"
        assert all(isinstance(json.loads(line), dict) for line in lines)

    def test_record_carries_standard_fields(self) -> None:
        """timestamp, level, logger and event are present; level is lower-case."""
        record = _find_record(_capture_log_output("INFO", "standard_fields_test"), "standard_fields_test")

        assert {"timestamp", "level", "logger", "event"} <= record.keys()
        assert record["level"] == "info"
        assert record["logger"] == "test.logging_config"

    def test_records_below_level_are_dropped(self) -> None:
        output = _capture_log_output("WARNING", "below_level_test")

        assert "below_level_test" not in output

    def test_noisy_libraries_are_silenced(self) -> None:
        configure_logging("INFO")

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


class TestIterationContext:
    """Verify that the bound iteration is merged into log records."""

    def test_bound_iteration_appears_in_json_output(self) -> None:
        bind_iteration(42)

        output = _capture_log_output("INFO", "iteration_propagation_test")

        assert _find_record(output, "iteration_propagation_test")["iteration"] == 42

    def test_rebinding_replaces_iteration(self) -> None:
        bind_iteration(1)
        bind_iteration(2)

        output = _capture_log_output("INFO", "iteration_rebind_test")

        assert _find_record(output, "iteration_rebind_test")["iteration"] == 2

    def test_no_iteration_when_unbound(self) -> None:
        output = _capture_log_output("INFO", "no_iteration_test")

        assert "iteration" not in _find_record(output, "no_iteration_test")


class TestSecretRedaction:
    """Verify that secret-bearing keys are redacted before rendering."""

    def test_client_secret_is_redacted(self) -> None:
        structlog.contextvars.bind_contextvars(twitch_client_secret="hunter2")

        output = _capture_log_output("INFO", "redaction_test")

        assert "hunter2" not in output
        assert _find_record(output, "redaction_test")["twitch_client_secret"] == "[REDACTED]"

    def test_nested_token_is_redacted(self) -> None:
        structlog.contextvars.bind_contextvars(headers={"Authorization": "Bearer abc", "Accept": "json"})

        output = _capture_log_output("INFO", "nested_redaction_test")

        headers = _find_record(output, "nested_redaction_test")["headers"]
        assert headers == {"Authorization": "[REDACTED]", "Accept": "json"}


class TestConfigureLoggingIdempotent:
    """Verify configure_logging() is safe to call multiple times."""

    def test_calling_twice_does_not_duplicate_handlers(self) -> None:
        """Calling configure_logging() twice produces exactly one root handler."""
        configure_logging("INFO")
        handler_count_first = len(logging.getLogger().handlers)

        configure_logging("INFO")
        handler_count_second = len(logging.getLogger().handlers)

        assert handler_count_second == handler_count_first, (
            f"Handler count changed from {handler_count_first} to "
            f"{handler_count_second} after second configure_logging() call"
        )
        assert handler_count_second == 1, (
            f"Expected exactly 1 root handler, got {handler_count_second}"
        )
