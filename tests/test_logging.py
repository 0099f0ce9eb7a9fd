"""Regression tests for structured logging setup."""

from __future__ import annotations

from collections.abc import Iterator
import json
import logging

import pytest
import structlog

from shipyard.logging import logging_configure, logging_resolve_level


@pytest.fixture
def restore_logging() -> Iterator[None]:
    """Reset global logging state after a test reconfigures it.

    Returns:
        Iterator[None]: Fixture generator.

    Raises:
        RuntimeError: This fixture does not raise runtime errors.
    """

    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


@pytest.mark.parametrize(
    ("level_name", "expected_level"),
    [
        ("debug", logging.DEBUG),
        (" WARN ", logging.WARNING),
        ("error", logging.ERROR),
        (None, logging.INFO),
        ("verbose", logging.INFO),
    ],
)
def test_logging_resolve_level_maps_names(level_name: str | None, expected_level: int) -> None:
    """Map level names case-insensitively and fall back to INFO.

    Args:
        level_name: Configured level name.
        expected_level: Expected stdlib level.

    Returns:
        None: Assertions validate level mapping.

    Raises:
        AssertionError: Raised when mapping differs.
    """

    assert logging_resolve_level(level_name) == expected_level


def test_logging_configure_json_renders_key_value_events(
    capsys: pytest.CaptureFixture[str],
    restore_logging: None,
) -> None:
    """Emit one JSON object per event with level and logger name.

    Args:
        capsys: Pytest capture fixture.
        restore_logging: Fixture resetting logging state.

    Returns:
        None: Assertions validate rendered event.

    Raises:
        AssertionError: Raised when rendered output differs.
    """

    _ = restore_logging
    logging_configure("info", "json")

    structlog.get_logger("shipyard.test").info("unit_deployed", unit_name="db")
    structlog.get_logger("shipyard.test").debug("filtered_out")

    lines = [line for line in capsys.readouterr().err.splitlines() if line.strip()]
    assert len(lines) == 1
    event = json.loads(lines[0])
    assert event["event"] == "unit_deployed"
    assert event["unit_name"] == "db"
    assert event["level"] == "info"
    assert event["logger"] == "shipyard.test"
    assert "timestamp" in event
