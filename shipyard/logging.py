"""Structured logging setup using structlog over stdlib logging."""

from __future__ import annotations

import logging
import sys
from typing import Final

import structlog

_LEVEL_NAMES: Final[dict[str, int]] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def logging_resolve_level(level_name: str | None) -> int:
    """Map a configured level name to a stdlib level, defaulting to INFO."""

    return _LEVEL_NAMES.get((level_name or "info").strip().lower(), logging.INFO)


def logging_configure(level_name: str | None = "info", log_format: str = "console") -> None:
    """Configure stdlib logging and structlog processors for one process.

    Args:
        level_name: Log level name (`debug`, `info`, `warn`, `error`).
        log_format: Renderer name; `json` emits one JSON object per line,
            anything else uses the console renderer.

    Returns:
        None: Configures global logging state as side effect.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    level = logging_resolve_level(level_name)
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)

    processors: list[structlog.typing.Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
