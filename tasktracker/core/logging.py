"""Structured logging setup for TaskTracker."""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

import structlog

from tasktracker.core.config import LoggingConfig

_LOGGER_NAME = "tasktracker"


def setup_logging(config: Optional[LoggingConfig] = None, stream: Optional[TextIO] = None) -> None:
    """Configure structlog and the stdlib root logger.

    Events go to stderr so stdout stays reserved for command payloads.
    """
    config = config or LoggingConfig()
    stream = stream or sys.stderr
    level = logging.getLevelName(config.level)

    logging.getLogger(_LOGGER_NAME).setLevel(level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
    ]

    if config.include_timestamps:
        processors.append(structlog.processors.TimeStamper(fmt="ISO"))

    if config.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )


__all__ = ["setup_logging"]
