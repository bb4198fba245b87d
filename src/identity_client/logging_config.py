"""Structured logging setup shared by the client and the pipeline."""

from __future__ import annotations

import logging
import sys

import structlog

from .config import LOG_JSON, LOG_LEVEL


def configure_logging(level: str = LOG_LEVEL, json_output: bool = LOG_JSON) -> None:
    """
    Initialise stdlib + structlog logging.

    Call once at process start, before the first log line is emitted.

    Args:
        level: Log level name (``"INFO"``, ``"DEBUG"``, ...).
        json_output: Render one JSON object per line instead of the
            human-readable console format.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)

    processors = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
