"""Structured logging configuration using structlog.

Key Features:
- Development (DEBUG=true): Pretty console output with colors
- Production: JSON output for log aggregation
"""

from __future__ import annotations

import logging
import sys
from typing import cast

import structlog

from arkdash.core.config import get_settings


def configure_logging(debug: bool | None = None) -> None:
    """Configure structured logging for the client.

    In development (DEBUG=true):
        - Pretty console output with colors

    In production (DEBUG=false):
        - JSON output for log aggregation

    Args:
        debug: Override the configured debug flag (optional).
    """
    if debug is None:
        debug = get_settings().debug

    log_level = logging.DEBUG if debug else logging.INFO

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
    )

    # Shared processors for both dev and prod
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if debug:
        processors: list[structlog.types.Processor] = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name. If None, uses the calling module's name.

    Returns:
        A structured logger instance.
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
