"""Structured logging configuration.

Library events go through the standard ``logging`` hierarchy under the
``curlish`` logger, wrapped by structlog. Until an application configures
logging they are discarded, so nothing reaches the response output.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog

LOGGER_NAME = "curlish"


def configure_logging(
    level: int = logging.WARNING,
    output: TextIO = sys.stderr,
    json_format: bool = False,
) -> None:
    """Configure structured logging for a process embedding curlish.

    Logs go to stderr by default so they never mix with a response body
    written to stdout.

    Args:
        level: Logging level (default: WARNING).
        output: Output stream (default: stderr).
        json_format: Whether to use JSON format (default: False).
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_format:
        processors.append(structlog.processors.JSONRenderer(sort_keys=True))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(output)
    handler.setFormatter(logging.Formatter("%(message)s"))
    library = logging.getLogger(LOGGER_NAME)
    library.handlers = [handler]
    library.setLevel(level)
    library.propagate = False


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Bound logger writing to ``name`` (default: the package logger)."""
    logger: structlog.stdlib.BoundLogger = structlog.wrap_logger(
        logging.getLogger(name or LOGGER_NAME),
        wrapper_class=structlog.stdlib.BoundLogger,
    )
    return logger


def bind_exchange_context(exchange_id: str) -> None:
    """Attach an exchange identifier to every subsequent log event."""
    structlog.contextvars.bind_contextvars(exchange_id=exchange_id)


def clear_exchange_context() -> None:
    structlog.contextvars.unbind_contextvars("exchange_id")
