"""Logging helpers for processes embedding curlish."""

from .logging import (
    bind_exchange_context,
    clear_exchange_context,
    configure_logging,
    get_logger,
)

__all__ = [
    "bind_exchange_context",
    "clear_exchange_context",
    "configure_logging",
    "get_logger",
]
