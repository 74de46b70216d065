"""
Logger factory and helpers.

Provides:
- get_logger(): Get a configured structlog logger
- log_with_context(): Bind common context (account_id, request_id) to a logger
- setup_logging(): Re-exported from shared.logging_config
"""

from __future__ import annotations

import structlog
from structlog.stdlib import BoundLogger

from shared.logging_config import setup_logging


def get_logger(name: str) -> BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("login_success", account_id="123")
    """
    return structlog.get_logger(name)


def log_with_context(logger: BoundLogger, **context) -> BoundLogger:
    """
    Bind context to a logger for all subsequent log calls.

    Example:
        >>> log = log_with_context(get_logger(__name__), account_id="123")
        >>> log.info("otp_verified")  # Will include account_id
    """
    return logger.bind(**context)


__all__ = ["get_logger", "log_with_context", "setup_logging"]
