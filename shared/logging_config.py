"""
Centralized logging configuration for the BloodCare API.

This module sets up structured logging with:
- Settings-driven configuration (dev vs production)
- JSON formatting for production, pretty console for development
- Redaction of credentials (passwords, tokens, secrets) from every event
- Sentry breadcrumbs for INFO+ and events for ERROR+ when a DSN is set
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Optional

import structlog
from structlog.types import EventDict, Processor

from config import LoggingSettings, SentrySettings

# Sensitive fields to redact from logs
REDACTED_FIELDS = {
    "password",
    "password_hash",
    "new_password",
    "current_password",
    "confirm_password",
    "token",
    "reset_token",
    "refresh_token",
    "access_token",
    "authorization",
    "cookie",
    "secret",
    "key",
}

_SENSITIVE_FRAGMENTS = ("password", "token", "secret", "key")
_PROTECTED_KEYS = {"level", "event", "timestamp", "logger"}


def add_timestamp(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add ISO format timestamp to event dict."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def redact_sensitive_fields(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Redact sensitive fields from logs."""
    for key in list(event_dict.keys()):
        if key in _PROTECTED_KEYS:
            continue
        lowered = key.lower()
        if lowered in REDACTED_FIELDS or any(
            fragment in lowered for fragment in _SENSITIVE_FRAGMENTS
        ):
            event_dict[key] = "***REDACTED***"
    return event_dict


def configure_structlog(log_format: str = "console") -> None:
    """
    Configure structlog with appropriate processors for the environment.

    Production: JSON formatting for easy parsing
    Development: Pretty console formatting with colors
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        redact_sensitive_fields,
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            pad_event=15,
            sort_keys=False,
        )

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_stdlib_logging(log_level: str = "INFO") -> None:
    """
    Configure standard library logging to work with structlog.

    Sets up the log level, a stdout handler, and quiets noisy libraries.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    # Silence pymongo debug logs (connection pool, server monitoring, etc.)
    for name in (
        "pymongo",
        "pymongo.connection",
        "pymongo.serverSelection",
        "pymongo.command",
        "pymongo.topology",
    ):
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_sentry(sentry: Optional[SentrySettings]) -> bool:
    """Initialise Sentry with logging integration. Returns True when enabled."""
    if sentry is None or not sentry.sentry_dsn:
        return False

    import sentry_sdk
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=sentry.sentry_dsn,
        send_default_pii=sentry.sentry_send_pii,
        traces_sample_rate=sentry.sentry_traces_sample_rate,
        profiles_sample_rate=sentry.sentry_profile_sample_rate,
        integrations=[
            # INFO+ logs become breadcrumbs, ERROR+ logs become Sentry events
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
    )
    return True


def setup_logging(
    settings: Optional[LoggingSettings] = None,
    sentry: Optional[SentrySettings] = None,
) -> None:
    """
    Initialize logging system for the application.

    Should be called once, early in application startup (create_app).
    """
    settings = settings or LoggingSettings()

    configure_stdlib_logging(settings.log_level)
    configure_structlog(settings.log_format)
    sentry_enabled = configure_sentry(sentry)

    logger = structlog.get_logger(__name__)
    logger.info(
        "logging_initialized",
        log_level=settings.log_level,
        log_format=settings.log_format,
        sentry_enabled=sentry_enabled,
    )
