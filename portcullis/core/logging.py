"""Structured logging configuration using structlog.

Sign-in events carry user and application identifiers only. Any event key that
names a credential is masked before rendering, whatever the caller passed.
"""

import logging
import sys
from typing import Any

import structlog

from portcullis.core.config import get_settings

REDACTED = "***"

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "code",
        "passcode",
        "recovery_code",
        "captcha_token",
        "client_secret",
        "code_verifier",
        "access_token",
        "refresh_token",
        "id_token",
        "token",
        "secret",
    }
)


def redact_secrets(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging() -> None:
    """Configure structlog processors, output format and third-party log levels."""
    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.app_debug:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        processors = shared_processors + [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # add_logger_name needs stdlib loggers
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    # httpx logs full request URLs, which carry OAuth codes and captcha responses
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)
