"""Structured logging for the billing service.

Webhook handling binds ``event_id`` and ``event_type`` through structlog
contextvars, so every line logged while an event is processed carries them.
Stripe keys, webhook secrets, signatures and Firebase tokens never reach the
output: sensitive keys are masked by name and Stripe secret values by prefix.
"""

import logging
import re
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from nexusrbx.config import Environment, Settings, get_settings

SERVICE_NAME = "nexusrbx-billing"
SERVICE_VERSION = "0.1.0"

SENSITIVE_KEY_PARTS = (
    "secret",
    "signature",
    "token",
    "api_key",
    "private_key",
    "authorization",
    "credential",
)

# Stripe secret keys, restricted keys and webhook signing secrets
STRIPE_SECRET_PATTERN = re.compile(r"\b(?:sk|rk)_(?:live|test)_[A-Za-z0-9]+|\bwhsec_[A-Za-z0-9]+")


def _mask(value: Any) -> str:
    if isinstance(value, str) and len(value) > 8:
        return f"{value[:4]}...{value[-4:]}"
    return "***REDACTED***"


def mask_secrets(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Mask sensitive fields by key and Stripe secrets inside any string value."""
    masked: EventDict = {}
    for key, value in event_dict.items():
        if any(part in key.lower() for part in SENSITIVE_KEY_PARTS):
            masked[key] = _mask(value)
        elif isinstance(value, str):
            masked[key] = STRIPE_SECRET_PATTERN.sub("***REDACTED***", value)
        else:
            masked[key] = value
    return masked


def service_fields(settings: Settings) -> Processor:
    """Processor stamping service name, version and environment on each entry."""
    environment = settings.environment.value

    def add_service_fields(
        logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("version", SERVICE_VERSION)
        event_dict.setdefault("environment", environment)
        return event_dict

    return add_service_fields


def configure_logging(settings: Settings | None = None) -> None:
    """
    Configure structured logging.

    Production: one JSON object per line on stdout, tracebacks as dicts
    Development: colored console output
    """
    settings = settings or get_settings()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        mask_secrets,
        service_fields(settings),
    ]

    if settings.environment == Environment.PRODUCTION:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.value),
    )

    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("google").setLevel(logging.WARNING)
