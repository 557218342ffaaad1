"""
Structured logging configuration using structlog.

JSON output in production, colored console output everywhere else. Events
that carry kubectl input are scrubbed: Secret manifests and kubeconfigs
never reach the log sink.
"""
import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from dbaas_controller.config.settings import settings

REDACTED = "<redacted>"
SENSITIVE_KEYS = ("kubeconfig", "password")
SECRET_MANIFEST_MARKER = '"kind": "Secret"'


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to log events."""
    event_dict["app"] = settings.app_name
    event_dict["version"] = settings.app_version
    event_dict["environment"] = settings.environment
    return event_dict


def add_severity_level(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add severity level for Google Cloud Logging compatibility."""
    if "level" in event_dict:
        event_dict["severity"] = event_dict["level"].upper()
    return event_dict


def redact_sensitive(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credentials passed as event fields or as kubectl stdin."""
    for key in SENSITIVE_KEYS:
        if key in event_dict:
            event_dict[key] = REDACTED

    stdin = event_dict.get("stdin")
    if isinstance(stdin, str) and SECRET_MANIFEST_MARKER in stdin:
        event_dict["stdin"] = REDACTED
    return event_dict


def configure_logging() -> None:
    """Configure structlog and route it through the stdlib root logger."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_sensitive,
        add_app_context,
        add_severity_level,
        structlog.processors.format_exc_info,
    ]

    if settings.is_production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=settings.debug or sys.stdout.isatty()))

    structlog.configure(
        processors=processors,  # type: ignore
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    # subprocess transports log at debug on every kubectl call
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Module logger; use snake_case event names and keyword fields."""
    return structlog.get_logger(name)
