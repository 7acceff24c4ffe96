"""
Centralized logging configuration using structlog.

Request middleware binds correlation_id, client_id, request_method and
request_path into context variables; the processors below merge them into
every event, drop unset fields and keep presigned signatures out of the logs.
"""

import logging
import sys
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

import structlog
from structlog.types import EventDict, Processor

from upload_gateway.core.config import Settings, settings as default_settings

# Query parameters that make a presigned URL usable by whoever reads it
SIGNATURE_MARKERS = ("X-Amz-Signature=", "X-Amz-Credential=", "Signature=")


def drop_unset_context(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Remove context fields bound as None (anonymous callers, unknown sizes)."""
    return {key: value for key, value in event_dict.items() if value is not None}


def redact_signed_urls(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Strip the query string from any logged URL that carries a signature."""
    for key, value in event_dict.items():
        if isinstance(value, str) and any(marker in value for marker in SIGNATURE_MARKERS):
            parts = urlsplit(value)
            event_dict[key] = urlunsplit((parts.scheme, parts.netloc, parts.path, "[redacted]", ""))
    return event_dict


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog for the application.

    Uses LOG_LEVEL and LOG_FORMAT from the environment via settings; LOG_FORMAT
    ``json`` renders JSON lines, anything else the console renderer.
    """
    settings = settings or default_settings
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        drop_unset_context,
        redact_signed_urls,
    ]

    if settings.log_format.lower() == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_request_context(**kwargs: Any) -> None:
    """
    Bind request-scoped context variables to the current context.

    Example:
        bind_request_context(correlation_id="789e0123", client_id="user-42")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_request_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
