"""
Logging configuration using structlog for structured, JSON-based logging.

All modules log through ``structlog.get_logger(__name__)``. The HTTP layer
calls :func:`bind_request_context` at the start of every request so each
event emitted while serving it carries the same ``request_id``; the
``merge_contextvars`` processor folds that context into the event.
"""

import uuid
from typing import Any

import structlog

SENSITIVE_KEYS = ("token", "api_key", "apikey", "authorization", "password", "secret")
REDACTED = "***REDACTED***"


def redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Mask values whose key names look like credentials."""
    for key in event_dict:
        if any(marker in key.lower() for marker in SENSITIVE_KEYS):
            event_dict[key] = REDACTED
    return event_dict


def bind_request_context(request_id: str | None = None, **values: Any) -> str:
    """Start a fresh log context for one request.

    Clears whatever the previous request left behind, then binds
    ``request_id`` (a new UUID4 when none is given) plus ``values``.

    Returns:
        The bound request id
    """
    request_id = request_id or str(uuid.uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **values)
    return request_id


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging with JSON output.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_secrets,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level.upper()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
