"""
Logging for the storefront trust layer.

Records are emitted as one JSON object per line, tagged with the correlation
ID of the request being served. Security decisions (rejected tokens, denied
admin access, throttled callers, cross-user uploads) go to the
``security.events`` logger with an ``event_type`` so they can be alerted on.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.core.config import Settings

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

CORRELATION_HEADER = "X-Correlation-ID"
SECURITY_LOGGER = "security.events"
REDACTED = "[REDACTED]"

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}

# Substrings of extra-field names whose values never reach the log
_REDACT_MARKERS = (
    "password", "secret", "token", "cookie", "authorization",
    "credential", "access_key", "private",
)

# Chatty third-party loggers and the level they are held at
_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "aiobotocore": logging.WARNING,
    "botocore": logging.WARNING,
    "passlib": logging.ERROR,
}


def is_sensitive_field(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in _REDACT_MARKERS)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; sensitive ``extra`` values are redacted."""

    def __init__(self, include_sensitive: bool = False):
        super().__init__()
        self.include_sensitive = include_sensitive

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        correlation_id = correlation_id_ctx.get()
        if correlation_id:
            entry["correlation_id"] = correlation_id
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {
            key: (REDACTED if not self.include_sensitive and is_sensitive_field(key) else value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS
        }
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str)


def setup_logging(
    log_level: str = "INFO",
    enable_json: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """Replace the root handlers with a stdout handler (and optionally a file)."""
    if enable_json:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")

    handlers: list = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_correlation_id() -> str:
    """Correlation ID of the current context, minting one outside a request."""
    correlation_id = correlation_id_ctx.get()
    if not correlation_id:
        correlation_id = str(uuid.uuid4())
        correlation_id_ctx.set(correlation_id)
    return correlation_id


def log_security_event(
    event_type: str,
    message: str,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    level: int = logging.INFO,
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Record a security decision on the ``security.events`` logger.

    Args:
        event_type: Stable event name (token_expired, token_forged, rate_limited, ...)
        message: Human-readable summary
        user_id: Subject of the event, if known
        ip_address: Caller's network address, if known
        level: Log level; rejections that suggest tampering use WARNING
        extra_data: Additional non-sensitive context
    """
    fields: Dict[str, Any] = dict(extra_data or {})
    fields["event_type"] = event_type
    fields["correlation_id"] = get_correlation_id()
    if user_id:
        fields["user_id"] = user_id
    if ip_address:
        fields["ip_address"] = ip_address

    logging.getLogger(SECURITY_LOGGER).log(level, message, extra=fields)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Bind the caller's X-Correlation-ID (or a fresh one) for the request and echo it back."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        token = correlation_id_ctx.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_ctx.reset(token)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


def init_application_logging(settings: Settings) -> None:
    """Configure logging from settings: plain text in development, JSON elsewhere."""
    log_level = "DEBUG" if settings.debug else settings.log_level
    enable_json = settings.json_logs and settings.environment != "development"

    setup_logging(log_level=log_level, enable_json=enable_json)

    logging.getLogger("storefront.startup").info("Logging configured", extra={
        "environment": settings.environment,
        "json_logging": enable_json,
        "log_level": log_level,
    })
