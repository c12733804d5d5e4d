"""Structured logging for the session client.

Records are single-line JSON. Every record carries the correlation id of the
pipeline request that emitted it, and any `extra` field named after a
credential is masked before it is written.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, cast

from typing_extensions import override

if TYPE_CHECKING:
    from ats_session.config.settings import LogLevel

# Shared by one pipeline request, its token refresh and its retry.
correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

REDACTED = "[redacted]"
SENSITIVE_FIELDS: frozenset[str] = frozenset(
    {
        "access",
        "access_token",
        "authorization",
        "code",
        "new_password",
        "new_password_confirm",
        "old_password",
        "otp_code",
        "password",
        "password_confirm",
        "refresh",
        "refresh_token",
    },
)

# httpx logs every request line at INFO; keep it for DEBUG runs only.
_TRANSPORT_LOGGERS: tuple[str, ...] = ("httpx", "httpcore")

_STANDARD_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)),
) | {"message", "asctime", "taskName"}


def redact(key: str, value: object) -> object:
    """Mask `value` when `key` names a credential, descending into mappings."""
    if key.lower() in SENSITIVE_FIELDS:
        return REDACTED
    if isinstance(value, Mapping):
        nested = cast("Mapping[object, object]", value)
        return {str(k): redact(str(k), v) for k, v in nested.items()}
    return value


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as a JSON string."""
        log_data: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "correlation_id": correlation_id.get(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            log_data["stack_trace"] = self.formatStack(record.stack_info)

        protected_attrs = set(log_data.keys())
        record_dict = cast("dict[str, object]", record.__dict__)
        for key, value in record_dict.items():
            if key in _STANDARD_RECORD_ATTRS or key.startswith("_"):
                continue
            name = f"extra_{key}" if key in protected_attrs else key
            log_data[name] = redact(key, value)

        return json.dumps(log_data, default=str)


def init_logging(level: LogLevel) -> None:
    """Initialize structured logging for an application using the client."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Keep pytest capture handlers so caplog keeps working.
    for h in root_logger.handlers[:]:
        if type(h).__name__ != "LogCaptureHandler":
            root_logger.removeHandler(h)

    root_logger.addHandler(handler)

    transport_level = logging.DEBUG if level == "DEBUG" else logging.WARNING
    for name in _TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)
