"""Structured JSON logging for the Vertex API.

Each log line is one JSON object. Request-scoped values (the correlation id,
route, timing and the staff member acting) live in a single context variable
that :class:`JSONFormatter` merges into every record emitted while the
request is handled. Attendance mutations are written as named events through
:func:`log_event`, so the activity trail of the console can be rebuilt from
the logs alone.
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

_log_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("vertex_log_context")

_REDACTED = "[REDACTED]"
_DEFAULT_SENSITIVE_FIELDS = "password,password_hash,token,authorization,email"

# Keys every line carries, null when unknown, so log queries can rely on them.
_JSON_LOG_FIELDS = (
    "ts",
    "level",
    "logger",
    "msg",
    "event",
    "request_id",
    "user_id",
    "role",
    "method",
    "path",
    "route",
    "status",
    "duration_ms",
    "db_time_ms",
    "client_ip",
    "error_type",
    "error",
    "stack",
    "extra_context",
)

# ``extra=`` attributes that go to the top level instead of ``extra_context``.
_PROMOTED_FIELDS = frozenset(_JSON_LOG_FIELDS) - {"ts", "level", "logger", "msg", "stack", "extra_context"}

_LOG_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------

def get_request_context() -> Dict[str, Any]:
    """Return a copy of the values bound to the current request."""

    return dict(_log_context.get({}))


def merge_request_context(**values: Any) -> None:
    """Bind values to the current request; ``None`` values are skipped."""

    context = get_request_context()
    context.update({key: value for key, value in values.items() if value is not None})
    _log_context.set(context)


def clear_request_context() -> None:
    _log_context.set({})


def get_request_id() -> Optional[str]:
    return _log_context.get({}).get("request_id")


def set_request_id(request_id: str) -> None:
    merge_request_context(request_id=request_id)


def bind_principal(user_id: Optional[str], role: Optional[str]) -> None:
    """Attach the authenticated staff member to every log line of the request."""

    merge_request_context(user_id=user_id, role=role)


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------

def sensitive_fields() -> frozenset:
    configured = os.environ.get("SENSITIVE_FIELDS", _DEFAULT_SENSITIVE_FIELDS)
    return frozenset(field.strip().lower() for field in configured.split(",") if field.strip())


def redact_sensitive_data(data: Any, fields: Optional[Iterable[str]] = None) -> Any:
    """Replace the values of sensitive keys in nested mappings and sequences.

    Key matching is case-insensitive. Scalars come back unchanged; tuples and
    sets come back as lists so the result is always JSON-serialisable.
    """

    hidden = frozenset(field.lower() for field in fields) if fields else sensitive_fields()
    if isinstance(data, Mapping):
        return {
            key: _REDACTED if str(key).lower() in hidden else redact_sensitive_data(value, hidden)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple, set)):
        return [redact_sensitive_data(item, hidden) for item in data]
    return data


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def _json_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    return str(obj)


class JSONFormatter(logging.Formatter):
    """Render records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = dict.fromkeys(_JSON_LOG_FIELDS)
        payload.update(
            ts=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            level=record.levelname,
            logger=record.name,
            msg=record.getMessage(),
        )
        for key, value in get_request_context().items():
            payload[key] = value

        extra: Dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in _LOG_RECORD_ATTRIBUTES or key.startswith("_"):
                continue
            if key in _PROMOTED_FIELDS:
                if value is not None:
                    payload[key] = value
            else:
                extra[key] = value
        if extra:
            payload["extra_context"] = redact_sensitive_data(extra)

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            payload["error_type"] = exc_type.__name__ if exc_type else None
            payload["error"] = str(exc_value)
            payload["stack"] = self.formatException(record.exc_info)
        elif record.stack_info:
            payload["stack"] = record.stack_info

        return json.dumps(payload, default=_json_default, separators=(",", ":"))


# ---------------------------------------------------------------------------
# Set-up
# ---------------------------------------------------------------------------

_configured = False


def configure_logging() -> None:
    """Send every logger through one stdout handler using :class:`JSONFormatter`."""

    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO))
    logging.captureWarnings(True)

    # The request middleware already logs each request once.
    for name in ("werkzeug", "gunicorn.access", "gunicorn.error", "sqlalchemy.engine"):
        noisy = logging.getLogger(name)
        noisy.handlers = []
        noisy.propagate = True
        noisy.setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def log_event(logger: logging.Logger, event: str, **fields: Any) -> None:
    """Log a named domain event, e.g. ``attendance_marked``.

    ``fields`` other than the standard log keys land in ``extra_context``;
    the acting staff member comes from the request context.
    """

    logger.info(event, extra={"event": event, **fields})


class DBTimer:
    """Accumulate the time spent in store queries as ``db_time_ms``.

    Several timed queries in one request add up, so the request's closing
    log line carries the total.
    """

    def __enter__(self) -> "DBTimer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        elapsed = (time.perf_counter() - self._start) * 1000
        spent = get_request_context().get("db_time_ms", 0.0)
        merge_request_context(db_time_ms=round(spent + elapsed, 2))


__all__ = [
    "DBTimer",
    "JSONFormatter",
    "bind_principal",
    "clear_request_context",
    "configure_logging",
    "get_logger",
    "get_request_context",
    "get_request_id",
    "log_event",
    "merge_request_context",
    "redact_sensitive_data",
    "set_request_id",
]
