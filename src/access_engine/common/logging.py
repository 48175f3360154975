"""Process logging for hosts embedding the access engine.

Two output formats are supported: a single-line console rendering for local
work and one JSON object per line for log ingestion. Every record carries the
correlation ID bound for the current request, and structured fields passed via
``extra=log_context(...)`` are rendered after the message.
"""

from __future__ import annotations

import json
import logging
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from access_engine.settings import Settings

_CORRELATION_ID: ContextVar[str | None] = ContextVar(
    "access_engine_correlation_id",
    default=None,
)

# Attributes every LogRecord has; anything else on a record came from `extra`.
_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "correlation_id"}

_HANDLER_NAME = "access_engine"
_DATABASE_LOGGERS = ("sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool")


class _StructuredFormatter(logging.Formatter):
    """Shared timestamp and correlation handling for both output formats."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=UTC)
        return f"{stamp:%Y-%m-%dT%H:%M:%S}.{int(record.msecs):03d}Z"

    @staticmethod
    def _bind_correlation(record: logging.LogRecord) -> str:
        cid = getattr(record, "correlation_id", None) or _CORRELATION_ID.get() or "-"
        record.correlation_id = cid
        return cid

    @staticmethod
    def extras(record: logging.LogRecord) -> dict[str, Any]:
        return {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED and not key.startswith("_")
        }


class ConsoleLogFormatter(_StructuredFormatter):
    """One line per record: ``<time> <LEVEL> <logger> [cid=...] <message> k=v ...``."""

    def __init__(self) -> None:
        super().__init__(
            "%(asctime)s %(levelname)-5s %(name)s [cid=%(correlation_id)s] %(message)s"
        )

    def format(self, record: logging.LogRecord) -> str:
        self._bind_correlation(record)
        line = super().format(record)
        fields = " ".join(
            f"{key}={'null' if value is None else value}"
            for key, value in sorted(self.extras(record).items())
        )
        return f"{line} {fields}" if fields else line


class JsonLogFormatter(_StructuredFormatter):
    """Render log records as compact JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        cid = self._bind_correlation(record)
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "service": "access-engine",
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": cid,
            **self.extras(record),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, separators=(",", ":"))


def setup_logging(settings: Settings) -> None:
    """Install the engine's stream handler on the root logger.

    Calling this repeatedly reconfigures the same handler rather than stacking
    new ones. SQLAlchemy loggers propagate to the root and stay at WARNING
    unless ``settings.database_log_level`` says otherwise.
    """

    root = logging.getLogger()
    handler = next((item for item in root.handlers if item.get_name() == _HANDLER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
    root.handlers = [handler]
    formatter: logging.Formatter = (
        JsonLogFormatter() if settings.log_format == "json" else ConsoleLogFormatter()
    )
    handler.setFormatter(formatter)
    root.setLevel(settings.log_level)

    database_level = settings.database_log_level or "WARNING"
    for name in _DATABASE_LOGGERS:
        database_logger = logging.getLogger(name)
        database_logger.handlers.clear()
        database_logger.propagate = True
        database_logger.setLevel(database_level)


def bind_request_context(correlation_id: str | None) -> None:
    """Bind a correlation ID for the current request."""
    _CORRELATION_ID.set(correlation_id)


def clear_request_context() -> None:
    _CORRELATION_ID.set(None)


def current_request_id() -> str | None:
    return _CORRELATION_ID.get()


def log_context(
    *,
    tenant_id: str | None = None,
    company_id: str | None = None,
    site_id: str | None = None,
    person_id: str | None = None,
    actor_id: str | None = None,
    **fields: Any,
) -> dict[str, Any]:
    """Build the ``extra`` mapping for a structured log call.

    Identity fields are dropped when ``None`` and stringified otherwise;
    remaining keyword fields are passed through untouched::

        logger.warning(
            "access.decision.deny",
            extra=log_context(tenant_id=actor.tenant_id, actor_id=actor.person_id, code="NO_MATCH"),
        )
    """

    identity = {
        "tenant_id": tenant_id,
        "company_id": company_id,
        "site_id": site_id,
        "person_id": person_id,
        "actor_id": actor_id,
    }
    context = {key: str(value) for key, value in identity.items() if value is not None}
    context.update(fields)
    return context


__all__ = [
    "ConsoleLogFormatter",
    "JsonLogFormatter",
    "bind_request_context",
    "clear_request_context",
    "current_request_id",
    "log_context",
    "setup_logging",
]
