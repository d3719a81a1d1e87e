"""Process-wide logging for migration runs.

Two renderings share one record model:

* ``console``: ``<utc time> LEVEL logger [cid=...] event key=value ...``
* ``json``: one object per line with the same fields.

Events are dotted names (``migration.step.done``); structured fields travel in
``extra=log_context(...)``. While a runner holds the lock its owner token is bound
as the correlation id, so every line of one run can be grepped out of shared logs.
"""

from __future__ import annotations

import json
import logging
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from accounts_db.settings import Settings

_SERVICE_NAME = "accounts-db"
_HANDLER_NAME = "accounts_db.stream"
_SQLALCHEMY_LOGGERS = ("sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool")

_run_id: ContextVar[str | None] = ContextVar("accounts_db_run_id", default=None)

# Anything a bare LogRecord already carries is not a structured field.
_RESERVED_FIELDS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "correlation_id"}


def bind_run_context(correlation_id: str | None) -> None:
    _run_id.set(correlation_id)


def clear_run_context() -> None:
    _run_id.set(None)


def current_run_id() -> str | None:
    return _run_id.get()


def log_context(**fields: Any) -> dict[str, Any]:
    """Return an ``extra=`` payload; names clashing with LogRecord attributes are rejected.

    Example::

        logger.info("pipeline.done", extra=log_context(collection="user", changed=3))
    """
    clashes = sorted(key for key in fields if key in _RESERVED_FIELDS)
    if clashes:
        raise ValueError(f"log fields shadow LogRecord attributes: {', '.join(clashes)}")
    return dict(fields)


def structured_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_FIELDS and not key.startswith("_")
    }


class _RunAwareFormatter(logging.Formatter):
    """Shared timestamp and correlation-id handling."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=UTC)
        return stamp.strftime("%Y-%m-%dT%H:%M:%S") + f".{int(record.msecs):03d}Z"

    @staticmethod
    def correlation_id(record: logging.LogRecord) -> str:
        return getattr(record, "correlation_id", None) or _run_id.get() or "-"


class ConsoleLogFormatter(_RunAwareFormatter):
    """Single-line rendering, e.g.::

        2026-01-09T10:41:53.120Z INFO  accounts_db.migrations.runner [cid=host-42-9f1c]
        migration.step.done duration_ms=84 step=fix_permittable_workspace_roles step_key=260109104153
    """

    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"{self.formatTime(record)} {record.levelname:<5} {record.name} "
            f"[cid={self.correlation_id(record)}] {record.getMessage()}"
        )
        fields = structured_fields(record)
        if fields:
            line += " " + " ".join(
                f"{key}={_console_value(value)}" for key, value in sorted(fields.items())
            )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class JsonLogFormatter(_RunAwareFormatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "service": _SERVICE_NAME,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": self.correlation_id(record),
            **structured_fields(record),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, separators=(",", ":"))


def _console_value(value: Any) -> str:
    return "null" if value is None else str(value)


def setup_logging(settings: Settings) -> None:
    """Install the accounts-db stream handler on the root logger.

    Calling it again swaps the formatter and levels in place instead of stacking
    handlers. SQLAlchemy loggers feed the same handler but stay at WARNING unless
    ``ACCOUNTS_DATABASE_LOG_LEVEL`` asks for SQL traces.
    """
    root = logging.getLogger()
    handler = next((h for h in root.handlers if h.get_name() == _HANDLER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
    root.handlers = [handler]
    handler.setFormatter(JsonLogFormatter() if settings.log_format == "json" else ConsoleLogFormatter())
    root.setLevel(settings.effective_log_level)

    sql_level = settings.database_log_level or "WARNING"
    for name in _SQLALCHEMY_LOGGERS:
        sql_logger = logging.getLogger(name)
        sql_logger.handlers.clear()
        sql_logger.propagate = True
        sql_logger.setLevel(sql_level)


__all__ = [
    "ConsoleLogFormatter",
    "JsonLogFormatter",
    "bind_run_context",
    "clear_run_context",
    "current_run_id",
    "log_context",
    "setup_logging",
    "structured_fields",
]
