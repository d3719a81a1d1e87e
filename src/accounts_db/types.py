"""Column types shared by the accounts tables.

- UTCDateTime: aware datetimes, always UTC on the way in and out (SQLite drops
  the offset, so naive values read back are UTC by construction).
- Document: embedded maps and lists; JSONB on PostgreSQL, JSON text elsewhere.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON, DateTime, TypeDecorator


def as_utc(value: Any) -> Any:
    if not isinstance(value, datetime):
        return value
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


class UTCDateTime(TypeDecorator):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect):
        return as_utc(value)

    def process_result_value(self, value: Any, dialect):
        return as_utc(value)


class Document(TypeDecorator):
    """``members``, ``role_ids``, ``metadata`` and friends; ``None`` is SQL NULL."""

    impl = JSON(none_as_null=True)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB(none_as_null=True))
        return dialect.type_descriptor(JSON(none_as_null=True))


__all__ = ["Document", "UTCDateTime", "as_utc"]
