"""Reusable SQLAlchemy mixins for accounts models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from accounts_db.ids import generate_id
from accounts_db.types import UTCDateTime

__all__ = [
    "RecordIdMixin",
    "UpdatedAtMixin",
]


class RecordIdMixin:
    """String primary key; new records get a lowercase ULID."""

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_id)


class UpdatedAtMixin:
    """Nullable ``updated_at``; older records are backfilled by migration steps."""

    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
