"""Singleton migration progress/lock record."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from accounts_db.metadata import Base
from accounts_db.types import UTCDateTime

MIGRATION_STATE_ID = 1


class MigrationState(Base):
    """Progress marker plus lease; auth fields live on the same row."""

    __tablename__ = "migration_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=MIGRATION_STATE_ID)
    current_key: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0, server_default=text("0")
    )
    locked: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    lock_owner: Mapped[str | None] = mapped_column(String(255), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    auth_cert: Mapped[str | None] = mapped_column(Text(), nullable=True)
    auth_key: Mapped[str | None] = mapped_column(Text(), nullable=True)
    default_policy: Mapped[str | None] = mapped_column(Text(), nullable=True)
