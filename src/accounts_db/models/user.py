"""User records."""

from __future__ import annotations

from typing import Any

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from accounts_db.metadata import Base
from accounts_db.types import Document

from .mixins import RecordIdMixin, UpdatedAtMixin


class User(RecordIdMixin, UpdatedAtMixin, Base):
    """Single identity record; ``workspace`` points at the personal workspace."""

    __tablename__ = "user"

    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    alias: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    workspace: Mapped[str | None] = mapped_column(String(64), nullable=True)
    subs: Mapped[list[str] | None] = mapped_column(Document(), nullable=True)
    password: Mapped[str | None] = mapped_column(Text(), nullable=True)
    # "metadata" is reserved on declarative classes.
    profile: Mapped[dict[str, Any] | None] = mapped_column("metadata", Document(), nullable=True)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
