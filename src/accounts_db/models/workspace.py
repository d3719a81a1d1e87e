"""Workspace records with embedded member and integration maps."""

from __future__ import annotations

from typing import Any

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from accounts_db.metadata import Base
from accounts_db.types import Document

from .mixins import RecordIdMixin, UpdatedAtMixin


class Workspace(RecordIdMixin, UpdatedAtMixin, Base):
    """Workspace; ``members`` and ``integrations`` map ids to ``{role, invited_by, disabled}``."""

    __tablename__ = "workspace"

    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    alias: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    personal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    members: Mapped[dict[str, Any] | None] = mapped_column(Document(), nullable=True)
    integrations: Mapped[dict[str, Any] | None] = mapped_column(Document(), nullable=True)
    members_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    profile: Mapped[dict[str, Any] | None] = mapped_column("metadata", Document(), nullable=True)
    policy: Mapped[str | None] = mapped_column(Text(), nullable=True)
