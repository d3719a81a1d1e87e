"""Per-user permission cache records."""

from __future__ import annotations

from typing import Any

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from accounts_db.metadata import Base
from accounts_db.types import Document

from .mixins import RecordIdMixin, UpdatedAtMixin


class Permittable(RecordIdMixin, UpdatedAtMixin, Base):
    """One record per user: global ``role_ids`` plus ``{workspace_id, role_id}`` pairs."""

    __tablename__ = "permittable"

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role_ids: Mapped[list[str] | None] = mapped_column(Document(), nullable=True)
    workspace_roles: Mapped[list[dict[str, Any]] | None] = mapped_column(Document(), nullable=True)
