"""Role reference records."""

from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from accounts_db.metadata import Base

from .mixins import RecordIdMixin, UpdatedAtMixin


class Role(RecordIdMixin, UpdatedAtMixin, Base):
    __tablename__ = "role"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
