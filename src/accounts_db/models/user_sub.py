"""One row per (user, OAuth subject) pair.

``user.subs`` is a JSON list, so uniqueness of a subject across users is enforced
here instead. Rows are rewritten whenever a user's ``subs`` are written.
"""

from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from accounts_db.metadata import Base

from .mixins import RecordIdMixin


class UserSub(RecordIdMixin, Base):
    __tablename__ = "user_sub"

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    sub: Mapped[str] = mapped_column(String(255), nullable=False)
