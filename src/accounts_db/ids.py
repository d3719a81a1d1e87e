"""Record identifier helpers (lowercase ULIDs)."""

from __future__ import annotations

from datetime import datetime

from ulid import ULID


def generate_id() -> str:
    """Return a new lowercase ULID string."""

    return str(ULID()).lower()


def id_timestamp(value: str | None) -> datetime | None:
    """Return the creation time encoded in a ULID id, or ``None`` if it is not one."""

    if not value:
        return None
    try:
        return ULID.from_str(value.upper()).datetime
    except ValueError:
        return None


__all__ = ["generate_id", "id_timestamp"]
