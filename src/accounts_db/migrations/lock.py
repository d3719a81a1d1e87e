"""Leased migration lock over the singleton ``migration_state`` row.

The row carries both the progress marker (``current_key``) and the lock. Every
transition is one conditional UPDATE whose ``rowcount`` says whether it won:

* acquire: only when unlocked, or when the previous holder's lease has expired;
* renew / save_progress / release: only while ``lock_owner`` is still our token.

A lease of ``0`` seconds disables expiry; a crashed holder is then only cleared
by :meth:`MigrationLock.force_unlock` (``accounts-db unlock --yes``).
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from sqlalchemy import and_, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from accounts_db.errors import LockAcquisitionFailure, LockLost
from accounts_db.logging import log_context
from accounts_db.models import MIGRATION_STATE_ID
from accounts_db.schema import migration_state

logger = logging.getLogger(__name__)

DEFAULT_LEASE_SECONDS = 900


def utcnow() -> datetime:
    return datetime.now(UTC)


def default_owner_token() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


@dataclass(frozen=True, slots=True)
class MigrationProgress:
    current_key: int
    locked: bool
    lock_owner: str | None = None
    locked_at: datetime | None = None
    lease_expires_at: datetime | None = None

    def lease_expired(self, now: datetime | None = None) -> bool:
        if not self.locked or self.lease_expires_at is None:
            return False
        return self.lease_expires_at < (now or utcnow())


class MigrationLock:
    """Non-blocking leased mutex identified by an owner token."""

    def __init__(
        self,
        engine: Engine,
        *,
        owner: str | None = None,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        clock=utcnow,
    ) -> None:
        self.engine = engine
        self.owner = owner or default_owner_token()
        self.lease_seconds = max(0, int(lease_seconds))
        self._clock = clock
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _lease_expires_at(self, now: datetime) -> datetime | None:
        if self.lease_seconds <= 0:
            return None
        return now + timedelta(seconds=self.lease_seconds)

    def _owned(self):
        return and_(
            migration_state.c.id == MIGRATION_STATE_ID,
            migration_state.c.locked.is_(True),
            migration_state.c.lock_owner == self.owner,
        )

    def ensure_row(self, conn: Connection) -> None:
        """Create the singleton row with ``current_key = 0`` if it does not exist."""

        values = {"id": MIGRATION_STATE_ID, "current_key": 0, "locked": False}
        if conn.dialect.name == "postgresql":
            stmt = pg_insert(migration_state).values(values).on_conflict_do_nothing(
                index_elements=[migration_state.c.id]
            )
        else:
            stmt = sqlite_insert(migration_state).values(values).on_conflict_do_nothing(
                index_elements=[migration_state.c.id]
            )
        conn.execute(stmt)

    def read(self) -> MigrationProgress:
        with self.engine.begin() as conn:
            self.ensure_row(conn)
            row = conn.execute(
                select(migration_state).where(migration_state.c.id == MIGRATION_STATE_ID)
            ).mappings().one()
        return MigrationProgress(
            current_key=int(row["current_key"] or 0),
            locked=bool(row["locked"]),
            lock_owner=row["lock_owner"],
            locked_at=row["locked_at"],
            lease_expires_at=row["lease_expires_at"],
        )

    def acquire(self) -> MigrationProgress:
        """Take the lock or raise :class:`LockAcquisitionFailure` immediately."""

        now = self._clock()
        stmt = (
            update(migration_state)
            .where(
                migration_state.c.id == MIGRATION_STATE_ID,
                or_(
                    migration_state.c.locked.is_(False),
                    and_(
                        migration_state.c.lease_expires_at.is_not(None),
                        migration_state.c.lease_expires_at < now,
                    ),
                ),
            )
            .values(
                locked=True,
                lock_owner=self.owner,
                locked_at=now,
                lease_expires_at=self._lease_expires_at(now),
            )
        )
        try:
            with self.engine.begin() as conn:
                self.ensure_row(conn)
                acquired = conn.execute(stmt).rowcount == 1
        except SQLAlchemyError as exc:
            raise LockAcquisitionFailure(f"migration store unreachable: {exc}") from exc

        if not acquired:
            holder = self.read()
            raise LockAcquisitionFailure(
                f"migration lock is held by {holder.lock_owner or 'an unknown owner'}",
                holder=holder.lock_owner,
            )

        self._held = True
        logger.info(
            "migration.lock.acquired",
            extra=log_context(owner=self.owner, lease_seconds=self.lease_seconds),
        )
        return self.read()

    def renew(self) -> None:
        """Extend the lease; raises :class:`LockLost` if another owner took the row."""

        if self.lease_seconds <= 0:
            return
        now = self._clock()
        stmt = (
            update(migration_state)
            .where(self._owned())
            .values(lease_expires_at=self._lease_expires_at(now))
        )
        with self.engine.begin() as conn:
            renewed = conn.execute(stmt).rowcount == 1
        if not renewed:
            self._held = False
            raise LockLost(self.owner)

    def save_progress(self, key: int) -> int:
        """Persist ``key`` as the progress marker; the stored key never decreases.

        Returns the stored key after the write.
        """
        stmt = (
            update(migration_state)
            .where(self._owned(), migration_state.c.current_key <= key)
            .values(current_key=key)
        )
        with self.engine.begin() as conn:
            advanced = conn.execute(stmt).rowcount == 1
        progress = self.read()
        if not advanced:
            if progress.lock_owner != self.owner or not progress.locked:
                self._held = False
                raise LockLost(self.owner)
            logger.warning(
                "migration.progress.not_advanced",
                extra=log_context(requested_key=key, current_key=progress.current_key),
            )
        return progress.current_key

    def release(self) -> bool:
        """Unlock if we still own the row; True if this call released it."""

        stmt = (
            update(migration_state)
            .where(self._owned())
            .values(locked=False, lock_owner=None, locked_at=None, lease_expires_at=None)
        )
        with self.engine.begin() as conn:
            released = conn.execute(stmt).rowcount == 1
        self._held = False
        if released:
            logger.info("migration.lock.released", extra=log_context(owner=self.owner))
        else:
            logger.warning("migration.lock.release_skipped", extra=log_context(owner=self.owner))
        return released

    def force_unlock(self) -> str | None:
        """Clear the lock whoever holds it; returns the previous owner."""

        previous = self.read()
        stmt = (
            update(migration_state)
            .where(migration_state.c.id == MIGRATION_STATE_ID)
            .values(locked=False, lock_owner=None, locked_at=None, lease_expires_at=None)
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)
        logger.warning(
            "migration.lock.forced_unlock",
            extra=log_context(previous_owner=previous.lock_owner, locked=previous.locked),
        )
        return previous.lock_owner


__all__ = [
    "DEFAULT_LEASE_SECONDS",
    "MigrationLock",
    "MigrationProgress",
    "default_owner_token",
    "utcnow",
]
