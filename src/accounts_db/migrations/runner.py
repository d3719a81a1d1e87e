"""Ordered, lock-guarded execution of the migration catalog."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from accounts_db.errors import LockLost, StepExecutionFailure
from accounts_db.logging import bind_run_context, clear_run_context, log_context
from accounts_db.migrations.catalog import MigrationStep, validate_catalog
from accounts_db.migrations.lock import DEFAULT_LEASE_SECONDS, MigrationLock, MigrationProgress
from accounts_db.store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MigrationReport:
    previous_key: int
    current_key: int
    applied: tuple[MigrationStep, ...] = ()
    duration_seconds: float = 0.0

    @property
    def applied_keys(self) -> list[int]:
        return [step.key for step in self.applied]

    @property
    def applied_names(self) -> list[str]:
        return [step.name for step in self.applied]


@dataclass(frozen=True, slots=True)
class MigrationStatus:
    progress: MigrationProgress
    pending: tuple[MigrationStep, ...] = field(default_factory=tuple)


def pending_steps(catalog: Sequence[MigrationStep], current_key: int) -> list[MigrationStep]:
    """Return the steps with ``key > current_key`` in ascending key order."""

    return sorted((step for step in catalog if step.key > current_key), key=lambda step: step.key)


class MigrationRunner:
    """Applies pending steps under the global lock, saving progress after each one.

    State: idle -> locked -> (applying step -> committed step)* -> unlocked. A failed
    step stops the run; the lock is released either way and the next run resumes
    after the last committed key.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        lock: MigrationLock | None = None,
        owner: str | None = None,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
    ) -> None:
        self.store = store
        self.lock = lock or MigrationLock(store.engine, owner=owner, lease_seconds=lease_seconds)

    def status(self, catalog: Sequence[MigrationStep]) -> MigrationStatus:
        """Progress plus pending steps, read without taking the lock."""

        validate_catalog(catalog)
        progress = self.lock.read()
        return MigrationStatus(
            progress=progress,
            pending=tuple(pending_steps(catalog, progress.current_key)),
        )

    def run(self, catalog: Sequence[MigrationStep]) -> MigrationReport:
        validate_catalog(catalog)
        started = time.monotonic()
        progress = self.lock.acquire()
        bind_run_context(self.lock.owner)
        previous_key = current_key = progress.current_key
        applied: list[MigrationStep] = []
        failed = False
        try:
            steps = pending_steps(catalog, current_key)
            logger.info(
                "migration.run.start",
                extra=log_context(current_key=current_key, pending=len(steps)),
            )
            step_store = self.store.with_heartbeat(self.lock.renew)
            for step in steps:
                self.lock.renew()
                self._apply(step, step_store)
                current_key = self.lock.save_progress(step.key)
                applied.append(step)
        except BaseException:
            failed = True
            raise
        finally:
            self._release(failed)
            clear_run_context()

        duration = time.monotonic() - started
        logger.info(
            "migration.run.done",
            extra=log_context(
                previous_key=previous_key,
                current_key=current_key,
                applied=len(applied),
                duration_ms=int(duration * 1000),
            ),
        )
        return MigrationReport(
            previous_key=previous_key,
            current_key=current_key,
            applied=tuple(applied),
            duration_seconds=duration,
        )

    def _apply(self, step: MigrationStep, store: DocumentStore) -> None:
        logger.info("migration.step.start", extra=log_context(step_key=step.key, step=step.name))
        step_started = time.monotonic()
        try:
            step.body(store)
        except LockLost:
            raise
        except Exception as exc:
            logger.error(
                "migration.step.failed",
                extra=log_context(
                    step_key=step.key,
                    step=step.name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                ),
            )
            raise StepExecutionFailure(step.key, step.name, exc) from exc
        logger.info(
            "migration.step.done",
            extra=log_context(
                step_key=step.key,
                step=step.name,
                duration_ms=int((time.monotonic() - step_started) * 1000),
            ),
        )

    def _release(self, failed: bool) -> None:
        try:
            self.lock.release()
        except SQLAlchemyError:
            logger.exception("migration.lock.release_failed", extra=log_context(owner=self.lock.owner))
            if not failed:
                raise


__all__ = [
    "MigrationReport",
    "MigrationRunner",
    "MigrationStatus",
    "pending_steps",
]
