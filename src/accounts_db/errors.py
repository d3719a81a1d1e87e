"""Domain-specific exceptions for migration runs."""

from __future__ import annotations

from collections.abc import Sequence


class MigrationError(Exception):
    """Base class for every error a migration run can surface."""


class LockAcquisitionFailure(MigrationError):
    """Raised when another runner holds the migration lock or the store is unreachable."""

    def __init__(self, detail: str, *, holder: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.holder = holder


class LockLost(MigrationError):
    """Raised when the lock row no longer belongs to this runner's owner token."""

    def __init__(self, owner: str) -> None:
        super().__init__(f"migration lock is no longer held by {owner}")
        self.owner = owner


class StepExecutionFailure(MigrationError):
    """Raised when a step body fails; the progress marker stays at the last committed step."""

    def __init__(self, step_key: int, step_name: str, cause: BaseException) -> None:
        super().__init__(f"step {step_key} ({step_name}) failed: {cause}")
        self.step_key = step_key
        self.step_name = step_name
        self.cause = cause


class DuplicateKeyFailure(MigrationError):
    """Raised when a unique index or insert collides with existing values."""

    def __init__(
        self,
        target: str,
        values: Sequence[str] = (),
        *,
        detail: str | None = None,
    ) -> None:
        self.target = target
        self.values = list(values)
        self.detail = detail
        message = f"duplicate keys for {target}"
        if self.values:
            message = f"{message}: {', '.join(self.values)}"
        elif detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class PartialBatchFailure(MigrationError):
    """Raised when a page write fails after earlier pages were committed."""

    def __init__(self, collection: str, pages_committed: int) -> None:
        super().__init__(
            f"batch write into {collection} failed after {pages_committed} committed page(s)"
        )
        self.collection = collection
        self.pages_committed = pages_committed


class CatalogError(MigrationError):
    """Raised when a step catalog has duplicate or non-positive keys."""


class AliasValidationError(ValueError):
    """Raised when an alias candidate fails the handle pattern or the denylist."""

    def __init__(self, candidate: str, reason: str) -> None:
        super().__init__(f"{reason}: {candidate!r}")
        self.candidate = candidate
        self.reason = reason


__all__ = [
    "AliasValidationError",
    "CatalogError",
    "DuplicateKeyFailure",
    "LockAcquisitionFailure",
    "LockLost",
    "MigrationError",
    "PartialBatchFailure",
    "StepExecutionFailure",
]
