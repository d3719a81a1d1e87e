"""Scan-transform-save over one collection, one page at a time."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from accounts_db.errors import DuplicateKeyFailure, PartialBatchFailure
from accounts_db.logging import log_context
from accounts_db.store import Collection, Record, Where

logger = logging.getLogger(__name__)

Transform = Callable[[Record], Record | None]


@dataclass(frozen=True, slots=True)
class BatchResult:
    scanned: int
    changed: int
    pages: int


def for_each_batch(
    collection: Collection,
    transform: Transform,
    *,
    where: Where = None,
    batch_size: int | None = None,
) -> BatchResult:
    """Apply ``transform`` to every record matching ``where`` and save what changed.

    ``transform`` receives a private copy of each record and returns the record to
    store, or ``None`` to skip it. Records equal to what was read are not written.
    Each page is written as one upsert batch. Pages already written stay written if
    a later page fails; the failure is raised as :class:`PartialBatchFailure`.
    """
    size = batch_size or collection.store.batch_size
    scanned = 0
    changed = 0
    pages_committed = 0

    for page in collection.iter_pages(where, size=size):
        pending: list[Record] = []
        for record in page:
            scanned += 1
            candidate = transform(copy.deepcopy(record))
            if candidate is None or candidate == record:
                continue
            pending.append(candidate)

        if pending:
            try:
                collection.save_all(pending)
            except (SQLAlchemyError, DuplicateKeyFailure) as exc:
                logger.error(
                    "pipeline.page.failed",
                    extra=log_context(
                        collection=collection.name,
                        pages_committed=pages_committed,
                        error=str(exc),
                    ),
                )
                raise PartialBatchFailure(collection.name, pages_committed) from exc
            changed += len(pending)
            logger.debug(
                "pipeline.page.saved",
                extra=log_context(collection=collection.name, saved=len(pending), scanned=len(page)),
            )
        pages_committed += 1
        collection.store.touch()

    logger.info(
        "pipeline.done",
        extra=log_context(
            collection=collection.name,
            scanned=scanned,
            changed=changed,
            pages=pages_committed,
        ),
    )
    return BatchResult(scanned=scanned, changed=changed, pages=pages_committed)


def setdefaults(target: dict[str, Any] | None, defaults: dict[str, Any]) -> dict[str, Any]:
    """Return ``target`` (or a new dict) with every missing key of ``defaults`` filled."""

    merged = dict(target or {})
    for key, value in defaults.items():
        merged.setdefault(key, value)
    return merged


__all__ = ["BatchResult", "Transform", "for_each_batch", "setdefaults"]
