"""Schema steps: table DDL and ``updated_at`` backfills."""

from __future__ import annotations

from accounts_db.ids import id_timestamp
from accounts_db.migrations.lock import utcnow
from accounts_db.migrations.pipeline import for_each_batch
from accounts_db.store import Collection, DocumentStore, Record


def apply_collection_schemas(store: DocumentStore) -> None:
    store.ensure_schema()


def backfill_updated_at(collection: Collection) -> int:
    """Set ``updated_at`` from the id's ULID timestamp (or now) where it is missing."""

    def _transform(record: Record) -> Record:
        record["updated_at"] = id_timestamp(record.get("id")) or utcnow()
        return record

    return for_each_batch(collection, _transform, where=collection.c.updated_at.is_(None)).changed


def add_updated_at_to_workspace(store: DocumentStore) -> None:
    backfill_updated_at(store.workspace)


def add_updated_at_to_user(store: DocumentStore) -> None:
    backfill_updated_at(store.user)


def add_updated_at_to_role(store: DocumentStore) -> None:
    backfill_updated_at(store.role)


def add_updated_at_to_permittable(store: DocumentStore) -> None:
    backfill_updated_at(store.permittable)


__all__ = [
    "add_updated_at_to_permittable",
    "add_updated_at_to_role",
    "add_updated_at_to_user",
    "add_updated_at_to_workspace",
    "apply_collection_schemas",
    "backfill_updated_at",
]
