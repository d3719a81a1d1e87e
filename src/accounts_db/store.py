"""Document-style access to the accounts tables.

Records are plain dicts keyed by column name. Each :class:`Collection` offers the
driver surface migration steps consume: keyset-paged scans, upsert-by-id batches,
bulk updates and index management. Writes into ``workspace`` always recompute
``members_hash`` so the digest can never drift from the membership maps.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Index, MetaData, Table, delete, func, insert, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.schema import CreateIndex
from sqlalchemy.sql.elements import ColumnElement

from accounts_db.errors import DuplicateKeyFailure
from accounts_db.ids import generate_id
from accounts_db.logging import log_context
from accounts_db.migrations.aliases import DuplicateGroup
from accounts_db.migrations.members_hash import compute_members_hash
from accounts_db.schema import COLLECTION_TABLES, apply_collection_schemas, user_sub

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000

Record = dict[str, Any]
Where = ColumnElement[bool] | None

_INDEX_NAME = re.compile(r"^[a-z][a-z0-9_]{0,62}$")
_MAX_BOUND_PARAMETERS = 30_000

# Values used when a record handed to a write omits a column.
_COLLECTION_DEFAULTS: dict[str, dict[str, Callable[[], Any]]] = {
    "user": {"verified": lambda: False},
    "workspace": {
        "personal": lambda: False,
        "members": dict,
        "integrations": dict,
    },
    "role": {},
    "permittable": {"role_ids": list, "workspace_roles": list},
}


@dataclass(frozen=True, slots=True)
class IndexSpec:
    """Unique index over ``columns``; ``case_insensitive`` wraps the first in ``lower()``."""

    name: str
    columns: tuple[str, ...]
    unique: bool = True
    case_insensitive: bool = False


def _workspace_write_hook(row: Record) -> Record:
    row["members_hash"] = compute_members_hash(row.get("members"), row.get("integrations"))
    return row


_WRITE_HOOKS: dict[str, Callable[[Record], Record]] = {
    "workspace": _workspace_write_hook,
}


def distinct_subs(subs: Any) -> list[str]:
    """Non-empty string subjects of one user, first spelling of each case-folded value."""

    seen: set[str] = set()
    result: list[str] = []
    for sub in subs or ():
        if not isinstance(sub, str) or not sub.strip():
            continue
        key = sub.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(sub)
    return result


def _sync_user_subs(conn: Connection, rows: list[Record]) -> None:
    # Runs in the transaction of the user write, so both tables commit together.
    conn.execute(delete(user_sub).where(user_sub.c.user_id.in_([row["id"] for row in rows])))
    entries = [
        {"id": generate_id(), "user_id": row["id"], "sub": sub}
        for row in rows
        for sub in distinct_subs(row.get("subs"))
    ]
    if entries:
        conn.execute(insert(user_sub), entries)


_SIDE_TABLE_SYNC: dict[str, Callable[[Connection, list[Record]], None]] = {
    "user": _sync_user_subs,
}


class Collection:
    """One accounts table seen as a collection of id-keyed documents."""

    def __init__(self, store: DocumentStore, table: Table) -> None:
        self.store = store
        self.table = table
        self.name = table.name
        self._defaults = _COLLECTION_DEFAULTS.get(self.name, {})
        self._write_hook = _WRITE_HOOKS.get(self.name)
        self._side_sync = _SIDE_TABLE_SYNC.get(self.name)
        self._detached: Table | None = None

    def __repr__(self) -> str:
        return f"Collection({self.name!r})"

    @property
    def c(self):
        return self.table.c

    @property
    def engine(self) -> Engine:
        return self.store.engine

    # ------------------------------------------------------------------ reads

    def _row_to_record(self, row: Mapping[str, Any]) -> Record:
        return {column.name: row[column.name] for column in self.table.columns}

    def iter_pages(self, where: Where = None, *, size: int | None = None) -> Iterator[list[Record]]:
        """Yield pages of records ordered by id.

        Each page is read on its own connection and resumes after the last id of
        the previous page, so callers may write into the collection between pages.
        """
        page_size = max(1, int(size or self.store.batch_size))
        last_id: str | None = None
        while True:
            stmt = select(self.table).order_by(self.table.c.id).limit(page_size)
            if where is not None:
                stmt = stmt.where(where)
            if last_id is not None:
                stmt = stmt.where(self.table.c.id > last_id)
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
            if not rows:
                return
            page = [self._row_to_record(row) for row in rows]
            yield page
            if len(rows) < page_size:
                return
            last_id = page[-1]["id"]

    def find(self, where: Where = None) -> list[Record]:
        records: list[Record] = []
        for page in self.iter_pages(where):
            records.extend(page)
        return records

    def find_one(self, where: Where) -> Record | None:
        stmt = select(self.table).order_by(self.table.c.id).limit(1)
        if where is not None:
            stmt = stmt.where(where)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
        return self._row_to_record(row) if row is not None else None

    def find_by_id(self, record_id: str) -> Record | None:
        return self.find_one(self.table.c.id == record_id)

    def count(self, where: Where = None) -> int:
        stmt = select(func.count()).select_from(self.table)
        if where is not None:
            stmt = stmt.where(where)
        with self.engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    # ----------------------------------------------------------------- writes

    def prepare(self, record: Mapping[str, Any]) -> Record:
        """Return a full row for ``record``: every column present, hooks applied."""

        row: Record = {}
        for column in self.table.columns:
            name = column.name
            if name in record:
                row[name] = record[name]
            elif name in self._defaults:
                row[name] = self._defaults[name]()
            else:
                row[name] = None
        if not row.get("id"):
            row["id"] = generate_id()
        if self._write_hook is not None:
            row = self._write_hook(row)
        return row

    def _upsert(self, conn: Connection, rows: list[Record]) -> None:
        dialect = conn.dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(self.table).values(rows)
        elif dialect == "sqlite":
            stmt = sqlite_insert(self.table).values(rows)
        else:
            raise ValueError(f"Unsupported database backend for upsert: {dialect}")
        stmt = stmt.on_conflict_do_update(
            index_elements=[self.table.c.id],
            set_={
                column.name: stmt.excluded[column.name]
                for column in self.table.columns
                if column.name != "id"
            },
        )
        conn.execute(stmt)

    def _chunks(self, rows: list[Record]) -> Iterator[list[Record]]:
        # Keep each multi-row VALUES under the bound-parameter limits of both backends.
        size = max(1, _MAX_BOUND_PARAMETERS // max(1, len(self.table.columns)))
        for start in range(0, len(rows), size):
            yield rows[start : start + size]

    def save_all(self, records: Iterable[Mapping[str, Any]]) -> int:
        """Upsert ``records`` by id in one transaction; returns the number written."""

        rows = [self.prepare(record) for record in records]
        if not rows:
            return 0
        try:
            with self.engine.begin() as conn:
                for chunk in self._chunks(rows):
                    self._upsert(conn, chunk)
                    if self._side_sync is not None:
                        self._side_sync(conn, chunk)
        except IntegrityError as exc:
            raise DuplicateKeyFailure(
                self.name,
                [row["id"] for row in rows],
                detail=str(exc.orig),
            ) from exc
        return len(rows)

    def save_one(self, record: Mapping[str, Any]) -> Record:
        row = self.prepare(record)
        self.save_all([row])
        return row

    def insert_one(self, record: Mapping[str, Any]) -> Record:
        """Insert a new record; a unique index violation raises ``DuplicateKeyFailure``."""

        row = self.prepare(record)
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(self.table).values(row))
                if self._side_sync is not None:
                    self._side_sync(conn, [row])
        except IntegrityError as exc:
            raise DuplicateKeyFailure(self.name, [row["id"]], detail=str(exc.orig)) from exc
        return row

    def update_many(self, where: Where, values: Mapping[str, Any]) -> int:
        stmt = update(self.table).values(dict(values))
        if where is not None:
            stmt = stmt.where(where)
        sync_subs = self._side_sync is not None and "subs" in values
        try:
            with self.engine.begin() as conn:
                touched: list[Record] = []
                if sync_subs:
                    ids = select(self.table.c.id)
                    if where is not None:
                        ids = ids.where(where)
                    touched = [
                        {"id": record_id, "subs": values["subs"]}
                        for record_id in conn.execute(ids).scalars()
                    ]
                updated = int(conn.execute(stmt).rowcount or 0)
                if touched:
                    self._side_sync(conn, touched)
        except IntegrityError as exc:
            raise DuplicateKeyFailure(self.name, detail=str(exc.orig)) from exc
        return updated

    # ---------------------------------------------------------------- indexes

    def _index_table(self) -> Table:
        # Ad-hoc indexes are built on a detached copy so they never join the
        # shared metadata (and ``create_all``) of the real table.
        if self._detached is None:
            self._detached = self.table.to_metadata(MetaData())
        return self._detached

    def build_index(self, spec: IndexSpec) -> Index:
        if not _INDEX_NAME.match(spec.name):
            raise ValueError(f"Invalid index name: {spec.name!r}")
        table = self._index_table()
        expressions: list[Any] = []
        for position, column_name in enumerate(spec.columns):
            column = table.c[column_name]
            if spec.case_insensitive and position == 0:
                expressions.append(func.lower(column))
            else:
                expressions.append(column)
        return Index(spec.name, *expressions, unique=spec.unique)

    def index_names(self) -> set[str]:
        with self.engine.connect() as conn:
            dialect = conn.dialect.name
            if dialect == "sqlite":
                rows = conn.execute(
                    text("SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = :table"),
                    {"table": self.name},
                )
            elif dialect == "postgresql":
                rows = conn.execute(
                    text(
                        "SELECT indexname FROM pg_indexes "
                        "WHERE schemaname = current_schema() AND tablename = :table"
                    ),
                    {"table": self.name},
                )
            else:
                raise ValueError(f"Unsupported database backend for index listing: {dialect}")
            return {str(row[0]) for row in rows}

    def create_index(self, spec: IndexSpec) -> bool:
        """Create ``spec`` unless an index with that name exists; True if created."""

        if spec.name in self.index_names():
            logger.info(
                "store.index.exists",
                extra=log_context(collection=self.name, index=spec.name),
            )
            return False
        index = self.build_index(spec)
        try:
            with self.engine.begin() as conn:
                conn.execute(CreateIndex(index, if_not_exists=True))
        except IntegrityError as exc:
            raise DuplicateKeyFailure(
                f"{self.name}.{spec.name}",
                detail=str(exc.orig),
            ) from exc
        logger.info(
            "store.index.created",
            extra=log_context(collection=self.name, index=spec.name, columns=",".join(spec.columns)),
        )
        return True

    def drop_index(self, name: str) -> bool:
        """Drop index ``name`` if present; True if it existed."""

        if not _INDEX_NAME.match(name):
            raise ValueError(f"Invalid index name: {name!r}")
        existed = name in self.index_names()
        with self.engine.begin() as conn:
            quoted = conn.dialect.identifier_preparer.quote(name)
            conn.execute(text(f"DROP INDEX IF EXISTS {quoted}"))
        if existed:
            logger.info("store.index.dropped", extra=log_context(collection=self.name, index=name))
        return existed

    # ------------------------------------------------------------- duplicates

    def find_duplicate_aliases(self, *, with_members_hash: bool = False) -> list[DuplicateGroup]:
        """Group records by ``lower(alias)`` (and ``members_hash``); return groups of 2+."""

        table = self.table
        alias_key = func.lower(table.c.alias)
        group_by: list[Any] = [alias_key]
        conditions = [table.c.alias.is_not(None)]
        if with_members_hash:
            group_by.append(table.c.members_hash)
            conditions.append(table.c.members_hash.is_not(None))

        grouped = (
            select(alias_key.label("alias_key"), *group_by[1:])
            .where(*conditions)
            .group_by(*group_by)
            .having(func.count() > 1)
            .order_by(alias_key)
        )

        groups: list[DuplicateGroup] = []
        with self.engine.connect() as conn:
            for row in conn.execute(grouped).mappings().all():
                key = row["alias_key"]
                members_hash = row["members_hash"] if with_members_hash else None
                ids_stmt = select(table.c.id).where(alias_key == key).order_by(table.c.id)
                if with_members_hash:
                    ids_stmt = ids_stmt.where(table.c.members_hash == members_hash)
                ids = tuple(conn.execute(ids_stmt).scalars().all())
                groups.append(DuplicateGroup(key=key, ids=ids, members_hash=members_hash))
        return groups

    def aliases(self) -> set[str]:
        """Return every stored alias, lower-cased."""

        stmt = select(func.lower(self.table.c.alias)).where(self.table.c.alias.is_not(None))
        with self.engine.connect() as conn:
            return {value for value in conn.execute(stmt).scalars().all() if value is not None}


class DocumentStore:
    """Handle passed to every migration step.

    ``heartbeat`` is invoked after each committed pipeline page; the runner uses it
    to renew the migration lease during long scans.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        mock_auth: bool = False,
        heartbeat: Callable[[], Any] | None = None,
    ) -> None:
        self.engine = engine
        self.batch_size = max(1, int(batch_size))
        self.mock_auth = mock_auth
        self._heartbeat = heartbeat
        self._collections = {
            name: Collection(self, table) for name, table in COLLECTION_TABLES.items()
        }
        self._user_subs = Collection(self, user_sub)

    @classmethod
    def from_settings(cls, engine: Engine, settings: Any) -> DocumentStore:
        return cls(
            engine,
            batch_size=settings.migration_batch_size,
            mock_auth=settings.mock_auth,
        )

    def with_heartbeat(self, heartbeat: Callable[[], Any] | None) -> DocumentStore:
        return DocumentStore(
            self.engine,
            batch_size=self.batch_size,
            mock_auth=self.mock_auth,
            heartbeat=heartbeat,
        )

    def touch(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat()

    def collection(self, name: str) -> Collection:
        try:
            return self._collections[name]
        except KeyError:
            raise KeyError(f"Unknown collection: {name}") from None

    @property
    def user(self) -> Collection:
        return self._collections["user"]

    @property
    def workspace(self) -> Collection:
        return self._collections["workspace"]

    @property
    def role(self) -> Collection:
        return self._collections["role"]

    @property
    def permittable(self) -> Collection:
        return self._collections["permittable"]

    @property
    def user_subs(self) -> Collection:
        """Side table of ``(user_id, sub)`` rows mirrored from ``user.subs``."""

        return self._user_subs

    def rebuild_user_subs(self) -> int:
        """Rewrite ``user_sub`` from every user record, one page per transaction."""

        users = 0
        for page in self.user.iter_pages():
            with self.engine.begin() as conn:
                _sync_user_subs(conn, page)
            users += len(page)
            self.touch()
        logger.info("store.user_subs.rebuilt", extra=log_context(users=users))
        return users

    def ensure_schema(self) -> list[str]:
        """Apply table DDL; returns the names of tables that were created."""

        created = apply_collection_schemas(self.engine)
        if created:
            logger.info("store.schema.created", extra=log_context(tables=",".join(created)))
        return created


__all__ = [
    "Collection",
    "DEFAULT_BATCH_SIZE",
    "DocumentStore",
    "IndexSpec",
    "Record",
]
