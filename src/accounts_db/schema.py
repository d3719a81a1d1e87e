"""SQLAlchemy Core schema access for the accounts tables."""

from __future__ import annotations

from sqlalchemy.engine import Engine

from accounts_db.metadata import Base
import accounts_db.models  # noqa: F401

metadata = Base.metadata

# Expose collections for SQLAlchemy Core usage (store, lock, steps).
user = metadata.tables["user"]
workspace = metadata.tables["workspace"]
role = metadata.tables["role"]
permittable = metadata.tables["permittable"]
migration_state = metadata.tables["migration_state"]
user_sub = metadata.tables["user_sub"]

COLLECTION_TABLES = {
    "user": user,
    "workspace": workspace,
    "role": role,
    "permittable": permittable,
}

REQUIRED_TABLES = [
    "user",
    "workspace",
    "role",
    "permittable",
    "migration_state",
    "user_sub",
]


def apply_collection_schemas(engine: Engine) -> list[str]:
    """Create any missing accounts table; existing tables are left untouched."""

    existing = set()
    with engine.connect() as conn:
        for name in REQUIRED_TABLES:
            if conn.dialect.has_table(conn, name):
                existing.add(name)
    metadata.create_all(engine, checkfirst=True)
    return [name for name in REQUIRED_TABLES if name not in existing]


__all__ = [
    "COLLECTION_TABLES",
    "REQUIRED_TABLES",
    "apply_collection_schemas",
    "metadata",
    "migration_state",
    "permittable",
    "role",
    "user",
    "user_sub",
    "workspace",
]
