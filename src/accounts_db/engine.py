"""Engine construction for the accounts store.

Production runs against PostgreSQL through psycopg 3; local runs and the test
suite use SQLite. Migration steps are short transactions issued one page at a
time, so the pool stays small and connections are checked before reuse.
"""

from __future__ import annotations

from typing import Any, Protocol

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.pool import StaticPool

APPLICATION_NAME = "accounts-db"
SQLITE_BUSY_TIMEOUT_MS = 5000


class EngineSettings(Protocol):
    database_url: str
    database_echo: bool
    database_pool_size: int
    database_max_overflow: int
    database_pool_timeout: int
    database_pool_recycle: int
    database_connect_timeout_seconds: int | None


def _sqlite_in_memory(url: URL) -> bool:
    return (url.database or ":memory:") == ":memory:" or url.query.get("mode") == "memory"


def _postgres_engine(url: URL, settings: EngineSettings) -> Engine:
    # Bare postgresql:// would pick psycopg2, which is not a dependency.
    if url.drivername in {"postgres", "postgresql"}:
        url = url.set(drivername="postgresql+psycopg")
    elif url.drivername != "postgresql+psycopg":
        raise ValueError(f"Unsupported PostgreSQL driver {url.drivername!r}; use postgresql+psycopg://")

    connect_args: dict[str, Any] = {"application_name": APPLICATION_NAME}
    if settings.database_connect_timeout_seconds is not None:
        connect_args["connect_timeout"] = int(settings.database_connect_timeout_seconds)

    return create_engine(
        url,
        echo=settings.database_echo,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_recycle=settings.database_pool_recycle,
    )


def _sqlite_engine(url: URL, settings: EngineSettings) -> Engine:
    options: dict[str, Any] = {"echo": settings.database_echo}
    if _sqlite_in_memory(url):
        # One shared connection, otherwise every checkout sees an empty database.
        options.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    engine = create_engine(url, **options)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        finally:
            cursor.close()

    return engine


def build_engine(settings: EngineSettings) -> Engine:
    """Create the engine described by ``settings.database_url``."""

    url = make_url(str(settings.database_url))
    backend = url.get_backend_name()
    if backend == "postgresql":
        return _postgres_engine(url, settings)
    if backend == "sqlite":
        return _sqlite_engine(url, settings)
    raise ValueError(f"Unsupported database backend {backend!r}; use PostgreSQL or SQLite.")


__all__ = ["APPLICATION_NAME", "EngineSettings", "build_engine"]
