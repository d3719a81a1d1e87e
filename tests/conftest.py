"""Shared pytest fixtures for accounts-db tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.engine import Engine

from accounts_db.engine import build_engine
from accounts_db.ids import generate_id
from accounts_db.migrations.reconcile import BUILTIN_ROLE_NAMES
from accounts_db.schema import metadata
from accounts_db.settings import Settings
from accounts_db.store import DocumentStore

_ACCOUNTS_ENV_VARS = (
    "ACCOUNTS_DATABASE_URL",
    "ACCOUNTS_LOG_LEVEL",
    "ACCOUNTS_LOG_FORMAT",
    "ACCOUNTS_DATABASE_LOG_LEVEL",
    "ACCOUNTS_MIGRATION_BATCH_SIZE",
    "ACCOUNTS_MIGRATION_LEASE_SECONDS",
    "ACCOUNTS_MIGRATION_OWNER",
    "ACCOUNTS_MOCK_AUTH",
)


@pytest.fixture(autouse=True)
def _clean_accounts_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ACCOUNTS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'accounts.sqlite'}"


@pytest.fixture
def settings(database_url: str) -> Settings:
    return Settings(_env_file=None, database_url=database_url)


@pytest.fixture
def engine(settings: Settings) -> Iterator[Engine]:
    engine = build_engine(settings)
    metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def store(engine: Engine) -> DocumentStore:
    # Small pages so multi-page behaviour is exercised by small fixtures.
    return DocumentStore(engine, batch_size=2)


@pytest.fixture
def seed_roles(store: DocumentStore) -> Callable[..., dict[str, str]]:
    """Insert roles by name; returns ``{name: id}``."""

    def _seed(names: tuple[str, ...] = BUILTIN_ROLE_NAMES) -> dict[str, str]:
        ids: dict[str, str] = {}
        for name in names:
            row = store.role.save_one({"id": generate_id(), "name": name})
            ids[name] = row["id"]
        return ids

    return _seed


@pytest.fixture
def make_workspace(store: DocumentStore) -> Callable[..., dict[str, Any]]:
    def _make(
        *,
        alias: str,
        members: dict[str, Any] | None = None,
        integrations: dict[str, Any] | None = None,
        name: str | None = None,
        personal: bool = False,
        workspace_id: str | None = None,
        **fields: Any,
    ) -> dict[str, Any]:
        record = {
            "id": workspace_id or generate_id(),
            "name": name or alias,
            "alias": alias,
            "email": "",
            "personal": personal,
            "members": members or {},
            "integrations": integrations or {},
            **fields,
        }
        return store.workspace.save_one(record)

    return _make


@pytest.fixture
def make_user(store: DocumentStore) -> Callable[..., dict[str, Any]]:
    def _make(
        *,
        name: str,
        email: str,
        alias: str | None = None,
        workspace: str | None = None,
        user_id: str | None = None,
        **fields: Any,
    ) -> dict[str, Any]:
        record = {
            "id": user_id or generate_id(),
            "name": name,
            "alias": alias,
            "email": email,
            "workspace": workspace,
            **fields,
        }
        return store.user.save_one(record)

    return _make


@pytest.fixture
def make_permittable(store: DocumentStore) -> Callable[..., dict[str, Any]]:
    def _make(
        *,
        user_id: str,
        role_ids: list[str] | None = None,
        workspace_roles: list[dict[str, str]] | None = None,
    ) -> dict[str, Any]:
        return store.permittable.save_one(
            {
                "id": generate_id(),
                "user_id": user_id,
                "role_ids": role_ids or [],
                "workspace_roles": workspace_roles or [],
            }
        )

    return _make
