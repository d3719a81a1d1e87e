"""Role and permittable steps."""

from __future__ import annotations

import logging

from accounts_db.logging import log_context
from accounts_db.migrations.reconcile import (
    BUILTIN_ROLE_NAMES,
    fix_role_ids,
    reconcile_workspace_roles,
)
from accounts_db.store import DocumentStore

logger = logging.getLogger(__name__)


def add_roles(store: DocumentStore) -> list[str]:
    """Create any missing built-in role; returns the names that were added."""

    existing = {role.get("name") for role in store.role.find(store.role.c.name.in_(BUILTIN_ROLE_NAMES))}
    missing = [name for name in BUILTIN_ROLE_NAMES if name not in existing]
    if missing:
        store.role.save_all({"name": name} for name in missing)
        logger.info("roles.added", extra=log_context(roles=",".join(missing)))
    return missing


def fix_permittable_role_ids(store: DocumentStore) -> None:
    fix_role_ids(store)


def fix_permittable_workspace_roles(store: DocumentStore) -> None:
    reconcile_workspace_roles(store)


__all__ = ["add_roles", "fix_permittable_role_ids", "fix_permittable_workspace_roles"]
