"""Demo account seeded for mock-auth environments."""

from __future__ import annotations

import logging

from sqlalchemy import func

from accounts_db.hashing import hash_password
from accounts_db.ids import generate_id
from accounts_db.logging import log_context
from accounts_db.migrations.lock import utcnow
from accounts_db.migrations.reconcile import ROLE_OWNER, RoleLookup
from accounts_db.migrations.steps.users import USER_METADATA_DEFAULTS
from accounts_db.migrations.steps.workspaces import WORKSPACE_METADATA_DEFAULTS
from accounts_db.store import DocumentStore

logger = logging.getLogger(__name__)

DEMO_USER_NAME = "Demo user"
DEMO_USER_EMAIL = "demo@reearth.io"
DEMO_USER_ALIAS = "demo-user"
DEMO_USER_PASSWORD = "password"


def _ids_from_earlier_attempt(store: DocumentStore) -> tuple[str, str] | None:
    # The workspace is written before the user; a run that stopped in between
    # leaves it behind with the intended user id as its only owner.
    workspace = store.workspace.find_one(
        (func.lower(store.workspace.c.email) == DEMO_USER_EMAIL)
        & store.workspace.c.personal.is_(True)
    )
    if workspace is None:
        return None
    owners = [
        member_id
        for member_id, member in (workspace.get("members") or {}).items()
        if member.get("role") == ROLE_OWNER
    ]
    if len(owners) != 1:
        return None
    return owners[0], workspace["id"]


def add_demo_user(store: DocumentStore) -> str | None:
    """Create the demo user, its personal workspace and permittable.

    Does nothing unless mock auth is enabled or when the demo e-mail already exists.
    Returns the new user id.
    """
    if not store.mock_auth:
        logger.debug("demo_user.skipped", extra=log_context(reason="mock_auth_disabled"))
        return None
    if store.user.find_one(func.lower(store.user.c.email) == DEMO_USER_EMAIL) is not None:
        logger.debug("demo_user.skipped", extra=log_context(reason="exists"))
        return None

    roles = RoleLookup.load(store)
    self_role_id = roles.self_role_id
    owner_role_id = roles.name_to_id.get(ROLE_OWNER)
    if self_role_id is None or owner_role_id is None:
        raise LookupError("demo user needs the 'self' and 'owner' roles; run add_roles first")

    now = utcnow()
    user_id, workspace_id = _ids_from_earlier_attempt(store) or (generate_id(), generate_id())

    store.workspace.save_one(
        {
            "id": workspace_id,
            "name": DEMO_USER_NAME,
            "alias": DEMO_USER_ALIAS,
            "email": DEMO_USER_EMAIL,
            "personal": True,
            "members": {user_id: {"role": ROLE_OWNER, "invited_by": user_id, "disabled": False}},
            "integrations": {},
            "metadata": dict(WORKSPACE_METADATA_DEFAULTS),
            "updated_at": now,
        }
    )
    store.user.save_one(
        {
            "id": user_id,
            "name": DEMO_USER_NAME,
            "alias": DEMO_USER_ALIAS,
            "email": DEMO_USER_EMAIL,
            "workspace": workspace_id,
            "subs": [user_id],
            "password": hash_password(DEMO_USER_PASSWORD),
            "metadata": {**USER_METADATA_DEFAULTS, "lang": "ja"},
            "verified": True,
            "updated_at": now,
        }
    )
    store.permittable.save_one(
        {
            "user_id": user_id,
            "role_ids": [self_role_id],
            "workspace_roles": [{"workspace_id": workspace_id, "role_id": owner_role_id}],
            "updated_at": now,
        }
    )
    logger.info("demo_user.created", extra=log_context(user_id=user_id, workspace_id=workspace_id))
    return user_id


__all__ = ["DEMO_USER_EMAIL", "DEMO_USER_NAME", "add_demo_user"]
