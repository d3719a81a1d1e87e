"""Unique index steps and their duplicate-alias policies.

Steps that find case-insensitive collisions either stop the run
(:attr:`DuplicatePolicy.ABORT`, the operator resolves them with
``accounts-db resolve-aliases``) or rename the extra records first
(:attr:`DuplicatePolicy.RESOLVE`). Each step picks its policy explicitly.
"""

from __future__ import annotations

import logging

from accounts_db.errors import DuplicateKeyFailure
from accounts_db.logging import log_context
from accounts_db.migrations.aliases import (
    AliasAssignment,
    DuplicatePolicy,
    describe_groups,
    resolve_duplicates,
)
from accounts_db.store import Collection, DocumentStore, IndexSpec

logger = logging.getLogger(__name__)

USER_EMAIL_INDEX = IndexSpec("ix_user_email_ci", ("email",), case_insensitive=True)
USER_WORKSPACE_INDEX = IndexSpec("ix_user_workspace_ci", ("workspace",), case_insensitive=True)
USER_SUB_INDEX = IndexSpec("ix_user_sub_sub_ci", ("sub",), case_insensitive=True)
USER_ALIAS_INDEX = IndexSpec("ix_user_alias_ci", ("alias",), case_insensitive=True)
WORKSPACE_ALIAS_INDEX = IndexSpec("ix_workspace_alias_ci", ("alias",), case_insensitive=True)
WORKSPACE_ALIAS_MEMBERS_INDEX = IndexSpec(
    "ix_workspace_alias_members_hash_ci",
    ("alias", "members_hash"),
    case_insensitive=True,
)


def resolve_alias_duplicates(
    collection: Collection,
    *,
    with_members_hash: bool = False,
) -> list[AliasAssignment]:
    """Rename all but the first record of every case-insensitive alias collision."""

    groups = collection.find_duplicate_aliases(with_members_hash=with_members_hash)
    if not groups:
        return []
    assignments = resolve_duplicates(collection.name, groups, taken=collection.aliases())
    by_id = {assignment.record_id: assignment.alias for assignment in assignments}
    records = []
    for record_id, alias in by_id.items():
        record = collection.find_by_id(record_id)
        if record is None:
            continue
        record["alias"] = alias
        records.append(record)
    collection.save_all(records)
    logger.info(
        "aliases.duplicates.resolved",
        extra=log_context(collection=collection.name, groups=len(groups), renamed=len(records)),
    )
    return assignments


def enforce_alias_policy(
    collection: Collection,
    policy: DuplicatePolicy,
    *,
    with_members_hash: bool = False,
) -> list[AliasAssignment]:
    if policy is DuplicatePolicy.RESOLVE:
        return resolve_alias_duplicates(collection, with_members_hash=with_members_hash)

    groups = collection.find_duplicate_aliases(with_members_hash=with_members_hash)
    if groups:
        described = describe_groups(groups)
        logger.error(
            "aliases.duplicates.found",
            extra=log_context(collection=collection.name, groups=len(groups)),
        )
        raise DuplicateKeyFailure(f"{collection.name}.alias", described)
    return []


def add_user_email_index(store: DocumentStore) -> None:
    store.user.create_index(USER_EMAIL_INDEX)


def add_user_workspace_index(store: DocumentStore) -> None:
    store.user.create_index(USER_WORKSPACE_INDEX)


def add_user_subs_index(store: DocumentStore) -> None:
    """Mirror every user's ``subs`` into ``user_sub`` and make each subject unique.

    A subject shared by two users (ignoring case) fails the step; there is no safe
    automatic choice of which account keeps the login.
    """
    store.rebuild_user_subs()
    store.user_subs.create_index(USER_SUB_INDEX)


def add_workspace_alias_index(store: DocumentStore) -> None:
    if WORKSPACE_ALIAS_INDEX.name in store.workspace.index_names():
        return
    enforce_alias_policy(store.workspace, DuplicatePolicy.ABORT)
    store.workspace.create_index(WORKSPACE_ALIAS_INDEX)


def replace_workspace_alias_members_index(store: DocumentStore) -> None:
    store.workspace.drop_index(WORKSPACE_ALIAS_INDEX.name)
    enforce_alias_policy(store.workspace, DuplicatePolicy.RESOLVE, with_members_hash=True)
    store.workspace.create_index(WORKSPACE_ALIAS_MEMBERS_INDEX)


def add_user_alias_index(store: DocumentStore) -> None:
    enforce_alias_policy(store.user, DuplicatePolicy.RESOLVE)
    store.user.create_index(USER_ALIAS_INDEX)


__all__ = [
    "USER_ALIAS_INDEX",
    "USER_EMAIL_INDEX",
    "USER_SUB_INDEX",
    "USER_WORKSPACE_INDEX",
    "WORKSPACE_ALIAS_INDEX",
    "WORKSPACE_ALIAS_MEMBERS_INDEX",
    "add_user_alias_index",
    "add_user_email_index",
    "add_user_subs_index",
    "add_user_workspace_index",
    "add_workspace_alias_index",
    "enforce_alias_policy",
    "replace_workspace_alias_members_index",
    "resolve_alias_duplicates",
]
