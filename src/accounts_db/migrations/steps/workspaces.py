"""Data steps over the ``workspace`` collection."""

from __future__ import annotations

import logging

from accounts_db.documents import parse_members
from accounts_db.logging import log_context
from accounts_db.migrations.aliases import canonicalize, is_valid_workspace_alias, random_alias
from accounts_db.migrations.members_hash import compute_members_hash
from accounts_db.migrations.pipeline import for_each_batch, setdefaults
from accounts_db.migrations.reconcile import ROLE_MAINTAINER, ROLE_OWNER
from accounts_db.migrations.steps.users import alias_from_name, looks_like_email, mask_email
from accounts_db.store import DocumentStore, Record

logger = logging.getLogger(__name__)

WORKSPACE_METADATA_DEFAULTS = {
    "description": "",
    "website": "",
    "location": "",
    "billing_email": "",
    "photo_url": "",
}
WORKSPACE_ALIAS_PLACEHOLDERS = frozenset({"", "test", "aaaaa", "e2e-workspace-name"})


def add_workspace_metadata(store: DocumentStore) -> None:
    def _transform(record: Record) -> Record:
        if record.get("email") is None:
            record["email"] = ""
        if not record.get("alias"):
            record["alias"] = alias_from_name(record.get("name"))
        record["metadata"] = setdefaults(record.get("metadata"), WORKSPACE_METADATA_DEFAULTS)
        return record

    for_each_batch(store.workspace, _transform)


def is_printable_ascii(value: str) -> bool:
    return bool(value) and all(" " <= char <= "~" for char in value)


def convert_non_ascii_workspace_aliases(store: DocumentStore) -> None:
    def _transform(record: Record) -> Record:
        alias = (record.get("alias") or "").replace(" ", "")
        if not is_printable_ascii(alias):
            alias = random_alias()
        record["alias"] = alias
        return record

    for_each_batch(store.workspace, _transform)


def demote_extra_owners(members: dict[str, dict]) -> dict[str, dict] | None:
    """Return updated members when several owners exist, else ``None``.

    Owners who did not invite themselves become maintainers.
    """
    parsed = parse_members(members)
    owners = [member_id for member_id, member in parsed.items() if member.role == ROLE_OWNER]
    if len(owners) <= 1:
        return None
    updated = dict(members)
    for member_id in owners:
        if member_id != parsed[member_id].invited_by:
            updated[member_id] = {**(members[member_id] or {}), "role": ROLE_MAINTAINER}
    return updated if updated != members else None


def remove_multiple_workspace_owners(store: DocumentStore) -> None:
    def _transform(record: Record) -> Record | None:
        updated = demote_extra_owners(record.get("members") or {})
        if updated is None:
            return None
        record["members"] = updated
        return record

    for_each_batch(store.workspace, _transform)


def generate_missing_workspace_aliases(store: DocumentStore) -> None:
    alias = store.workspace.c.alias

    def _transform(record: Record) -> Record:
        record["alias"] = random_alias()
        return record

    for_each_batch(
        store.workspace,
        _transform,
        where=alias.is_(None) | alias.in_(sorted(WORKSPACE_ALIAS_PLACEHOLDERS)),
    )


def convert_invalid_workspace_aliases(store: DocumentStore) -> None:
    def _transform(record: Record) -> Record | None:
        alias = record.get("alias") or ""
        if is_valid_workspace_alias(alias):
            return None
        record["alias"] = canonicalize(alias, denylist=WORKSPACE_ALIAS_PLACEHOLDERS)
        return record

    for_each_batch(store.workspace, _transform)


def _owner_values(store: DocumentStore, field: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for page in store.user.iter_pages():
        for user in page:
            workspace_id = user.get("workspace")
            value = user.get(field)
            if workspace_id and value:
                values[workspace_id] = value
    return values


def sync_personal_workspace_alias(store: DocumentStore) -> None:
    owner_aliases = _owner_values(store, "alias")

    def _transform(record: Record) -> Record | None:
        alias = owner_aliases.get(record["id"])
        if alias is None or record.get("alias") == alias:
            return None
        record["alias"] = alias
        return record

    for_each_batch(store.workspace, _transform, where=store.workspace.c.personal.is_(True))


def sync_user_name_to_workspace(store: DocumentStore) -> None:
    owner_names = _owner_values(store, "name")

    def _transform(record: Record) -> Record | None:
        name = record.get("name")
        if not looks_like_email(name):
            return None
        owner_name = owner_names.get(record["id"])
        if not owner_name or owner_name == name:
            return None
        logger.info(
            "workspaces.name.synced",
            extra=log_context(workspace_id=record["id"], previous=mask_email(name or "")),
        )
        record["name"] = owner_name
        return record

    for_each_batch(store.workspace, _transform, where=store.workspace.c.personal.is_(True))


def add_workspace_members_hash(store: DocumentStore) -> None:
    def _transform(record: Record) -> Record | None:
        if record.get("members_hash"):
            return None
        record["members_hash"] = compute_members_hash(
            record.get("members"),
            record.get("integrations"),
        )
        return record

    for_each_batch(store.workspace, _transform)


__all__ = [
    "WORKSPACE_ALIAS_PLACEHOLDERS",
    "WORKSPACE_METADATA_DEFAULTS",
    "add_workspace_members_hash",
    "add_workspace_metadata",
    "convert_invalid_workspace_aliases",
    "convert_non_ascii_workspace_aliases",
    "demote_extra_owners",
    "generate_missing_workspace_aliases",
    "is_printable_ascii",
    "remove_multiple_workspace_owners",
    "sync_personal_workspace_alias",
    "sync_user_name_to_workspace",
]
