"""Permission reconciliation: workspace membership -> per-user permittable records.

``workspace.members`` and ``workspace.integrations`` are authoritative. Each user's
``permittable.workspace_roles`` is a denormalized copy of the active memberships,
resolved from role names to role ids. :func:`reconcile_workspace_roles` rebuilds
that copy and writes only the records that drifted. :func:`fix_role_ids` repairs
the global ``role_ids`` list, where workspace-scoped role ids used to leak in.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass

from accounts_db.documents import (
    WorkspaceRole,
    dump_workspace_roles,
    parse_members,
    parse_workspace_roles,
)
from accounts_db.ids import generate_id
from accounts_db.logging import log_context
from accounts_db.migrations.pipeline import for_each_batch
from accounts_db.store import DocumentStore, Record

logger = logging.getLogger(__name__)

ROLE_READER = "reader"
ROLE_WRITER = "writer"
ROLE_MAINTAINER = "maintainer"
ROLE_OWNER = "owner"
ROLE_SELF = "self"

WORKSPACE_ROLE_NAMES = (ROLE_OWNER, ROLE_MAINTAINER, ROLE_WRITER, ROLE_READER)
BUILTIN_ROLE_NAMES = (ROLE_READER, ROLE_WRITER, ROLE_MAINTAINER, ROLE_OWNER, ROLE_SELF)


@dataclass(frozen=True, slots=True)
class RoleLookup:
    """Role name <-> id maps, rebuilt for every step that needs them."""

    name_to_id: dict[str, str]
    id_to_name: dict[str, str]

    @classmethod
    def load(cls, store: DocumentStore) -> RoleLookup:
        """Read every role in id order; a repeated name maps to its newest id."""

        name_to_id: dict[str, str] = {}
        id_to_name: dict[str, str] = {}
        for role in store.role.find():
            name = role.get("name") or ""
            if not name:
                continue
            name_to_id[name] = role["id"]
            id_to_name[role["id"]] = name
        return cls(name_to_id=name_to_id, id_to_name=id_to_name)

    @property
    def self_role_id(self) -> str | None:
        return self.name_to_id.get(ROLE_SELF)

    def workspace_role_ids(self) -> set[str]:
        return {self.name_to_id[name] for name in WORKSPACE_ROLE_NAMES if name in self.name_to_id}


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    updated: int
    created: int
    unchanged: int
    skipped_roles: int


def workspace_role_keys(entries: Iterable[WorkspaceRole]) -> set[str]:
    return {entry.key for entry in entries}


def same_workspace_roles(left: Iterable[WorkspaceRole], right: Iterable[WorkspaceRole]) -> bool:
    """Set equality on ``workspace_id:role_id``; order and repeats do not matter."""

    return workspace_role_keys(left) == workspace_role_keys(right)


def _normalized(entries: Iterable[WorkspaceRole]) -> list[WorkspaceRole]:
    unique = {entry.key: entry for entry in entries}
    return sorted(unique.values(), key=lambda entry: (entry.workspace_id, entry.role_id))


def build_expected_roles(
    store: DocumentStore,
    roles: RoleLookup,
) -> tuple[dict[str, list[WorkspaceRole]], int]:
    """Collect active memberships per user id; returns the map and the skip count."""

    expected: dict[str, list[WorkspaceRole]] = defaultdict(list)
    skipped = 0
    for page in store.workspace.iter_pages():
        for workspace in page:
            memberships = [
                *parse_members(workspace.get("members")).items(),
                *parse_members(workspace.get("integrations")).items(),
            ]
            for member_id, member in memberships:
                if member.disabled:
                    continue
                role_id = roles.name_to_id.get(member.role)
                if role_id is None:
                    skipped += 1
                    logger.warning(
                        "reconcile.role.unresolved",
                        extra=log_context(
                            workspace_id=workspace["id"],
                            member_id=member_id,
                            role=member.role,
                        ),
                    )
                    continue
                expected[member_id].append(
                    WorkspaceRole(workspace_id=workspace["id"], role_id=role_id)
                )
        store.touch()
    return {user_id: _normalized(entries) for user_id, entries in expected.items()}, skipped


def reconcile_workspace_roles(store: DocumentStore) -> ReconcileResult:
    """Bring every ``permittable.workspace_roles`` in line with workspace membership."""

    roles = RoleLookup.load(store)
    expected, skipped = build_expected_roles(store, roles)
    seen_users: set[str] = set()
    counts = {"unchanged": 0}

    def _transform(record: Record) -> Record | None:
        user_id = record.get("user_id") or ""
        seen_users.add(user_id)
        current = parse_workspace_roles(record.get("workspace_roles"))
        wanted = expected.get(user_id, [])
        if same_workspace_roles(current, wanted):
            counts["unchanged"] += 1
            return None
        record["workspace_roles"] = dump_workspace_roles(wanted)
        return record

    result = for_each_batch(store.permittable, _transform)

    self_role_id = roles.self_role_id
    missing = [
        {
            "id": generate_id(),
            "user_id": user_id,
            "role_ids": [self_role_id] if self_role_id else [],
            "workspace_roles": dump_workspace_roles(entries),
        }
        for user_id, entries in sorted(expected.items())
        if user_id not in seen_users and entries
    ]
    created = store.permittable.save_all(missing) if missing else 0

    logger.info(
        "reconcile.done",
        extra=log_context(
            updated=result.changed,
            inserted=created,
            unchanged=counts["unchanged"],
            skipped_roles=skipped,
        ),
    )
    return ReconcileResult(
        updated=result.changed,
        created=created,
        unchanged=counts["unchanged"],
        skipped_roles=skipped,
    )


def clean_role_ids(
    role_ids: Iterable[str | None],
    *,
    workspace_role_ids: set[str],
    self_role_id: str | None,
) -> list[str]:
    """Drop empty and workspace-scoped ids, keep order, make sure ``self`` is present."""

    cleaned = [role_id for role_id in role_ids if role_id and role_id not in workspace_role_ids]
    if self_role_id and self_role_id not in cleaned:
        cleaned.append(self_role_id)
    return cleaned


def fix_role_ids(store: DocumentStore) -> int:
    """Repair ``permittable.role_ids``; returns the number of records rewritten."""

    roles = RoleLookup.load(store)
    workspace_ids = roles.workspace_role_ids()
    self_role_id = roles.self_role_id
    if self_role_id is None:
        logger.warning("reconcile.role_ids.no_self_role")

    def _transform(record: Record) -> Record | None:
        current = list(record.get("role_ids") or [])
        cleaned = clean_role_ids(
            current,
            workspace_role_ids=workspace_ids,
            self_role_id=self_role_id,
        )
        if cleaned == current:
            return None
        record["role_ids"] = cleaned
        return record

    return for_each_batch(store.permittable, _transform).changed


__all__ = [
    "BUILTIN_ROLE_NAMES",
    "ROLE_MAINTAINER",
    "ROLE_OWNER",
    "ROLE_READER",
    "ROLE_SELF",
    "ROLE_WRITER",
    "ReconcileResult",
    "RoleLookup",
    "WORKSPACE_ROLE_NAMES",
    "build_expected_roles",
    "clean_role_ids",
    "fix_role_ids",
    "reconcile_workspace_roles",
    "same_workspace_roles",
    "workspace_role_keys",
]
