"""The ordered catalog of migration steps.

Keys are ``YYMMDDhhmmss`` integers; the runner applies every step whose key is
greater than the stored progress marker, in ascending key order. Every step body
must be idempotent: a run may stop part way through a step and the next run
starts that step again from the beginning.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from accounts_db.errors import CatalogError
from accounts_db.migrations.steps import demo, indexes, roles, schemas, users, workspaces


@dataclass(frozen=True, slots=True)
class MigrationStep:
    key: int
    name: str
    body: Callable[[Any], Any]
    description: str = ""


def validate_catalog(catalog: Sequence[MigrationStep]) -> None:
    """Raise :class:`CatalogError` on non-positive or repeated keys or names."""

    seen_keys: set[int] = set()
    seen_names: set[str] = set()
    for step in catalog:
        if not isinstance(step.key, int) or isinstance(step.key, bool) or step.key <= 0:
            raise CatalogError(f"step {step.name!r} has an invalid key: {step.key!r}")
        if step.key in seen_keys:
            raise CatalogError(f"duplicate step key: {step.key}")
        if not step.name:
            raise CatalogError(f"step {step.key} has no name")
        if step.name in seen_names:
            raise CatalogError(f"duplicate step name: {step.name}")
        seen_keys.add(step.key)
        seen_names.add(step.name)


CATALOG: tuple[MigrationStep, ...] = (
    MigrationStep(
        250603145155,
        "add_user_metadata",
        users.add_user_metadata,
        "Ensure user metadata and derive empty aliases from names.",
    ),
    MigrationStep(
        250617171040,
        "add_workspace_metadata",
        workspaces.add_workspace_metadata,
        "Ensure workspace email/metadata and derive empty aliases from names.",
    ),
    MigrationStep(
        250725020842,
        "convert_invalid_user_aliases",
        users.convert_invalid_user_aliases,
        "Normalize user aliases; replace e-mail-like or invalid ones.",
    ),
    MigrationStep(
        250725020843,
        "convert_non_ascii_workspace_aliases",
        workspaces.convert_non_ascii_workspace_aliases,
        "Replace workspace aliases that are not printable ASCII.",
    ),
    MigrationStep(
        250725171711,
        "remove_multiple_workspace_owners",
        workspaces.remove_multiple_workspace_owners,
        "Demote extra owners that did not create the workspace.",
    ),
    MigrationStep(
        250909142051,
        "add_user_email_index",
        indexes.add_user_email_index,
        "Unique case-insensitive index on user.email.",
    ),
    MigrationStep(
        250909142052,
        "add_user_workspace_index",
        indexes.add_user_workspace_index,
        "Unique case-insensitive index on user.workspace.",
    ),
    MigrationStep(
        250909142053,
        "add_user_subs_index",
        indexes.add_user_subs_index,
        "Mirror user.subs into user_sub; unique case-insensitive index on the subject.",
    ),
    MigrationStep(
        250910120000,
        "generate_missing_workspace_aliases",
        workspaces.generate_missing_workspace_aliases,
        "Replace placeholder workspace aliases with random ones.",
    ),
    MigrationStep(
        250911120000,
        "generate_missing_user_aliases",
        users.generate_missing_user_aliases,
        "Replace placeholder user aliases with random ones.",
    ),
    MigrationStep(
        250911120001,
        "add_workspace_alias_index",
        indexes.add_workspace_alias_index,
        "Unique case-insensitive workspace alias index; stops on duplicates.",
    ),
    MigrationStep(
        250919170408,
        "convert_invalid_workspace_aliases",
        workspaces.convert_invalid_workspace_aliases,
        "Canonicalize workspace aliases that fail the handle pattern.",
    ),
    MigrationStep(
        251106072200,
        "replace_email_formatted_names",
        users.replace_email_formatted_names,
        "Replace user names that are e-mail addresses.",
    ),
    MigrationStep(
        251107102200,
        "sync_personal_workspace_alias",
        workspaces.sync_personal_workspace_alias,
        "Personal workspace alias follows the owner's alias.",
    ),
    MigrationStep(
        251114101525,
        "sync_user_name_to_workspace",
        workspaces.sync_user_name_to_workspace,
        "Personal workspaces named like an e-mail take the owner's name.",
    ),
    MigrationStep(
        251119144500,
        "add_workspace_members_hash",
        workspaces.add_workspace_members_hash,
        "Backfill workspace members_hash.",
    ),
    MigrationStep(
        251120220000,
        "replace_workspace_alias_members_index",
        indexes.replace_workspace_alias_members_index,
        "Swap the alias index for a unique (alias, members_hash) index; renames duplicates.",
    ),
    MigrationStep(
        251126032440,
        "add_roles",
        roles.add_roles,
        "Ensure the built-in roles exist.",
    ),
    MigrationStep(
        251209140000,
        "generate_missing_user_aliases_v2",
        users.generate_missing_user_aliases_v2,
        "Derive aliases from name and id for users still on a placeholder.",
    ),
    MigrationStep(
        251224140400,
        "apply_collection_schemas",
        schemas.apply_collection_schemas,
        "Create any missing accounts table.",
    ),
    MigrationStep(
        251225140000,
        "add_demo_user",
        demo.add_demo_user,
        "Seed the demo account when mock auth is enabled.",
    ),
    MigrationStep(
        260108175500,
        "fix_permittable_role_ids",
        roles.fix_permittable_role_ids,
        "Remove workspace role ids from permittable.role_ids; ensure 'self'.",
    ),
    MigrationStep(
        260109104153,
        "fix_permittable_workspace_roles",
        roles.fix_permittable_workspace_roles,
        "Reconcile permittable.workspace_roles with workspace membership.",
    ),
    MigrationStep(
        260114000001,
        "add_updated_at_to_workspace",
        schemas.add_updated_at_to_workspace,
        "Backfill workspace.updated_at.",
    ),
    MigrationStep(
        260122110003,
        "add_user_alias_index",
        indexes.add_user_alias_index,
        "Rename duplicate user aliases, then add the unique case-insensitive index.",
    ),
    MigrationStep(
        260126150001,
        "add_updated_at_to_user",
        schemas.add_updated_at_to_user,
        "Backfill user.updated_at.",
    ),
    MigrationStep(
        260128000001,
        "add_updated_at_to_role",
        schemas.add_updated_at_to_role,
        "Backfill role.updated_at.",
    ),
    MigrationStep(
        260128010002,
        "add_updated_at_to_permittable",
        schemas.add_updated_at_to_permittable,
        "Backfill permittable.updated_at.",
    ),
)

validate_catalog(CATALOG)


def find_step(key_or_name: int | str, catalog: Sequence[MigrationStep] = CATALOG) -> MigrationStep:
    for step in catalog:
        if step.key == key_or_name or step.name == key_or_name:
            return step
    raise CatalogError(f"unknown step: {key_or_name}")


__all__ = ["CATALOG", "MigrationStep", "find_step", "validate_catalog"]
