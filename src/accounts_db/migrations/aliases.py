"""Alias canonicalization and case-insensitive duplicate resolution.

Workspace and user aliases are public handles. ``canonicalize`` turns any free-form
string into a candidate that matches :data:`WORKSPACE_ALIAS_PATTERN`; a candidate
that still fails the pattern (or is a known placeholder) is replaced by a random
lowercase token. ``resolve_duplicates`` renames every member of a case-insensitive
collision group except the first, so unique index creation cannot trip over rows
that already exist.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from accounts_db.errors import AliasValidationError
from accounts_db.logging import log_context

logger = logging.getLogger(__name__)

WORKSPACE_ALIAS_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]{3,30}[a-zA-Z0-9]$")
USER_ALIAS_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9_@.-]{0,61}[a-z0-9])?$")

MIN_ALIAS_LENGTH = 5
MAX_ALIAS_LENGTH = 30
ALIAS_FILLER = "a"
RANDOM_ALIAS_LENGTH = 10
DUPLICATE_SUFFIX_LENGTH = 6

_INVALID_CHARS = re.compile(r"[^a-zA-Z0-9-]")
_DASH_RUNS = re.compile(r"-+")
_RANDOM_ALPHABET = string.ascii_lowercase


class DuplicatePolicy(str, Enum):
    """What a step does when it finds case-insensitive alias collisions."""

    ABORT = "abort"
    RESOLVE = "resolve"


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    """Records sharing one lower-cased alias, ids in insertion order."""

    key: str
    ids: tuple[str, ...]
    members_hash: str | None = None

    def describe(self) -> str:
        label = self.key if self.members_hash is None else f"{self.key}/{self.members_hash[:12]}"
        return f"{label} ({', '.join(self.ids)})"


@dataclass(frozen=True, slots=True)
class AliasAssignment:
    record_id: str
    alias: str


def random_alias(length: int = RANDOM_ALIAS_LENGTH) -> str:
    """Return a random lowercase token of ``length`` letters."""

    return "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(length))


def _pad(value: str) -> str:
    if len(value) < MIN_ALIAS_LENGTH:
        return value + ALIAS_FILLER * (MIN_ALIAS_LENGTH - len(value))
    return value


def sanitize(raw: str | None) -> str:
    """Apply the character, dash and length rules without validating the result."""

    alias = _INVALID_CHARS.sub("-", raw or "")
    alias = _DASH_RUNS.sub("-", alias)
    alias = alias.strip("-")
    alias = _pad(alias)
    if len(alias) > MAX_ALIAS_LENGTH:
        alias = alias[:MAX_ALIAS_LENGTH].rstrip("-")
        alias = _pad(alias)
    return alias


def validate(candidate: str, *, denylist: Collection[str] = frozenset()) -> str:
    if candidate in denylist:
        raise AliasValidationError(candidate, "placeholder alias")
    if not WORKSPACE_ALIAS_PATTERN.match(candidate):
        raise AliasValidationError(candidate, "alias does not match handle pattern")
    return candidate


def canonicalize(raw: str | None, *, denylist: Collection[str] = frozenset()) -> str:
    """Return a handle derived from ``raw``, or a random one if none can be derived."""

    candidate = sanitize(raw)
    try:
        return validate(candidate, denylist=denylist)
    except AliasValidationError as exc:
        logger.debug(
            "alias.regenerated",
            extra=log_context(reason=exc.reason, candidate=candidate),
        )
        return random_alias()


def is_valid_workspace_alias(alias: str | None) -> bool:
    return bool(alias) and WORKSPACE_ALIAS_PATTERN.match(alias) is not None and "--" not in alias


def is_valid_user_alias(alias: str | None) -> bool:
    return bool(alias) and USER_ALIAS_PATTERN.match(alias) is not None


def duplicate_alias(key: str, *, taken: Collection[str] = frozenset()) -> str:
    """Return ``key-<random suffix>`` that is not already in ``taken``."""

    while True:
        candidate = f"{key}-{random_alias(DUPLICATE_SUFFIX_LENGTH)}"
        if candidate not in taken:
            return candidate


def resolve_duplicates(
    entity: str,
    groups: Iterable[DuplicateGroup],
    *,
    taken: Collection[str] = frozenset(),
) -> list[AliasAssignment]:
    """Assign fresh aliases to every record of each group except the first.

    The first id keeps its alias. The others get the lower-cased group alias plus a
    random suffix. ``taken`` holds lower-cased aliases that must not be produced.
    """
    assignments: list[AliasAssignment] = []
    reserved = {alias.lower() for alias in taken}
    for group in groups:
        if len(group.ids) < 2:
            continue
        keeper, *renamed = group.ids
        logger.info(
            "alias.duplicates.keep",
            extra=log_context(collection=entity, alias=group.key, record_id=keeper),
        )
        for record_id in renamed:
            alias = duplicate_alias(group.key, taken=reserved)
            reserved.add(alias)
            assignments.append(AliasAssignment(record_id=record_id, alias=alias))
            logger.info(
                "alias.duplicates.rename",
                extra=log_context(collection=entity, record_id=record_id, alias=alias),
            )
    return assignments


def describe_groups(groups: Sequence[DuplicateGroup]) -> list[str]:
    return [group.describe() for group in groups]


__all__ = [
    "ALIAS_FILLER",
    "AliasAssignment",
    "DUPLICATE_SUFFIX_LENGTH",
    "DuplicateGroup",
    "DuplicatePolicy",
    "MAX_ALIAS_LENGTH",
    "MIN_ALIAS_LENGTH",
    "RANDOM_ALIAS_LENGTH",
    "USER_ALIAS_PATTERN",
    "WORKSPACE_ALIAS_PATTERN",
    "canonicalize",
    "describe_groups",
    "duplicate_alias",
    "is_valid_user_alias",
    "is_valid_workspace_alias",
    "random_alias",
    "resolve_duplicates",
    "sanitize",
    "validate",
]
