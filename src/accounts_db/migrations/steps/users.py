"""Data steps over the ``user`` collection."""

from __future__ import annotations

import logging
import re
import secrets

from sqlalchemy import or_

from accounts_db.logging import log_context
from accounts_db.migrations.aliases import is_valid_user_alias, random_alias
from accounts_db.migrations.pipeline import for_each_batch, setdefaults
from accounts_db.store import DocumentStore, Record

logger = logging.getLogger(__name__)

USER_METADATA_DEFAULTS = {
    "description": "",
    "lang": "",
    "photo_url": "",
    "theme": "",
    "website": "",
}
USER_ALIAS_PLACEHOLDERS = frozenset({"", "waqas"})
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")

_DOUBLED_SEPARATORS = ("-", "_", ".", "@")


def alias_from_name(name: str | None) -> str:
    return (name or "").replace(" ", "-").lower()


def add_user_metadata(store: DocumentStore) -> None:
    def _transform(record: Record) -> Record:
        record["metadata"] = setdefaults(record.get("metadata"), USER_METADATA_DEFAULTS)
        if not record.get("alias"):
            record["alias"] = alias_from_name(record.get("name"))
        return record

    for_each_batch(store.user, _transform)


def normalize_user_alias(alias: str | None) -> str:
    """Lower-case, drop spaces and collapse doubled separators; random if still invalid."""

    candidate = (alias or "").replace(" ", "").lower()
    for char in _DOUBLED_SEPARATORS:
        candidate = candidate.replace(char + char, char)
    if "@" in candidate and "." in candidate:
        return random_alias()
    if not is_valid_user_alias(candidate) or not candidate.isascii():
        return random_alias()
    return candidate


def convert_invalid_user_aliases(store: DocumentStore) -> None:
    def _transform(record: Record) -> Record | None:
        alias = record.get("alias") or ""
        # Already-valid aliases are left alone so reruns do not re-randomize them.
        if is_valid_user_alias(alias) and not ("@" in alias and "." in alias):
            return None
        record["alias"] = normalize_user_alias(alias)
        return record

    for_each_batch(store.user, _transform)


def _placeholder_alias_filter(store: DocumentStore):
    alias = store.user.c.alias
    return or_(alias.is_(None), alias.in_(sorted(USER_ALIAS_PLACEHOLDERS)))


def generate_missing_user_aliases(store: DocumentStore) -> None:
    def _transform(record: Record) -> Record:
        record["alias"] = random_alias()
        return record

    for_each_batch(store.user, _transform, where=_placeholder_alias_filter(store))


def derived_user_alias(name: str | None, record_id: str | None) -> str:
    if name and record_id:
        candidate = (name + record_id).replace(" ", "").lower()
        if is_valid_user_alias(candidate) and candidate not in USER_ALIAS_PLACEHOLDERS:
            return candidate
    return random_alias()


def generate_missing_user_aliases_v2(store: DocumentStore) -> None:
    def _transform(record: Record) -> Record:
        record["alias"] = derived_user_alias(record.get("name"), record.get("id"))
        return record

    for_each_batch(store.user, _transform, where=_placeholder_alias_filter(store))


def looks_like_email(value: str | None) -> bool:
    return bool(value) and EMAIL_PATTERN.match(value) is not None


def mask_email(value: str) -> str:
    local, sep, domain = value.partition("@")
    if not sep or not local:
        return value
    return f"{local[0]}***@{domain}"


def _unique_user_name(seen: set[str]) -> str:
    while True:
        name = f"user-{secrets.token_hex(4)}"
        if name not in seen:
            return name


def replace_email_formatted_names(store: DocumentStore) -> None:
    seen = {record.get("name") or "" for record in store.user.find()}

    def _transform(record: Record) -> Record | None:
        name = record.get("name")
        if not looks_like_email(name):
            return None
        replacement = _unique_user_name(seen)
        seen.add(replacement)
        logger.info(
            "users.name.replaced",
            extra=log_context(record_id=record["id"], previous=mask_email(name or "")),
        )
        record["name"] = replacement
        return record

    for_each_batch(store.user, _transform)


__all__ = [
    "EMAIL_PATTERN",
    "USER_ALIAS_PLACEHOLDERS",
    "USER_METADATA_DEFAULTS",
    "add_user_metadata",
    "alias_from_name",
    "convert_invalid_user_aliases",
    "derived_user_alias",
    "generate_missing_user_aliases",
    "generate_missing_user_aliases_v2",
    "looks_like_email",
    "mask_email",
    "normalize_user_alias",
    "replace_email_formatted_names",
]
