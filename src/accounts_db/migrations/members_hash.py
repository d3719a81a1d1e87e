"""Deterministic digest over a workspace's members and integrations."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any

from accounts_db.documents import Member

MEMBER_TYPE_USER = "user"
MEMBER_TYPE_INTEGRATION = "integration"

# HTML-safe JSON escapes; existing digests were computed over this encoding.
_HTML_SAFE_ESCAPES = str.maketrans(
    {
        "<": "\\u003c",
        ">": "\\u003e",
        "&": "\\u0026",
        "\u2028": "\\u2028",
        "\u2029": "\\u2029",
    }
)


def _flatten(entries: Mapping[str, Any] | None, member_type: str) -> list[dict[str, Any]]:
    flattened: list[dict[str, Any]] = []
    for member_id, raw in (entries or {}).items():
        member = raw if isinstance(raw, Member) else Member.model_validate(raw or {})
        flattened.append(
            {
                "id": member_id,
                "role": member.role,
                "invited_by": member.invited_by,
                "disabled": member.disabled,
                "type": member_type,
            }
        )
    return flattened


def compute_members_hash(
    members: Mapping[str, Any] | None,
    integrations: Mapping[str, Any] | None = None,
) -> str:
    """Return the hex SHA-256 of the id-sorted, compact-JSON membership list.

    An empty membership serializes as ``null`` so that workspaces without members
    keep the digest they were originally indexed with.
    """
    entries = _flatten(members, MEMBER_TYPE_USER) + _flatten(integrations, MEMBER_TYPE_INTEGRATION)
    entries.sort(key=lambda entry: (entry["id"], entry["type"]))
    payload: list[dict[str, Any]] | None = entries or None
    encoded = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    encoded = encoded.translate(_HTML_SAFE_ESCAPES)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


__all__ = ["MEMBER_TYPE_INTEGRATION", "MEMBER_TYPE_USER", "compute_members_hash"]
