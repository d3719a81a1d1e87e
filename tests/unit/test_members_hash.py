from __future__ import annotations

import hashlib
import json

import pytest

from accounts_db.migrations.members_hash import compute_members_hash

pytestmark = pytest.mark.unit


def _member(role: str, invited_by: str = "", disabled: bool = False) -> dict:
    return {"role": role, "invited_by": invited_by, "disabled": disabled}


def test_hash_ignores_map_order() -> None:
    forward = {"u1": _member("owner", "u1"), "u2": _member("reader", "u1")}
    backward = {"u2": _member("reader", "u1"), "u1": _member("owner", "u1")}

    assert compute_members_hash(forward) == compute_members_hash(backward)


def test_hash_uses_compact_id_sorted_json() -> None:
    members = {
        "u2": _member("reader", "u1"),
        "u1": _member("owner", "u1"),
    }
    expected_payload = [
        {"id": "u1", "role": "owner", "invited_by": "u1", "disabled": False, "type": "user"},
        {"id": "u2", "role": "reader", "invited_by": "u1", "disabled": False, "type": "user"},
    ]
    encoded = json.dumps(expected_payload, separators=(",", ":")).encode("utf-8")

    assert compute_members_hash(members) == hashlib.sha256(encoded).hexdigest()


@pytest.mark.parametrize(
    "changed",
    [
        {"u1": _member("writer", "u1")},
        {"u1": _member("owner", "u9")},
        {"u1": _member("owner", "u1", disabled=True)},
        {"u9": _member("owner", "u1")},
        {"u1": _member("owner", "u1"), "u2": _member("reader", "u1")},
    ],
)
def test_hash_changes_when_any_member_field_changes(changed: dict) -> None:
    baseline = {"u1": _member("owner", "u1")}

    assert compute_members_hash(changed) != compute_members_hash(baseline)


def test_integrations_hash_differently_from_members() -> None:
    entry = {"i1": _member("reader", "u1")}

    assert compute_members_hash(entry, {}) != compute_members_hash({}, entry)


def test_camel_case_invited_by_is_accepted() -> None:
    snake = {"u1": {"role": "owner", "invited_by": "u1", "disabled": False}}
    camel = {"u1": {"role": "owner", "invitedBy": "u1", "disabled": False}}

    assert compute_members_hash(snake) == compute_members_hash(camel)


def test_empty_membership_hashes_json_null() -> None:
    expected = hashlib.sha256(b"null").hexdigest()

    assert compute_members_hash(None) == expected
    assert compute_members_hash({}, {}) == expected


def test_hash_is_64_hex_characters() -> None:
    digest = compute_members_hash({"u1": _member("owner")})

    assert len(digest) == 64
    int(digest, 16)


def test_markup_characters_are_escaped_before_hashing() -> None:
    members = {"u<1>": _member("a&b", "u1")}
    encoded = (
        '[{"id":"u\\u003c1\\u003e","role":"a\\u0026b",'
        '"invited_by":"u1","disabled":false,"type":"user"}]'
    ).encode("utf-8")

    assert compute_members_hash(members) == hashlib.sha256(encoded).hexdigest()


def test_non_ascii_is_hashed_as_utf8() -> None:
    members = {"u1": _member("ówner", "u1")}
    encoded = '[{"id":"u1","role":"ówner","invited_by":"u1","disabled":false,"type":"user"}]'

    assert compute_members_hash(members) == hashlib.sha256(encoded.encode("utf-8")).hexdigest()
