"""Pure helpers used by the data steps."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from ulid import ULID

from accounts_db.documents import WorkspaceRole, parse_members, parse_workspace_roles
from accounts_db.hashing import hash_password, verify_password
from accounts_db.ids import generate_id, id_timestamp
from accounts_db.migrations.pipeline import setdefaults
from accounts_db.migrations.reconcile import clean_role_ids, same_workspace_roles
from accounts_db.migrations.steps.users import (
    alias_from_name,
    derived_user_alias,
    looks_like_email,
    mask_email,
    normalize_user_alias,
)
from accounts_db.migrations.steps.workspaces import demote_extra_owners, is_printable_ascii

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("John Doe", "johndoe"),
        ("a__b", "a_b"),
        ("team--x", "team-x"),
        ("j.doe", "j.doe"),
    ],
)
def test_normalize_user_alias(raw: str, expected: str) -> None:
    assert normalize_user_alias(raw) == expected


@pytest.mark.parametrize("raw", ["someone@example.com", "-bad-", "ünï", ""])
def test_normalize_user_alias_falls_back_to_random(raw: str) -> None:
    result = normalize_user_alias(raw)

    assert result != raw
    assert len(result) == 10
    assert result.isalpha() and result.islower()


def test_alias_from_name() -> None:
    assert alias_from_name("Jane Q Public") == "jane-q-public"
    assert alias_from_name(None) == ""


def test_derived_user_alias_prefers_name_and_id() -> None:
    assert derived_user_alias("Jane Doe", "01abc") == "janedoe01abc"
    fallback = derived_user_alias(None, "01abc")
    assert len(fallback) == 10 and fallback.isalpha()


def test_email_helpers() -> None:
    assert looks_like_email("jane@example.com")
    assert not looks_like_email("Jane Doe")
    assert not looks_like_email(None)
    assert mask_email("jane@example.com") == "j***@example.com"
    assert mask_email("not-an-email") == "not-an-email"


def test_is_printable_ascii() -> None:
    assert is_printable_ascii("team-1")
    assert not is_printable_ascii("tëam")
    assert not is_printable_ascii("tab\there")
    assert not is_printable_ascii("")


def test_demote_extra_owners_keeps_self_invited_owner() -> None:
    members = {
        "u1": {"role": "owner", "invited_by": "u1", "disabled": False},
        "u2": {"role": "owner", "invited_by": "u1", "disabled": False},
        "u3": {"role": "reader", "invited_by": "u1", "disabled": False},
    }

    updated = demote_extra_owners(members)

    assert updated is not None
    assert updated["u1"]["role"] == "owner"
    assert updated["u2"]["role"] == "maintainer"
    assert updated["u3"] == members["u3"]
    assert members["u2"]["role"] == "owner"


def test_demote_extra_owners_ignores_single_owner() -> None:
    members = {
        "u1": {"role": "owner", "invited_by": "u1", "disabled": False},
        "u2": {"role": "writer", "invited_by": "u1", "disabled": False},
    }

    assert demote_extra_owners(members) is None


def test_clean_role_ids_drops_workspace_roles_and_adds_self() -> None:
    cleaned = clean_role_ids(
        ["custom", "owner-id", None, "reader-id"],
        workspace_role_ids={"owner-id", "reader-id"},
        self_role_id="self-id",
    )

    assert cleaned == ["custom", "self-id"]


def test_clean_role_ids_without_self_role() -> None:
    assert clean_role_ids(["a"], workspace_role_ids=set(), self_role_id=None) == ["a"]


def test_workspace_role_sets_compare_without_order_or_repeats() -> None:
    left = parse_workspace_roles(
        [
            {"workspace_id": "w1", "role_id": "r1"},
            {"workspace_id": "w2", "role_id": "r2"},
            {"workspace_id": "w1", "role_id": "r1"},
        ]
    )
    right = [WorkspaceRole(workspace_id="w2", role_id="r2"), WorkspaceRole(workspace_id="w1", role_id="r1")]

    assert same_workspace_roles(left, right)
    assert not same_workspace_roles(left, right[:1])
    assert right[1].key == "w1:r1"


def test_parse_members_defaults() -> None:
    parsed = parse_members({"u1": None, "u2": {"role": "writer", "invitedBy": "u1"}})

    assert parsed["u1"].role == ""
    assert parsed["u1"].active
    assert parsed["u2"].invited_by == "u1"
    assert parse_members(None) == {}


def test_setdefaults_fills_missing_keys_only() -> None:
    assert setdefaults({"lang": "ja"}, {"lang": "", "theme": ""}) == {"lang": "ja", "theme": ""}
    assert setdefaults(None, {"a": 1}) == {"a": 1}


def test_ids_are_lowercase_ulids_with_timestamps() -> None:
    record_id = generate_id()

    assert record_id == record_id.lower()
    assert len(record_id) == 26
    assert isinstance(id_timestamp(record_id), datetime)


def test_id_timestamp_reads_ulid_time() -> None:
    moment = datetime(2024, 5, 1, 12, 30, tzinfo=UTC)
    record_id = str(ULID.from_datetime(moment)).lower()

    assert id_timestamp(record_id) == moment
    assert id_timestamp("workspace-1") is None
    assert id_timestamp(None) is None


def test_password_hashing_round_trip() -> None:
    hashed = hash_password("password")

    assert hashed != "password"
    assert verify_password("password", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("password", "not-a-hash")
    with pytest.raises(ValueError):
        hash_password("   ")
