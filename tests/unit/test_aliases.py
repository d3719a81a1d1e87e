from __future__ import annotations

import pytest

from accounts_db.migrations import aliases
from accounts_db.migrations.aliases import (
    WORKSPACE_ALIAS_PATTERN,
    DuplicateGroup,
    canonicalize,
    is_valid_user_alias,
    is_valid_workspace_alias,
    resolve_duplicates,
    sanitize,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("invalid_name", "invalid-name"),
        ("-invalid", "invalid"),
        ("", "aaaaa"),
        ("ab", "abaaa"),
        ("my  workspace!!", "my-workspace"),
        ("Team.Alpha", "Team-Alpha"),
        ("--a--b--", "a-baa"),
        ("日本語", "aaaaa"),
    ],
)
def test_canonicalize_examples(raw: str, expected: str) -> None:
    assert canonicalize(raw) == expected


def test_canonicalize_truncates_to_thirty_characters() -> None:
    assert canonicalize("x" * 45) == "x" * 30


def test_truncation_drops_trailing_dash() -> None:
    raw = "a" * 29 + "-" + "b" * 10

    assert sanitize(raw) == "a" * 29
    assert canonicalize(raw) == "a" * 29


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "   ",
        "a",
        "!!!!",
        "name with spaces and symbols #$%",
        "Ünïcödé wörkspace",
        "x" * 200,
        "-" * 40,
        "ok-" * 20,
    ],
)
def test_canonicalize_always_matches_handle_pattern(raw: str | None) -> None:
    result = canonicalize(raw)

    assert WORKSPACE_ALIAS_PATTERN.match(result)
    assert 5 <= len(result) <= 30


def test_denylisted_candidate_is_replaced_by_random_token() -> None:
    result = canonicalize("", denylist={"aaaaa"})

    assert result != "aaaaa"
    assert len(result) == 10
    assert result.isalpha() and result.islower()


def test_workspace_alias_validation() -> None:
    assert is_valid_workspace_alias("my-team")
    assert is_valid_workspace_alias("MyTeam1")
    assert not is_valid_workspace_alias("ab--cd")
    assert not is_valid_workspace_alias("-team")
    assert not is_valid_workspace_alias("abc")
    assert not is_valid_workspace_alias(None)


def test_user_alias_validation() -> None:
    assert is_valid_user_alias("john.doe")
    assert is_valid_user_alias("a")
    assert is_valid_user_alias("j_doe-2")
    assert not is_valid_user_alias("John")
    assert not is_valid_user_alias("-john")
    assert not is_valid_user_alias("john.")
    assert not is_valid_user_alias("")


def test_resolve_duplicates_keeps_first_and_renames_the_rest() -> None:
    groups = [
        DuplicateGroup(key="team", ids=("w1", "w2", "w3")),
        DuplicateGroup(key="solo", ids=("w4",)),
    ]

    assignments = resolve_duplicates("workspace", groups)

    assert [assignment.record_id for assignment in assignments] == ["w2", "w3"]
    new_aliases = [assignment.alias for assignment in assignments]
    assert len(set(new_aliases)) == 2
    for alias in new_aliases:
        prefix, suffix = alias.rsplit("-", 1)
        assert prefix == "team"
        assert len(suffix) == 6
        assert suffix.isalpha() and suffix.islower()


def test_resolve_duplicates_avoids_taken_aliases(monkeypatch: pytest.MonkeyPatch) -> None:
    suffixes = iter(["aaaaaa", "aaaaaa", "bbbbbb"])
    monkeypatch.setattr(aliases, "random_alias", lambda length=10: next(suffixes))

    assignments = resolve_duplicates(
        "user",
        [DuplicateGroup(key="bob", ids=("u1", "u2"))],
        taken={"BOB-aaaaaa"},
    )

    assert [(a.record_id, a.alias) for a in assignments] == [("u2", "bob-bbbbbb")]


def test_duplicate_group_describe_includes_members_hash_prefix() -> None:
    group = DuplicateGroup(key="team", ids=("w1", "w2"), members_hash="0123456789abcdef")

    assert group.describe() == "team/0123456789ab (w1, w2)"
