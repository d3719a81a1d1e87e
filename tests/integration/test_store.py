from __future__ import annotations

import pytest

from accounts_db.errors import DuplicateKeyFailure
from accounts_db.migrations.members_hash import compute_members_hash
from accounts_db.store import IndexSpec

pytestmark = pytest.mark.integration

ALIAS_INDEX = IndexSpec("ix_test_workspace_alias_ci", ("alias",), case_insensitive=True)


def test_save_all_upserts_by_id(store) -> None:
    store.role.save_all([{"id": "r1", "name": "reader"}, {"id": "r2", "name": "writer"}])
    store.role.save_all([{"id": "r1", "name": "renamed"}])

    assert store.role.count() == 2
    assert store.role.find_by_id("r1")["name"] == "renamed"


def test_prepare_fills_defaults_and_generates_ids(store) -> None:
    row = store.permittable.save_one({"user_id": "u1"})

    assert row["id"]
    stored = store.permittable.find_by_id(row["id"])
    assert stored["role_ids"] == []
    assert stored["workspace_roles"] == []


def test_workspace_writes_recompute_members_hash(store, make_workspace) -> None:
    members = {"u1": {"role": "owner", "invited_by": "u1", "disabled": False}}
    workspace = make_workspace(alias="team-a", members=members, members_hash="stale")

    stored = store.workspace.find_by_id(workspace["id"])
    assert stored["members_hash"] == compute_members_hash(members)


def test_iter_pages_walks_every_record_in_id_order(store) -> None:
    store.role.save_all({"id": f"r{index}", "name": f"role-{index}"} for index in range(5))

    pages = list(store.role.iter_pages())

    assert [len(page) for page in pages] == [2, 2, 1]
    assert [record["id"] for page in pages for record in page] == ["r0", "r1", "r2", "r3", "r4"]


def test_iter_pages_applies_filter(store) -> None:
    store.role.save_all({"id": f"r{index}", "name": "keep" if index % 2 else "drop"} for index in range(6))

    found = store.role.find(store.role.c.name == "keep")

    assert [record["id"] for record in found] == ["r1", "r3", "r5"]


def test_update_many_returns_rowcount(store) -> None:
    store.role.save_all([{"id": "r1", "name": "a"}, {"id": "r2", "name": "a"}, {"id": "r3", "name": "b"}])

    assert store.role.update_many(store.role.c.name == "a", {"name": "c"}) == 2
    assert store.role.count(store.role.c.name == "c") == 2


def test_create_and_drop_case_insensitive_index(store, make_workspace) -> None:
    make_workspace(alias="Team-A")

    assert store.workspace.create_index(ALIAS_INDEX) is True
    assert store.workspace.create_index(ALIAS_INDEX) is False
    assert ALIAS_INDEX.name in store.workspace.index_names()

    with pytest.raises(DuplicateKeyFailure):
        store.workspace.insert_one({"alias": "team-a", "name": "clash"})

    assert store.workspace.drop_index(ALIAS_INDEX.name) is True
    assert store.workspace.drop_index(ALIAS_INDEX.name) is False
    store.workspace.insert_one({"alias": "team-a", "name": "allowed now"})


def test_create_index_over_duplicates_raises(store, make_workspace) -> None:
    make_workspace(alias="dupe-alias")
    make_workspace(alias="DUPE-ALIAS")

    with pytest.raises(DuplicateKeyFailure) as excinfo:
        store.workspace.create_index(ALIAS_INDEX)

    assert excinfo.value.target == f"workspace.{ALIAS_INDEX.name}"
    assert ALIAS_INDEX.name not in store.workspace.index_names()


def test_invalid_index_name_is_rejected(store) -> None:
    with pytest.raises(ValueError):
        store.workspace.drop_index("x; DROP TABLE workspace")


def test_find_duplicate_aliases_groups_case_insensitively(store, make_workspace) -> None:
    first = make_workspace(alias="Shared", workspace_id="w1")
    second = make_workspace(alias="shared", workspace_id="w2")
    make_workspace(alias="unique-one", workspace_id="w3")

    groups = store.workspace.find_duplicate_aliases()

    assert len(groups) == 1
    assert groups[0].key == "shared"
    assert groups[0].ids == (first["id"], second["id"])
    assert store.workspace.aliases() == {"shared", "unique-one"}


def test_find_duplicate_aliases_with_members_hash(store, make_workspace) -> None:
    owner = {"u1": {"role": "owner", "invited_by": "u1", "disabled": False}}
    other = {"u2": {"role": "owner", "invited_by": "u2", "disabled": False}}
    make_workspace(alias="team", members=owner, workspace_id="w1")
    make_workspace(alias="TEAM", members=other, workspace_id="w2")
    make_workspace(alias="Team", members=owner, workspace_id="w3")

    groups = store.workspace.find_duplicate_aliases(with_members_hash=True)

    assert len(groups) == 1
    assert groups[0].ids == ("w1", "w3")
    assert groups[0].members_hash == compute_members_hash(owner)


def test_unknown_collection_raises(store) -> None:
    with pytest.raises(KeyError):
        store.collection("billing")


def test_heartbeat_is_called_on_touch(store) -> None:
    beats: list[int] = []
    beating = store.with_heartbeat(lambda: beats.append(1))

    beating.touch()
    store.touch()

    assert beats == [1]
    assert beating.batch_size == store.batch_size
