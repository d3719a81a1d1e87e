from __future__ import annotations

import pytest

from accounts_db.errors import PartialBatchFailure
from accounts_db.migrations.pipeline import for_each_batch
from accounts_db.store import IndexSpec

pytestmark = pytest.mark.integration


def _seed_roles(store, count: int) -> None:
    store.role.save_all({"id": f"r{index}", "name": f"a{index}"} for index in range(count))


def test_only_changed_records_are_written(store, monkeypatch: pytest.MonkeyPatch) -> None:
    _seed_roles(store, 5)
    written: list[list[str]] = []
    original = store.role.save_all

    def _recording_save_all(records):
        records = list(records)
        written.append([record["id"] for record in records])
        return original(records)

    monkeypatch.setattr(store.role, "save_all", _recording_save_all)

    def _transform(record):
        if record["id"] in {"r1", "r4"}:
            record["name"] = record["name"].upper()
        return record

    result = for_each_batch(store.role, _transform)

    assert (result.scanned, result.changed, result.pages) == (5, 2, 3)
    assert written == [["r1"], ["r4"]]
    assert store.role.find_by_id("r1")["name"] == "A1"
    assert store.role.find_by_id("r0")["name"] == "a0"


def test_skipped_records_are_not_written(store) -> None:
    _seed_roles(store, 3)

    result = for_each_batch(store.role, lambda record: None)

    assert result.changed == 0
    assert result.scanned == 3


def test_transform_mutations_do_not_leak_into_skips(store) -> None:
    _seed_roles(store, 2)

    def _transform(record):
        record["name"] = "mutated"
        return None

    for_each_batch(store.role, _transform)

    assert {record["name"] for record in store.role.find()} == {"a0", "a1"}


def test_filter_limits_the_scan(store) -> None:
    _seed_roles(store, 4)

    def _transform(record):
        record["name"] = "filtered"
        return record

    result = for_each_batch(store.role, _transform, where=store.role.c.id.in_(["r0", "r3"]))

    assert result.scanned == 2
    assert store.role.count(store.role.c.name == "filtered") == 2


def test_partial_failure_keeps_committed_pages(store) -> None:
    _seed_roles(store, 4)
    store.role.create_index(IndexSpec("ix_test_role_name", ("name",)))
    renames = {"r0": "x0", "r1": "x1", "r2": "x0"}

    def _transform(record):
        record["name"] = renames.get(record["id"], record["name"])
        return record

    with pytest.raises(PartialBatchFailure) as excinfo:
        for_each_batch(store.role, _transform)

    assert excinfo.value.collection == "role"
    assert excinfo.value.pages_committed == 1
    assert store.role.find_by_id("r0")["name"] == "x0"
    assert store.role.find_by_id("r1")["name"] == "x1"
    assert store.role.find_by_id("r2")["name"] == "a2"
    assert store.role.find_by_id("r3")["name"] == "a3"


def test_rerun_after_partial_failure_converges(store) -> None:
    _seed_roles(store, 4)

    def _upper(record):
        record["name"] = record["name"].upper()
        return record

    for_each_batch(store.role, _upper, where=store.role.c.id.in_(["r0", "r1"]))
    result = for_each_batch(store.role, _upper)

    assert sorted(record["name"] for record in store.role.find()) == ["A0", "A1", "A2", "A3"]
    assert result.changed == 2


def test_heartbeat_runs_after_each_page(store) -> None:
    _seed_roles(store, 5)
    beats: list[int] = []
    beating = store.with_heartbeat(lambda: beats.append(1))

    for_each_batch(beating.role, lambda record: None)

    assert len(beats) == 3
