"""Tests for the feature store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from agent_cli.errors import (
    DependencyCycleError,
    FeatureNotFoundError,
    FeatureValidationError,
    InvalidTransitionError,
    StateCorruptionError,
)
from agent_cli.models import FeatureStatus, TestResult
from agent_cli.store import FeatureStore, find_cycle


def _store(*features: dict) -> FeatureStore:
    store = FeatureStore.empty("demo")
    for f in features:
        store.add_feature(f)
    return store


class TestLoad:
    def test_loads_feature_list(self, features_path: Path):
        store = FeatureStore.load(features_path)
        assert store.project_name == "demo"
        assert len(store) == 3
        assert store.require("feature-001").status == FeatureStatus.COMPLETED
        assert store.require("feature-003").dependencies == ["feature-002"]

    def test_missing_file_is_empty(self, tmp_path: Path):
        store = FeatureStore.load(tmp_path / "nope.json", project_name="fresh")
        assert len(store) == 0
        assert store.project_name == "fresh"

    def test_loads_legacy_array(self, tmp_path: Path):
        legacy = [
            {"id": 1, "name": "Add header", "passes": True, "steps": ["a"]},
            {"id": 2, "name": "Add footer", "passes": False, "steps": []},
        ]
        path = tmp_path / "features.json"
        path.write_text(json.dumps(legacy))

        store = FeatureStore.load(path)
        assert [f.id for f in store] == ["feature-001", "feature-002"]
        assert store.require("feature-001").status == FeatureStatus.COMPLETED
        assert store.require("feature-002").description == "Add footer"

    def test_invalid_json(self, tmp_path: Path):
        path = tmp_path / "feature-list.json"
        path.write_text("{not json")
        with pytest.raises(StateCorruptionError):
            FeatureStore.load(path)

    def test_invalid_feature(self, tmp_path: Path):
        path = tmp_path / "feature-list.json"
        path.write_text(json.dumps({"features": [{"id": "f1", "description": "x", "priority": "urgent"}]}))
        with pytest.raises(FeatureValidationError):
            FeatureStore.load(path)

    def test_rejects_cycle_on_load(self, tmp_path: Path):
        path = tmp_path / "feature-list.json"
        path.write_text(json.dumps({"features": [
            {"id": "a", "description": "a", "dependencies": ["b"]},
            {"id": "b", "description": "b", "dependencies": ["a"]},
        ]}))
        with pytest.raises(DependencyCycleError):
            FeatureStore.load(path)

    def test_unknown_dependency_on_load_is_tolerated(self, tmp_path: Path):
        path = tmp_path / "feature-list.json"
        path.write_text(json.dumps({"features": [
            {"id": "a", "description": "a", "dependencies": ["ghost"]},
        ]}))
        store = FeatureStore.load(path)
        assert store.require("a").dependencies == ["ghost"]

    def test_non_object_feature_item(self, tmp_path: Path):
        path = tmp_path / "feature-list.json"
        path.write_text(json.dumps({"projectName": "d", "features": ["oops"]}))
        with pytest.raises(StateCorruptionError, match=r"features\[0\] is str"):
            FeatureStore.load(path)

    def test_long_dependency_chain(self, tmp_path: Path):
        count = 1200
        path = tmp_path / "feature-list.json"
        path.write_text(json.dumps({"projectName": "d", "features": [
            {"id": f"f{i}", "description": f"f{i}",
             "dependencies": [f"f{i + 1}"] if i + 1 < count else []}
            for i in range(count)
        ]}))
        store = FeatureStore.load(path)
        assert len(store) == count


class TestSave:
    def test_round_trip(self, features_path: Path):
        store = FeatureStore.load(features_path)
        store.mark_in_progress("feature-002")
        store.save()

        data = json.loads(features_path.read_text())
        assert data["inProgressCount"] == 1
        assert data["totalCount"] == 3
        reloaded = FeatureStore.load(features_path)
        assert reloaded.features == store.features

    def test_no_tmp_file_left(self, features_path: Path):
        store = FeatureStore.load(features_path)
        store.save()
        assert not features_path.with_suffix(".json.tmp").exists()

    def test_save_without_path(self):
        with pytest.raises(ValueError):
            FeatureStore.empty("demo").save()


class TestAddFeature:
    def test_assigns_next_id(self, features_path: Path):
        store = FeatureStore.load(features_path)
        f = store.add_feature({"description": "Add search"})
        assert f.id == "feature-004"
        assert store.counts()["pending"] == 3

    def test_first_id(self):
        f = FeatureStore.empty("demo").add_feature({"description": "first"})
        assert f.id == "feature-001"

    def test_duplicate_id(self):
        store = _store({"id": "a", "description": "a"})
        with pytest.raises(FeatureValidationError, match="Duplicate"):
            store.add_feature({"id": "a", "description": "again"})

    def test_unknown_dependency(self):
        store = _store({"id": "a", "description": "a"})
        with pytest.raises(FeatureValidationError, match="unknown"):
            store.add_feature({"id": "b", "description": "b", "dependencies": ["zzz"]})
        assert len(store) == 1

    def test_missing_description(self):
        with pytest.raises(FeatureValidationError):
            FeatureStore.empty("demo").add_feature({"id": "a"})


class TestUpdateFeature:
    def test_updates_descriptive_fields(self):
        store = _store({"id": "a", "description": "a"})
        f = store.update_feature("a", description="renamed", priority="high")
        assert f.description == "renamed"
        assert f.priority.value == "high"

    def test_rejects_status_change(self):
        store = _store({"id": "a", "description": "a"})
        with pytest.raises(FeatureValidationError):
            store.update_feature("a", status="completed")

    def test_rejects_cycle(self):
        store = _store(
            {"id": "a", "description": "a"},
            {"id": "b", "description": "b", "dependencies": ["a"]},
            {"id": "c", "description": "c", "dependencies": ["b"]},
        )
        with pytest.raises(DependencyCycleError) as exc_info:
            store.update_feature("a", dependencies=["c"])
        assert exc_info.value.cycle[0] == exc_info.value.cycle[-1]
        assert store.require("a").dependencies == []

    def test_unknown_id(self):
        with pytest.raises(FeatureNotFoundError):
            FeatureStore.empty("demo").update_feature("nope", description="x")


class TestRemoveFeature:
    def test_removes(self):
        store = _store({"id": "a", "description": "a"}, {"id": "b", "description": "b"})
        store.remove_feature("a")
        assert [f.id for f in store] == ["b"]

    def test_refuses_when_depended_on(self):
        store = _store({"id": "a", "description": "a"}, {"id": "b", "description": "b", "dependencies": ["a"]})
        with pytest.raises(FeatureValidationError, match="dependency of: b"):
            store.remove_feature("a")


class TestTransitions:
    def test_happy_path(self):
        store = _store({"id": "a", "description": "a"})
        store.mark_in_progress("a")
        f = store.mark_completed("a")
        assert f.status == FeatureStatus.COMPLETED

    def test_pending_cannot_complete(self):
        store = _store({"id": "a", "description": "a"})
        with pytest.raises(InvalidTransitionError):
            store.mark_completed("a")

    def test_completed_cannot_reopen(self):
        store = _store({"id": "a", "description": "a"})
        store.mark_in_progress("a")
        store.mark_completed("a")
        with pytest.raises(InvalidTransitionError):
            store.mark_in_progress("a")

    def test_same_state_is_noop(self):
        store = _store({"id": "a", "description": "a"})
        store.mark_in_progress("a")
        assert store.mark_in_progress("a").status == FeatureStatus.IN_PROGRESS

    def test_complete_completed_is_noop(self):
        store = _store({"id": "a", "description": "a"})
        store.mark_in_progress("a")
        store.mark_completed("a", [TestResult(id="t1", passed=True)])
        f = store.mark_completed("a", [TestResult(id="t2", passed=False, error="late")])
        assert f.status == FeatureStatus.COMPLETED
        assert f.passes is True
        assert [r.id for r in f.test_results] == ["t1"]

    def test_block_and_unblock(self):
        store = _store({"id": "a", "description": "a"})
        f = store.mark_blocked("a", reason="waiting on API keys")
        assert f.status == FeatureStatus.BLOCKED
        assert "waiting on API keys" in f.notes
        with pytest.raises(InvalidTransitionError):
            store.mark_in_progress("a")
        assert store.unblock("a").status == FeatureStatus.PENDING

    def test_failing_results_keep_in_progress(self):
        store = _store({"id": "a", "description": "a"})
        store.mark_in_progress("a")
        results = [
            TestResult(id="t1", passed=True),
            TestResult(id="t2", passed=False, error="boom"),
        ]
        f = store.mark_completed("a", results)
        assert f.status == FeatureStatus.IN_PROGRESS
        assert f.passes is False
        assert len(f.test_results) == 2

    def test_passing_results_complete(self):
        store = _store({"id": "a", "description": "a"})
        store.mark_in_progress("a")
        f = store.mark_completed("a", [TestResult(id="t1", passed=True)])
        assert f.status == FeatureStatus.COMPLETED
        assert f.passes is True

    def test_reset_from_completed(self):
        store = _store({"id": "a", "description": "a"})
        store.mark_in_progress("a")
        store.mark_completed("a", [TestResult(id="t1", passed=True)])
        f = store.reset_feature("a")
        assert f.status == FeatureStatus.PENDING
        assert f.passes is False
        assert f.test_results == []

    def test_counts_follow_mutations(self):
        store = _store({"id": "a", "description": "a"}, {"id": "b", "description": "b"})
        store.mark_in_progress("a")
        store.mark_blocked("b")
        counts = store.counts()
        assert counts == {"total": 2, "pending": 0, "in_progress": 1, "completed": 0, "blocked": 1}
        assert store.feature_list.in_progress_count == 1


class TestFindCycle:
    def test_no_cycle(self):
        assert find_cycle({"a": [], "b": ["a"], "c": ["a", "b"]}) is None

    def test_cycle(self):
        cycle = find_cycle({"a": ["b"], "b": ["c"], "c": ["a"]})
        assert cycle is not None
        assert set(cycle) == {"a", "b", "c"}

    def test_ignores_unknown_ids(self):
        assert find_cycle({"a": ["ghost"]}) is None

    def test_long_chain_cycle(self):
        count = 5000
        graph = {f"f{i}": [f"f{(i + 1) % count}"] for i in range(count)}
        cycle = find_cycle(graph)
        assert cycle is not None
        assert len(cycle) == count + 1
        assert cycle[0] == cycle[-1]
