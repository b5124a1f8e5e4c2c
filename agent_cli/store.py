"""Feature store: feature-list.json, status transitions and dependency checks."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Collection, Iterable, Mapping, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .errors import (
    DependencyCycleError,
    FeatureNotFoundError,
    FeatureValidationError,
    InvalidTransitionError,
    StateCorruptionError,
)
from .logging_config import get_logger
from .models import Feature, FeatureList, FeatureStatus, TestResult

FEATURE_ID_PATTERN = re.compile(r"^feature-(\d+)$")

# Legal status changes. Same-state requests are no-ops and never reach this table.
ALLOWED_TRANSITIONS: dict[FeatureStatus, set[FeatureStatus]] = {
    FeatureStatus.PENDING: {FeatureStatus.IN_PROGRESS, FeatureStatus.BLOCKED},
    FeatureStatus.IN_PROGRESS: {FeatureStatus.COMPLETED, FeatureStatus.BLOCKED},
    FeatureStatus.BLOCKED: {FeatureStatus.PENDING},
    FeatureStatus.COMPLETED: {FeatureStatus.BLOCKED},
}

# Fields that only change through transitions or are managed by the store.
_PROTECTED_FIELDS = {"id", "status", "passes", "test_results", "created_at", "updated_at"}


def find_cycle(graph: Mapping[str, Sequence[str]]) -> list[str] | None:
    """Return one dependency cycle as a path (first node repeated at the end), or None.

    Edges to ids that are not keys of ``graph`` are ignored. Iterative, so
    long dependency chains don't hit the recursion limit.
    """
    state: dict[str, int] = {}  # 1 = on stack, 2 = done

    for root in graph:
        if root in state:
            continue
        path: list[str] = [root]
        stack = [iter(graph[root])]
        state[root] = 1
        while stack:
            dep = next(stack[-1], None)
            if dep is None:
                state[path.pop()] = 2
                stack.pop()
                continue
            if dep not in graph:
                continue
            if state.get(dep) == 1:
                return path[path.index(dep):] + [dep]
            if dep not in state:
                state[dep] = 1
                path.append(dep)
                stack.append(iter(graph[dep]))
    return None


def _validate_feature(data: Mapping[str, Any]) -> Feature:
    try:
        return Feature.model_validate(data)
    except ValidationError as e:
        raise FeatureValidationError(str(e)) from e


def _upgrade_legacy_item(item: dict[str, Any]) -> dict[str, Any]:
    """Map the bare ``passes`` flag of old feature files onto a status."""
    if "status" not in item and item.get("passes"):
        item = {**item, "status": FeatureStatus.COMPLETED.value}
    if "description" not in item and "name" in item:
        item = {**item, "description": item["name"]}
    if isinstance(item.get("id"), int):
        item = {**item, "id": f"feature-{item['id']:03d}"}
    return item


class FeatureStore:
    """Ordered in-memory feature collection with JSON persistence.

    Aggregate counts on the underlying ``FeatureList`` are derived from the
    features, so they always match after any mutation.
    """

    def __init__(
        self,
        feature_list: FeatureList,
        path: Path | None = None,
        logger: logging.Logger | None = None,
    ):
        self.path = path
        self.logger = logger or get_logger("store")
        self._check_graph(feature_list.features)
        self._list = feature_list

    # --- Persistence ---

    @classmethod
    def empty(cls, project_name: str, path: Path | None = None, logger: logging.Logger | None = None) -> FeatureStore:
        return cls(FeatureList(project_name=project_name), path=path, logger=logger)

    @classmethod
    def load(
        cls,
        path: Path,
        project_name: str | None = None,
        logger: logging.Logger | None = None,
    ) -> FeatureStore:
        """Load feature-list.json; a missing file yields an empty store.

        Accepts both the FeatureList object format and a bare JSON array of
        features (older files).
        """
        name = project_name or path.parent.name
        if not path.exists():
            return cls.empty(name, path=path, logger=logger)

        try:
            with open(path) as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise StateCorruptionError(f"{path}: invalid JSON ({e})") from e

        if isinstance(raw, list):
            raw = {"projectName": name, "features": raw}
        if not isinstance(raw, dict) or not isinstance(raw.get("features", []), list):
            raise StateCorruptionError(f"{path}: expected an object with a 'features' array")

        items = raw.get("features", [])
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                raise StateCorruptionError(
                    f"{path}: features[{index}] is {type(item).__name__}, expected an object"
                )
        raw = {**raw, "features": [_upgrade_legacy_item(item) for item in items]}
        raw.setdefault("projectName", name)
        try:
            feature_list = FeatureList.model_validate(raw)
        except ValidationError as e:
            raise FeatureValidationError(f"{path}: {e}") from e

        return cls(feature_list, path=path, logger=logger)

    def save(self, path: Path | None = None) -> None:
        """Atomically write feature-list.json (write to tmp, then rename)."""
        target = path or self.path
        if target is None:
            raise ValueError("No path to save the feature list to")
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_suffix(target.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(self._list.to_json_dict(), f, indent=2, ensure_ascii=False)
            f.write("\n")
        tmp_path.replace(target)
        self.logger.debug(f"Saved {len(self._list.features)} features to {target}")

    # --- Queries ---

    @property
    def feature_list(self) -> FeatureList:
        return self._list

    @property
    def project_name(self) -> str:
        return self._list.project_name

    @property
    def features(self) -> list[Feature]:
        return list(self._list.features)

    def __len__(self) -> int:
        return len(self._list.features)

    def __iter__(self):
        return iter(self._list.features)

    def get(self, feature_id: str) -> Feature | None:
        for f in self._list.features:
            if f.id == feature_id:
                return f
        return None

    def require(self, feature_id: str) -> Feature:
        feature = self.get(feature_id)
        if feature is None:
            raise FeatureNotFoundError(feature_id)
        return feature

    def by_status(self, status: FeatureStatus) -> list[Feature]:
        return [f for f in self._list.features if f.status == status]

    def counts(self) -> dict[str, int]:
        fl = self._list
        return {
            "total": fl.total_count,
            "pending": fl.pending_count,
            "in_progress": fl.in_progress_count,
            "completed": fl.completed_count,
            "blocked": fl.blocked_count,
        }

    def dependents(self, feature_id: str) -> list[Feature]:
        """Features that list ``feature_id`` as a dependency."""
        return [f for f in self._list.features if feature_id in f.dependencies]

    def next_feature_id(self) -> str:
        numbers = [
            int(m.group(1))
            for f in self._list.features
            if (m := FEATURE_ID_PATTERN.match(f.id))
        ]
        return f"feature-{max(numbers, default=0) + 1:03d}"

    # --- CRUD ---

    def add_feature(self, data: Feature | Mapping[str, Any]) -> Feature:
        """Validate and append a feature. A missing id gets the next ``feature-NNN``."""
        if isinstance(data, Feature):
            data = data.model_dump()
        data = dict(data)
        if not data.get("id"):
            data["id"] = self.next_feature_id()
        feature = _validate_feature(data)
        feature.updated_at = datetime.now()

        if self.get(feature.id) is not None:
            raise FeatureValidationError(f"Duplicate feature id: {feature.id}")
        self._check_graph(self._list.features + [feature], strict_ids={feature.id})

        self._list.features.append(feature)
        self._touch()
        self.logger.info(f"Added feature {feature.id}: {feature.description}")
        return feature

    def update_feature(self, feature_id: str, **changes: Any) -> Feature:
        """Edit descriptive fields. Status changes go through the transition methods."""
        protected = _PROTECTED_FIELDS & changes.keys()
        if protected:
            raise FeatureValidationError(
                f"Cannot update {', '.join(sorted(protected))} directly"
            )
        unknown = changes.keys() - Feature.model_fields.keys()
        if unknown:
            raise FeatureValidationError(f"Unknown feature field(s): {', '.join(sorted(unknown))}")
        index, current = self._index(feature_id)
        merged = {**current.model_dump(), **changes, "updated_at": datetime.now()}
        updated = _validate_feature(merged)

        candidate = list(self._list.features)
        candidate[index] = updated
        self._check_graph(candidate, strict_ids={feature_id})

        self._list.features[index] = updated
        self._touch()
        return updated

    def remove_feature(self, feature_id: str) -> Feature:
        """Delete a feature that no other feature depends on."""
        index, feature = self._index(feature_id)
        dependents = self.dependents(feature_id)
        if dependents:
            ids = ", ".join(f.id for f in dependents)
            raise FeatureValidationError(f"Feature {feature_id} is a dependency of: {ids}")
        del self._list.features[index]
        self._touch()
        self.logger.info(f"Removed feature {feature_id}")
        return feature

    # --- Status transitions ---

    def mark_in_progress(self, feature_id: str) -> Feature:
        return self._transition(feature_id, FeatureStatus.IN_PROGRESS)

    def mark_completed(
        self,
        feature_id: str,
        test_results: Iterable[TestResult] | None = None,
    ) -> Feature:
        """Complete an in-progress feature.

        With test results, the feature completes only if every result passed;
        otherwise the results are recorded, ``passes`` is cleared and the
        feature stays in progress. Without results (tests disabled) it
        completes unconditionally. A feature that is already completed is
        returned unchanged.
        """
        feature = self.require(feature_id)
        if feature.status == FeatureStatus.COMPLETED:
            return feature
        self._check_transition(feature, FeatureStatus.COMPLETED)

        if test_results is not None:
            results = list(test_results)
            feature.test_results = results
            feature.passes = all(r.passed for r in results)
            if not feature.passes:
                feature.updated_at = datetime.now()
                self._touch()
                self.logger.info(f"Feature {feature_id}: tests failed, staying in progress")
                return feature

        return self._transition(feature_id, FeatureStatus.COMPLETED)

    def mark_blocked(self, feature_id: str, reason: str | None = None) -> Feature:
        feature = self._transition(feature_id, FeatureStatus.BLOCKED)
        if reason:
            feature.notes = f"{feature.notes}\nBlocked: {reason}".strip()
        return feature

    def unblock(self, feature_id: str) -> Feature:
        return self._transition(feature_id, FeatureStatus.PENDING)

    def reset_feature(self, feature_id: str) -> Feature:
        """Administrative reset: back to pending with test state cleared, from any status."""
        feature = self.require(feature_id)
        previous = feature.status
        feature.status = FeatureStatus.PENDING
        feature.passes = False
        feature.test_results = []
        feature.updated_at = datetime.now()
        self._touch()
        self.logger.info(f"Reset feature {feature_id} ({previous.value} -> pending)")
        return feature

    # --- Internals ---

    def _index(self, feature_id: str) -> tuple[int, Feature]:
        for i, f in enumerate(self._list.features):
            if f.id == feature_id:
                return i, f
        raise FeatureNotFoundError(feature_id)

    @staticmethod
    def _check_transition(feature: Feature, target: FeatureStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[feature.status]:
            raise InvalidTransitionError(feature.id, feature.status.value, target.value)

    def _transition(self, feature_id: str, target: FeatureStatus) -> Feature:
        feature = self.require(feature_id)
        if feature.status == target:
            return feature
        self._check_transition(feature, target)
        previous = feature.status
        feature.status = target
        feature.updated_at = datetime.now()
        self._touch()
        self.logger.info(f"Feature {feature_id}: {previous.value} -> {target.value}")
        return feature

    def _touch(self) -> None:
        self._list.updated_at = datetime.now()

    def _check_graph(
        self,
        features: Sequence[Feature],
        strict_ids: Collection[str] | None = None,
    ) -> None:
        """Reject duplicate ids and cycles.

        Unknown dependency ids are an error for the features in ``strict_ids``
        (the ones being added or edited). Without ``strict_ids`` (loading a
        file) they are only logged.
        """
        graph: dict[str, list[str]] = {}
        for f in features:
            if f.id in graph:
                raise FeatureValidationError(f"Duplicate feature id: {f.id}")
            graph[f.id] = f.dependencies

        for f in features:
            if strict_ids is not None and f.id not in strict_ids:
                continue
            unknown = [dep for dep in f.dependencies if dep not in graph]
            if not unknown:
                continue
            if strict_ids is not None:
                raise FeatureValidationError(
                    f"Feature {f.id} depends on unknown feature(s): {', '.join(unknown)}"
                )
            self.logger.warning(
                f"Feature {f.id} depends on unknown feature(s) {', '.join(unknown)}; "
                f"it will never be selected automatically"
            )

        cycle = find_cycle(graph)
        if cycle:
            raise DependencyCycleError(cycle)
