"""Next-feature selection: dependency filtering plus priority/complexity scoring."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .logging_config import get_logger
from .models import Feature, FeatureComplexity, FeaturePriority, FeatureStatus

if TYPE_CHECKING:
    from .store import FeatureStore

PRIORITY_WEIGHTS: dict[FeaturePriority, int] = {
    FeaturePriority.CRITICAL: 100,
    FeaturePriority.HIGH: 75,
    FeaturePriority.MEDIUM: 50,
    FeaturePriority.LOW: 25,
}

# Simpler features are preferred, all else equal.
COMPLEXITY_WEIGHTS: dict[FeatureComplexity, int] = {
    FeatureComplexity.SIMPLE: 100,
    FeatureComplexity.MEDIUM: 75,
    FeatureComplexity.COMPLEX: 50,
}

PRIORITY_FACTOR = 0.7
COMPLEXITY_FACTOR = 0.3


def score(feature: Feature) -> float:
    """Weighted selection score; higher is picked first."""
    return (
        PRIORITY_FACTOR * PRIORITY_WEIGHTS[feature.priority]
        + COMPLEXITY_FACTOR * COMPLEXITY_WEIGHTS[feature.estimated_complexity]
    )


class FeatureSelector:
    """Picks the next feature to work on from a FeatureStore."""

    def __init__(self, store: FeatureStore, logger: logging.Logger | None = None):
        self.store = store
        self.logger = logger or get_logger("selector")

    def unmet_dependencies(self, feature: Feature) -> list[str]:
        """Dependency ids of ``feature`` that are not completed (unknown ids included)."""
        completed = {f.id for f in self.store.by_status(FeatureStatus.COMPLETED)}
        return [dep for dep in feature.dependencies if dep not in completed]

    def eligible(self) -> list[Feature]:
        """Pending features whose dependencies are all completed, in store order."""
        completed = {f.id for f in self.store.by_status(FeatureStatus.COMPLETED)}
        return [
            f for f in self.store.by_status(FeatureStatus.PENDING)
            if all(dep in completed for dep in f.dependencies)
        ]

    def ranked(self) -> list[tuple[Feature, float]]:
        """Eligible features with scores, best first; ties keep store order."""
        scored = [(f, score(f)) for f in self.eligible()]
        # sorted() is stable, so equal scores keep their original order
        return sorted(scored, key=lambda item: item[1], reverse=True)

    def select_next(self, explicit_id: str | None = None) -> Feature | None:
        """Return the feature to work on next, or None.

        An explicit id bypasses eligibility entirely (blocked features and
        unmet dependencies included) and is None only when the id is unknown.
        """
        if explicit_id is not None:
            feature = self.store.get(explicit_id)
            if feature is None:
                self.logger.warning(f"Requested feature {explicit_id} not found")
            return feature

        ranked = self.ranked()
        if not ranked:
            self.logger.debug("No eligible feature to select")
            return None

        best, best_score = ranked[0]
        self.logger.debug(
            f"Selected {best.id} (score {best_score:.2f}, priority {best.priority.value}, "
            f"complexity {best.estimated_complexity.value}, candidates {len(ranked)})"
        )
        return best
