"""Project progress report and health status."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from .models import Feature, ProgressEntry
from .progress import format_entry
from .selector import FeatureSelector

if TYPE_CHECKING:
    from .progress import ProgressRecorder
    from .store import FeatureStore

Health = Literal["healthy", "warning", "critical"]


def health_status(total: int, blocked: int) -> Health:
    """More than 30% blocked is critical, more than 10% is a warning."""
    if blocked > total * 0.3:
        return "critical"
    if blocked > total * 0.1:
        return "warning"
    return "healthy"


class ProjectReport(BaseModel):
    project_name: str
    generated_at: datetime = Field(default_factory=datetime.now)
    progress_percentage: int
    health: Health
    counts: dict[str, int]
    next_feature: Feature | None = None
    features: list[Feature] = Field(default_factory=list)
    recent_progress: list[ProgressEntry] = Field(default_factory=list)


def build_report(
    store: FeatureStore,
    recorder: ProgressRecorder,
    progress_limit: int = 100,
) -> ProjectReport:
    counts = store.counts()
    total = counts["total"]
    percentage = round(counts["completed"] / total * 100) if total else 0
    return ProjectReport(
        project_name=store.project_name,
        progress_percentage=percentage,
        health=health_status(total, counts["blocked"]),
        counts=counts,
        next_feature=FeatureSelector(store).select_next(),
        features=store.features,
        recent_progress=recorder.recent(progress_limit),
    )


def get_progress_summary(store: FeatureStore) -> str:
    """Return completion stats for display."""
    counts = store.counts()
    parts = [f"{counts['completed']}/{counts['total']} complete"]
    if counts["in_progress"]:
        parts.append(f"{counts['in_progress']} in progress")
    if counts["blocked"]:
        parts.append(f"{counts['blocked']} blocked")
    return "Progress: " + ", ".join(parts)


def render_report(report: ProjectReport, tail: int = 10) -> str:
    """Plain-text rendering for the terminal."""
    c = report.counts
    lines = [
        f"Project: {report.project_name}",
        f"Progress: {report.progress_percentage}% ({c['completed']}/{c['total']} complete)",
        f"Health: {report.health}",
        f"In progress: {c['in_progress']}  Blocked: {c['blocked']}  Pending: {c['pending']}",
    ]
    if report.next_feature is not None:
        nf = report.next_feature
        lines.append(f"Next: {nf.id} [{nf.priority.value}] {nf.description}")
    elif c["total"] and c["completed"] == c["total"]:
        lines.append("All features complete!")
    else:
        lines.append("No feature available (remaining work is blocked or waiting on dependencies)")

    recent = report.recent_progress[-tail:] if tail > 0 else []
    if recent:
        lines.append("")
        lines.append("Recent progress:")
        lines.extend(f"  {format_entry(e)}" for e in recent)
    return "\n".join(lines)
