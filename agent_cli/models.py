"""Data models for features, progress and token usage."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model: snake_case attributes, camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class FeatureCategory(str, Enum):
    FUNCTIONAL = "functional"
    UI = "ui"
    PERFORMANCE = "performance"
    SECURITY = "security"
    ACCESSIBILITY = "accessibility"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    INFRASTRUCTURE = "infrastructure"


class FeaturePriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FeatureComplexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class FeatureStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class ProgressAction(str, Enum):
    FEATURE_STARTED = "feature_started"
    FEATURE_COMPLETED = "feature_completed"
    TEST_PASSED = "test_passed"
    TEST_FAILED = "test_failed"
    COMMIT_CREATED = "commit_created"
    ERROR_OCCURRED = "error_occurred"


class TestResult(CamelModel):
    """Outcome of a single automated test."""

    __test__ = False  # not a pytest class

    id: str
    description: str = ""
    passed: bool
    execution_time: float = 0.0
    error: str | None = None
    screenshot_path: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)


class Feature(CamelModel):
    """A unit of planned work with status, priority and dependencies."""

    id: str = Field(min_length=1)
    description: str
    category: FeatureCategory = FeatureCategory.FUNCTIONAL
    priority: FeaturePriority = FeaturePriority.MEDIUM
    estimated_complexity: FeatureComplexity = FeatureComplexity.MEDIUM
    status: FeatureStatus = FeatureStatus.PENDING
    dependencies: list[str] = Field(default_factory=list)
    steps: list[str] = Field(default_factory=list)
    passes: bool = False
    test_results: list[TestResult] = Field(default_factory=list)
    notes: str = ""
    related_files: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _check_self_dependency(self) -> Feature:
        if self.id in self.dependencies:
            raise ValueError(f"feature {self.id} cannot depend on itself")
        return self


class FeatureList(CamelModel):
    """Container persisted as feature-list.json. Counts are always derived."""

    project_name: str
    description: str = ""
    features: list[Feature] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    version: str = "1.0.0"

    def _count(self, status: FeatureStatus) -> int:
        return sum(1 for f in self.features if f.status == status)

    @computed_field(alias="totalCount")
    @property
    def total_count(self) -> int:
        return len(self.features)

    @computed_field(alias="completedCount")
    @property
    def completed_count(self) -> int:
        return self._count(FeatureStatus.COMPLETED)

    @computed_field(alias="inProgressCount")
    @property
    def in_progress_count(self) -> int:
        return self._count(FeatureStatus.IN_PROGRESS)

    @computed_field(alias="blockedCount")
    @property
    def blocked_count(self) -> int:
        return self._count(FeatureStatus.BLOCKED)

    @computed_field(alias="pendingCount")
    @property
    def pending_count(self) -> int:
        return self._count(FeatureStatus.PENDING)


class ProgressEntry(CamelModel):
    """A single immutable entry in the progress log."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    timestamp: datetime = Field(default_factory=datetime.now)
    action: ProgressAction
    feature_id: str | None = None
    description: str = Field(min_length=1)
    details: dict[str, Any] | None = None
    error: str | None = None


# --- Token usage ---


class Attachment(CamelModel):
    """A file attached to a conversation message."""

    name: str
    content: str = ""


class Message(CamelModel):
    """One conversation message as sent to the model."""

    role: str = Field(pattern="^(user|assistant|system)$")
    content: str = ""
    attachments: list[Attachment] = Field(default_factory=list)


class TokenEstimate(CamelModel):
    """Estimated token usage of one request against a model's context limit."""

    input_tokens: int
    output_tokens: int
    total_tokens: int
    utilization: float
    exceeds_warning_threshold: bool
    recommended_max_tokens: int


class TokenUsageRecord(CamelModel):
    """One monitored interaction, kept in the monitor's bounded history."""

    timestamp: datetime = Field(default_factory=datetime.now)
    input_tokens: int
    output_tokens: int
    total_tokens: int
    utilization: float
    message_count: int
    session_id: str
    metadata: dict[str, Any] | None = None


class TokenStatistics(CamelModel):
    total_tokens: int = 0
    average_tokens: int = 0
    peak_tokens: int = 0
    average_utilization: float = 0.0


class SessionSummary(CamelModel):
    """Snapshot produced periodically by the context monitor."""

    timestamp: datetime = Field(default_factory=datetime.now)
    session_id: str
    token_statistics: TokenStatistics
    key_topics: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class MonitorResult(CamelModel):
    """Result of one context monitor observation."""

    estimate: TokenEstimate
    history: list[TokenUsageRecord] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    summary: SessionSummary | None = None
