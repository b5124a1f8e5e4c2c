"""Tests for progress reports and the feature prompt."""

from __future__ import annotations

from pathlib import Path

import pytest

from agent_cli.config import AgentConfig
from agent_cli.models import Feature
from agent_cli.progress import ProgressRecorder
from agent_cli.prompts import build_feature_prompt
from agent_cli.report import build_report, get_progress_summary, health_status, render_report
from agent_cli.store import FeatureStore


class TestHealth:
    @pytest.mark.parametrize("total,blocked,expected", [
        (10, 0, "healthy"),
        (10, 1, "healthy"),
        (10, 2, "warning"),
        (10, 3, "warning"),
        (10, 4, "critical"),
        (0, 0, "healthy"),
    ])
    def test_thresholds(self, total: int, blocked: int, expected: str):
        assert health_status(total, blocked) == expected


class TestReport:
    def test_build_report(self, features_path: Path):
        store = FeatureStore.load(features_path)
        recorder = ProgressRecorder()
        recorder.record("feature_completed", "Completed: header", feature_id="feature-001")

        report = build_report(store, recorder)
        assert report.project_name == "demo"
        assert report.progress_percentage == 33
        assert report.health == "healthy"
        assert report.counts["total"] == 3
        assert report.next_feature.id == "feature-002"
        assert len(report.recent_progress) == 1

    def test_render(self, features_path: Path):
        store = FeatureStore.load(features_path)
        recorder = ProgressRecorder()
        recorder.record("feature_started", "Started: footer", feature_id="feature-002")
        text = render_report(build_report(store, recorder))
        assert "Project: demo" in text
        assert "33%" in text
        assert "Next: feature-002" in text
        assert "Started: footer" in text

    def test_empty_project(self):
        report = build_report(FeatureStore.empty("blank"), ProgressRecorder())
        assert report.progress_percentage == 0
        assert report.next_feature is None

    def test_progress_summary(self, features_path: Path):
        store = FeatureStore.load(features_path)
        store.mark_in_progress("feature-002")
        assert get_progress_summary(store) == "Progress: 1/3 complete, 1 in progress"


class TestFeaturePrompt:
    def test_contains_feature_details(self, tmp_path: Path):
        feature = Feature(
            id="feature-004",
            description="Add search",
            dependencies=["feature-001"],
            steps=["Create search box", "Wire API"],
            notes="Use the existing API client",
        )
        config = AgentConfig(project_dir=tmp_path, test_command="pytest -q")
        prompt = build_feature_prompt(feature, config)

        assert "Implement feature-004: Add search" in prompt
        assert "1. Create search box" in prompt
        assert "Builds on: feature-001" in prompt
        assert "Use the existing API client" in prompt
        assert "Run `pytest -q`" in prompt
        assert "feat: Add search (feature-004)" in prompt

    def test_without_steps_or_tests(self, tmp_path: Path):
        feature = Feature(id="f1", description="Polish")
        prompt = build_feature_prompt(feature, AgentConfig(project_dir=tmp_path))
        assert "no steps recorded" in prompt
        assert "Verify the feature works" in prompt
