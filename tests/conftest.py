"""Shared test fixtures."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from agent_cli.config import AgentConfig
from agent_cli.logging_config import LOGGER_NAME


def make_feature(feature_id: str, **overrides) -> dict:
    data = {
        "id": feature_id,
        "description": f"Feature {feature_id}",
        "priority": "medium",
        "estimatedComplexity": "medium",
        "status": "pending",
        "dependencies": [],
        "steps": ["step1"],
    }
    data.update(overrides)
    return data


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """Create a minimal project directory with feature-list.json."""
    features = [
        make_feature("feature-001", description="Add header component", status="completed", passes=True),
        make_feature("feature-002", description="Add footer component", priority="high",
                     dependencies=["feature-001"]),
        make_feature("feature-003", description="Add navigation", priority="low",
                     estimatedComplexity="complex", dependencies=["feature-002"]),
    ]
    payload = {"projectName": "demo", "features": features}
    (tmp_path / "feature-list.json").write_text(json.dumps(payload, indent=2) + "\n")
    return tmp_path


@pytest.fixture
def features_path(tmp_project: Path) -> Path:
    return tmp_project / "feature-list.json"


@pytest.fixture
def config(tmp_project: Path) -> AgentConfig:
    return AgentConfig(
        project_dir=tmp_project,
        structured_log=False,
        auto_commit=False,
        run_tests=False,
        max_retries=1,
        retry_backoff_base=0.0,
    )


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Drop handlers added by setup_logger so each test starts clean."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
