"""Tests for the verification command runner and git helpers."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from agent_cli.config import AgentConfig
from agent_cli.git_utils import commit_all, latest_commit_hash, render_commit_message
from agent_cli.models import Feature
from agent_cli.verify import CommandVerifier

FEATURE = Feature(id="feature-007", description="Add search", category="ui", priority="high")


class TestCommandVerifier:
    def test_disabled_without_command(self, tmp_path: Path):
        assert not CommandVerifier(AgentConfig(project_dir=tmp_path)).enabled
        assert not CommandVerifier(
            AgentConfig(project_dir=tmp_path, test_command="true", run_tests=False)
        ).enabled

    @pytest.mark.asyncio
    async def test_disabled_returns_no_results(self, tmp_path: Path):
        assert await CommandVerifier(AgentConfig(project_dir=tmp_path)).run(FEATURE) == []

    @pytest.mark.asyncio
    async def test_passing_command(self, tmp_path: Path):
        config = AgentConfig(project_dir=tmp_path, test_command="exit 0")
        results = await CommandVerifier(config).run(FEATURE)
        assert len(results) == 1
        assert results[0].passed is True
        assert results[0].id == "feature-007-verify"
        assert results[0].error is None

    @pytest.mark.asyncio
    async def test_failing_command(self, tmp_path: Path):
        config = AgentConfig(project_dir=tmp_path, test_command="echo 'assert failed' && exit 3")
        results = await CommandVerifier(config).run(FEATURE)
        assert results[0].passed is False
        assert results[0].error.startswith("exit code 3")
        assert "assert failed" in results[0].error

    @pytest.mark.asyncio
    async def test_exports_feature_id_and_cwd(self, tmp_path: Path):
        config = AgentConfig(
            project_dir=tmp_path,
            test_command='test "$AGENT_CLI_FEATURE_ID" = feature-007 && test -f marker.txt',
        )
        (tmp_path / "marker.txt").write_text("x")
        results = await CommandVerifier(config).run(FEATURE)
        assert results[0].passed is True


class TestCommitMessage:
    def test_placeholders(self):
        template = "{category}({priority}): {description} [{id}]"
        assert render_commit_message(template, FEATURE) == "ui(high): Add search [feature-007]"


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestGit:
    @pytest.fixture
    def repo(self, tmp_path: Path) -> Path:
        subprocess.run(["git", "init", "-q"], cwd=tmp_path, check=True)
        subprocess.run(["git", "config", "user.email", "dev@example.com"], cwd=tmp_path, check=True)
        subprocess.run(["git", "config", "user.name", "Dev"], cwd=tmp_path, check=True)
        return tmp_path

    @pytest.mark.asyncio
    async def test_no_commits_yet(self, repo: Path):
        assert await latest_commit_hash(repo) is None

    @pytest.mark.asyncio
    async def test_commit_all(self, repo: Path):
        (repo / "app.py").write_text("print('hi')\n")
        commit_hash = await commit_all(repo, "feat: Add search (feature-007)")
        assert commit_hash is not None
        assert len(commit_hash) == 12
        assert await latest_commit_hash(repo) == commit_hash

    @pytest.mark.asyncio
    async def test_nothing_to_commit(self, repo: Path):
        (repo / "app.py").write_text("print('hi')\n")
        await commit_all(repo, "first")
        assert await commit_all(repo, "second") is None
