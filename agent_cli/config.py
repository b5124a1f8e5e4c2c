"""Configuration loading: defaults → agent.toml → CLI flags."""

from __future__ import annotations

import sys

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

CONFIG_FILENAME = "agent.toml"


class ContextMonitorConfig(BaseModel):
    """Token-usage monitoring settings ([context] table in agent.toml)."""

    enabled: bool = True
    warning_threshold: float = Field(default=0.8, gt=0.0, le=1.0)
    auto_summarize: bool = True
    summary_interval: int = Field(default=10, ge=1)
    max_history_records: int = Field(default=100, ge=1)


class AgentConfig(BaseModel):
    """All agent-cli settings. Loaded from defaults, then agent.toml, then CLI flags."""

    # Project paths
    project_dir: Path = Field(default_factory=lambda: Path.cwd())
    project_name: str | None = None
    features_file: Path = Path("feature-list.json")
    progress_file: Path = Path("progress.jsonl")

    # Model / token budget
    model: str = "claude-3-5-sonnet"
    max_output_tokens: int = 4096
    model_context_limits: dict[str, int] = Field(default_factory=dict)
    context: ContextMonitorConfig = Field(default_factory=ContextMonitorConfig)

    # Verification
    run_tests: bool = True
    test_command: str | None = None
    test_timeout_seconds: float = 300.0

    # Retry policy for external commands
    max_retries: int = 3
    retry_backoff_base: float = 2.0
    retry_backoff_max: float = 60.0
    max_consecutive_failures: int = 3

    # Logging
    log_level: str = "INFO"
    log_dir: Path = Path(".agent-cli/logs")
    structured_log: bool = True

    # Git
    auto_commit: bool = True
    commit_template: str = "feat: {description} ({id})"

    @property
    def features_path(self) -> Path:
        return self.project_dir / self.features_file

    @property
    def progress_path(self) -> Path:
        return self.project_dir / self.progress_file

    @property
    def resolved_project_name(self) -> str:
        return self.project_name or self.project_dir.name


def load_config(cli_args: dict[str, Any]) -> AgentConfig:
    """Load config from defaults → agent.toml → CLI args."""
    project_dir = Path(cli_args.get("project", ".")).resolve()
    toml_path = project_dir / CONFIG_FILENAME

    config_data: dict[str, Any] = {"project_dir": project_dir}

    if toml_path.exists():
        with open(toml_path, "rb") as f:
            toml_data = tomllib.load(f)
        config_data.update(toml_data)

    # CLI overrides (only non-None values)
    for key, value in cli_args.items():
        if value is not None and key != "project":
            config_data[key] = value

    config_data["project_dir"] = project_dir

    return AgentConfig(**config_data)
