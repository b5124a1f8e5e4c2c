"""Project scaffolding for ``agent-cli init``."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from .config import CONFIG_FILENAME, AgentConfig
from .errors import ProjectInitError
from .git_utils import init_repository, is_repository
from .logging_config import get_logger
from .store import FeatureStore

_NAME = re.compile(r"^[A-Za-z0-9_-]+$")

CONFIG_TEMPLATE = """\
# agent-cli settings. Command-line flags override these values.
project_name = {project_name}

model = {model}
max_output_tokens = {max_output_tokens}

run_tests = true
# test_command = "pytest -q"
test_timeout_seconds = {test_timeout}

auto_commit = {auto_commit}
commit_template = {commit_template}

[context]
enabled = true
warning_threshold = {warning_threshold}
auto_summarize = true
summary_interval = {summary_interval}
max_history_records = {max_history_records}
"""


def _toml_str(value: str) -> str:
    # JSON string escaping is valid TOML basic-string syntax
    return json.dumps(value)


def render_default_config(project_name: str, git: bool = True) -> str:
    defaults = AgentConfig()
    return CONFIG_TEMPLATE.format(
        project_name=_toml_str(project_name),
        model=_toml_str(defaults.model),
        max_output_tokens=defaults.max_output_tokens,
        test_timeout=defaults.test_timeout_seconds,
        auto_commit="true" if git else "false",
        commit_template=_toml_str(defaults.commit_template),
        warning_threshold=defaults.context.warning_threshold,
        summary_interval=defaults.context.summary_interval,
        max_history_records=defaults.context.max_history_records,
    )


async def init_project(
    project_dir: Path,
    name: str | None = None,
    description: str = "",
    git: bool = True,
    logger: logging.Logger | None = None,
) -> list[Path]:
    """Create an empty feature list, default agent.toml and empty progress log.

    Refuses to touch a directory that already has a feature list. Returns the
    files written. With ``git``, runs ``git init`` unless the directory is
    already inside a work tree.
    """
    log = logger or get_logger("scaffold")
    project_dir = project_dir.resolve()
    name = name or project_dir.name
    if not _NAME.match(name):
        raise ProjectInitError(
            f"Invalid project name {name!r}: use letters, digits, '-' and '_'"
        )

    defaults = AgentConfig(project_dir=project_dir)
    features_path = defaults.features_path
    if features_path.exists():
        raise ProjectInitError(f"{features_path} already exists; project is already initialized")

    project_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []

    config_path = project_dir / CONFIG_FILENAME
    if config_path.exists():
        log.info(f"Keeping existing {config_path.name}")
    else:
        config_path.write_text(render_default_config(name, git=git), encoding="utf-8")
        written.append(config_path)

    store = FeatureStore.empty(name, path=features_path, logger=log.getChild("store"))
    store.feature_list.description = description
    store.save()
    written.append(features_path)

    progress_path = defaults.progress_path
    if not progress_path.exists():
        progress_path.touch()
        written.append(progress_path)

    gitignore = project_dir / ".gitignore"
    ignore_line = f"{defaults.log_dir.parts[0]}/"
    existing = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
    if ignore_line not in existing.splitlines():
        prefix = "" if not existing or existing.endswith("\n") else "\n"
        gitignore.write_text(f"{existing}{prefix}{ignore_line}\n", encoding="utf-8")
        written.append(gitignore)

    if git:
        if await is_repository(project_dir):
            log.info(f"{project_dir} is already a git repository")
        else:
            await init_repository(project_dir)
            log.info(f"Initialized git repository in {project_dir}")

    log.info(f"Initialized project {name} in {project_dir}")
    return written
