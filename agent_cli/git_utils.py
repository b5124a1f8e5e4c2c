"""Thin async wrappers around the git commands the driver needs."""

from __future__ import annotations

import asyncio
from pathlib import Path

from .errors import VerificationError
from .models import Feature


async def _git(project_dir: Path, *args: str) -> tuple[int, str]:
    try:
        proc = await asyncio.create_subprocess_exec(
            "git", *args,
            cwd=project_dir,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except FileNotFoundError as e:
        raise VerificationError("git executable not found", retriable=False) from e
    stdout, _ = await proc.communicate()
    return proc.returncode, stdout.decode(errors="replace").strip()


async def latest_commit_hash(project_dir: Path) -> str | None:
    """Short hash of HEAD, or None outside a repository / before the first commit."""
    code, out = await _git(project_dir, "log", "--format=%H", "-1")
    if code != 0 or not out:
        return None
    return out[:12]


async def commit_all(project_dir: Path, message: str) -> str | None:
    """Stage everything and commit. Returns the new hash, or None if nothing changed."""
    code, out = await _git(project_dir, "add", "-A")
    if code != 0:
        raise VerificationError(f"git add failed: {out}", retriable=False)

    code, out = await _git(project_dir, "status", "--porcelain")
    if code != 0:
        raise VerificationError(f"git status failed: {out}", retriable=False)
    if not out:
        return None

    code, out = await _git(project_dir, "commit", "-m", message)
    if code != 0:
        raise VerificationError(f"git commit failed: {out}")
    return await latest_commit_hash(project_dir)


def render_commit_message(template: str, feature: Feature) -> str:
    return template.format(
        id=feature.id,
        description=feature.description,
        category=feature.category.value,
        priority=feature.priority.value,
    )


async def is_repository(project_dir: Path) -> bool:
    code, out = await _git(project_dir, "rev-parse", "--is-inside-work-tree")
    return code == 0 and out == "true"


async def init_repository(project_dir: Path) -> None:
    code, out = await _git(project_dir, "init", "-q")
    if code != 0:
        raise VerificationError(f"git init failed: {out}", retriable=False)
