"""Append-only progress log with an optional JSON-lines file mirror."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .errors import ProgressValidationError, StateCorruptionError
from .logging_config import get_logger
from .models import ProgressAction, ProgressEntry


def format_entry(entry: ProgressEntry) -> str:
    """One human-readable line: ``[timestamp] [action] description``."""
    line = f"[{entry.timestamp.strftime('%Y-%m-%d %H:%M:%S')}] [{entry.action.value}]"
    if entry.feature_id:
        line += f" {entry.feature_id}:"
    line += f" {entry.description}"
    if entry.error:
        line += f" (error: {entry.error})"
    return line


class ProgressRecorder:
    """In-memory, insertion-ordered progress log.

    Entries are never mutated or removed once appended. When ``path`` is set,
    every appended entry is also written as one JSON line.
    """

    def __init__(self, path: Path | None = None, logger: logging.Logger | None = None):
        self.path = path
        self.logger = logger or get_logger("progress")
        self._entries: list[ProgressEntry] = []

    @classmethod
    def load(cls, path: Path, logger: logging.Logger | None = None) -> ProgressRecorder:
        """Read an existing progress.jsonl (missing file = empty log)."""
        recorder = cls(path=path, logger=logger)
        if not path.exists():
            return recorder
        with open(path) as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = ProgressEntry.model_validate(json.loads(line))
                except (json.JSONDecodeError, ValidationError) as e:
                    raise StateCorruptionError(f"{path}:{lineno}: {e}") from e
                recorder._entries.append(entry)
        recorder.logger.debug(f"Loaded {len(recorder._entries)} progress entries from {path}")
        return recorder

    def record(
        self,
        action: ProgressAction | str,
        description: str,
        *,
        feature_id: str | None = None,
        details: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> ProgressEntry:
        """Build, validate and append an entry. Invalid input appends nothing."""
        try:
            entry = ProgressEntry(
                action=action,
                description=description,
                feature_id=feature_id,
                details=details,
                error=error,
            )
        except ValidationError as e:
            raise ProgressValidationError(str(e)) from e
        return self.append(entry)

    def append(self, entry: ProgressEntry) -> ProgressEntry:
        # An entry reaches memory only after its line is written
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a") as f:
                f.write(entry.model_dump_json(by_alias=True) + "\n")
        self._entries.append(entry)
        self.logger.debug(f"Progress: {entry.action.value} - {entry.description}")
        return entry

    # --- Queries ---

    @property
    def entries(self) -> list[ProgressEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def recent(self, limit: int = 10) -> list[ProgressEntry]:
        if limit <= 0:
            return []
        return self._entries[-limit:]

    def filter(
        self,
        action: ProgressAction | str | None = None,
        feature_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[ProgressEntry]:
        """Entries matching every given criterion; ``since``/``until`` are inclusive."""
        try:
            wanted = ProgressAction(action) if action is not None else None
        except ValueError as e:
            raise ProgressValidationError(f"Unknown progress action: {action}") from e
        return [
            e for e in self._entries
            if (wanted is None or e.action == wanted)
            and (feature_id is None or e.feature_id == feature_id)
            and (since is None or e.timestamp >= since)
            and (until is None or e.timestamp <= until)
        ]

    def reset(self) -> None:
        """Drop the in-memory log (the file mirror is left as is)."""
        self._entries = []
