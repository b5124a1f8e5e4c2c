"""Structured logging setup: console + JSON-lines file."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import AgentConfig

LOGGER_NAME = "agent_cli"


class JSONFormatter(logging.Formatter):
    """JSON Lines format for structured log files."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the package logger, or a child of it."""
    if name:
        return logging.getLogger(f"{LOGGER_NAME}.{name}")
    return logging.getLogger(LOGGER_NAME)


def setup_logger(config: AgentConfig) -> logging.Logger:
    """Create a logger with console and optional JSON-lines file handlers."""
    logger = get_logger()
    logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    # Don't add handlers if already configured (avoids duplicates on re-init)
    if logger.handlers:
        return logger

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    ))
    logger.addHandler(console)

    if config.structured_log:
        log_dir = config.project_dir / config.log_dir
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"run-{datetime.now().strftime('%Y%m%d-%H%M%S')}.jsonl"
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    return logger
