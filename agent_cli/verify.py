"""Feature verification: run the project's test command."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import TYPE_CHECKING

from .errors import VerificationError
from .logging_config import get_logger
from .models import Feature, TestResult

if TYPE_CHECKING:
    from .config import AgentConfig

OUTPUT_TAIL_CHARS = 2000


def _tail(text: str, limit: int = OUTPUT_TAIL_CHARS) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return "..." + text[-limit:]


class CommandVerifier:
    """Runs ``config.test_command`` in the project directory.

    The feature id is exported as ``AGENT_CLI_FEATURE_ID`` so the command can
    scope itself to one feature. Exit code 0 means the feature passes.
    """

    def __init__(self, config: AgentConfig, logger: logging.Logger | None = None):
        self.config = config
        self.logger = logger or get_logger("verify")

    @property
    def enabled(self) -> bool:
        return self.config.run_tests and bool(self.config.test_command)

    async def run(self, feature: Feature) -> list[TestResult]:
        """Run the test command once. Returns no results when verification is disabled."""
        if not self.enabled:
            return []

        command = self.config.test_command
        self.logger.info(f"  Verifying {feature.id}: $ {command}")
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                cwd=self.config.project_dir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env={**os.environ, "AGENT_CLI_FEATURE_ID": feature.id},
            )
        except OSError as e:
            raise VerificationError(f"Could not start test command: {e}", retriable=False) from e

        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            # Timeout or shutdown: don't leave the test process behind
            proc.kill()
            await proc.wait()
            raise

        duration = time.monotonic() - start
        output = stdout.decode(errors="replace") if stdout else ""
        passed = proc.returncode == 0
        self.logger.debug(f"  [test output] {output[:500]}")

        return [TestResult(
            id=f"{feature.id}-verify",
            description=command,
            passed=passed,
            execution_time=round(duration, 3),
            error=None if passed else f"exit code {proc.returncode}: {_tail(output)}",
        )]
