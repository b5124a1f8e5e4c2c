"""Project driver: owns the feature store, progress log and context monitor."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

from .errors import VerificationError
from .git_utils import commit_all, render_commit_message
from .logging_config import setup_logger
from .models import (
    Feature,
    FeatureStatus,
    Message,
    MonitorResult,
    ProgressAction,
    ProgressEntry,
    TestResult,
    TokenEstimate,
)
from .monitor import ContextMonitor
from .policy import run_with_policy
from .progress import ProgressRecorder
from .prompts import build_feature_prompt
from .report import get_progress_summary
from .selector import FeatureSelector
from .store import FeatureStore
from .tokens import TokenEstimator
from .verify import CommandVerifier

if TYPE_CHECKING:
    from .config import AgentConfig

AskFn = Callable[[str], Awaitable[str]]


async def _ask_terminal(question: str) -> str:
    print(question)
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: input("Choice: "))


class AgentDriver:
    """Single project-scoped context for one process invocation.

    All state lives in memory; the feature list and progress log are read
    at construction and written back through ``save`` and the recorder.
    """

    def __init__(
        self,
        config: AgentConfig,
        logger: logging.Logger | None = None,
        verifier: CommandVerifier | None = None,
        ask: AskFn | None = None,
    ):
        self.config = config
        self.logger = logger or setup_logger(config)
        self.store = FeatureStore.load(
            config.features_path,
            project_name=config.resolved_project_name,
            logger=self.logger.getChild("store"),
        )
        self.recorder = ProgressRecorder.load(
            config.progress_path, logger=self.logger.getChild("progress"),
        )
        self.selector = FeatureSelector(self.store, logger=self.logger.getChild("selector"))
        self.estimator = TokenEstimator(config.model_context_limits)
        self.monitor = ContextMonitor(
            config=config.context,
            estimator=self.estimator,
            recorder=self.recorder,
            model=config.model,
            max_output_tokens=config.max_output_tokens,
            logger=self.logger.getChild("monitor"),
        )
        self.verifier = verifier or CommandVerifier(config, logger=self.logger.getChild("verify"))
        self._ask = ask or _ask_terminal
        self._shutdown_requested = False

    # --- Core operations ---

    def save(self) -> None:
        self.store.save(self.config.features_path)

    def select_next(self, explicit_id: str | None = None) -> Feature | None:
        return self.selector.select_next(explicit_id)

    def start_feature(self, feature_id: str) -> Feature:
        """pending -> in_progress, logged as feature_started."""
        was = self.store.require(feature_id).status
        feature = self.store.mark_in_progress(feature_id)
        if was != FeatureStatus.IN_PROGRESS:
            self.recorder.record(
                ProgressAction.FEATURE_STARTED,
                f"Started: {feature.description}",
                feature_id=feature.id,
                details={"priority": feature.priority.value, "category": feature.category.value},
            )
        self.save()
        return feature

    def complete_feature(
        self,
        feature_id: str,
        test_results: Iterable[TestResult] | None = None,
    ) -> Feature:
        """Report completion; with failing test results the feature stays in progress."""
        if self.store.require(feature_id).status == FeatureStatus.COMPLETED:
            return self.store.require(feature_id)
        results = list(test_results) if test_results is not None else None
        feature = self.store.mark_completed(feature_id, results)

        if results:
            failed = [r for r in results if not r.passed]
            if failed:
                self.recorder.record(
                    ProgressAction.TEST_FAILED,
                    f"{len(failed)}/{len(results)} test(s) failed",
                    feature_id=feature.id,
                    error=failed[0].error,
                )
            else:
                self.recorder.record(
                    ProgressAction.TEST_PASSED,
                    f"{len(results)} test(s) passed",
                    feature_id=feature.id,
                )

        if feature.status == FeatureStatus.COMPLETED:
            self.recorder.record(
                ProgressAction.FEATURE_COMPLETED,
                f"Completed: {feature.description}",
                feature_id=feature.id,
            )
        self.save()
        return feature

    def block_feature(self, feature_id: str, reason: str | None = None) -> Feature:
        feature = self.store.mark_blocked(feature_id, reason)
        self.save()
        return feature

    def unblock_feature(self, feature_id: str) -> Feature:
        feature = self.store.unblock(feature_id)
        self.save()
        return feature

    def reset_feature(self, feature_id: str) -> Feature:
        feature = self.store.reset_feature(feature_id)
        self.save()
        return feature

    def add_feature(self, data: Mapping[str, Any]) -> Feature:
        feature = self.store.add_feature(data)
        self.save()
        return feature

    def record_progress(
        self,
        action: ProgressAction | str,
        description: str,
        **kwargs: Any,
    ) -> ProgressEntry:
        return self.recorder.record(action, description, **kwargs)

    def estimate_tokens(
        self,
        messages: Iterable[Message | Mapping[str, Any]],
        max_output_tokens: int | None = None,
        model: str | None = None,
    ) -> TokenEstimate:
        return self.estimator.estimate_request(
            messages,
            self.config.max_output_tokens if max_output_tokens is None else max_output_tokens,
            model or self.config.model,
            self.config.context.warning_threshold,
        )

    def monitor_conversation(
        self,
        messages: Iterable[Message | Mapping[str, Any]],
        max_output_tokens: int | None = None,
        model: str | None = None,
    ) -> MonitorResult:
        return self.monitor.observe(messages, max_output_tokens, model)

    # --- Collaborators ---

    async def verify(self, feature: Feature) -> list[TestResult] | None:
        """Run verification with retry/timeout. None means verification is disabled."""
        if not self.verifier.enabled:
            return None
        try:
            return await run_with_policy(
                lambda: self.verifier.run(feature),
                description=f"verification of {feature.id}",
                max_retries=self.config.max_retries,
                timeout=self.config.test_timeout_seconds,
                backoff_base=self.config.retry_backoff_base,
                backoff_max=self.config.retry_backoff_max,
                logger=self.logger,
            )
        except VerificationError as e:
            return [TestResult(id=f"{feature.id}-verify", description="verification", passed=False, error=str(e))]

    async def commit(self, feature: Feature) -> str | None:
        """Commit the working tree for a completed feature, if auto-commit is on."""
        if not self.config.auto_commit:
            return None
        message = render_commit_message(self.config.commit_template, feature)
        try:
            commit_hash = await run_with_policy(
                lambda: commit_all(self.config.project_dir, message),
                description=f"commit of {feature.id}",
                max_retries=self.config.max_retries,
                backoff_base=self.config.retry_backoff_base,
                backoff_max=self.config.retry_backoff_max,
                logger=self.logger,
            )
        except VerificationError as e:
            self.logger.error(f"Commit for {feature.id} failed: {e}")
            self.recorder.record(
                ProgressAction.ERROR_OCCURRED,
                "Commit failed",
                feature_id=feature.id,
                error=str(e),
            )
            return None

        if commit_hash is None:
            self.logger.info(f"Nothing to commit for {feature.id}")
            return None
        self.recorder.record(
            ProgressAction.COMMIT_CREATED,
            message.splitlines()[0],
            feature_id=feature.id,
            details={"hash": commit_hash},
        )
        return commit_hash

    async def finish_feature(self, feature_id: str) -> Feature:
        """Verify an in-progress feature, then complete and commit it if it passes."""
        feature = self.store.require(feature_id)
        results = await self.verify(feature)
        feature = self.complete_feature(feature_id, results)
        if feature.status == FeatureStatus.COMPLETED:
            await self.commit(feature)
        return feature

    # --- Operator loop ---

    async def run(self, max_features: int | None = None, dry_run: bool = False) -> int:
        """Work through features with the operator. Returns the number completed."""
        self._install_signal_handlers()

        self.logger.info("=" * 60)
        self.logger.info(f"agent-cli: {self.store.project_name}")
        self.logger.info(get_progress_summary(self.store))
        self.logger.info("=" * 60)

        if dry_run:
            self._dry_run()
            return 0

        completed = 0
        consecutive_failures = 0
        try:
            while not self._shutdown_requested:
                feature = self._resume_or_select()
                if feature is None:
                    if self.store.counts()["completed"] == len(self.store):
                        self.logger.info("All features complete!")
                    else:
                        self.logger.warning("No feature available: remaining work is blocked")
                    break

                feature = self.start_feature(feature.id)
                self._print_feature_header(feature)
                print(build_feature_prompt(feature, self.config))

                action = await self._ask_action(feature)
                if action == "abort":
                    self.logger.info("Operator chose to stop")
                    break
                if action == "block":
                    self.block_feature(feature.id, reason="skipped by operator")
                    continue

                feature = await self.finish_feature(feature.id)
                if feature.status == FeatureStatus.COMPLETED:
                    completed += 1
                    consecutive_failures = 0
                    self.logger.info(f"{feature.id} PASSED")
                    if max_features is not None and completed >= max_features:
                        self.logger.info(f"Reached limit of {max_features} feature(s)")
                        break
                else:
                    consecutive_failures += 1
                    self.logger.error(f"{feature.id} FAILED verification")
                    if consecutive_failures >= self.config.max_consecutive_failures:
                        self.logger.error(
                            f"{consecutive_failures} consecutive failures. Stopping for review."
                        )
                        break
        except (KeyboardInterrupt, asyncio.CancelledError):
            self.logger.info("Interrupted by user")
        finally:
            self.save()

        self.logger.info(get_progress_summary(self.store))
        return completed

    def _resume_or_select(self) -> Feature | None:
        # An unfinished in-progress feature is resumed before picking new work
        in_progress = self.store.by_status(FeatureStatus.IN_PROGRESS)
        if in_progress:
            return in_progress[0]
        return self.select_next()

    async def _ask_action(self, feature: Feature) -> str:
        response = await self._ask(
            f"\nWhen {feature.id} is implemented, choose: [d]one (verify)  [b]lock  [a]bort"
        )
        r = response.strip().lower()
        if r.startswith("d"):
            return "done"
        if r.startswith("b"):
            return "block"
        return "abort"

    def _install_signal_handlers(self) -> None:
        try:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self._handle_shutdown_signal, sig)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform / not in the main thread
            pass

    def _handle_shutdown_signal(self, sig: signal.Signals) -> None:
        if self._shutdown_requested:
            self.logger.warning(f"Second {sig.name} received, force exiting")
            raise SystemExit(1)
        self._shutdown_requested = True
        self.logger.info(f"{sig.name} received, stopping after the current step...")

    def _print_feature_header(self, feature: Feature) -> None:
        counts = self.store.counts()
        print()
        print("=" * 60)
        print(f"{feature.id} [{feature.priority.value}/{feature.estimated_complexity.value}]: {feature.description}")
        print(f"Progress: {counts['completed']} / {counts['total']} complete")
        print("=" * 60)

    def _dry_run(self) -> None:
        ranked = self.selector.ranked()
        if not ranked:
            print("[dry-run] No eligible feature")
        for feature, score in ranked:
            print(f"[dry-run] Would offer: {feature.id} (score {score:.1f}) -- {feature.description}")
