"""Per-session context-window monitoring: latched warning and periodic summaries."""

from __future__ import annotations

import logging
import time
import uuid
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .config import ContextMonitorConfig
from .logging_config import get_logger
from .models import (
    Message,
    MonitorResult,
    ProgressAction,
    SessionSummary,
    TokenEstimate,
    TokenStatistics,
    TokenUsageRecord,
)
from .tokens import DEFAULT_MODEL, TokenEstimator, usage_recommendation

if TYPE_CHECKING:
    from .progress import ProgressRecorder

SUMMARY_MIN_INTERVAL_SECONDS = 5 * 60
SUMMARY_MIN_UTILIZATION = 0.3
HISTORY_TAIL = 20
LARGE_INPUT_TOKENS = 100_000
LARGE_OUTPUT_TOKENS = 8192


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:12]}"


class ContextMonitor:
    """Tracks estimated token usage for one conversation session.

    Each ``observe`` call estimates the request, appends a usage record to a
    bounded history, fires a one-shot warning the first time the warning
    threshold is reached, and periodically produces a session summary.
    """

    def __init__(
        self,
        config: ContextMonitorConfig | None = None,
        estimator: TokenEstimator | None = None,
        recorder: ProgressRecorder | None = None,
        model: str = DEFAULT_MODEL,
        max_output_tokens: int = 4096,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or ContextMonitorConfig()
        self.estimator = estimator or TokenEstimator()
        self.recorder = recorder
        self.model = model
        self.max_output_tokens = max_output_tokens
        self.logger = logger or get_logger("monitor")
        self._clock = clock
        self._start_session()

    def _start_session(self) -> None:
        self.session_id = new_session_id()
        self._history: deque[TokenUsageRecord] = deque(maxlen=self.config.max_history_records)
        self._warning_triggered = False
        self._last_summary_at: float | None = None
        self._message_count = 0
        self._interactions = 0
        self._summaries = 0
        self._started_at = datetime.now()

    # --- Public API ---

    @property
    def warning_triggered(self) -> bool:
        return self._warning_triggered

    @property
    def message_count(self) -> int:
        return self._message_count

    @property
    def history(self) -> list[TokenUsageRecord]:
        return list(self._history)

    def recent_history(self, limit: int) -> list[TokenUsageRecord]:
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    def observe(
        self,
        messages: Iterable[Message | Mapping[str, Any]],
        max_output_tokens: int | None = None,
        model: str | None = None,
    ) -> MonitorResult:
        """Estimate one interaction and apply the warning/summary policy."""
        messages = list(messages)
        model = model or self.model
        if max_output_tokens is None:
            max_output_tokens = self.max_output_tokens

        estimate = self.estimator.estimate_request(
            messages, max_output_tokens, model, self.config.warning_threshold,
        )
        if not self.config.enabled:
            return MonitorResult(estimate=estimate)

        self._record_usage(estimate, len(messages), model)

        warnings: list[str] = []
        recommendations: list[str] = []
        if estimate.exceeds_warning_threshold and not self._warning_triggered:
            warnings, recommendations = self._raise_warning(estimate, model)
            self._warning_triggered = True

        summary = self.generate_summary() if self._should_summarize() else None

        self.logger.debug(f"Context utilization {estimate.utilization * 100:.1f}%")
        return MonitorResult(
            estimate=estimate,
            history=self.recent_history(HISTORY_TAIL),
            warnings=warnings,
            recommendations=recommendations,
            summary=summary,
        )

    def reset_monitoring(self) -> None:
        """Start a new session: clears history, warning latch and counters."""
        self._start_session()
        self.logger.info(f"Context monitoring reset, new session {self.session_id}")

    def token_statistics(self) -> TokenStatistics:
        if not self._history:
            return TokenStatistics()
        totals = [r.total_tokens for r in self._history]
        return TokenStatistics(
            total_tokens=sum(totals),
            average_tokens=round(sum(totals) / len(totals)),
            peak_tokens=max(totals),
            average_utilization=sum(r.utilization for r in self._history) / len(self._history),
        )

    def generate_summary(self) -> SessionSummary:
        """Snapshot aggregate statistics and reset the message counter."""
        summary = SessionSummary(
            session_id=self.session_id,
            token_statistics=self.token_statistics(),
            key_topics=self._key_topics(),
            recommendations=self._summary_recommendations(),
        )
        self._last_summary_at = self._clock()
        self._message_count = 0
        self._summaries += 1
        self.logger.info(f"Session summary generated for {self.session_id}")
        return summary

    def final_report(self) -> dict[str, Any]:
        """Aggregate statistics for the whole session."""
        ended = datetime.now()
        return {
            "session_id": self.session_id,
            "started_at": self._started_at.isoformat(),
            "ended_at": ended.isoformat(),
            "duration_seconds": (ended - self._started_at).total_seconds(),
            "interactions": self._interactions,
            "token_statistics": self.token_statistics().model_dump(),
            "warnings_triggered": int(self._warning_triggered),
            "summaries_generated": self._summaries,
        }

    # --- Internals ---

    def _record_usage(self, estimate: TokenEstimate, message_count: int, model: str) -> TokenUsageRecord:
        record = TokenUsageRecord(
            input_tokens=estimate.input_tokens,
            output_tokens=estimate.output_tokens,
            total_tokens=estimate.total_tokens,
            utilization=estimate.utilization,
            message_count=message_count,
            session_id=self.session_id,
            metadata={
                "model": model,
                "exceeds_warning_threshold": estimate.exceeds_warning_threshold,
                "recommended_max_tokens": estimate.recommended_max_tokens,
            },
        )
        self._history.append(record)
        self._message_count += 1
        self._interactions += 1
        return record

    def _raise_warning(self, estimate: TokenEstimate, model: str) -> tuple[list[str], list[str]]:
        limit = self.estimator.context_limit(model)
        warning = (
            f"Context utilization {estimate.utilization * 100:.1f}% "
            f"({estimate.total_tokens}/{limit} tokens)"
        )
        recommendations = self._recommendations(estimate)

        self.logger.warning(warning)
        for rec in recommendations:
            self.logger.info(f"  - {rec}")

        if self.recorder is not None:
            self.recorder.record(
                ProgressAction.ERROR_OCCURRED,
                "Context window approaching its limit",
                details={
                    "warning": warning,
                    "recommendations": recommendations,
                    "estimate": estimate.model_dump(),
                    "model": model,
                    "session_id": self.session_id,
                },
            )
        return [warning], recommendations

    def _recommendations(self, estimate: TokenEstimate) -> list[str]:
        recommendations = []
        level = usage_recommendation(estimate.utilization, self.config.warning_threshold)
        if level:
            recommendations.append(level)
        if estimate.input_tokens > LARGE_INPUT_TOKENS:
            recommendations.append("Compress input: drop comments and blank lines")
            recommendations.append("Reference files by path instead of pasting full contents")
        if estimate.output_tokens > LARGE_OUTPUT_TOKENS:
            recommendations.append(
                f"Lower the reserved output tokens (currently {estimate.output_tokens})"
            )
        recommendations.append("Ask the assistant to summarize progress, then continue in a new session")
        recommendations.append("Prefer short per-feature sessions over one long conversation")
        return recommendations

    def _should_summarize(self) -> bool:
        if not self.config.auto_summarize:
            return False
        interval = self.config.summary_interval
        if self._message_count < interval:
            return False
        if (
            self._last_summary_at is not None
            and self._clock() - self._last_summary_at < SUMMARY_MIN_INTERVAL_SECONDS
        ):
            return False
        recent = self.recent_history(interval)
        if not recent:
            return False
        average = sum(r.utilization for r in recent) / len(recent)
        return average > SUMMARY_MIN_UTILIZATION

    def _key_topics(self) -> list[str]:
        # Numeric heuristics on token volume only; message text is not analyzed.
        recent = self.recent_history(10)
        if not recent:
            return []
        topics = []
        if sum(r.input_tokens for r in recent) / len(recent) > 5000:
            topics.append("code implementation")
        if any(r.utilization > 0.5 for r in recent):
            topics.append("complex problem discussion")
        return topics

    def _summary_recommendations(self) -> list[str]:
        stats = self.token_statistics()
        recommendations = []
        if stats.average_utilization > 0.6:
            recommendations.append("Optimize token usage: compress input content")
        if len(self._history) > 30:
            recommendations.append("Switch sessions more often")
        if stats.peak_tokens > LARGE_INPUT_TOKENS:
            recommendations.append("Avoid oversized requests: split the task")
        return recommendations
