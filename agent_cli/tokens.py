"""Heuristic token estimation for conversation messages.

Estimates are character based: ``ceil(chars / k)`` with ``k`` chosen by the
detected content type, scaled by a bounded complexity factor. No tokenizer and
no network calls, so results are deterministic for the same text.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Iterable, Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from .errors import MessageValidationError
from .models import Message, TokenEstimate


class ContentType(str, Enum):
    ENGLISH = "english"
    CHINESE = "chinese"
    CODE = "code"
    MARKDOWN = "markdown"
    MIXED = "mixed"


CHARS_PER_TOKEN: dict[ContentType, float] = {
    ContentType.ENGLISH: 4.0,
    ContentType.CHINESE: 2.0,
    ContentType.CODE: 5.0,
    ContentType.MARKDOWN: 6.0,
    ContentType.MIXED: 4.0,
}

DEFAULT_CONTEXT_LIMIT = 131072
DEFAULT_MODEL_LIMITS: dict[str, int] = {
    "claude-3-5-sonnet": 131072,
    "claude-3-opus": 131072,
    "claude-3-haiku": 131072,
    "gpt-4": 128000,
    "gpt-4-turbo": 128000,
    "gpt-3.5-turbo": 16385,
    "claude-2": 100000,
    "claude-instant": 100000,
}
DEFAULT_MODEL = "claude-3-5-sonnet"
DEFAULT_WARNING_THRESHOLD = 0.8
MIN_RECOMMENDED_TOKENS = 1024

_CJK = re.compile(r"[\u4e00-\u9fa5]")
_CODE_FENCE = re.compile(r"```[\s\S]*?```")
_CODE_KEYWORDS = re.compile(
    r"\b(function|class|import|export|const|let|var|if|for|while|return|def|async|await)\b"
)
_CODE_SYNTAX = re.compile(r"[{}();=<>\[\]]")
_MD_HEADER = re.compile(r"^#+\s+.+$", re.MULTILINE)
_MD_LIST = re.compile(r"^\s*[-*+]\s+.+$", re.MULTILINE)
_MD_TABLE = re.compile(r"\|.*\|")

_JSON_LIKE = [
    re.compile(r"\{.*:.*\}"),
    re.compile(r"\[.*\]"),
    re.compile(r'".*":\s*".*"'),
    re.compile(r'".*":\s*[\d.]+'),
    re.compile(r'".*":\s*(true|false|null)'),
]
_SPECIAL_CHARS = re.compile(r"[{}\[\];(),]")
_FACTOR_KEYWORDS = re.compile(
    r"\b(function|class|import|export|const|let|var|if|for|while|return|def)\b"
)


def detect_content_type(text: str) -> ContentType:
    """Guess the content type of ``text``; empty text counts as English."""
    stripped = text.strip()
    if not stripped:
        return ContentType.ENGLISH

    if len(_CJK.findall(stripped)) / len(stripped) > 0.3:
        return ContentType.CHINESE

    has_fence = bool(_CODE_FENCE.search(stripped))
    has_keywords = bool(_CODE_KEYWORDS.search(stripped))
    has_syntax = bool(_CODE_SYNTAX.search(stripped)) and "\n" in stripped
    if has_fence or (has_keywords and has_syntax):
        return ContentType.CODE

    if _MD_HEADER.search(stripped) or _MD_LIST.search(stripped) or _MD_TABLE.search(stripped):
        return ContentType.MARKDOWN

    return ContentType.ENGLISH


def complexity_factor(text: str, content_type: ContentType) -> float:
    """Extra cost for structured or dense text, clamped to [1.0, 1.5]."""
    factor = 1.0

    json_matches = sum(1 for pattern in _JSON_LIKE if pattern.search(text))
    if json_matches:
        factor += 0.15 * (json_matches / len(_JSON_LIKE))

    lines = text.split("\n")
    long_lines = sum(1 for line in lines if len(line) > 80)
    if long_lines:
        factor += 0.1 * (long_lines / len(lines))

    special = len(_SPECIAL_CHARS.findall(text))
    if special:
        factor += 0.05 * min(special / 100, 1)

    if content_type == ContentType.CODE:
        keywords = len(_FACTOR_KEYWORDS.findall(text))
        factor += 0.1 * min(keywords / 20, 1)

    return max(1.0, min(factor, 1.5))


def estimate_text(text: str, content_type: ContentType | None = None) -> int:
    """Estimated token count of a single piece of text."""
    if not text or not text.strip():
        return 0
    detected = content_type or detect_content_type(text)
    base = math.ceil(len(text) / CHARS_PER_TOKEN[detected])
    return math.ceil(base * complexity_factor(text, detected))


def estimate_message(message: Message) -> int:
    """Tokens for a message's content plus any attached file text."""
    total = estimate_text(message.content)
    for attachment in message.attachments:
        total += estimate_text(attachment.content)
    return total


def usage_recommendation(utilization: float, warning_threshold: float) -> str | None:
    """Canned advice for a utilization level, or None below the threshold."""
    if utilization >= 1.0:
        return "Start a new session immediately: the model context limit is exceeded"
    if utilization >= 0.9:
        return "Strongly recommended: start a new session, the context limit is close"
    if utilization >= warning_threshold:
        return "Suggested: start a new session or compress the input"
    return None


def _coerce_messages(messages: Iterable[Message | Mapping[str, Any]]) -> list[Message]:
    return [m if isinstance(m, Message) else Message.model_validate(m) for m in messages]


def load_messages(path: Path) -> list[Message]:
    """Read a conversation from JSON: a list of messages or ``{"messages": [...]}``."""
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise MessageValidationError(f"cannot read {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise MessageValidationError(f"{path}: invalid JSON: {e}") from e

    if isinstance(raw, dict) and "messages" in raw:
        raw = raw["messages"]
    if not isinstance(raw, list):
        raise MessageValidationError(f"{path}: expected a list of messages")
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise MessageValidationError(
                f"{path}: messages[{index}] is {type(item).__name__}, expected an object"
            )
    try:
        return [Message.model_validate(item) for item in raw]
    except ValidationError as e:
        raise MessageValidationError(f"{path}: invalid message: {e}") from e


class ContextCheck(BaseModel):
    safe: bool
    estimated_tokens: int
    utilization: float
    warning: str | None = None
    recommendation: str | None = None


class MessageBreakdown(BaseModel):
    role: str
    preview: str
    tokens: int
    content_type: ContentType


class BatchEstimate(BaseModel):
    breakdown: list[MessageBreakdown]
    total_tokens: int
    average_tokens: float


class TokenEstimator:
    """Character-based token estimator with a per-model context limit table."""

    def __init__(
        self,
        model_limits: Mapping[str, int] | None = None,
        default_limit: int = DEFAULT_CONTEXT_LIMIT,
    ):
        self.model_limits = {**DEFAULT_MODEL_LIMITS, **(model_limits or {})}
        self.default_limit = default_limit

    def context_limit(self, model: str) -> int:
        """Context limit for ``model``: exact name, then longest known prefix, then default."""
        if model in self.model_limits:
            return self.model_limits[model]
        prefixes = [name for name in self.model_limits if model.startswith(name)]
        if prefixes:
            return self.model_limits[max(prefixes, key=len)]
        return self.default_limit

    def estimate_request(
        self,
        messages: Iterable[Message | Mapping[str, Any]],
        max_output_tokens: int = 4096,
        model: str = DEFAULT_MODEL,
        warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
    ) -> TokenEstimate:
        """Estimate a full request: all message input plus reserved output tokens."""
        if max_output_tokens < 0:
            raise ValueError("max_output_tokens must be >= 0")
        if not 0 < warning_threshold <= 1:
            raise ValueError("warning_threshold must be in (0, 1]")

        input_tokens = sum(estimate_message(m) for m in _coerce_messages(messages))
        limit = self.context_limit(model)
        total = input_tokens + max_output_tokens
        utilization = total / limit

        return TokenEstimate(
            input_tokens=input_tokens,
            output_tokens=max_output_tokens,
            total_tokens=total,
            utilization=utilization,
            exceeds_warning_threshold=utilization >= warning_threshold,
            recommended_max_tokens=max(
                MIN_RECOMMENDED_TOKENS,
                math.floor(limit * warning_threshold - input_tokens),
            ),
        )

    def safe_max_tokens(
        self,
        input_tokens: int,
        model: str = DEFAULT_MODEL,
        warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
    ) -> int:
        safe_limit = math.floor(self.context_limit(model) * warning_threshold)
        return max(MIN_RECOMMENDED_TOKENS, safe_limit - input_tokens)

    def check_context_limit(
        self,
        text: str,
        max_output_tokens: int = 4096,
        model: str = DEFAULT_MODEL,
        warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
    ) -> ContextCheck:
        """Check whether a single document plus reply would cross the threshold."""
        estimated = estimate_text(text)
        limit = self.context_limit(model)
        total = estimated + max_output_tokens
        utilization = total / limit
        safe = utilization < warning_threshold

        check = ContextCheck(safe=safe, estimated_tokens=estimated, utilization=utilization)
        if not safe:
            check.warning = f"Estimated utilization {utilization * 100:.1f}% ({total}/{limit} tokens)"
            check.recommendation = usage_recommendation(utilization, warning_threshold)
        return check

    @staticmethod
    def batch_estimate(messages: Iterable[Message | Mapping[str, Any]]) -> BatchEstimate:
        """Per-message token breakdown with total and average."""
        breakdown = []
        for message in _coerce_messages(messages):
            content_type = detect_content_type(message.content)
            preview = message.content[:100] + ("..." if len(message.content) > 100 else "")
            breakdown.append(MessageBreakdown(
                role=message.role,
                preview=preview,
                tokens=estimate_message(message),
                content_type=content_type,
            ))
        total = sum(item.tokens for item in breakdown)
        average = total / len(breakdown) if breakdown else 0.0
        return BatchEstimate(breakdown=breakdown, total_tokens=total, average_tokens=average)
