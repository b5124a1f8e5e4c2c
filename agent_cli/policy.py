"""Retry, timeout and cancellation policy for external commands."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .errors import VerificationError
from .logging_config import get_logger

T = TypeVar("T")

NON_RETRIABLE_KEYWORDS = [
    "permission denied",
    "eacces",
    "authentication required",
    "not a git repository",
    "command not found",
]


def is_retriable(error: BaseException) -> bool:
    """Determine if an error warrants a retry."""
    if not getattr(error, "retriable", True):
        return False
    message = str(error).lower()
    return not any(kw in message for kw in NON_RETRIABLE_KEYWORDS)


async def run_with_policy(
    operation: Callable[[], Awaitable[T]],
    *,
    description: str = "operation",
    max_retries: int = 0,
    timeout: float | None = None,
    backoff_base: float = 2.0,
    backoff_max: float = 60.0,
    retry_if: Callable[[BaseException], bool] = is_retriable,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    logger: logging.Logger | None = None,
) -> T:
    """Await ``operation()`` with a per-attempt timeout and exponential backoff.

    Only ``VerificationError`` and timeouts are retried; any other exception,
    including cancellation, propagates immediately. The last error is raised
    once retries are exhausted or an error is not retriable.
    """
    log = logger or get_logger("policy")
    max_retries = max(0, max_retries)
    attempt = 0

    while True:
        try:
            if timeout is None:
                return await operation()
            return await asyncio.wait_for(operation(), timeout)
        except asyncio.TimeoutError:
            error = VerificationError(f"{description} timed out after {timeout:.0f}s")
        except VerificationError as e:
            error = e

        attempt += 1
        log.warning(f"Attempt {attempt} of {description} failed: {error}")
        if not retry_if(error):
            log.error(f"Non-retriable error in {description}. Stopping retries.")
            raise error
        if attempt > max_retries:
            raise error

        backoff = min(backoff_base ** attempt, backoff_max)
        log.info(f"Retry {attempt}/{max_retries} for {description} (backoff: {backoff:.1f}s)")
        await sleep(backoff)
