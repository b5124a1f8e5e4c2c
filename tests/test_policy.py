"""Tests for the retry/timeout policy wrapper."""

from __future__ import annotations

import asyncio

import pytest

from agent_cli.errors import VerificationError
from agent_cli.policy import is_retriable, run_with_policy


class Sleeps:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class TestIsRetriable:
    def test_default_retriable(self):
        assert is_retriable(VerificationError("exit code 1"))

    def test_flagged_not_retriable(self):
        assert not is_retriable(VerificationError("boom", retriable=False))

    @pytest.mark.parametrize("message", ["Permission denied", "fatal: not a git repository"])
    def test_keywords(self, message: str):
        assert not is_retriable(VerificationError(message))


class TestRunWithPolicy:
    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        async def op():
            return 42

        assert await run_with_policy(op, max_retries=3) == 42

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        sleeps = Sleeps()
        attempts = 0

        async def op():
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise VerificationError("flaky")
            return "ok"

        result = await run_with_policy(op, max_retries=3, backoff_base=2.0, sleep=sleeps)
        assert result == "ok"
        assert attempts == 3
        assert sleeps.calls == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_backoff_capped(self):
        sleeps = Sleeps()

        async def op():
            raise VerificationError("always")

        with pytest.raises(VerificationError, match="always"):
            await run_with_policy(op, max_retries=4, backoff_base=10.0, backoff_max=30.0, sleep=sleeps)
        assert sleeps.calls == [10.0, 30.0, 30.0, 30.0]

    @pytest.mark.asyncio
    async def test_non_retriable_stops(self):
        attempts = 0

        async def op():
            nonlocal attempts
            attempts += 1
            raise VerificationError("nope", retriable=False)

        with pytest.raises(VerificationError):
            await run_with_policy(op, max_retries=5, sleep=Sleeps())
        assert attempts == 1

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        attempts = 0

        async def op():
            nonlocal attempts
            attempts += 1
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await run_with_policy(op, max_retries=5, sleep=Sleeps())
        assert attempts == 1

    @pytest.mark.asyncio
    async def test_timeout_becomes_verification_error(self):
        async def op():
            await asyncio.sleep(10)

        with pytest.raises(VerificationError, match="timed out"):
            await run_with_policy(op, description="slow step", timeout=0.01, sleep=Sleeps())

    @pytest.mark.asyncio
    async def test_negative_retries_means_one_attempt(self):
        attempts = 0

        async def op():
            nonlocal attempts
            attempts += 1
            raise VerificationError("x")

        with pytest.raises(VerificationError):
            await run_with_policy(op, max_retries=-3, sleep=Sleeps())
        assert attempts == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self):
        attempts = 0

        async def op():
            nonlocal attempts
            attempts += 1
            raise VerificationError(f"attempt {attempts}")

        with pytest.raises(VerificationError, match="attempt 3"):
            await run_with_policy(op, max_retries=2, sleep=Sleeps())
        assert attempts == 3
