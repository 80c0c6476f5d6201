"""Tests for retrying writes with a backoff."""

import pytest

from helm_operator.backoff import DEFAULT_BACKOFF, Backoff, retry_on_conflict
from helm_operator.exceptions import ConflictError, KubectlException


def test_default_delays() -> None:
    """Test the delays grow by the factor with a bounded jitter."""
    delays = list(DEFAULT_BACKOFF.delays())
    assert len(delays) == 3
    for delay, expected in zip(delays, [0.01, 0.05, 0.25]):
        assert expected * 0.999 <= delay <= expected * 1.101


async def test_retry_until_success() -> None:
    """Test conflicts are retried until the call succeeds."""
    attempts = 0

    async def func() -> str:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise ConflictError("modified")
        return "ok"

    assert await retry_on_conflict(Backoff(duration=0.001), func) == "ok"
    assert attempts == 3


async def test_retries_exhausted() -> None:
    """Test the last conflict is raised after all attempts."""
    attempts = 0

    async def func() -> None:
        nonlocal attempts
        attempts += 1
        raise ConflictError(f"attempt {attempts}")

    with pytest.raises(ConflictError, match="attempt 2"):
        await retry_on_conflict(Backoff(steps=2, duration=0.001), func)


async def test_other_errors_not_retried() -> None:
    """Test errors other than conflicts are raised immediately."""
    attempts = 0

    async def func() -> None:
        nonlocal attempts
        attempts += 1
        raise KubectlException("forbidden")

    with pytest.raises(KubectlException, match="forbidden"):
        await retry_on_conflict(Backoff(duration=0.001), func)
    assert attempts == 1
