"""Exponential backoff used when retrying writes to the cluster."""

import asyncio
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
import logging
import random
from typing import TypeVar

from .exceptions import ConflictError

__all__ = [
    "Backoff",
    "DEFAULT_BACKOFF",
    "retry_on_conflict",
]

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")


@dataclass(frozen=True)
class Backoff:
    """A bounded exponential backoff policy."""

    steps: int = 4
    """Total number of attempts."""

    duration: float = 0.01
    """Seconds to wait before the second attempt."""

    factor: float = 5.0
    """Multiplier applied to the wait after every attempt."""

    jitter: float = 0.1
    """Random fraction of the wait added to it."""

    def delays(self) -> Iterator[float]:
        """Yield the wait before each retry."""
        duration = self.duration
        for _ in range(self.steps - 1):
            yield duration + random.uniform(0, duration * self.jitter)
            duration *= self.factor


DEFAULT_BACKOFF = Backoff()


async def retry_on_conflict(
    backoff: Backoff, func: Callable[[], Awaitable[_T]]
) -> _T:
    """Call the function until it succeeds without a `ConflictError`.

    The last `ConflictError` is raised when all attempts are exhausted, any
    other error is raised immediately.
    """
    for delay in backoff.delays():
        try:
            return await func()
        except ConflictError as err:
            _LOGGER.debug("Retrying in %.3fs after conflict: %s", delay, err)
        await asyncio.sleep(delay)
    return await func()
