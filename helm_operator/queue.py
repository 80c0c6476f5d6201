"""A work queue of HelmReleases to reconcile.

Keys are the namespaced names of HelmReleases. A key is queued at most once
and is never handed to two workers at the same time: a key added while it is
being processed is queued again once the worker is done with it. Failed keys
may be added again after a per key exponential backoff.
"""

import asyncio
from collections import deque
import logging

from .exceptions import QueueShutDownError

__all__ = [
    "ReleaseQueue",
]

_LOGGER = logging.getLogger(__name__)

BASE_DELAY = 0.005
MAX_DELAY = 1000.0


class ReleaseQueue:
    """A deduplicating, rate limited queue of keys."""

    def __init__(self, base_delay: float = BASE_DELAY, max_delay: float = MAX_DELAY):
        """Initialize ReleaseQueue."""
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._timers: set[asyncio.TimerHandle] = set()
        self._ready = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        """Whether the queue was shut down."""
        return self._shutting_down

    def add(self, key: str) -> None:
        """Queue the key unless it is already waiting to be processed."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._ready.set()

    def add_after(self, key: str, delay: float) -> None:
        """Queue the key once the delay in seconds has passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        timer: asyncio.TimerHandle

        def fire() -> None:
            self._timers.discard(timer)
            self.add(key)

        timer = loop.call_later(delay, fire)
        self._timers.add(timer)

    def add_rate_limited(self, key: str) -> None:
        """Queue the key after a delay that grows with each failure."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self._base_delay * 2**failures, self._max_delay)
        _LOGGER.debug("Requeueing %s in %.3fs", key, delay)
        self.add_after(key, delay)

    def forget(self, key: str) -> None:
        """Reset the failures of the key."""
        self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        """Return how many times the key was requeued after a failure."""
        return self._failures.get(key, 0)

    async def get(self) -> str:
        """Wait for the next key and mark it as being processed.

        Raises `QueueShutDownError` once the queue is shut down.
        """
        while True:
            if self._shutting_down:
                raise QueueShutDownError("Queue was shut down")
            if self._queue:
                key = self._queue.popleft()
                self._dirty.discard(key)
                self._processing.add(key)
                return key
            self._ready.clear()
            await self._ready.wait()

    def done(self, key: str) -> None:
        """Mark the key as processed, queueing it again if it was added since."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.append(key)
            self._ready.set()

    def shut_down(self) -> None:
        """Stop handing out keys and wake up all waiting workers."""
        self._shutting_down = True
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        self._ready.set()
