"""Task tracking service for the operator.

Long running loops (mirror pollers, workers, resync) are background tasks
that run until the operator shuts down.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Coroutine
import logging
from typing import Any

_LOGGER = logging.getLogger(__name__)

__all__: list[str] = []


class TaskService(ABC):
    """Service for tracking asynchronous tasks."""

    @abstractmethod
    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new task that runs until cancelled."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Cancel all background tasks and wait for them to exit."""


class TaskServiceImpl(TaskService):
    """Service for tracking asynchronous tasks."""

    def __init__(self) -> None:
        """Initialize the task service."""
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new task that runs until cancelled."""
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        """Callback when a task is done."""
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        if (err := task.exception()) is not None:
            _LOGGER.error("Task %s failed: %s", task.get_name(), err, exc_info=err)

    async def shutdown(self) -> None:
        """Cancel all background tasks and wait for them to exit."""
        tasks = list(self._background_tasks)
        _LOGGER.debug("Cancelling %d background tasks", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
