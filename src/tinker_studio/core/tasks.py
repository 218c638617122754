"""Helpers for background asyncio tasks.

Timers and output readers run as fire-and-forget tasks. ``BackgroundTasks``
here keeps strong references to them, surfaces their exceptions in the
log and cancels whatever is left at shutdown.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any


def log_task_exception(
    task: asyncio.Task[Any],
    logger: Any,
    event: str,
    *,
    level: str = "error",
) -> BaseException | None:
    """Extract and log an exception from a completed task.

    Args:
        task: The completed task to inspect.
        logger: A structlog or stdlib logger.
        event: Structlog-style event name (e.g. ``"supervisor.task_failed"``).
        level: Log method name, ``"error"`` (default) or ``"warning"``.

    Returns:
        The exception if one was raised, None if the task completed
        normally or was cancelled.
    """
    if task.cancelled():
        return None
    exc = task.exception()
    if exc is not None:
        log_fn = getattr(logger, level, logger.error)
        log_fn(event, error=str(exc), task_name=task.get_name())
    return exc


class BackgroundTasks:
    """A set of tracked fire-and-forget tasks.

    Args:
        logger: Logger used for task failures.
        event: Event name logged when a task raises.
    """

    def __init__(self, logger: Any, event: str) -> None:
        self._logger = logger
        self._event = event
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        log_task_exception(task, self._logger, self._event)

    def __len__(self) -> int:
        return len(self._tasks)

    async def cancel_all(self) -> None:
        """Cancel every pending task and wait for them to finish."""
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
