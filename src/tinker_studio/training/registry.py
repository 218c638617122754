"""The in-memory table of jobs and its change notifications.

All code paths that touch a job (process output readers, HTTP handlers,
timers) run on one asyncio event loop. Each mutation happens inside a
synchronous :meth:`JobRegistry.update` call with no await in between, so
read-modify-write is atomic without locks. Callers always address jobs by
id and never hold on to a :class:`Job` across an await.

Storage sits behind the :class:`JobStore` protocol so the table can be
replaced without touching the supervisor or the stream layer.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator
from typing import Protocol

from tinker_studio.core.logging import get_logger
from tinker_studio.training.models import Job

_logger = get_logger("registry")


class JobStore(Protocol):
    """Key-value storage for job records."""

    def get(self, job_id: str) -> Job | None: ...

    def put(self, job: Job) -> None: ...

    def delete(self, job_id: str) -> bool: ...

    def ids(self) -> Iterator[str]: ...

    def __len__(self) -> int: ...


class InMemoryJobStore:
    """Dict-backed store for a single server process."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    def get(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def put(self, job: Job) -> None:
        self._jobs[job.job_id] = job

    def delete(self, job_id: str) -> bool:
        return self._jobs.pop(job_id, None) is not None

    def ids(self) -> Iterator[str]:
        return iter(list(self._jobs))

    def __len__(self) -> int:
        return len(self._jobs)


class JobRegistry:
    """Authoritative job table with a per-job change channel.

    Every ``create``/``update``/``delete`` wakes the coroutines waiting in
    :meth:`wait_for_change` for that job id, so stream viewers react to new
    output without polling.
    """

    def __init__(self, store: JobStore | None = None) -> None:
        self._store: JobStore = store if store is not None else InMemoryJobStore()
        self._signals: dict[str, asyncio.Event] = {}

    def create(self, job: Job) -> Job:
        """Insert a new job.

        Raises:
            ValueError: If a job with the same id already exists.
        """
        if self._store.get(job.job_id) is not None:
            raise ValueError(f"job {job.job_id} already exists")
        self._store.put(job)
        self._notify(job.job_id)
        return job

    def get(self, job_id: str) -> Job | None:
        return self._store.get(job_id)

    def update(self, job_id: str, fn: Callable[[Job], object]) -> Job | None:
        """Apply ``fn`` to the current record for ``job_id``.

        The record is re-read by id on every call, so a callback scheduled
        before an eviction never resurrects or mutates a stale object.

        Args:
            job_id: Job to mutate.
            fn: Synchronous mutation; its return value is ignored.

        Returns:
            The updated job, or None if the job no longer exists.
        """
        job = self._store.get(job_id)
        if job is None:
            return None
        fn(job)
        self._store.put(job)
        self._notify(job_id)
        return job

    def delete(self, job_id: str) -> bool:
        removed = self._store.delete(job_id)
        # Wake viewers so they observe the disappearance
        self._notify(job_id)
        if removed:
            _logger.debug("job_deleted", job_id=job_id)
        return removed

    def ids(self) -> list[str]:
        return list(self._store.ids())

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, job_id: object) -> bool:
        return isinstance(job_id, str) and self._store.get(job_id) is not None

    async def wait_for_change(self, job_id: str, timeout: float | None = None) -> bool:
        """Suspend until the job is created, updated or deleted.

        Args:
            job_id: Job to watch.
            timeout: Maximum seconds to wait; None waits indefinitely.

        Returns:
            True if a change happened, False on timeout.
        """
        signal = self._signals.get(job_id)
        if signal is None:
            signal = self._signals[job_id] = asyncio.Event()
        try:
            await asyncio.wait_for(signal.wait(), timeout)
        except TimeoutError:
            return False
        return True

    def _notify(self, job_id: str) -> None:
        signal = self._signals.pop(job_id, None)
        if signal is not None:
            signal.set()
