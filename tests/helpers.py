"""Shared helpers for Tinker Studio tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from tinker_studio.training.models import Job, new_job_id
from tinker_studio.training.registry import JobRegistry

VALID_CREDENTIAL = "tk_live_abcdefghijklmnopqrstuvwxyz0123"
OTHER_CREDENTIAL = "tk_live_zyxwvutsrqponmlkjihgfedcba9876"


def make_job(owner: str = "0" * 64, **kwargs) -> Job:
    """Build a running job with a fresh id."""
    return Job(job_id=kwargs.pop("job_id", new_job_id()), owner_credential=owner, **kwargs)


async def wait_until(
    predicate: Callable[[], bool], timeout: float = 10.0, interval: float = 0.02
) -> None:
    """Poll ``predicate`` on the event loop until it holds or ``timeout`` passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(interval)


async def wait_for_terminal(registry: JobRegistry, job_id: str, timeout: float = 10.0) -> Job:
    """Wait until a job reaches a terminal status and return it."""
    def done() -> bool:
        job = registry.get(job_id)
        return job is not None and job.status.is_terminal

    await wait_until(done, timeout)
    job = registry.get(job_id)
    assert job is not None
    return job
