"""Job records tracked by the registry."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tinker_studio.training.pipeline import PipelineConfig


class JobStatus(str, Enum):
    """Lifecycle status of a training job."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING


def new_job_id() -> str:
    """Generate an unguessable job id (uuid4 draws from ``os.urandom``)."""
    return f"job_{uuid.uuid4()}"


@dataclass
class Job:
    """One execution of a worker process plus its accumulated output.

    ``status`` only moves forward: once terminal, :meth:`finish` refuses
    further transitions, so whichever terminal write arrives first wins.
    ``log`` is append-only and is never truncated while the job exists.

    Attributes:
        job_id: Registry key, ``job_<uuid4>``.
        owner_credential: SHA-256 hex digest of the credential that started
            the job. The raw credential is never stored.
        config_snapshot: Frozen configuration the program was generated from.
        status: Current lifecycle status.
        started_at: Epoch seconds when the job was created.
        completed_at: Epoch seconds of the terminal transition.
        log: Raw output lines in arrival order.
        workdir: Private working directory holding the program.
        pid: Worker process id, once launched.
    """

    job_id: str
    owner_credential: str
    config_snapshot: PipelineConfig | None = None
    status: JobStatus = JobStatus.RUNNING
    started_at: float = field(default_factory=time.time)
    completed_at: float | None = None
    log: list[str] = field(default_factory=list)
    workdir: Path | None = None
    pid: int | None = None

    def append(self, *lines: str) -> None:
        self.log.extend(lines)

    def finish(self, status: JobStatus, *lines: str) -> bool:
        """Move to a terminal status if the job is still running.

        Args:
            status: Terminal status to record.
            *lines: Log lines appended only when the transition happens.

        Returns:
            True if this call performed the transition, False if the job had
            already reached a terminal status.

        Raises:
            ValueError: If ``status`` is not terminal.
        """
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        if self.status.is_terminal:
            return False
        self.status = status
        self.completed_at = time.time()
        self.log.extend(lines)
        return True

    def summary(self) -> dict[str, Any]:
        """Status payload reported by the status endpoint."""
        return {
            "exists": True,
            "status": self.status.value,
            "logsCount": len(self.log),
            "startedAt": int(self.started_at * 1000),
        }
