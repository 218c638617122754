"""Per-viewer event feeds over a job's output.

Each viewer keeps its own cursor into ``Job.log``. On open it receives a
status event and the whole backlog, then every new line as it arrives,
then a final status and ``done`` once the job is terminal. Viewers sleep
on the registry's change channel between updates and never poll.
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from tinker_studio.core import constants
from tinker_studio.core.errors import (
    JobNotFoundError,
    ResourceExhaustedError,
    StreamLostError,
)
from tinker_studio.core.logging import get_logger
from tinker_studio.training.events import DoneEvent, ErrorEvent, Event, StatusEvent
from tinker_studio.training.parser import parse_line
from tinker_studio.training.registry import JobRegistry

_logger = get_logger("stream")

KEEPALIVE_FRAME = ": keepalive\n\n"


@dataclass
class SSEEvent:
    """An SSE frame."""

    data: str
    event: str | None = None
    id: str | None = None
    retry: int | None = None

    def format(self) -> str:
        """Format as SSE wire format."""
        lines = []
        if self.id:
            lines.append(f"id: {self.id}")
        if self.retry:
            lines.append(f"retry: {self.retry}")
        if self.event:
            lines.append(f"event: {self.event}")
        for line in self.data.split("\n"):
            lines.append(f"data: {line}")
        lines.append("")
        return "\n".join(lines) + "\n"

    @classmethod
    def from_event(cls, event: Event) -> SSEEvent:
        return cls(data=json.dumps(event.to_payload()))


@dataclass
class StreamViewer:
    """One open stream on one job."""

    job_id: str
    registry: JobRegistry
    broadcaster: StreamBroadcaster
    heartbeat_seconds: float
    viewer_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    opened_at: float = field(default_factory=time.time)
    cursor: int = 0
    finished: bool = False

    async def events(self) -> AsyncIterator[Event | None]:
        """Yield events for this viewer; ``None`` marks an idle heartbeat.

        The viewer takes its slot when the first event is requested, so a
        viewer that is opened but never iterated holds nothing. The
        generator ends after ``done`` or after reporting that the job
        disappeared. Closing it early (viewer disconnect) releases the
        viewer slot.
        """
        if not self.broadcaster.attach(self):
            self.finished = True
            yield ErrorEvent(message=self.broadcaster.capacity_message)
            return
        try:
            job = self.registry.get(self.job_id)
            if job is None:
                self.finished = True
                yield ErrorEvent(message=constants.JOB_MISSING_MESSAGE)
                return
            yield StatusEvent(status=job.status.value)

            while True:
                job = self.registry.get(self.job_id)
                if job is None:
                    self.finished = True
                    yield ErrorEvent(message=constants.JOB_MISSING_MESSAGE)
                    return

                if len(job.log) > self.cursor:
                    batch = job.log[self.cursor:]
                    self.cursor += len(batch)
                    for line in batch:
                        yield parse_line(line)
                    # Re-read before waiting: more may have arrived meanwhile
                    continue

                if job.status.is_terminal:
                    self.finished = True
                    yield StatusEvent(status=job.status.value)
                    yield DoneEvent()
                    return

                # No await between the checks above and registering the
                # wait, so a change cannot slip through unnoticed
                changed = await self.registry.wait_for_change(
                    self.job_id, self.heartbeat_seconds
                )
                if not changed:
                    yield None
        finally:
            self.broadcaster.release(self)

    async def sse(self) -> AsyncIterator[str]:
        """Yield formatted SSE frames for this viewer."""
        async for event in self.events():
            if event is None:
                yield KEEPALIVE_FRAME
            else:
                yield SSEEvent.from_event(event).format()


class StreamBroadcaster:
    """Opens viewers on jobs and enforces the global viewer cap.

    Args:
        registry: Job table to read from.
        heartbeat_seconds: Idle interval after which a keep-alive is sent.
        max_viewers: Maximum viewers open at once across all jobs.
    """

    def __init__(
        self,
        registry: JobRegistry,
        *,
        heartbeat_seconds: float = constants.STREAM_HEARTBEAT_SECONDS,
        max_viewers: int = constants.STREAM_MAX_VIEWERS,
    ) -> None:
        self._registry = registry
        self._heartbeat = heartbeat_seconds
        self._max_viewers = max_viewers
        self._viewers: dict[str, StreamViewer] = {}

    def open(self, job_id: str) -> StreamViewer:
        """Open a viewer on ``job_id``.

        The cap counts viewers that are delivering events; the returned
        viewer claims its slot once iteration starts.

        Raises:
            JobNotFoundError: If the job does not exist.
            ResourceExhaustedError: If the viewer cap is reached.
        """
        if self._registry.get(job_id) is None:
            raise JobNotFoundError(job_id)
        if len(self._viewers) >= self._max_viewers:
            _logger.warning("stream_rejected", job_id=job_id, max_viewers=self._max_viewers)
            raise ResourceExhaustedError(self.capacity_message)
        return StreamViewer(
            job_id=job_id,
            registry=self._registry,
            broadcaster=self,
            heartbeat_seconds=self._heartbeat,
        )

    @property
    def capacity_message(self) -> str:
        return f"Maximum stream viewers ({self._max_viewers}) reached"

    def attach(self, viewer: StreamViewer) -> bool:
        """Claim a slot for a viewer that is starting delivery.

        Returns:
            False if the cap filled up between :meth:`open` and the first
            event.
        """
        if len(self._viewers) >= self._max_viewers:
            _logger.warning(
                "stream_rejected", job_id=viewer.job_id, max_viewers=self._max_viewers
            )
            return False
        self._viewers[viewer.viewer_id] = viewer
        _logger.info("stream_opened", job_id=viewer.job_id, viewer_id=viewer.viewer_id)
        return True

    def release(self, viewer: StreamViewer) -> None:
        if self._viewers.pop(viewer.viewer_id, None) is None:
            return
        job = self._registry.get(viewer.job_id)
        if not viewer.finished and job is not None and not job.status.is_terminal:
            _logger.info(
                "stream_lost",
                code=StreamLostError.code,
                job_id=viewer.job_id,
                viewer_id=viewer.viewer_id,
                delivered=viewer.cursor,
            )
        else:
            _logger.debug("stream_closed", job_id=viewer.job_id, viewer_id=viewer.viewer_id)

    def viewer_count(self, job_id: str | None = None) -> int:
        if job_id is None:
            return len(self._viewers)
        return sum(1 for v in self._viewers.values() if v.job_id == job_id)
