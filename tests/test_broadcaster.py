"""Tests for per-viewer stream delivery."""

import asyncio
import json

import pytest

from tests.helpers import make_job
from tinker_studio.core.errors import JobNotFoundError, ResourceExhaustedError
from tinker_studio.dashboard.services.broadcaster import (
    KEEPALIVE_FRAME,
    SSEEvent,
    StreamBroadcaster,
)
from tinker_studio.training.events import (
    DoneEvent,
    ErrorEvent,
    LogEvent,
    MetricEvent,
    StatusEvent,
)
from tinker_studio.training.models import JobStatus
from tinker_studio.training.registry import JobRegistry


def later(delay: float, fn, *args) -> None:
    asyncio.get_running_loop().call_later(delay, fn, *args)


class TestSSEEvent:
    """Test SSE frame formatting."""

    def test_data_only(self):
        """A bare event is one data line and a blank line."""
        assert SSEEvent(data='{"type": "done"}').format() == 'data: {"type": "done"}\n\n'

    def test_event_with_id_and_retry(self):
        """Optional fields precede the data line."""
        event = SSEEvent(data="x", event="status", id="7", retry=5000)

        assert event.format() == "id: 7\nretry: 5000\nevent: status\ndata: x\n\n"

    def test_from_event(self):
        """Typed events are serialized as JSON payloads."""
        frame = SSEEvent.from_event(StatusEvent(status="running")).format()

        assert frame.startswith("data: ")
        assert json.loads(frame[len("data: "):]) == {"type": "status", "status": "running"}


class TestStreamBroadcaster:
    """Test opening viewers."""

    def test_open_unknown_job(self, registry: JobRegistry):
        """Viewers can only be opened on existing jobs."""
        with pytest.raises(JobNotFoundError):
            StreamBroadcaster(registry).open("job_missing")

    def test_open_does_not_claim_a_slot(self, registry: JobRegistry):
        """A viewer that is never iterated holds no slot."""
        job = registry.create(make_job())
        broadcaster = StreamBroadcaster(registry, max_viewers=1)

        abandoned = broadcaster.open(job.job_id)
        abandoned.sse()

        assert broadcaster.viewer_count() == 0
        broadcaster.open(job.job_id)


@pytest.mark.asyncio
class TestViewerCap:
    """Test the global limit on delivering viewers."""

    async def test_viewer_cap(self, registry: JobRegistry):
        """The global viewer cap is enforced once a viewer is delivering."""
        job = registry.create(make_job())
        broadcaster = StreamBroadcaster(registry, heartbeat_seconds=5.0, max_viewers=1)
        events = broadcaster.open(job.job_id).events()
        await events.__anext__()

        with pytest.raises(ResourceExhaustedError):
            broadcaster.open(job.job_id)
        assert broadcaster.viewer_count() == 1
        assert broadcaster.viewer_count(job.job_id) == 1
        await events.aclose()

    async def test_cap_filled_before_first_event(self, registry: JobRegistry):
        """A viewer that finds the cap full on start ends with an error event."""
        job = registry.create(make_job())
        broadcaster = StreamBroadcaster(registry, heartbeat_seconds=5.0, max_viewers=1)
        first = broadcaster.open(job.job_id).events()
        second = broadcaster.open(job.job_id).events()
        await first.__anext__()

        assert [e async for e in second] == [
            ErrorEvent(message="Maximum stream viewers (1) reached")
        ]
        assert broadcaster.viewer_count() == 1
        await first.aclose()
        assert broadcaster.viewer_count() == 0


@pytest.mark.asyncio
class TestStreamViewer:
    """Test event delivery to a single viewer."""

    async def test_backlog_then_live_then_done(self, registry: JobRegistry):
        """A viewer sees status, backlog, live lines, final status and done, in order."""
        job = registry.create(make_job())
        registry.update(job.job_id, lambda j: j.append("Loading tokenizer..."))
        broadcaster = StreamBroadcaster(registry, heartbeat_seconds=5.0)
        events = broadcaster.open(job.job_id).events()

        assert await events.__anext__() == StatusEvent(status="running")
        assert await events.__anext__() == LogEvent(message="Loading tokenizer...")

        metric = 'METRIC::{"step": 1, "total_steps": 10, "loss": 2.0, "lr": 0.0001}'
        later(0.02, registry.update, job.job_id, lambda j: j.append(metric))
        assert isinstance(await events.__anext__(), MetricEvent)

        later(0.02, registry.update, job.job_id, lambda j: j.finish(JobStatus.COMPLETED, "bye"))
        assert await events.__anext__() == LogEvent(message="bye")
        assert await events.__anext__() == StatusEvent(status="completed")
        assert await events.__anext__() == DoneEvent()

        with pytest.raises(StopAsyncIteration):
            await events.__anext__()
        assert broadcaster.viewer_count() == 0

    async def test_finished_job_replays_and_closes(self, registry: JobRegistry):
        """A viewer opened after completion gets the whole log and done."""
        job = registry.create(make_job())
        registry.update(job.job_id, lambda j: j.append("a", "[ERROR] b"))
        registry.update(job.job_id, lambda j: j.finish(JobStatus.FAILED, "c"))

        events = [e async for e in StreamBroadcaster(registry).open(job.job_id).events()]

        assert events == [
            StatusEvent(status="failed"),
            LogEvent(message="a"),
            ErrorEvent(message="b"),
            LogEvent(message="c"),
            StatusEvent(status="failed"),
            DoneEvent(),
        ]

    async def test_viewers_opened_together_see_the_same_events(self, registry: JobRegistry):
        """Every viewer receives every line."""
        job = registry.create(make_job())
        registry.update(job.job_id, lambda j: j.append("one"))
        broadcaster = StreamBroadcaster(registry)
        first = broadcaster.open(job.job_id)
        second = broadcaster.open(job.job_id)
        registry.update(job.job_id, lambda j: j.finish(JobStatus.COMPLETED, "two"))

        first_events = [e async for e in first.events()]
        second_events = [e async for e in second.events()]

        assert first_events == second_events
        assert len(first_events) == 5

    async def test_heartbeat_when_idle(self, registry: JobRegistry):
        """An idle viewer yields None once per heartbeat interval."""
        job = registry.create(make_job())
        events = StreamBroadcaster(registry, heartbeat_seconds=0.05).open(job.job_id).events()

        assert await events.__anext__() == StatusEvent(status="running")
        assert await events.__anext__() is None
        await events.aclose()

    async def test_keepalive_frame_in_sse(self, registry: JobRegistry):
        """Heartbeats are sent as SSE comments."""
        job = registry.create(make_job())
        frames = StreamBroadcaster(registry, heartbeat_seconds=0.05).open(job.job_id).sse()

        assert (await frames.__anext__()).startswith("data: ")
        assert await frames.__anext__() == KEEPALIVE_FRAME
        await frames.aclose()

    async def test_job_disappears(self, registry: JobRegistry):
        """Eviction during a stream ends it with an error event."""
        job = registry.create(make_job())
        events = StreamBroadcaster(registry, heartbeat_seconds=5.0).open(job.job_id).events()
        await events.__anext__()

        later(0.02, registry.delete, job.job_id)

        assert await events.__anext__() == ErrorEvent(message="Job no longer exists")
        with pytest.raises(StopAsyncIteration):
            await events.__anext__()

    async def test_disconnect_releases_viewer(self, registry: JobRegistry):
        """Closing a stream early frees its slot and leaves the job running."""
        job = registry.create(make_job())
        broadcaster = StreamBroadcaster(registry, heartbeat_seconds=5.0, max_viewers=1)
        events = broadcaster.open(job.job_id).events()
        await events.__anext__()

        await events.aclose()

        assert broadcaster.viewer_count() == 0
        assert registry.get(job.job_id).status == JobStatus.RUNNING
        broadcaster.open(job.job_id)

    async def test_viewers_opened_at_different_times(self, registry: JobRegistry):
        """A late viewer replays the backlog and both follow live output without gaps."""
        job = registry.create(make_job())
        registry.update(job.job_id, lambda j: j.append("line 0"))
        broadcaster = StreamBroadcaster(registry, heartbeat_seconds=5.0)

        async def collect(viewer) -> list[str]:
            return [e.message async for e in viewer.events() if isinstance(e, LogEvent)]

        first = asyncio.create_task(collect(broadcaster.open(job.job_id)))
        for i in range(1, 4):
            await asyncio.sleep(0.01)
            registry.update(job.job_id, lambda j, i=i: j.append(f"line {i}"))

        second = asyncio.create_task(collect(broadcaster.open(job.job_id)))
        for i in range(4, 8, 2):
            await asyncio.sleep(0.01)
            registry.update(job.job_id, lambda j, i=i: j.append(f"line {i}", f"line {i + 1}"))
        await asyncio.sleep(0.01)
        registry.update(job.job_id, lambda j: j.finish(JobStatus.COMPLETED, "line 8"))

        first_lines, second_lines = await asyncio.wait_for(asyncio.gather(first, second), 5.0)

        expected = [f"line {i}" for i in range(9)]
        assert first_lines == expected
        assert second_lines == expected
        assert broadcaster.viewer_count() == 0

    async def test_unbounded_metric_values_do_not_break_replay(self, registry: JobRegistry):
        """A backlog holding an infinite ETA still streams through to done."""
        job = registry.create(make_job())
        line = (
            'METRIC::{"step": 1, "total_steps": 2, "loss": 0.5, "lr": 0.1, '
            '"eta_seconds": 1e400}'
        )
        registry.update(job.job_id, lambda j: j.append(line))
        registry.update(job.job_id, lambda j: j.finish(JobStatus.COMPLETED))

        frames = [f async for f in StreamBroadcaster(registry).open(job.job_id).sse()]

        payloads = [json.loads(f[len("data: "):]) for f in frames]
        assert payloads[1]["type"] == "metric"
        assert payloads[-1] == {"type": "done"}
