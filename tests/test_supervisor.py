"""Tests for the worker process supervisor.

These run real, short-lived child interpreters (``sys.executable``).
"""

import stat
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from tests.helpers import VALID_CREDENTIAL, wait_for_terminal, wait_until
from tinker_studio.core import constants
from tinker_studio.core.config import ResourceLimits
from tinker_studio.core.errors import (
    DependencyUnavailableError,
    InvalidJobStateError,
    JobNotFoundError,
)
from tinker_studio.training.models import JobStatus
from tinker_studio.training.registry import JobRegistry
from tinker_studio.training.supervisor import ProcessSupervisor, worker_environment

OWNER = "f" * 64

SLEEPER = "import time\nprint('ready', flush=True)\ntime.sleep(30)\n"

STUBBORN = (
    "import signal, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "print('ready', flush=True)\n"
    "time.sleep(30)\n"
)


def _has_line(registry: JobRegistry, job_id: str, line: str):
    def check() -> bool:
        job = registry.get(job_id)
        return job is not None and line in job.log

    return check


@pytest.mark.asyncio
class TestProcessLifecycle:
    """Test launching workers and recording their exit."""

    async def test_successful_run(self, supervisor: ProcessSupervisor, registry: JobRegistry):
        """Stdout is captured and exit code 0 completes the job."""
        job = await supervisor.spawn(
            "print('hello')\nprint('world')\n", worker_environment(VALID_CREDENTIAL),
            owner_credential=OWNER,
        )
        try:
            finished = await wait_for_terminal(registry, job.job_id)

            assert finished.status == JobStatus.COMPLETED
            assert finished.log == ["hello", "world", constants.MSG_COMPLETED]
            assert finished.pid is not None
            assert finished.owner_credential == OWNER
        finally:
            await supervisor.shutdown()

    async def test_stderr_lines_are_marked(
        self, supervisor: ProcessSupervisor, registry: JobRegistry
    ):
        """Stderr lines are prefixed with [ERROR]; blank lines are skipped."""
        program = "import sys\nprint('oops', file=sys.stderr)\nprint('')\nprint('done')\n"
        job = await supervisor.spawn(
            program, worker_environment(VALID_CREDENTIAL), owner_credential=OWNER
        )
        try:
            finished = await wait_for_terminal(registry, job.job_id)

            assert "[ERROR] oops" in finished.log
            assert "done" in finished.log
            assert "" not in finished.log
        finally:
            await supervisor.shutdown()

    async def test_nonzero_exit_fails(self, supervisor: ProcessSupervisor, registry: JobRegistry):
        """A non-zero exit marks the job failed with the exit code."""
        job = await supervisor.spawn("import sys\nsys.exit(3)\n", {}, owner_credential=OWNER)
        try:
            finished = await wait_for_terminal(registry, job.job_id)

            assert finished.status == JobStatus.FAILED
            assert finished.log[-1] == "Training failed with exit code 3"
        finally:
            await supervisor.shutdown()

    async def test_output_handling_error_recorded(
        self, supervisor: ProcessSupervisor, registry: JobRegistry
    ):
        """A failure while recording a line is logged on the job and the exit still lands."""
        original = supervisor._append

        def flaky_append(job_id: str, line: str) -> None:
            if line == "boom":
                raise RuntimeError("store unavailable at /home/alice/x")
            original(job_id, line)

        with patch.object(supervisor, "_append", side_effect=flaky_append):
            job = await supervisor.spawn(
                "print('boom')\nprint('after')\n", {}, owner_credential=OWNER
            )
            try:
                finished = await wait_for_terminal(registry, job.job_id)
            finally:
                await supervisor.shutdown()

        assert finished.status == JobStatus.COMPLETED
        assert "[ERROR] Output handling failed: store unavailable at /home/***/x" in finished.log
        assert "after" in finished.log
        assert finished.log[-1] == constants.MSG_COMPLETED

    async def test_credential_only_in_environment(
        self, supervisor: ProcessSupervisor, registry: JobRegistry
    ):
        """The worker reads the credential from its environment, not its source."""
        program = "import os\nprint(len(os.environ['TINKER_API_KEY']))\n"
        job = await supervisor.spawn(
            program, worker_environment(VALID_CREDENTIAL), owner_credential=OWNER
        )
        try:
            finished = await wait_for_terminal(registry, job.job_id)

            assert finished.log[0] == str(len(VALID_CREDENTIAL))
            script = Path(job.workdir) / constants.WORKER_SCRIPT_NAME
            assert VALID_CREDENTIAL not in script.read_text()
        finally:
            await supervisor.shutdown()

    async def test_workdir_is_private(self, supervisor: ProcessSupervisor, registry: JobRegistry):
        """The program file is readable by its owner only."""
        job = await supervisor.spawn("print(1)\n", {}, owner_credential=OWNER)
        try:
            await wait_for_terminal(registry, job.job_id)
            script = Path(job.workdir) / constants.WORKER_SCRIPT_NAME

            assert script.read_text() == "print(1)\n"
            assert stat.S_IMODE(script.stat().st_mode) == 0o600
            assert stat.S_IMODE(Path(job.workdir).stat().st_mode) == 0o700
        finally:
            await supervisor.shutdown()

    @pytest.mark.skipif(sys.platform != "linux", reason="RLIMIT_AS is enforced on Linux")
    async def test_memory_ceiling_applied(self, registry: JobRegistry, workspace: Path):
        """Workers run under the configured address-space limit."""
        supervisor = ProcessSupervisor(
            registry,
            workspace_root=workspace,
            python_executable=sys.executable,
            limits=ResourceLimits(memory_limit_mb=1024),
        )
        program = "import resource\nprint(resource.getrlimit(resource.RLIMIT_AS)[0])\n"
        job = await supervisor.spawn(program, {}, owner_credential=OWNER)
        try:
            finished = await wait_for_terminal(registry, job.job_id)

            assert int(finished.log[0]) <= 1024 * 1024 * 1024
        finally:
            await supervisor.shutdown()

    async def test_launch_failure_recorded_on_job(self, registry: JobRegistry, workspace: Path):
        """A missing interpreter fails the job instead of raising."""
        supervisor = ProcessSupervisor(
            registry,
            workspace_root=workspace,
            python_executable="/nonexistent/bin/python3",
        )
        job = await supervisor.spawn("print(1)\n", {}, owner_credential=OWNER)
        try:
            failed = registry.get(job.job_id)

            assert failed.status == JobStatus.FAILED
            assert failed.log[0].startswith("[ERROR] Failed to start training:")
        finally:
            await supervisor.shutdown()


@pytest.mark.asyncio
class TestStop:
    """Test stopping running workers."""

    async def test_stop_cancels_job(self, supervisor: ProcessSupervisor, registry: JobRegistry):
        """Stop marks the job cancelled and the later exit does not override it."""
        job = await supervisor.spawn(SLEEPER, {}, owner_credential=OWNER)
        try:
            await wait_until(_has_line(registry, job.job_id, "ready"))

            stopped = await supervisor.stop(job.job_id)
            assert stopped.status == JobStatus.CANCELLED

            await wait_until(lambda: not supervisor.is_alive(job.job_id))
            await wait_until(lambda: job.job_id not in supervisor._processes)

            final = registry.get(job.job_id)
            assert final.status == JobStatus.CANCELLED
            assert constants.MSG_STOP_REQUESTED in final.log
            assert not any(line.startswith("Training failed") for line in final.log)
        finally:
            await supervisor.shutdown()

    async def test_force_kill_after_grace(self, registry: JobRegistry, workspace: Path):
        """A worker ignoring SIGTERM is killed once the grace period ends."""
        supervisor = ProcessSupervisor(
            registry,
            workspace_root=workspace,
            python_executable=sys.executable,
            limits=ResourceLimits(memory_limit_mb=None, stop_grace_seconds=0.3),
        )
        job = await supervisor.spawn(STUBBORN, {}, owner_credential=OWNER)
        try:
            await wait_until(_has_line(registry, job.job_id, "ready"))

            await supervisor.stop(job.job_id)
            await wait_until(_has_line(registry, job.job_id, constants.MSG_FORCE_KILLED))

            assert registry.get(job.job_id).status == JobStatus.CANCELLED
            await wait_until(lambda: not supervisor.is_alive(job.job_id))
        finally:
            await supervisor.shutdown()

    async def test_stop_unknown_job(self, supervisor: ProcessSupervisor):
        """Stopping a missing job raises JobNotFoundError."""
        with pytest.raises(JobNotFoundError):
            await supervisor.stop("job_00000000-0000-4000-8000-000000000000")

    async def test_stop_finished_job(self, supervisor: ProcessSupervisor, registry: JobRegistry):
        """Stopping a finished job is an invalid state."""
        job = await supervisor.spawn("print(1)\n", {}, owner_credential=OWNER)
        try:
            await wait_for_terminal(registry, job.job_id)

            with pytest.raises(InvalidJobStateError, match="already completed"):
                await supervisor.stop(job.job_id)
        finally:
            await supervisor.shutdown()


@pytest.mark.asyncio
class TestEviction:
    """Test removal of finished jobs."""

    async def test_terminal_job_evicted_after_grace(self, registry: JobRegistry, workspace: Path):
        """Finished jobs and their directories disappear after the grace window."""
        supervisor = ProcessSupervisor(
            registry,
            workspace_root=workspace,
            python_executable=sys.executable,
            limits=ResourceLimits(memory_limit_mb=None),
            eviction_grace_seconds=0.1,
        )
        job = await supervisor.spawn("print(1)\n", {}, owner_credential=OWNER)
        try:
            await wait_until(lambda: job.job_id not in registry)

            assert not Path(job.workdir).exists()
        finally:
            await supervisor.shutdown()

    async def test_running_job_not_evicted(self, supervisor: ProcessSupervisor, registry: JobRegistry):
        """evict() refuses running jobs."""
        job = await supervisor.spawn(SLEEPER, {}, owner_credential=OWNER)
        try:
            assert supervisor.evict(job.job_id) is False
            assert job.job_id in registry
        finally:
            await supervisor.shutdown()


@pytest.mark.asyncio
class TestInterpreterProbe:
    """Test the interpreter availability check."""

    async def test_available(self, supervisor: ProcessSupervisor):
        """The test interpreter reports its version."""
        version = await supervisor.check_available()

        assert version.startswith("Python 3")

    async def test_missing_interpreter(self, registry: JobRegistry, workspace: Path):
        """A missing interpreter raises DependencyUnavailableError."""
        supervisor = ProcessSupervisor(
            registry, workspace_root=workspace, python_executable="/nonexistent/bin/python3"
        )

        with pytest.raises(DependencyUnavailableError) as exc_info:
            await supervisor.check_available()

        assert exc_info.value.code == "PYTHON_NOT_AVAILABLE"
        assert exc_info.value.http_status == 503


class TestWorkerEnvironment:
    """Test the worker environment builder."""

    def test_sets_credential_and_flags(self):
        """The credential and output flags are added to the base environment."""
        env = worker_environment(VALID_CREDENTIAL, base={"PATH": "/usr/bin"})

        assert env == {
            "PATH": "/usr/bin",
            "PYTHONUNBUFFERED": "1",
            "TINKER_TELEMETRY": "0",
            "TINKER_API_KEY": VALID_CREDENTIAL,
        }
