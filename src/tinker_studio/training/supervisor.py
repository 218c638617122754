"""Launch, watch and terminate worker processes.

The supervisor is the only writer of job status and job output. Each
worker gets a private working directory, receives the upstream credential
through its environment only, and runs under a virtual-memory ceiling.

Status transitions are first-write-wins (see :meth:`Job.finish`): once
``stop()`` has marked a job cancelled, the exit status reported when the
process dies afterwards is ignored.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import subprocess
from collections.abc import Callable, Mapping
from pathlib import Path

from tinker_studio.core import constants
from tinker_studio.core.config import ResourceLimits
from tinker_studio.core.errors import (
    DependencyUnavailableError,
    InvalidJobStateError,
    JobNotFoundError,
    SpawnError,
)
from tinker_studio.core.logging import get_logger
from tinker_studio.core.sanitize import sanitize_error_message
from tinker_studio.core.tasks import BackgroundTasks
from tinker_studio.training.models import Job, JobStatus, new_job_id
from tinker_studio.training.pipeline import PipelineConfig
from tinker_studio.training.registry import JobRegistry

try:
    import resource
except ImportError:  # Windows: no setrlimit, the ceiling is not applied
    resource = None  # type: ignore[assignment]

_logger = get_logger("supervisor")

# Readers accept lines up to this size before splitting them
_STREAM_LIMIT_BYTES = 1024 * 1024


def _memory_ceiling(limit_bytes: int) -> Callable[[], None]:
    """Build a preexec hook that caps the child's address space."""

    def apply() -> None:
        _soft, hard = resource.getrlimit(resource.RLIMIT_AS)
        limit = limit_bytes if hard == resource.RLIM_INFINITY else min(limit_bytes, hard)
        resource.setrlimit(resource.RLIMIT_AS, (limit, limit))

    return apply


class ProcessSupervisor:
    """Owns the worker processes behind registry entries.

    Args:
        registry: Job table the supervisor writes to.
        workspace_root: Parent of the per-job working directories.
        python_executable: Interpreter used for workers and the probe.
        limits: Default resource limits for spawned workers.
        eviction_grace_seconds: Delay between a terminal transition and
            deletion of the job from the registry.
        probe_timeout_seconds: Timeout of the interpreter availability probe.
    """

    def __init__(
        self,
        registry: JobRegistry,
        *,
        workspace_root: Path,
        python_executable: str = "python3",
        limits: ResourceLimits | None = None,
        eviction_grace_seconds: float = constants.EVICTION_GRACE_SECONDS,
        probe_timeout_seconds: float = constants.INTERPRETER_PROBE_TIMEOUT_SECONDS,
    ) -> None:
        self._registry = registry
        self._workspace_root = workspace_root
        self._python = python_executable
        self._limits = limits or ResourceLimits()
        self._eviction_grace = eviction_grace_seconds
        self._probe_timeout = probe_timeout_seconds
        self._processes: dict[str, asyncio.subprocess.Process] = {}
        self._stop_grace: dict[str, float] = {}
        self._tasks = BackgroundTasks(_logger, "supervisor_task_failed")

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def python_executable(self) -> str:
        return self._python

    def is_alive(self, job_id: str) -> bool:
        process = self._processes.get(job_id)
        return process is not None and process.returncode is None

    async def check_available(self) -> str:
        """Verify the worker interpreter can be invoked.

        Returns:
            The interpreter's version string, e.g. ``"Python 3.12.4"``.

        Raises:
            DependencyUnavailableError: If the interpreter is missing, exits
                non-zero or does not answer within the probe timeout.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self._python,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            _logger.warning("interpreter_probe_failed", python=self._python, error=str(e))
            raise DependencyUnavailableError(constants.PYTHON_UNAVAILABLE_MESSAGE) from e

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), self._probe_timeout)
        except TimeoutError as e:
            if process.returncode is None:
                process.kill()
            await process.wait()
            _logger.warning("interpreter_probe_timeout", python=self._python)
            raise DependencyUnavailableError(constants.PYTHON_UNAVAILABLE_MESSAGE) from e

        if process.returncode != 0:
            _logger.warning(
                "interpreter_probe_failed",
                python=self._python,
                exit_code=process.returncode,
            )
            raise DependencyUnavailableError(constants.PYTHON_UNAVAILABLE_MESSAGE)
        return stdout.decode("utf-8", errors="replace").strip()

    async def spawn(
        self,
        program_text: str,
        env: Mapping[str, str],
        limits: ResourceLimits | None = None,
        *,
        owner_credential: str,
        config: PipelineConfig | None = None,
    ) -> Job:
        """Write ``program_text`` to a fresh job directory and run it.

        Launch failures do not raise: the job is recorded as ``failed`` with a
        sanitized ``[ERROR]`` line so the caller can still stream it.

        Args:
            program_text: Source of the worker program.
            env: Complete environment for the worker, including secrets.
            limits: Overrides the supervisor's default limits.
            owner_credential: Digest identifying the job's owner.
            config: Configuration snapshot recorded on the job.

        Returns:
            The newly registered job.
        """
        limits = limits or self._limits
        job_id = new_job_id()
        workdir = self._workspace_root / job_id
        job = self._registry.create(
            Job(
                job_id=job_id,
                owner_credential=owner_credential,
                config_snapshot=config,
                workdir=workdir,
            )
        )

        try:
            self._workspace_root.mkdir(parents=True, exist_ok=True)
            workdir.mkdir(mode=0o700)
            script_path = workdir / constants.WORKER_SCRIPT_NAME
            script_path.write_text(program_text, encoding="utf-8")
            script_path.chmod(0o600)

            preexec = None
            if resource is not None and limits.memory_limit_bytes is not None:
                preexec = _memory_ceiling(limits.memory_limit_bytes)

            process = await asyncio.create_subprocess_exec(
                self._python,
                "-u",
                str(script_path),
                cwd=str(workdir),
                env=dict(env),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                preexec_fn=preexec,
                limit=_STREAM_LIMIT_BYTES,
            )
        except (OSError, subprocess.SubprocessError) as e:
            self._fail_launch(job_id, SpawnError(f"Failed to start training: {e}"))
            return job

        self._processes[job_id] = process
        self._stop_grace[job_id] = limits.stop_grace_seconds
        self._registry.update(job_id, lambda j: setattr(j, "pid", process.pid))
        _logger.info("job_started", job_id=job_id, pid=process.pid, workdir=str(workdir))

        current = self._registry.get(job_id)
        if current is not None and current.status.is_terminal:
            # Stopped while the process was being launched
            process.terminate()
            self._tasks.spawn(
                self._kill_after_grace(job_id, process, limits.stop_grace_seconds),
                name=f"force-kill-{job_id}",
            )

        self._tasks.spawn(
            self._supervise(job_id, process),
            name=f"supervise-{job_id}",
        )
        return job

    def _fail_launch(self, job_id: str, error: SpawnError) -> None:
        message = sanitize_error_message(error.message)
        job = self._registry.update(
            job_id,
            lambda j: j.finish(JobStatus.FAILED, f"{constants.ERROR_MARKER} {message}"),
        )
        _logger.error("job_start_failed", job_id=job_id, code=error.code, error=message)
        if job is not None:
            self._schedule_eviction(job_id)

    async def _supervise(self, job_id: str, process: asyncio.subprocess.Process) -> None:
        try:
            assert process.stdout is not None and process.stderr is not None
            await asyncio.gather(
                self._pump(job_id, process.stdout, ""),
                self._pump(job_id, process.stderr, f"{constants.ERROR_MARKER} "),
            )
            return_code = await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            raise
        finally:
            self._processes.pop(job_id, None)
            self._stop_grace.pop(job_id, None)

        if return_code == 0:
            status, line = JobStatus.COMPLETED, constants.MSG_COMPLETED
        else:
            status = JobStatus.FAILED
            line = constants.MSG_FAILED_EXIT_CODE.format(code=return_code)

        transitioned = False

        def record_exit(job: Job) -> None:
            nonlocal transitioned
            transitioned = job.finish(status, line)

        self._registry.update(job_id, record_exit)
        if transitioned:
            _logger.info("job_exited", job_id=job_id, status=status.value, exit_code=return_code)
            self._schedule_eviction(job_id)
        else:
            _logger.debug("job_exit_after_terminal", job_id=job_id, exit_code=return_code)

    async def _pump(self, job_id: str, stream: asyncio.StreamReader, prefix: str) -> None:
        while True:
            try:
                raw = await stream.readline()
                if not raw:
                    return
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if line.strip():
                    self._append(job_id, prefix + line)
            except ValueError as e:
                # Line longer than the reader limit; the reader drops it
                self._append(job_id, f"{constants.ERROR_MARKER} Output line dropped: {e}")
            except Exception as e:
                message = sanitize_error_message(f"Output handling failed: {e}")
                _logger.error("output_handling_failed", job_id=job_id, error=message)
                self._append(job_id, f"{constants.ERROR_MARKER} {message}")
                if stream.at_eof() or stream.exception() is not None:
                    return

    def _append(self, job_id: str, line: str) -> None:
        self._registry.update(job_id, lambda job: job.append(line))

    async def stop(self, job_id: str) -> Job:
        """Request termination of a running job.

        Sends SIGTERM, marks the job ``cancelled`` and schedules a SIGKILL
        for when the worker is still alive after the grace period.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidJobStateError: If the job is not running.
        """
        job = self._registry.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status.is_terminal:
            raise InvalidJobStateError(f"Job is already {job.status.value}")

        process = self._processes.get(job_id)
        grace = self._stop_grace.get(job_id, self._limits.stop_grace_seconds)
        if process is not None and process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass

        self._registry.update(
            job_id,
            lambda j: j.finish(JobStatus.CANCELLED, constants.MSG_STOP_REQUESTED),
        )
        _logger.info("job_stop_requested", job_id=job_id)
        self._schedule_eviction(job_id)

        if process is not None:
            self._tasks.spawn(
                self._kill_after_grace(job_id, process, grace),
                name=f"force-kill-{job_id}",
            )
        return self._registry.get(job_id) or job

    async def _kill_after_grace(
        self,
        job_id: str,
        process: asyncio.subprocess.Process,
        grace_seconds: float,
    ) -> None:
        try:
            await asyncio.wait_for(process.wait(), grace_seconds)
            return
        except TimeoutError:
            pass
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            return
        self._append(job_id, constants.MSG_FORCE_KILLED)
        _logger.warning("job_force_killed", job_id=job_id, pid=process.pid)

    def _schedule_eviction(self, job_id: str) -> None:
        self._tasks.spawn(self._evict_later(job_id), name=f"evict-{job_id}")

    async def _evict_later(self, job_id: str) -> None:
        await asyncio.sleep(self._eviction_grace)
        self.evict(job_id)

    def evict(self, job_id: str) -> bool:
        """Delete a terminal job and its working directory.

        Returns:
            True if the job was removed. Running jobs are never evicted.
        """
        job = self._registry.get(job_id)
        if job is None or not job.status.is_terminal:
            return False
        self._registry.delete(job_id)
        if job.workdir is not None:
            shutil.rmtree(job.workdir, ignore_errors=True)
        _logger.info("job_evicted", job_id=job_id)
        return True

    async def shutdown(self) -> None:
        """Terminate live workers and cancel pending timers."""
        live = [p for p in self._processes.values() if p.returncode is None]
        for process in live:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
        if live:
            _, pending = await asyncio.wait(
                [asyncio.ensure_future(p.wait()) for p in live],
                timeout=self._limits.stop_grace_seconds,
            )
            for process in live:
                if process.returncode is None:
                    try:
                        process.kill()
                    except ProcessLookupError:
                        pass
            for future in pending:
                future.cancel()
        await self._tasks.cancel_all()
        _logger.info("supervisor_shutdown", terminated=len(live))


def worker_environment(credential: str, base: Mapping[str, str] | None = None) -> dict[str, str]:
    """Build the environment for a worker process.

    Args:
        credential: Upstream API credential, delivered only through
            ``TINKER_API_KEY``.
        base: Environment to extend; defaults to the server's own.

    Returns:
        A new mapping with unbuffered output and telemetry disabled.
    """
    env = dict(os.environ if base is None else base)
    env.update({
        "PYTHONUNBUFFERED": "1",
        "TINKER_TELEMETRY": "0",
        constants.CREDENTIAL_ENV_VAR: credential,
    })
    return env
