"""Training job lifecycle service.

Sits between the HTTP routes and the supervisor: it checks the caller's
credential and the pipeline config, makes sure the worker interpreter is
present, renders the program and hands it to the supervisor. Every
operation on an existing job goes through the ownership check first.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from tinker_studio.core.config import ResourceLimits
from tinker_studio.core.errors import JobNotFoundError, ValidationError
from tinker_studio.core.logging import get_logger
from tinker_studio.dashboard.auth.guard import AuthorizationGuard
from tinker_studio.dashboard.services.broadcaster import StreamBroadcaster, StreamViewer
from tinker_studio.training.codegen import ScriptGenerator, TemplateScriptGenerator
from tinker_studio.training.models import Job
from tinker_studio.training.pipeline import ModelInfo, PipelineConfig
from tinker_studio.training.supervisor import ProcessSupervisor, worker_environment

_logger = get_logger("training_service")

STOP_MESSAGE = "Stop signal sent. Training will terminate after current step."


@dataclass
class TrainingStartResult:
    """Result of starting a training job."""
    job_id: str
    status: str
    pid: int | None = None

    @property
    def message(self) -> str:
        return f"Training started. Stream logs at /api/training/{self.job_id}/stream"


@dataclass
class TrainingActionResult:
    """Result of a job action (stop)."""
    job_id: str
    status: str
    message: str


class TrainingService:
    """Service for starting, stopping and observing training jobs.

    Args:
        supervisor: Owns the worker processes and the job registry.
        broadcaster: Opens stream viewers on jobs.
        guard: Credential checks and ownership enforcement.
        generator: Renders the worker program from a pipeline config.
        limits: Resource limits for spawned workers; the supervisor's
            defaults apply when omitted.
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        broadcaster: StreamBroadcaster,
        guard: AuthorizationGuard | None = None,
        generator: ScriptGenerator | None = None,
        limits: ResourceLimits | None = None,
    ) -> None:
        self._supervisor = supervisor
        self._broadcaster = broadcaster
        self._guard = guard or AuthorizationGuard()
        self._generator = generator or TemplateScriptGenerator()
        self._limits = limits

    @property
    def guard(self) -> AuthorizationGuard:
        return self._guard

    def _owned_job(self, job_id: str, credential: str | None) -> Job:
        job = self._supervisor.registry.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        self._guard.authorize(job, credential)
        return job

    async def start(
        self,
        credential: str | None,
        config: PipelineConfig,
        model: ModelInfo | None = None,
    ) -> TrainingStartResult:
        """Validate a request and launch its worker.

        Checks run in order: credential format, config completeness,
        interpreter availability. Nothing is spawned unless all pass.

        Raises:
            CredentialFormatError: If the credential is missing or malformed.
            ValidationError: If the config cannot be executed.
            DependencyUnavailableError: If the worker interpreter is missing.
        """
        credential = self._guard.validate_credential(credential)

        errors = config.execution_errors()
        if errors:
            raise ValidationError("Invalid configuration", details=errors)

        await self._supervisor.check_available()

        try:
            program = self._generator.generate(config, model)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        job = await self._supervisor.spawn(
            program,
            worker_environment(credential),
            self._limits,
            owner_credential=self._guard.owner_token(credential),
            config=config,
        )
        _logger.info(
            "training_started",
            job_id=job.job_id,
            mode=config.mode,
            dataset=config.dataset_display_name,
        )
        current = self._supervisor.registry.get(job.job_id) or job
        return TrainingStartResult(job_id=job.job_id, status=current.status.value, pid=current.pid)

    async def stop(self, job_id: str, credential: str | None) -> TrainingActionResult:
        """Stop a running job owned by the caller.

        Raises:
            JobNotFoundError: If the job does not exist.
            OwnershipError: If the caller does not own the job.
            InvalidJobStateError: If the job already finished.
        """
        self._owned_job(job_id, credential)
        job = await self._supervisor.stop(job_id)
        return TrainingActionResult(job_id=job_id, status=job.status.value, message=STOP_MESSAGE)

    def status(self, job_id: str, credential: str | None) -> dict[str, Any]:
        """Summarize a job; unknown ids report ``exists: False``."""
        if self._supervisor.registry.get(job_id) is None:
            return {"exists": False, "status": None, "logsCount": 0}
        return self._owned_job(job_id, credential).summary()

    def open_stream(self, job_id: str, credential: str | None) -> StreamViewer:
        """Open a stream viewer on a job owned by the caller.

        Raises:
            JobNotFoundError: If the job does not exist.
            OwnershipError: If the caller does not own the job.
            ResourceExhaustedError: If too many viewers are open.
        """
        self._owned_job(job_id, credential)
        return self._broadcaster.open(job_id)
