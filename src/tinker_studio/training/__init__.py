"""Training jobs: configuration, program generation, supervision and output parsing."""

from tinker_studio.training.models import Job, JobStatus, new_job_id
from tinker_studio.training.parser import format_eta, parse_line
from tinker_studio.training.pipeline import ModelInfo, PipelineConfig
from tinker_studio.training.registry import InMemoryJobStore, JobRegistry, JobStore
from tinker_studio.training.supervisor import ProcessSupervisor, worker_environment

__all__ = [
    "InMemoryJobStore",
    "Job",
    "JobRegistry",
    "JobStatus",
    "JobStore",
    "ModelInfo",
    "PipelineConfig",
    "ProcessSupervisor",
    "format_eta",
    "new_job_id",
    "parse_line",
    "worker_environment",
]
