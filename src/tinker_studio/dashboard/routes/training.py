"""Training job control API endpoints."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tinker_studio.core.errors import JobNotFoundError
from tinker_studio.core.logging import get_logger
from tinker_studio.dashboard.app import get_training_service
from tinker_studio.dashboard.auth import credential_from_request, is_valid_job_id
from tinker_studio.dashboard.services.training import TrainingService
from tinker_studio.training.pipeline import ModelInfo, PipelineConfig

_logger = get_logger("dashboard.training")

router = APIRouter(prefix="/api/training", tags=["Training"])


# ============================================================================
# Request Models
# ============================================================================


class StartTrainingRequest(BaseModel):
    """Request to start a training job."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    api_key: str | None = Field(None, description="Upstream Tinker API key")
    config: PipelineConfig
    model: ModelInfo | None = None


def require_job_id(job_id: str) -> str:
    """Resolve ids that could not have been issued by the supervisor as missing."""
    if not is_valid_job_id(job_id):
        raise JobNotFoundError(job_id)
    return job_id


# ============================================================================
# API Endpoints
# ============================================================================


@router.post("/start")
async def start_training(
    body: StartTrainingRequest,
    service: TrainingService = Depends(get_training_service),
) -> dict[str, Any]:
    """Start a training job.

    Args:
        body: Credential, pipeline config and optional model metadata
        service: Training service (injected)

    Returns:
        The new job id and where to stream its output
    """
    result = await service.start(
        body.api_key.strip() if body.api_key else None,
        body.config,
        body.model,
    )
    return {"success": True, "data": {"jobId": result.job_id, "message": result.message}}


@router.post("/{job_id}/stop")
async def stop_training(
    request: Request,
    job_id: str = Depends(require_job_id),
    service: TrainingService = Depends(get_training_service),
) -> dict[str, Any]:
    """Stop a running training job owned by the caller."""
    result = await service.stop(job_id, credential_from_request(request))
    return {"success": True, "data": {"message": result.message}}


@router.get("/{job_id}/status")
async def training_status(
    request: Request,
    job_id: str,
    service: TrainingService = Depends(get_training_service),
) -> dict[str, Any]:
    """Get a lightweight status summary for polling clients."""
    return {"success": True, "data": service.status(job_id, credential_from_request(request))}
