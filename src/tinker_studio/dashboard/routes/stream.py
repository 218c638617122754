"""Server-Sent Events (SSE) streaming API endpoint."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from tinker_studio.dashboard.app import get_training_service
from tinker_studio.dashboard.auth import credential_from_request
from tinker_studio.dashboard.routes.training import require_job_id
from tinker_studio.dashboard.services.training import TrainingService

router = APIRouter(prefix="/api/training", tags=["Streaming"])


@router.get("/{job_id}/stream")
async def stream_training(
    request: Request,
    job_id: str = Depends(require_job_id),
    service: TrainingService = Depends(get_training_service),
) -> StreamingResponse:
    """Stream a job's output as Server-Sent Events.

    The stream opens with the job's status and its buffered backlog, then
    follows new output until the job finishes. Each ``data:`` frame is one
    JSON event.

    Args:
        request: Incoming request carrying the caller credential
        job_id: Job to follow
        service: Training service (injected)

    Returns:
        A ``text/event-stream`` response

    Raises:
        JobNotFoundError: 404 if the job does not exist
        OwnershipError: 403 if the caller does not own the job
        ResourceExhaustedError: 503 if too many streams are open
    """
    viewer = service.open_stream(job_id, credential_from_request(request))
    return StreamingResponse(
        viewer.sse(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable proxy buffering
        },
    )
