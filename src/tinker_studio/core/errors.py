"""Exception hierarchy for Tinker Studio.

Every error that can cross the HTTP boundary carries a machine-readable
``code`` and the status it maps to, so a single exception handler can
render them all.
"""

from __future__ import annotations

from typing import Any


class StudioError(Exception):
    """Base exception for all studio errors."""

    code: str = "INTERNAL_ERROR"
    http_status: int = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Render the error as the JSON body returned to API clients."""
        body: dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.code,
        }
        body.update(self.details)
        return body


class ValidationError(StudioError):
    """Request input failed validation."""

    code = "VALIDATION_ERROR"
    http_status = 400


class CredentialFormatError(ValidationError):
    """Credential is missing, has the wrong length or contains disallowed characters."""

    code = "INVALID_API_KEY_FORMAT"


class CredentialRejectedError(StudioError):
    """The upstream service did not accept the credential."""

    code = "INVALID_API_KEY"
    http_status = 401


class CredentialRequiredError(StudioError):
    """An endpoint that queries the upstream service was called without a credential."""

    code = "API_KEY_REQUIRED"
    http_status = 401


class UpstreamError(StudioError):
    """A query against the upstream service failed or could not be run."""

    code = "UPSTREAM_ERROR"
    http_status = 502


class DependencyUnavailableError(StudioError):
    """The worker interpreter cannot be invoked on this host."""

    code = "PYTHON_NOT_AVAILABLE"
    http_status = 503


class SpawnError(StudioError):
    """The worker process could not be launched.

    Recorded on the job as a sanitized log line rather than raised to the
    caller that requested the start.
    """

    code = "SPAWN_FAILED"


class JobNotFoundError(StudioError):
    """No job with the given id is present in the registry."""

    code = "JOB_NOT_FOUND"
    http_status = 404

    def __init__(self, job_id: str) -> None:
        super().__init__("Job not found")
        self.job_id = job_id


class InvalidJobStateError(StudioError):
    """The requested action is not valid for the job's current status."""

    code = "INVALID_STATE"
    http_status = 400


class OwnershipError(StudioError):
    """Caller credential does not match the credential that started the job."""

    code = "FORBIDDEN"
    http_status = 403

    def __init__(self, message: str = "Not authorized to access this job") -> None:
        super().__init__(message)


class ResourceExhaustedError(StudioError):
    """A server-side capacity limit (such as the viewer cap) was reached."""

    code = "RESOURCE_EXHAUSTED"
    http_status = 503


class StreamLostError(StudioError):
    """A viewer disconnected while the job was still running.

    Only ever logged; the job itself is unaffected.
    """

    code = "STREAM_LOST"
