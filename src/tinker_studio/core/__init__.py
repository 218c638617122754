"""Core infrastructure shared by the training and dashboard layers."""

from tinker_studio.core.config import (
    CredentialPolicy,
    RateLimitConfig,
    ResourceLimits,
    StudioConfig,
)
from tinker_studio.core.errors import (
    CredentialFormatError,
    CredentialRejectedError,
    CredentialRequiredError,
    DependencyUnavailableError,
    InvalidJobStateError,
    JobNotFoundError,
    OwnershipError,
    ResourceExhaustedError,
    SpawnError,
    StreamLostError,
    StudioError,
    UpstreamError,
    ValidationError,
)
from tinker_studio.core.logging import configure_logging, get_logger
from tinker_studio.core.sanitize import sanitize_error_message

__all__ = [
    "CredentialFormatError",
    "CredentialPolicy",
    "CredentialRejectedError",
    "CredentialRequiredError",
    "DependencyUnavailableError",
    "InvalidJobStateError",
    "JobNotFoundError",
    "OwnershipError",
    "RateLimitConfig",
    "ResourceExhaustedError",
    "ResourceLimits",
    "SpawnError",
    "StreamLostError",
    "StudioConfig",
    "StudioError",
    "UpstreamError",
    "ValidationError",
    "configure_logging",
    "get_logger",
    "sanitize_error_message",
]
