"""Authentication, authorization and request hygiene for the API."""

from tinker_studio.dashboard.auth.guard import (
    AuthorizationGuard,
    credential_from_request,
    hash_credential,
)
from tinker_studio.dashboard.auth.rate_limit import (
    EndpointRateLimiters,
    RateLimitMiddleware,
    SlidingWindowRateLimiter,
    get_client_identifier,
)
from tinker_studio.dashboard.auth.security import (
    SecurityHeadersMiddleware,
    configure_cors,
    is_valid_job_id,
)

__all__ = [
    "AuthorizationGuard",
    "EndpointRateLimiters",
    "RateLimitMiddleware",
    "SecurityHeadersMiddleware",
    "SlidingWindowRateLimiter",
    "configure_cors",
    "credential_from_request",
    "get_client_identifier",
    "hash_credential",
    "is_valid_job_id",
]
