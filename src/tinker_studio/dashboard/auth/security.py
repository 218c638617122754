"""Security headers, CORS and job id validation for the API."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response

if TYPE_CHECKING:
    from fastapi import FastAPI

_JOB_ID_PATTERN = re.compile(
    r"^job_[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
)

SECURITY_HEADERS: dict[str, str] = {
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds restrictive security headers to every API response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if "server" in response.headers:
            del response.headers["server"]
        return response


def configure_cors(app: FastAPI, origins: list[str]) -> None:
    """Allow the browser IDE's origins to call the API.

    Args:
        app: Application to configure.
        origins: Allowed origins; an empty list disables cross-origin access.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-API-Key", "X-Tinker-Api-Key"],
    )


def is_valid_job_id(job_id: str) -> bool:
    """True if ``job_id`` has the ``job_<uuid4>`` shape the supervisor issues."""
    return bool(_JOB_ID_PATTERN.match(job_id))
