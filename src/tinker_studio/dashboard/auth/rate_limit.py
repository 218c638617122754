"""Rate limiting middleware for the Tinker Studio API.

Sliding-window admission control: each identity may make at most
``max_requests`` requests within any trailing ``window_seconds``. Training
starts and credential checks have their own, smaller budgets that are
counted independently of the general API budget.
"""

from __future__ import annotations

import hashlib
import time
from collections.abc import Callable

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from tinker_studio.core.config import RateLimitConfig
from tinker_studio.core.constants import (
    CREDENTIAL_HEADERS,
    CREDENTIAL_VALIDATION_PATH,
    RATE_LIMITED_PATH_PREFIXES,
    TRAINING_START_PATH,
)
from tinker_studio.core.logging import get_logger

_logger = get_logger("rate_limit")

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."


class SlidingWindowRateLimiter:
    """Per-identity sliding-window counter.

    Windows are created on first use and dropped by :meth:`cleanup` once
    they hold no timestamps. All calls happen on the event loop thread, so
    no locking is needed.

    Args:
        max_requests: Requests admitted per identity per window.
        window_seconds: Length of the trailing window.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, list[float]] = {}

    def _prune(self, identity: str, now: float) -> list[float]:
        recent = [t for t in self._windows.get(identity, ()) if now - t < self.window_seconds]
        self._windows[identity] = recent
        return recent

    def check_limit(self, identity: str) -> bool:
        """Record a request for ``identity`` if it is within budget.

        Returns:
            True if the request is admitted, False if it must be rejected.
            Rejected requests are not recorded.
        """
        now = self._clock()
        recent = self._prune(identity, now)
        if len(recent) >= self.max_requests:
            return False
        recent.append(now)
        return True

    def remaining(self, identity: str) -> int:
        recent = self._prune(identity, self._clock())
        return max(0, self.max_requests - len(recent))

    def retry_after(self, identity: str) -> int:
        """Whole seconds until the oldest recorded request leaves the window."""
        now = self._clock()
        recent = self._prune(identity, now)
        if len(recent) < self.max_requests:
            return 0
        return int(recent[0] + self.window_seconds - now) + 1

    def cleanup(self) -> int:
        """Drop expired timestamps and empty windows.

        Returns:
            Number of identities removed.
        """
        now = self._clock()
        removed = 0
        for identity in list(self._windows):
            if not self._prune(identity, now):
                del self._windows[identity]
                removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._windows)


class EndpointRateLimiters:
    """The three independent budgets: general API, training start, credential check."""

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or RateLimitConfig()
        window = self.config.window_seconds
        self.api = SlidingWindowRateLimiter(self.config.api_requests, window, clock)
        self.training_start = SlidingWindowRateLimiter(
            self.config.training_start_requests, window, clock
        )
        self.validation = SlidingWindowRateLimiter(
            self.config.validation_requests, window, clock
        )

    def for_path(self, path: str) -> SlidingWindowRateLimiter | None:
        """Select the limiter for a request path, or None if unlimited."""
        if not path.startswith(RATE_LIMITED_PATH_PREFIXES):
            return None
        if path == TRAINING_START_PATH:
            return self.training_start
        if path == CREDENTIAL_VALIDATION_PATH:
            return self.validation
        return self.api

    def cleanup(self) -> int:
        removed = sum(
            limiter.cleanup() for limiter in (self.api, self.training_start, self.validation)
        )
        if removed:
            _logger.debug("rate_limit_windows_swept", removed=removed)
        return removed


def get_client_identifier(request: Request) -> str:
    """Identify the caller for rate limiting.

    Callers presenting a credential are keyed by a digest prefix of it,
    others by forwarded address or socket peer.
    """
    for header in CREDENTIAL_HEADERS:
        credential = request.headers.get(header)
        if credential:
            return f"api:{hashlib.sha256(credential.encode()).hexdigest()[:16]}"

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return f"ip:{real_ip.strip()}"
    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies :class:`EndpointRateLimiters` to API routes.

    Rejected requests get a 429 with ``Retry-After``; admitted ones carry
    ``X-RateLimit-Limit`` and ``X-RateLimit-Remaining``.
    """

    def __init__(self, app: ASGIApp, limiters: EndpointRateLimiters) -> None:
        super().__init__(app)
        self.limiters = limiters

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.limiters.config.enabled:
            return await call_next(request)

        limiter = self.limiters.for_path(request.url.path)
        if limiter is None:
            return await call_next(request)

        identity = get_client_identifier(request)
        if not limiter.check_limit(identity):
            retry_after = limiter.retry_after(identity)
            _logger.warning("rate_limited", path=request.url.path, identity=identity)
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"success": False, "error": RATE_LIMIT_MESSAGE, "code": "RATE_LIMITED"},
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(limiter.max_requests),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limiter.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(limiter.remaining(identity))
        return response


__all__ = [
    "EndpointRateLimiters",
    "RATE_LIMIT_MESSAGE",
    "RateLimitMiddleware",
    "SlidingWindowRateLimiter",
    "get_client_identifier",
]
