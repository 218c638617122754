"""FastAPI application factory for Tinker Studio.

Provides the HTTP surface for starting, stopping and streaming training
jobs. Collaborators live on ``app.state`` and reach the routes through the
dependency getters below.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tinker_studio import __version__
from tinker_studio.core.config import StudioConfig
from tinker_studio.core.errors import StudioError, ValidationError
from tinker_studio.core.logging import get_logger
from tinker_studio.core.sanitize import sanitize_error_message
from tinker_studio.core.tasks import BackgroundTasks
from tinker_studio.dashboard.auth import (
    AuthorizationGuard,
    EndpointRateLimiters,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
    configure_cors,
)
from tinker_studio.dashboard.services import (
    CredentialValidator,
    SdkScriptRunner,
    StreamBroadcaster,
    TinkerCatalog,
    TrainingService,
)
from tinker_studio.training.codegen import ScriptGenerator
from tinker_studio.training.registry import JobRegistry
from tinker_studio.training.supervisor import ProcessSupervisor

_logger = get_logger("dashboard")


def get_training_service(request: Request) -> TrainingService:
    """Get the training service attached to the running app."""
    return request.app.state.training_service


def get_credential_validator(request: Request) -> CredentialValidator:
    """Get the credential validator attached to the running app."""
    return request.app.state.credential_validator


def get_tinker_catalog(request: Request) -> TinkerCatalog:
    """Get the model and checkpoint catalog attached to the running app."""
    return request.app.state.catalog


async def _sweep_rate_limits(limiters: EndpointRateLimiters, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        limiters.cleanup()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Starts the rate-limit sweep on startup. On shutdown, stops the sweep and
    terminates any worker that is still running.
    """
    config: StudioConfig = app.state.config
    tasks = BackgroundTasks(_logger, "dashboard_task_failed")
    tasks.spawn(
        _sweep_rate_limits(app.state.rate_limiters, config.rate_limit.sweep_interval_seconds),
        name="rate-limit-sweep",
    )
    _logger.info("dashboard_started", host=config.host, port=config.port)
    try:
        yield
    finally:
        await tasks.cancel_all()
        await app.state.supervisor.shutdown()
        _logger.info("dashboard_stopped")


async def _studio_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, StudioError)
    if exc.http_status >= 500:
        _logger.warning("request_failed", path=request.url.path, code=exc.code)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def _request_validation_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    details = [
        sanitize_error_message(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}"
        )
        for err in exc.errors()
    ]
    error = ValidationError("Invalid request", details=details)
    return JSONResponse(status_code=error.http_status, content=error.to_dict())


def create_app(
    config: StudioConfig | None = None,
    *,
    supervisor: ProcessSupervisor | None = None,
    credential_validator: CredentialValidator | None = None,
    catalog: TinkerCatalog | None = None,
    generator: ScriptGenerator | None = None,
    rate_limiters: EndpointRateLimiters | None = None,
    title: str = "Tinker Studio",
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Server configuration; read from the environment when omitted.
        supervisor: Pre-built supervisor (takes precedence over ``config``).
        credential_validator: Pre-built credential validator.
        catalog: Pre-built model and checkpoint catalog.
        generator: Program generator; Jinja2 templates by default.
        rate_limiters: Pre-built limiters, e.g. with a fake clock in tests.
        title: API title for OpenAPI docs.

    Returns:
        Configured FastAPI application
    """
    config = config or StudioConfig.from_env()

    if supervisor is None:
        supervisor = ProcessSupervisor(
            JobRegistry(),
            workspace_root=Path(config.workspace_root),
            python_executable=config.python_executable,
            limits=config.limits,
            eviction_grace_seconds=config.eviction_grace_seconds,
            probe_timeout_seconds=config.probe_timeout_seconds,
        )
    broadcaster = StreamBroadcaster(
        supervisor.registry,
        heartbeat_seconds=config.stream_heartbeat_seconds,
        max_viewers=config.max_stream_viewers,
    )
    guard = AuthorizationGuard(config.credentials)
    rate_limiters = rate_limiters or EndpointRateLimiters(config.rate_limit)

    app = FastAPI(
        title=title,
        version=__version__,
        description="REST API for launching and streaming Tinker training jobs",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.supervisor = supervisor
    app.state.rate_limiters = rate_limiters
    app.state.training_service = TrainingService(
        supervisor, broadcaster, guard, generator, config.limits
    )
    sdk_runner = SdkScriptRunner(
        config.python_executable,
        timeout_seconds=config.credential_check_timeout_seconds,
    )
    app.state.credential_validator = credential_validator or CredentialValidator(
        runner=sdk_runner
    )
    app.state.catalog = catalog or TinkerCatalog(sdk_runner)

    app.add_exception_handler(StudioError, _studio_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)

    # Last added runs first: CORS, then security headers, then rate limiting
    app.add_middleware(RateLimitMiddleware, limiters=rate_limiters)
    app.add_middleware(SecurityHeadersMiddleware)
    configure_cors(app, config.cors_origins)

    from tinker_studio.dashboard.routes import router
    app.include_router(router)

    @app.get("/health", tags=["System"])
    async def health_check() -> dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "service": "tinker-studio",
        }

    return app
