"""Configuration models for the Tinker Studio server.

Pydantic v2 models for worker resource limits, credential policy, rate
limiting and server settings. A :class:`StudioConfig` is built from
defaults, a YAML file, or ``TINKER_STUDIO_*`` environment variables.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from tinker_studio.core import constants

ENV_PREFIX = "TINKER_STUDIO_"


class ResourceLimits(BaseModel):
    """Limits applied to every worker process at launch."""

    memory_limit_mb: int | None = Field(
        default=constants.WORKER_MEMORY_LIMIT_MB,
        ge=64,
        description="Virtual-memory ceiling (RLIMIT_AS) in MB. "
        "None disables the ceiling (platforms without setrlimit ignore it).",
    )
    stop_grace_seconds: float = Field(
        default=constants.STOP_GRACE_SECONDS,
        gt=0,
        description="Seconds between SIGTERM and SIGKILL when a job is stopped",
    )

    @property
    def memory_limit_bytes(self) -> int | None:
        if self.memory_limit_mb is None:
            return None
        return self.memory_limit_mb * 1024 * 1024


class CredentialPolicy(BaseModel):
    """Format rules for caller-supplied upstream credentials."""

    min_length: int = Field(default=constants.CREDENTIAL_MIN_LENGTH, ge=1)
    max_length: int = Field(default=constants.CREDENTIAL_MAX_LENGTH, ge=1)
    allowed_pattern: str = Field(
        default=r"^[A-Za-z0-9_.\-]+$",
        description="Character whitelist the whole credential must match",
    )


class RateLimitConfig(BaseModel):
    """Sliding-window budgets per endpoint class."""

    enabled: bool = True
    window_seconds: float = Field(default=constants.RATE_LIMIT_WINDOW_SECONDS, gt=0)
    api_requests: int = Field(
        default=constants.RATE_LIMIT_API_REQUESTS,
        ge=1,
        description="General API budget per identity per window",
    )
    training_start_requests: int = Field(
        default=constants.RATE_LIMIT_TRAINING_START_REQUESTS,
        ge=1,
        description="Budget for POST /api/training/start per identity per window",
    )
    validation_requests: int = Field(
        default=constants.RATE_LIMIT_VALIDATION_REQUESTS,
        ge=1,
        description="Budget for POST /api/tinker/validate per identity per window",
    )
    sweep_interval_seconds: float = Field(
        default=constants.RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
        gt=0,
        description="Interval of the background sweep that drops empty windows",
    )


class StudioConfig(BaseModel):
    """Top-level server configuration."""

    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    workspace_root: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / constants.WORKSPACE_DIR_NAME,
        description="Directory holding one private working directory per job",
    )
    python_executable: str = Field(
        default="python3",
        description="Interpreter used to run generated worker programs",
    )
    probe_timeout_seconds: float = Field(
        default=constants.INTERPRETER_PROBE_TIMEOUT_SECONDS, gt=0
    )
    credential_check_timeout_seconds: float = Field(
        default=constants.CREDENTIAL_CHECK_TIMEOUT_SECONDS,
        gt=0,
        description="Upper bound on upstream SDK queries: key checks and catalog listings",
    )
    eviction_grace_seconds: float = Field(
        default=constants.EVICTION_GRACE_SECONDS,
        ge=0,
        description="Seconds a terminal job stays readable before it is evicted",
    )
    stream_heartbeat_seconds: float = Field(
        default=constants.STREAM_HEARTBEAT_SECONDS,
        gt=0,
        description="Keep-alive interval for idle event streams",
    )
    max_stream_viewers: int = Field(default=constants.STREAM_MAX_VIEWERS, ge=1)
    limits: ResourceLimits = Field(default_factory=ResourceLimits)
    credentials: CredentialPolicy = Field(default_factory=CredentialPolicy)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"]
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    log_file: Path | None = None

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @classmethod
    def from_yaml(cls, path: Path) -> StudioConfig:
        """Load configuration from a YAML file.

        Args:
            path: YAML file whose top-level keys mirror the model fields.

        Returns:
            The validated configuration. Missing keys take their defaults.
        """
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> StudioConfig:
        """Load configuration from ``TINKER_STUDIO_*`` environment variables.

        Recognised variables: HOST, PORT, WORKSPACE, PYTHON, MEMORY_LIMIT_MB,
        STOP_GRACE_SECONDS, EVICTION_GRACE_SECONDS, CORS_ORIGINS
        (comma-separated), RATE_LIMIT_ENABLED, LOG_LEVEL, LOG_FORMAT, LOG_FILE.
        If ``CONFIG`` names a YAML file it is loaded first and the other
        variables override it.

        Args:
            environ: Mapping to read instead of ``os.environ``.

        Returns:
            The validated configuration.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            return env.get(ENV_PREFIX + name)

        config_file = get("CONFIG")
        data: dict[str, Any] = {}
        if config_file:
            with open(config_file, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

        simple = {
            "HOST": "host",
            "PORT": "port",
            "WORKSPACE": "workspace_root",
            "PYTHON": "python_executable",
            "EVICTION_GRACE_SECONDS": "eviction_grace_seconds",
            "LOG_LEVEL": "log_level",
            "LOG_FORMAT": "log_format",
            "LOG_FILE": "log_file",
        }
        for env_name, field_name in simple.items():
            value = get(env_name)
            if value:
                data[field_name] = value

        limits = dict(data.get("limits") or {})
        if (memory := get("MEMORY_LIMIT_MB")) is not None:
            limits["memory_limit_mb"] = None if memory.lower() in ("", "none", "0") else memory
        if grace := get("STOP_GRACE_SECONDS"):
            limits["stop_grace_seconds"] = grace
        if limits:
            data["limits"] = limits

        if origins := get("CORS_ORIGINS"):
            data["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]

        if (enabled := get("RATE_LIMIT_ENABLED")) is not None:
            rate_limit = dict(data.get("rate_limit") or {})
            rate_limit["enabled"] = enabled.lower() in ("1", "true", "yes", "on")
            data["rate_limit"] = rate_limit

        return cls.model_validate(data)
