"""Structured logging for Tinker Studio.

Uses structlog on top of the stdlib ``logging`` module. Components obtain a
logger with :func:`get_logger` and log snake_case event names with
key/value context:

    from tinker_studio.core.logging import get_logger

    _logger = get_logger("supervisor")
    _logger.info("job_started", job_id=job_id, pid=pid)

Request- or job-scoped values can be attached for a block of code with
``structlog.contextvars.bound_contextvars(job_id=...)``; they are merged
into every event emitted inside the block.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Field names whose values must never reach a log sink
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "api-key",
    "token",
    "secret",
    "password",
    "credential",
    "bearer",
    "authorization",
})

REDACTED = "[REDACTED]"

LogFormat = Literal["console", "json"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]


def _is_sensitive(key: str) -> bool:
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in SENSITIVE_PATTERNS)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if _is_sensitive(str(k)) else _redact(v)
            for k, v in value.items()
        }
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields, including nested dicts."""
    return {
        key: REDACTED if _is_sensitive(key) else _redact(value)
        for key, value in event_dict.items()
    }


def _build_processors(format: LogFormat) -> list[Processor]:  # noqa: A002
    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 20,
    backup_count: int = 3,
) -> None:
    """Configure structured logging for the whole process.

    Call once at startup, before the server begins accepting requests.
    Loggers created at import time pick up the configuration lazily.

    Args:
        level: Minimum log level to emit.
        format: ``"console"`` for human-readable output on stderr, ``"json"``
            for one JSON object per line.
        file_path: When set, events are also written to a rotating file.
        max_file_size_mb: Size at which the log file is rotated.
        backup_count: Number of rotated files to keep.
    """
    log_level = getattr(logging, level)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                file_path,
                maxBytes=max_file_size_mb * 1024 * 1024,
                backupCount=backup_count,
                encoding="utf-8",
            )
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    # uvicorn installs its own handlers; route them through the root logger
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True

    # cache_logger_on_first_use=False keeps module-level loggers in sync
    # with configuration applied after import
    structlog.configure(
        processors=_build_processors(format),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> Any:
    """Get a structlog logger bound to a component name.

    Args:
        component: Component name (e.g. ``"supervisor"``, ``"stream"``).
        **initial_context: Additional key/value pairs included in every event.

    Returns:
        A lazily-configured structlog logger.
    """
    return structlog.get_logger(component=component, **initial_context)


__all__ = [
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_logger",
]
