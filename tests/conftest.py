"""Pytest fixtures for Tinker Studio tests."""

from __future__ import annotations

import logging
import sys
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from tinker_studio.core.config import ResourceLimits
from tinker_studio.training.registry import JobRegistry
from tinker_studio.training.supervisor import ProcessSupervisor


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging state before and after each test.

    This ensures test isolation for logging configuration.
    """
    structlog.reset_defaults()
    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create a temporary workspace root for job directories."""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def registry() -> JobRegistry:
    """Create an empty job registry."""
    return JobRegistry()


@pytest.fixture
def supervisor(registry: JobRegistry, workspace: Path) -> ProcessSupervisor:
    """Create a supervisor running workers with the test interpreter."""
    return ProcessSupervisor(
        registry,
        workspace_root=workspace,
        python_executable=sys.executable,
        limits=ResourceLimits(memory_limit_mb=None, stop_grace_seconds=2.0),
        eviction_grace_seconds=60.0,
    )

