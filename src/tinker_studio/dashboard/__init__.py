"""Tinker Studio HTTP API.

This module provides a FastAPI-based REST API for:
- Starting and stopping training jobs
- Streaming job output as Server-Sent Events
- Checking an API key against the Tinker service
- Listing upstream base models and saved checkpoints

Usage:
    from tinker_studio.dashboard import create_app

    app = create_app()
    # Run with uvicorn: uvicorn.run(app, host="127.0.0.1", port=8000)
"""

from tinker_studio.dashboard.app import (
    create_app,
    get_credential_validator,
    get_tinker_catalog,
    get_training_service,
)

__all__ = [
    "create_app",
    "get_credential_validator",
    "get_tinker_catalog",
    "get_training_service",
]
