"""Tinker Studio - training job orchestration and log streaming service.

Supervises worker processes that run generated fine-tuning scripts,
turns their output into typed events and streams them to browser
clients over Server-Sent Events.
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
