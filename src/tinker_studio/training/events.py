"""Typed events delivered to stream viewers.

Every event serializes to a JSON object with a ``type`` discriminant and
camelCase field names, matching what the browser client consumes.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

LogLevel = Literal["info", "warn", "error"]


class _Event(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys and unset fields omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)


class LogEvent(_Event):
    type: Literal["log"] = "log"
    message: str
    level: LogLevel = "info"


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    message: str
    level: LogLevel = "error"


class MetricEvent(_Event):
    type: Literal["metric"] = "metric"
    message: str
    level: LogLevel = "info"
    step: int
    total_steps: int
    loss: float
    reward: float | None = None
    learning_rate: float | None = None
    tokens_per_second: float | None = None
    wall_clock_time_ms: float | None = None
    eta_seconds: float | None = None
    token_count: int | None = None


class CheckpointSampleEvent(_Event):
    type: Literal["checkpoint_sample"] = "checkpoint_sample"
    step: int | None = None
    checkpoint_path: str | None = None
    checkpoint_label: str | None = None
    prompt: str | None = None
    response: str | None = None


class StatusEvent(_Event):
    type: Literal["status"] = "status"
    status: str


class DoneEvent(_Event):
    type: Literal["done"] = "done"


Event = LogEvent | ErrorEvent | MetricEvent | CheckpointSampleEvent | StatusEvent | DoneEvent
