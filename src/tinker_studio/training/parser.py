"""Turn raw worker output lines into typed events.

Three line formats are recognised, tried in this order:

1. Structured lines: a JSON object with a ``type`` of ``metric``,
   ``checkpoint_sample``, ``log`` or ``error``. Programs produced by
   :mod:`tinker_studio.training.codegen` write only this format.
2. Prefixed lines: ``METRIC::{json}``, ``CHECKPOINT_SAMPLE::{json}`` and
   stderr lines marked ``[ERROR]``. Kept for programs generated by earlier
   releases.
3. Free text. ``Step X/Y | Loss: Z | LR: W`` still yields a metric; anything
   else becomes a log event whose level is guessed from its wording.

:func:`parse_line` never raises; a line that cannot be decoded degrades to
a log event carrying the raw text.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

from tinker_studio.core.constants import (
    CHECKPOINT_SAMPLE_PREFIX,
    ERROR_MARKER,
    ETA_UNKNOWN,
    METRIC_PREFIX,
    SECONDS_PER_HOUR,
    SECONDS_PER_MINUTE,
)
from tinker_studio.training.events import (
    CheckpointSampleEvent,
    ErrorEvent,
    Event,
    LogEvent,
    MetricEvent,
)

_LEGACY_STEP = re.compile(r"Step (\d+)/(\d+)")
_LEGACY_LOSS = re.compile(r"Loss: ([\d.]+)")
_LEGACY_REWARD = re.compile(r"Reward: ([\d.]+)")
_LEGACY_LR = re.compile(r"LR: ([\d.e+-]+)")

_STRUCTURED_TYPES = frozenset({"metric", "checkpoint_sample", "log", "error"})


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def format_eta(seconds: float | None) -> str:
    """Format a remaining-time estimate.

    Examples: ``45 -> "45s"``, ``125 -> "2m 5s"``, ``4000 -> "1h 6m"``.
    Zero, negative, infinite or missing values render as ``"--"``.
    """
    if seconds is None or seconds <= 0 or not math.isfinite(seconds):
        return ETA_UNKNOWN
    if seconds < SECONDS_PER_MINUTE:
        return f"{_round_half_up(seconds)}s"
    if seconds < SECONDS_PER_HOUR:
        minutes = math.floor(seconds / SECONDS_PER_MINUTE)
        return f"{minutes}m {_round_half_up(seconds % SECONDS_PER_MINUTE)}s"
    hours = math.floor(seconds / SECONDS_PER_HOUR)
    minutes = math.floor((seconds % SECONDS_PER_HOUR) / SECONDS_PER_MINUTE)
    return f"{hours}h {minutes}m"


def _finite_or_none(value: Any) -> Any:
    # Stream frames must stay strict JSON, which has no Infinity or NaN
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _metric_from_payload(data: dict[str, Any]) -> MetricEvent:
    step = data["step"]
    total_steps = data["total_steps"]
    loss = float(data["loss"])
    lr = float(data["lr"])
    if not (math.isfinite(loss) and math.isfinite(lr)):
        raise ValueError("non-finite loss or learning rate")
    tokens_per_second = _finite_or_none(data.get("tokens_per_second"))
    eta_seconds = _finite_or_none(data.get("eta_seconds"))
    message = (
        f"Step {step}/{total_steps} | Loss: {loss:.4f} | LR: {lr:.2e} | "
        f"{float(tokens_per_second or 0.0):.1f} tok/s | ETA: {format_eta(eta_seconds)}"
    )
    return MetricEvent(
        message=message,
        step=step,
        total_steps=total_steps,
        loss=loss,
        reward=_finite_or_none(data.get("reward")),
        learning_rate=lr,
        tokens_per_second=tokens_per_second,
        wall_clock_time_ms=_finite_or_none(data.get("wall_clock_time_ms")),
        eta_seconds=eta_seconds,
        token_count=data.get("tokens"),
    )


def _checkpoint_from_payload(data: dict[str, Any]) -> CheckpointSampleEvent:
    return CheckpointSampleEvent(
        step=data.get("step"),
        checkpoint_path=data.get("sampler_path") or data.get("checkpoint_path"),
        checkpoint_label=data.get("checkpoint_label"),
        prompt=data.get("prompt"),
        response=data.get("response"),
    )


def _infer_level(text: str) -> str:
    lowered = text.lower()
    if "error" in lowered:
        return "error"
    if "warn" in lowered:
        return "warn"
    return "info"


def _decode_object(text: str) -> dict[str, Any] | None:
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _parse_structured(line: str) -> Event | None:
    if not line.startswith("{"):
        return None
    data = _decode_object(line)
    if data is None or data.get("type") not in _STRUCTURED_TYPES:
        return None

    kind = data["type"]
    if kind == "metric":
        return _metric_from_payload(data)
    if kind == "checkpoint_sample":
        return _checkpoint_from_payload(data)
    message = str(data.get("message", ""))
    if kind == "error":
        return ErrorEvent(message=message)
    level = data.get("level")
    return LogEvent(message=message, level=level if level in ("info", "warn", "error") else "info")


def _parse_legacy_metric(line: str) -> MetricEvent | None:
    step_match = _LEGACY_STEP.search(line)
    loss_match = _LEGACY_LOSS.search(line)
    if not (step_match and loss_match):
        return None
    reward_match = _LEGACY_REWARD.search(line)
    lr_match = _LEGACY_LR.search(line)
    try:
        return MetricEvent(
            message=line,
            step=int(step_match.group(1)),
            total_steps=int(step_match.group(2)),
            loss=float(loss_match.group(1)),
            reward=float(reward_match.group(1)) if reward_match else None,
            learning_rate=float(lr_match.group(1)) if lr_match else None,
        )
    except ValueError:
        # e.g. "Loss: 1.2.3" or "LR: e-"
        return None


def parse_line(line: str) -> Event:
    """Classify one raw output line.

    Args:
        line: A line from ``Job.log`` without its trailing newline.

    Returns:
        A metric, checkpoint_sample, error or log event.
    """
    line = line.rstrip("\r\n")

    try:
        structured = _parse_structured(line)
        if structured is not None:
            return structured

        if line.startswith(METRIC_PREFIX):
            data = _decode_object(line[len(METRIC_PREFIX):])
            if data is not None:
                return _metric_from_payload(data)
            return LogEvent(message=line)

        if line.startswith(CHECKPOINT_SAMPLE_PREFIX):
            data = _decode_object(line[len(CHECKPOINT_SAMPLE_PREFIX):])
            if data is not None:
                return _checkpoint_from_payload(data)
            return LogEvent(message=line)
    except (ArithmeticError, KeyError, TypeError, ValueError):
        # Payload decoded but is missing or mistypes required fields;
        # pydantic validation errors are ValueErrors too. JSON also admits
        # Infinity and 1e400, which overflow integer conversion
        return LogEvent(message=line)

    if line.startswith(ERROR_MARKER):
        return ErrorEvent(message=line[len(ERROR_MARKER):].removeprefix(" "))

    legacy = _parse_legacy_metric(line)
    if legacy is not None:
        return legacy

    return LogEvent(message=line, level=_infer_level(line))
