"""Render runnable training programs from a :class:`PipelineConfig`.

The generated program reports progress as one JSON object per stdout line
carrying a ``type`` discriminant (``metric``, ``checkpoint_sample``), which
:func:`tinker_studio.training.parser.parse_line` decodes. The upstream
credential is read from the environment by the program and is never part
of the rendered text.
"""

from __future__ import annotations

from typing import Any, Protocol

import jinja2

from tinker_studio import __version__
from tinker_studio.training.pipeline import ModelInfo, PipelineConfig


class ScriptGenerator(Protocol):
    """Anything that turns a validated configuration into program text."""

    def generate(self, config: PipelineConfig, model: ModelInfo | None = None) -> str: ...


def _python_string(value: Any) -> str:
    """Render a value as a Python string literal."""
    if not isinstance(value, str):
        raise TypeError(f"expected str, got {type(value).__name__}")
    return repr(value)


def _build_environment() -> jinja2.Environment:
    env = jinja2.Environment(
        loader=jinja2.PackageLoader("tinker_studio.training", "templates"),
        undefined=jinja2.StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["pystr"] = _python_string
    return env


class TemplateScriptGenerator:
    """Default generator backed by the packaged Jinja2 templates."""

    def __init__(self, jinja_env: jinja2.Environment | None = None) -> None:
        self.env = jinja_env or _build_environment()

    def generate(self, config: PipelineConfig, model: ModelInfo | None = None) -> str:
        """Render the program for ``config``.

        Args:
            config: Validated configuration. ``execution_errors()`` must be empty.
            model: Optional metadata for the base model; its tokenizer
                overrides are applied when ``model.id`` matches.

        Returns:
            Python source text.

        Raises:
            ValueError: If the configuration cannot produce a runnable program.
        """
        errors = config.execution_errors()
        if errors:
            raise ValueError("; ".join(errors))

        template = self.env.get_template("rl.py.j2" if config.mode == "rl" else "sft.py.j2")
        return template.render(
            config=config,
            version=__version__,
            model_id=model.id if model else config.model.base_model,
            tokenizer=model.tokenizer if model else None,
            reward_function=config.rl.reward_function if config.rl else None,
        )
