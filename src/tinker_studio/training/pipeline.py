"""Pipeline configuration submitted by the browser IDE.

The models accept the camelCase JSON the client sends (``baseModel``,
``loraRank``...) and expose snake_case attributes. All models are frozen:
a configuration becomes the job's immutable snapshot once a job starts.
"""

from __future__ import annotations

import json
import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_SAFE_IDENTIFIER = re.compile(r"^[A-Za-z0-9_\-/.]+$")
MAX_IDENTIFIER_LENGTH = 200

SFT_DATASET_PRESETS: dict[str, str] = {
    "HuggingFaceH4/no_robots": "No Robots",
    "allenai/tulu-3-sft-mixture": "Tulu 3 SFT",
    "custom": "Custom Dataset",
}

RL_DATASET_PRESETS: dict[str, str] = {
    "openai/gsm8k": "GSM8K",
    "lighteval/MATH": "MATH",
    "custom": "Custom Dataset",
}

RewardFunction = Literal["exact_match", "math_equivalence", "code_execution", "custom"]


def validate_safe_identifier(value: str, field_name: str) -> str:
    """Check a value that is embedded in generated code as an identifier.

    Args:
        value: Model name, dataset id, path or similar.
        field_name: Name used in the error message.

    Returns:
        The value unchanged.

    Raises:
        ValueError: If the value is too long or contains characters outside
            letters, digits, ``_``, ``-``, ``/`` and ``.``.
    """
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(f"{field_name} is too long (max {MAX_IDENTIFIER_LENGTH} characters)")
    if not _SAFE_IDENTIFIER.match(value):
        raise ValueError(
            f"{field_name} contains invalid characters. Only alphanumeric, hyphens, "
            "underscores, slashes, and dots are allowed."
        )
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
        # Values are embedded as Python literals; inf and nan have none
        allow_inf_nan=False,
    )


class ModelSettings(_CamelModel):
    base_model: str = ""
    lora_rank: int = 32
    lora_alpha: int = 64
    max_length: int = Field(default=4096, ge=1)

    @field_validator("base_model")
    @classmethod
    def _check_base_model(cls, value: str) -> str:
        if value:
            validate_safe_identifier(value, "Base model")
        return value


class DatasetSettings(_CamelModel):
    preset: str = "HuggingFaceH4/no_robots"
    custom_data: str | None = Field(
        default=None,
        description="JSONL text embedded into the program when preset is 'custom'",
    )

    @field_validator("preset")
    @classmethod
    def _check_preset(cls, value: str) -> str:
        return validate_safe_identifier(value, "Dataset preset")

    @property
    def is_custom(self) -> bool:
        return self.preset == "custom" and bool(self.custom_data)

    def custom_records(self) -> list[dict]:
        """Parse the embedded JSONL, skipping blank lines.

        Raises:
            ValueError: If a non-blank line is not a JSON object.
        """
        records = []
        for number, line in enumerate((self.custom_data or "").splitlines(), start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"Custom dataset line {number} is not valid JSON: {e.msg}") from e
            if not isinstance(record, dict):
                raise ValueError(f"Custom dataset line {number} must be a JSON object")
            records.append(record)
        return records


class Hyperparameters(_CamelModel):
    batch_size: int = 128
    learning_rate: float = 1e-4
    epochs: int = Field(default=1, ge=1)
    warmup_ratio: float = Field(default=0.1, ge=0, le=1)
    gradient_accumulation: int = Field(default=1, ge=1)


class RLSettings(_CamelModel):
    reward_function: RewardFunction = "math_equivalence"
    group_size: int = 16
    kl_coefficient: float = Field(default=0.1, ge=0)
    temperature: float = Field(default=0.7, gt=0)


class CheckpointSettings(_CamelModel):
    save_every: int = Field(default=25, ge=0)
    output_dir: str = "/tmp/tinker-studio/checkpoints"

    @field_validator("output_dir")
    @classmethod
    def _check_output_dir(cls, value: str) -> str:
        return validate_safe_identifier(value, "Output directory")


class TokenizerOverride(_CamelModel):
    id: str | None = None
    trust_remote_code: bool = False
    revision: str | None = None

    @field_validator("id", "revision")
    @classmethod
    def _check_identifier(cls, value: str | None) -> str | None:
        if value is not None:
            validate_safe_identifier(value, "Tokenizer setting")
        return value


class ModelInfo(_CamelModel):
    """Metadata about the selected base model, as listed by the upstream API."""

    id: str
    name: str | None = None
    max_length: int | None = None
    tokenizer: TokenizerOverride | None = None

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str) -> str:
        return validate_safe_identifier(value, "Model id")


class PipelineConfig(_CamelModel):
    """The intermediate representation a training program is generated from."""

    mode: Literal["sft", "rl"] = "sft"
    model: ModelSettings = Field(default_factory=ModelSettings)
    dataset: DatasetSettings = Field(default_factory=DatasetSettings)
    hyperparameters: Hyperparameters = Field(default_factory=Hyperparameters)
    rl: RLSettings | None = None
    checkpointing: CheckpointSettings = Field(default_factory=CheckpointSettings)

    def execution_errors(self) -> list[str]:
        """List the reasons this configuration would not produce a runnable program."""
        errors: list[str] = []
        if not self.model.base_model:
            errors.append("Base model is required")
        if self.model.lora_rank < 1:
            errors.append("LoRA rank must be at least 1")
        if self.hyperparameters.batch_size < 1:
            errors.append("Batch size must be at least 1")
        if self.hyperparameters.learning_rate <= 0:
            errors.append("Learning rate must be positive")
        if self.mode == "rl" and self.rl is None:
            errors.append("RL config is required for RL mode")
        if self.mode == "rl" and self.rl is not None and self.rl.group_size < 2:
            errors.append("Group size must be at least 2 for GRPO")
        if self.dataset.preset == "custom":
            if not self.dataset.custom_data:
                errors.append("Custom dataset requires data")
            else:
                try:
                    self.dataset.custom_records()
                except ValueError as e:
                    errors.append(str(e))
        return errors

    @property
    def dataset_display_name(self) -> str:
        presets = RL_DATASET_PRESETS if self.mode == "rl" else SFT_DATASET_PRESETS
        return presets.get(self.dataset.preset, self.dataset.preset)

    def summary(self) -> str:
        """Short human-readable description of the run."""
        lines = [
            f"{self.mode.upper()} Training",
            f"Model: {self.model.base_model.split('/')[-1]} (LoRA r={self.model.lora_rank})",
            f"Dataset: {self.dataset.preset.split('/')[-1]}",
            f"LR: {self.hyperparameters.learning_rate}, Batch: {self.hyperparameters.batch_size}",
        ]
        if self.mode == "rl" and self.rl is not None:
            lines.append(f"GRPO: {self.rl.group_size} samples, KL={self.rl.kl_coefficient}")
        return "\n".join(lines)
