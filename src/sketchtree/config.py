from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Mapping, TypeVar

import yaml
from pydantic import BaseModel, ConfigDict, Field, PositiveInt, ValidationError, model_validator

from sketchtree.core.kmer_size import DEFAULT_TARGET_PROBABILITY
from sketchtree.core.outliers import DEFAULT_EPSILON
from sketchtree.exceptions import SketchTreeUsageError
from sketchtree.paths import DEFAULT_WORKDIR


class CommonConfig(BaseModel):
    """Shared command options across sketchtree subcommands."""

    model_config = ConfigDict(extra="forbid")

    threads: PositiveInt = 1
    dry_run: bool = False
    force: bool = False
    log_file: Path | None = None
    verbose: bool = False
    quiet: bool = False

    @model_validator(mode="after")
    def _validate_verbosity(self) -> "CommonConfig":
        if self.verbose and self.quiet:
            raise ValueError("`verbose` and `quiet` cannot both be true.")
        return self


class SketchConfig(CommonConfig):
    """Options shared by every command that sketches genomes."""

    inputs: list[Path] = Field(default_factory=list)
    workdir: Path = DEFAULT_WORKDIR
    keep: bool = False

    sketch_size: PositiveInt = 1000
    seed: int = Field(default=42, ge=0, le=2**64 - 1)
    kmer_size: int | None = Field(default=None, ge=1, le=32)
    oversketch: PositiveInt = 200
    min_abundance: PositiveInt = 1
    backend: Literal["builtin", "mash"] = "builtin"

    target_probability: float = Field(default=DEFAULT_TARGET_PROBABILITY, gt=0.0, lt=1.0)
    outlier_epsilon: float = Field(default=DEFAULT_EPSILON, gt=0.0)
    outlier_policy: Literal["warn", "exclude", "abort"] = "warn"


class TreeConfig(SketchConfig):
    output: Path | None = None
    canonical: bool = False


class MatrixConfig(SketchConfig):
    output: Path | None = None


class SketchTreeConfig(BaseModel):
    """Top-level YAML config model."""

    model_config = ConfigDict(extra="forbid")

    tree: TreeConfig | None = None
    matrix: MatrixConfig | None = None


def load_config(config_path: Path | None) -> SketchTreeConfig:
    """Load and validate a YAML config file."""

    if config_path is None:
        return SketchTreeConfig()

    if not config_path.exists():
        raise SketchTreeUsageError(f"Config file does not exist: {config_path}")

    if not config_path.is_file():
        raise SketchTreeUsageError(f"Config path is not a file: {config_path}")

    payload_raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if payload_raw is None:
        payload_raw = {}

    if not isinstance(payload_raw, dict):
        raise SketchTreeUsageError("Config YAML must be a key/value mapping at the top level.")

    try:
        return SketchTreeConfig.model_validate(payload_raw)
    except ValidationError as exc:
        raise SketchTreeUsageError(f"Invalid config file: {config_path}\n{exc}") from exc


T = TypeVar("T", bound=CommonConfig)


def merge_command_config(
    *,
    config_path: Path | None,
    section: str,
    model_cls: type[T],
    cli_overrides: Mapping[str, Any],
) -> T:
    """Merge YAML config values with explicit CLI overrides and validate."""

    root = load_config(config_path)
    section_model = getattr(root, section)

    merged: dict[str, Any] = {}
    if section_model is not None:
        merged.update(section_model.model_dump(exclude_none=True, exclude_unset=True))

    for key, value in cli_overrides.items():
        if value is not None:
            merged[key] = value

    try:
        return model_cls.model_validate(merged)
    except ValidationError as exc:
        raise SketchTreeUsageError(f"Invalid merged config for `{section}`:\n{exc}") from exc
