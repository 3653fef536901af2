from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import tomlkit
from pydantic import BaseModel, Field, ValidationError, field_validator
from tomlkit.exceptions import TOMLKitError

from skillgate.exception import ConfigError
from skillgate.share import get_share_dir
from skillgate.utils.logging import level_number, logger, module_key


class MatcherConfig(BaseModel):
    """Weights and thresholds used by the trigger matcher."""

    name_exact_weight: float = Field(default=100.0, ge=0.0)
    """Score for a task that is exactly an explicit invocation name."""
    name_substring_weight: float = Field(default=40.0, ge=0.0)
    """Score for an invocation name appearing as a whole word in the task."""
    keyword_weight: float = Field(default=10.0, ge=0.0)
    """Score per token of every trigger phrase found in the task."""
    description_weight: float = Field(default=2.0, ge=0.0)
    """Score per description word shared with the task."""
    attachment_bonus: float = Field(default=5.0, ge=0.0)
    """Score per attachment name that is a required input of the definition."""
    min_score: float = Field(default=10.0, ge=0.0)
    """Floor below which a candidate is never considered a match."""
    margin: float = Field(default=5.0, ge=0.0)
    """Lead the top candidate needs over the runner-up to auto-resolve."""
    top_k: int = Field(default=3, ge=1, le=10)
    """Size of the disambiguation set."""


class GenerationConfig(BaseModel):
    """Bounds on the call out to the external generator."""

    timeout_ms: int = Field(default=60000, ge=100, le=600000)
    max_retries: int = Field(default=1, ge=0, le=5)
    """Retries after an output contract failure before the invocation is rejected."""


class LoggingConfig(BaseModel):
    levels: dict[str, str] = Field(default_factory=dict)
    """Per-module log levels, e.g. ``{"matcher": "DEBUG", "default": "WARNING"}``."""
    rotation: str = "06:00"
    """When the CLI log file rotates, in loguru's ``rotation`` syntax."""
    retention: str = "10 days"
    """How long rotated CLI log files are kept."""

    @field_validator("levels")
    @classmethod
    def _normalize_levels(cls, levels: dict[str, str]) -> dict[str, str]:
        normalized: dict[str, str] = {}
        for module, level_name in levels.items():
            level_number(level_name)
            normalized[module_key(module)] = level_name.strip().upper()
        return normalized


class Config(BaseModel):
    """Main configuration structure."""

    matcher: MatcherConfig = Field(default_factory=MatcherConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def get_config_file() -> Path:
    return get_share_dir() / "config.toml"


def get_default_config() -> Config:
    return Config()


def load_config(config_file: Path | None = None) -> Config:
    """Load configuration from a TOML (or JSON) file.

    Falls back to the default configuration when the file does not exist.

    Raises:
        ConfigError: If the file exists but is invalid.
    """
    config_file = config_file or get_config_file()
    if not config_file.exists():
        logger.debug("No config file at {file}, using defaults", file=config_file)
        return get_default_config()
    logger.debug("Loading config from {file}", file=config_file)
    try:
        text = config_file.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read config file {config_file}: {e}") from e
    return load_config_from_string(text)


def load_config_from_string(text: str) -> Config:
    """Parse configuration text, trying TOML first and JSON second."""
    data = _parse_config_text(text)
    try:
        return Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def _parse_config_text(text: str) -> dict[str, Any]:
    try:
        return tomlkit.parse(text).unwrap()
    except TOMLKitError:
        pass
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid configuration text: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Invalid configuration text: expected a table/object at top level")
    return data
