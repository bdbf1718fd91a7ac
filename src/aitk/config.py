"""Configuration models and YAML loading for the edit engine."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

DEFAULT_CONFIG_NAME = "aitk.yaml"

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    ".git",
    ".hg",
    ".svn",
    "__pycache__",
    ".mypy_cache",
    ".ruff_cache",
    ".pytest_cache",
    ".idea",
    ".vscode",
    "node_modules",
    ".venv",
    "venv",
    "build",
    "dist",
    "coverage",
    "*.pyc",
    "*.pyo",
    "*.log",
    ".DS_Store",
    "package-lock.json",
    "yarn.lock",
)


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be loaded or validated."""


class SettingsModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class ContextSettings(SettingsModel):
    """Controls how project context is gathered."""

    ignore: List[str] = Field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    max_snapshot_bytes: int = Field(default=200_000, gt=0)
    include_signatures: bool = False


class ModelSettings(SettingsModel):
    """Model client selection and transport tuning."""

    default: str = "gpt-5-mini"
    base_url: str = "https://api.openai.com/v1/responses"
    api_key: Optional[str] = None
    timeout: float = Field(default=120.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=0.5, ge=0)


class SessionSettings(SettingsModel):
    """Edit session retry and prompt budget policy."""

    max_retries: int = Field(default=2, ge=0)
    max_prompt_tokens: int = Field(default=100_000, gt=0)


class ApplySettings(SettingsModel):
    """Edit applier behaviour switches."""

    allow_first_occurrence: bool = False
    dry_run: bool = False


class EngineConfig(SettingsModel):
    """Top-level configuration for an edit session."""

    context: ContextSettings = Field(default_factory=ContextSettings)
    models: ModelSettings = Field(default_factory=ModelSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    apply: ApplySettings = Field(default_factory=ApplySettings)


def _apply_env_overrides(config: EngineConfig, env: Mapping[str, str]) -> EngineConfig:
    """Honour environment overrides for the model name and timeout."""
    model_override = env.get("AITK_MODEL")
    if model_override and model_override.strip():
        config.models.default = model_override.strip()
    timeout_override = env.get("AITK_TIMEOUT")
    if timeout_override:
        try:
            parsed = float(timeout_override)
        except ValueError:
            raise ConfigError(f"AITK_TIMEOUT must be a number, got {timeout_override!r}") from None
        if parsed > 0:
            config.models.timeout = parsed
    return config


def load_config(
    config_path: Path | str | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> EngineConfig:
    """Load YAML configuration from disk and validate it.

    When ``config_path`` is ``None`` the default ``aitk.yaml`` in the working
    directory is used if present; otherwise built-in defaults apply. An
    explicitly requested file that does not exist is an error.
    """
    env_mapping = os.environ if env is None else env
    explicit = config_path is not None
    candidate = Path(config_path) if explicit else Path.cwd() / DEFAULT_CONFIG_NAME

    if not candidate.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {candidate}")
        return _apply_env_overrides(EngineConfig(), env_mapping)

    try:
        with candidate.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {candidate}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    return _apply_env_overrides(config_from_mapping(data), env_mapping)


def config_from_mapping(data: Mapping[str, Any]) -> EngineConfig:
    """Validate a plain mapping into an :class:`EngineConfig`."""
    try:
        return EngineConfig.model_validate(dict(data))
    except ValidationError as error:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}" for item in error.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from error


__all__ = [
    "ApplySettings",
    "ConfigError",
    "ContextSettings",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_IGNORE_PATTERNS",
    "EngineConfig",
    "ModelSettings",
    "SessionSettings",
    "config_from_mapping",
    "load_config",
]
