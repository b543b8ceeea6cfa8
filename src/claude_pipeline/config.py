"""Application configuration using Pydantic settings."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .schemas import OutputFormat, TaskOptions


def _default_options() -> TaskOptions:
    # JSON output is what carries the session id back from the CLI.
    return TaskOptions(output_format=OutputFormat.JSON)


class Settings(BaseSettings):
    """Central settings for pipeline and workflow runs."""

    model_config = SettingsConfigDict(
        env_prefix="CLAUDE_PIPELINE_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    claude_executable: str = "claude"
    default_model: str = "auto"
    working_directory: Path = Field(default_factory=Path.cwd)
    options: TaskOptions = Field(default_factory=_default_options)
    logs_dir: Optional[Path] = None

    def resolve_working_directory(self, override: Optional[Path] = None) -> Path:
        """Return the directory steps run in, failing early when it is missing."""

        directory = Path(override or self.working_directory).expanduser().resolve()
        if not directory.is_dir():
            raise ConfigurationError(f"Invalid working directory: {directory}")
        return directory

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON serialisable copy of the settings."""
        return self.model_dump(mode="json")


def load_settings(path: Optional[Path] = None, **overrides: Any) -> Settings:
    """
    Build settings from defaults, the environment and an optional config file.

    The file may be JSON or YAML. Keyword overrides whose value is ``None`` are
    ignored so CLI options that were not given do not mask file values.
    """
    data: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.is_file():
            raise ConfigurationError(f"Config file not found: {config_path}")
        data = _read_config_file(config_path)

    data.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return Settings(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def _read_config_file(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in {".yml", ".yaml"}:
            payload = yaml.safe_load(text) or {}
        else:
            payload = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Could not parse config file {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return payload
