"""Configuration loaded from .sessionlog.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from sessionlog.formatters.base import OutputFormat
from sessionlog.llm import DEFAULT_TIMEOUT, Provider
from sessionlog.parsers.models import Tool

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".sessionlog.toml"
GLOBAL_CONFIG_PATH = Path.home() / ".config" / "sessionlog" / "config.toml"

# ~150 KB per call: about 37.5K tokens at 4 bytes per token.
DEFAULT_MAX_INPUT_BYTES = 150 * 1024


class OutputConfig(BaseModel):
    """[output] section."""

    directory: str | None = None
    format: OutputFormat = OutputFormat.TEXT


class SourcesConfig(BaseModel):
    """[sources] section: per-tool log directory overrides."""

    claude: str | None = None
    codex: str | None = None
    opencode: str | None = None

    def overrides(self) -> dict[Tool, Path | None]:
        return {
            Tool.CLAUDE: _expand(self.claude),
            Tool.CODEX: _expand(self.codex),
            Tool.OPENCODE: _expand(self.opencode),
        }


class CompactSectionConfig(BaseModel):
    """[compact] section."""

    provider: Provider = Provider.CLAUDE
    model: str | None = None
    timeout: int = DEFAULT_TIMEOUT
    max_input_bytes: int = DEFAULT_MAX_INPUT_BYTES

    @field_validator("max_input_bytes")
    @classmethod
    def _positive_budget(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("max_input_bytes must be positive")
        return value


class BatchSectionConfig(BaseModel):
    """[batch] section."""

    workers: int = Field(default=1, ge=1)


class SessionLogConfig(BaseModel):
    """Top-level configuration."""

    output: OutputConfig = Field(default_factory=OutputConfig)
    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    compact: CompactSectionConfig = Field(default_factory=CompactSectionConfig)
    batch: BatchSectionConfig = Field(default_factory=BatchSectionConfig)

    @property
    def output_path(self) -> Path | None:
        return _expand(self.output.directory)


def _expand(value: str | None) -> Path | None:
    return Path(value).expanduser() if value else None


def load_config(path: str | Path | None = None) -> SessionLogConfig:
    """Load configuration from a TOML file.

    Search order:
    1. Explicit path (if provided)
    2. .sessionlog.toml in CWD
    3. ~/.config/sessionlog/config.toml

    Then overlay environment variables.
    """
    data: dict[str, object] = {}

    if path is not None:
        toml_path = Path(path)
        if toml_path.exists():
            data = _load_toml(toml_path)
        else:
            logger.warning("Config file not found: %s", toml_path)
    else:
        for candidate in (Path(".") / CONFIG_FILENAME, GLOBAL_CONFIG_PATH):
            if candidate.exists():
                data = _load_toml(candidate)
                logger.info("Loaded config from %s", candidate)
                break

    config = SessionLogConfig.model_validate(data) if data else SessionLogConfig()
    return _apply_env_vars(config)


def merge_cli_overrides(config: SessionLogConfig, **cli_kwargs: object) -> SessionLogConfig:
    """Overlay explicitly-set CLI flags onto the config.

    Only values that are not None override the config.
    """
    data = config.model_dump()

    mapping: dict[str, tuple[str, str]] = {
        "output_directory": ("output", "directory"),
        "output_format": ("output", "format"),
        "provider": ("compact", "provider"),
        "model": ("compact", "model"),
        "timeout": ("compact", "timeout"),
        "max_input_bytes": ("compact", "max_input_bytes"),
        "workers": ("batch", "workers"),
    }

    for key, value in cli_kwargs.items():
        if value is None:
            continue
        if key in mapping:
            section, field = mapping[key]
            data[section][field] = str(value) if isinstance(value, Path) else value

    return SessionLogConfig.model_validate(data)


def _load_toml(path: Path) -> dict[str, object]:
    """Load a TOML file and return the data dict."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}


def _apply_env_vars(config: SessionLogConfig) -> SessionLogConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    env_mapping: dict[str, tuple[str, str]] = {
        "SESSIONLOG_OUTPUT_DIR": ("output", "directory"),
        "SESSIONLOG_FORMAT": ("output", "format"),
        "SESSIONLOG_MODEL": ("compact", "model"),
        "SESSIONLOG_PROVIDER": ("compact", "provider"),
    }

    for env_var, (section, field) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            data[section][field] = value

    budget_raw = os.environ.get("SESSIONLOG_MAX_INPUT_BYTES")
    if budget_raw is not None:
        try:
            data["compact"]["max_input_bytes"] = int(budget_raw)
        except ValueError:
            logger.warning("Ignoring non-integer SESSIONLOG_MAX_INPUT_BYTES=%r", budget_raw)

    return SessionLogConfig.model_validate(data)
