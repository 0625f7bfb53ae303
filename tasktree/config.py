"""Settings for a single tasktree invocation.

Settings are loaded once at the edge (CLI or MCP server) and passed
explicitly to the store, the graph engine and the lifecycle controller.

Precedence, highest first:
    explicit overrides > TASKTREE_* environment > settings file > defaults

Usage:
    from tasktree.config import load_settings

    settings = load_settings()
    settings = load_settings(overrides={"store_root": tmp_path})
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import pydantic
import yaml
from pydantic import BaseModel, Field, field_validator

from tasktree.errors import ConfigError
from tasktree.paths import DEFAULT_STORE_ROOT, ROOT_ENV_VAR, get_config_path

logger = logging.getLogger(__name__)

ENV_PREFIX = "TASKTREE_"

UnresolvedPolicy = Literal["satisfied", "blocking"]


class Settings(BaseModel):
    """Resolved configuration for one invocation."""

    store_root: Path = Field(default_factory=lambda: DEFAULT_STORE_ROOT.expanduser())
    record_extension: str = "yaml"

    # Adds an optional review stage between in_progress and done
    review_stage: bool = False

    # Reject tasks whose embedded phase number disagrees with their phase
    enforce_structural_ids: bool = True

    # How dependency ids that match no known task are treated
    unresolved_dependencies: UnresolvedPolicy = "satisfied"

    log_level: str = "WARNING"

    @field_validator("store_root", mode="after")
    @classmethod
    def _expand_root(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("record_extension", mode="after")
    @classmethod
    def _strip_dot(cls, value: str) -> str:
        value = value.lstrip(".")
        if not value or "/" in value:
            raise ValueError("record_extension must be a bare file extension such as 'yaml'")
        return value

    @field_validator("log_level", mode="after")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level '{value}'")
        return value


def _read_settings_file(path: Path) -> dict[str, Any]:
    """Load the YAML settings file, or {} when it does not exist."""
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError, ValueError) as e:
        raise ConfigError(f"Cannot read settings file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Settings file {path} must contain a mapping, got {type(data).__name__}")
    return data


def _env_values(env: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in Settings.model_fields:
        raw = env.get(ENV_PREFIX + name.upper())
        if raw:
            values[name] = raw
    # TASKTREE_ROOT is the documented spelling for store_root
    if env.get(ROOT_ENV_VAR):
        values["store_root"] = env[ROOT_ENV_VAR]
    return values


def load_settings(
    overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Resolve settings from defaults, file, environment and overrides.

    Args:
        overrides: Explicit values (e.g. from CLI flags); None values are ignored
        env: Environment mapping, defaults to os.environ

    Returns:
        Validated Settings

    Raises:
        ConfigError: If the settings file or any value is invalid
    """
    env = os.environ if env is None else env
    explicit = {k: v for k, v in (overrides or {}).items() if v is not None}
    env_values = _env_values(env)

    root_raw = explicit.get("store_root") or env_values.get("store_root") or DEFAULT_STORE_ROOT
    store_root = Path(root_raw).expanduser()

    config_path = get_config_path(store_root, env)

    merged: dict[str, Any] = {}
    merged.update(_read_settings_file(config_path))
    merged.update(env_values)
    merged.update(explicit)
    merged.setdefault("store_root", store_root)

    try:
        settings = Settings.model_validate(merged)
    except pydantic.ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}") from e

    logger.debug("Loaded settings from %s: %s", config_path, settings)
    return settings
