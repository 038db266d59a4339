"""
Configuration system for QueryDoctor.

Environment variables are the primary config source, with an optional
YAML/JSON file for local development:

- QUERYDOCTOR_<SETTING> for global settings
- QUERYDOCTOR_ANALYZER_<TYPE>_<SETTING> for per-analyzer thresholds
- QUERYDOCTOR_CONFIG_FILE to load a file instead

Usage:
    from querydoctor.config import get_config

    config = get_config()
    if config.is_analyzer_enabled("n_plus_one"):
        options = config.analyzer_options("n_plus_one")

Example file (.querydoctor.yml):

    storage:
      driver: sqlite
      path: var/doctor.sqlite
      retention_days: 7
    analyzers:
      slow:
        threshold_ms: 250
      select_star:
        enabled: false
    masking:
      columns: [password, token, iban]
"""

from __future__ import annotations

import json
import logging
import os
import re
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from querydoctor.exceptions import ConfigurationError
from querydoctor.masking import (
    DEFAULT_SENSITIVE_COLUMNS,
    DEFAULT_VALUE_PATTERNS,
    BindingMasker,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "QUERYDOCTOR_"


class StorageDriver(str, Enum):
    """Available storage backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class StorageConfig(BaseModel):
    """Where and how long captured events and issues are kept."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    driver: StorageDriver = Field(
        default=StorageDriver.SQLITE,
        description="Storage backend (memory/sqlite)",
    )
    path: str = Field(
        default=".querydoctor/doctor.sqlite",
        description="SQLite database file (':memory:' for a throwaway store)",
    )
    retention_days: int = Field(
        default=14,
        ge=1,
        description="Events and stale issues older than this are deleted",
    )
    cleanup_every: int = Field(
        default=500,
        ge=0,
        description="Run retention cleanup every N writes (0 disables)",
    )
    busy_timeout_ms: int = Field(
        default=5000,
        ge=0,
        description="How long a writer waits for the SQLite lock",
    )


class MaskingConfig(BaseModel):
    """PII masking policy applied to bindings before storage."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = Field(default=True, description="Whether masking runs at all")
    columns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SENSITIVE_COLUMNS),
        description="Column names whose bindings are always masked",
    )
    patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_VALUE_PATTERNS),
        description="Regular expressions matching PII values",
    )


class CaptureConfig(BaseModel):
    """Capture-side behaviour: sampling, stack excerpts and ignore lists."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    http: bool = Field(default=True, description="Capture HTTP request contexts")
    queue: bool = Field(default=True, description="Capture queued job contexts")
    cli: bool = Field(default=False, description="Capture CLI command contexts")
    sample_rate: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        description="Fraction of units of work to capture",
    )
    stack_depth: int = Field(default=10, ge=0, description="Max stack frames per event")
    exclude_paths: list[str] = Field(
        default_factory=lambda: ["site-packages", "dist-packages", "/querydoctor/"],
        description="Frames whose file path contains any of these are skipped",
    )
    ignore_patterns: list[str] = Field(
        default_factory=lambda: [r"\bdoctor_\w+", r"^\s*pragma\b", r"\bsqlite_master\b"],
        description="SQL matching any of these regexes is not captured",
    )
    ignore_routes: list[str] = Field(
        default_factory=list,
        description="Glob patterns for routes that are never captured",
    )
    max_buffer: int = Field(
        default=5000,
        ge=1,
        description="Max events buffered per unit of work before dropping",
    )


class CIConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    fail_on: str = Field(default="high", description="Lowest severity that fails CI")


class Config(BaseModel):
    """
    QueryDoctor configuration.

    Per-analyzer options are kept as plain dicts here and validated by each
    analyzer's own config schema when the pipeline is built.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = Field(default=True, description="Master switch for capture")
    storage: StorageConfig = Field(default_factory=StorageConfig)
    masking: MaskingConfig = Field(default_factory=MaskingConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    analyzers: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Per-analyzer options keyed by issue type",
    )
    ci: CIConfig = Field(default_factory=CIConfig)

    def analyzer_options(self, analyzer_type: str) -> dict[str, Any]:
        """Get the configured options for an analyzer (empty dict for defaults)."""
        return dict(self.analyzers.get(analyzer_type, {}))

    def is_analyzer_enabled(self, analyzer_type: str) -> bool:
        return bool(self.analyzers.get(analyzer_type, {}).get("enabled", True))


def _parse_env_bool(value: str | None, default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_env_int(value: str | None, default: int) -> int:
    """Parse integer from environment variable."""
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Could not parse integer from %r, using %s", value, default)
        return default


def _parse_env_float(value: str | None, default: float) -> float:
    """Parse float from environment variable."""
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Could not parse float from %r, using %s", value, default)
        return default


def _parse_env_number(value: str) -> int | float | bool:
    lowered = value.lower()
    if lowered in ("true", "false", "yes", "no", "on", "off"):
        return _parse_env_bool(value)
    return float(value) if "." in value else int(value)


def _build(data: dict[str, Any], source: str) -> Config:
    try:
        return Config(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {source}: {e}") from e


def load_config_from_env(environ: dict[str, str] | None = None) -> Config:
    """
    Load configuration from environment variables.

    Examples:
    - QUERYDOCTOR_STORAGE=memory
    - QUERYDOCTOR_STORAGE_PATH=/var/lib/app/doctor.sqlite
    - QUERYDOCTOR_RETENTION_DAYS=7
    - QUERYDOCTOR_MASKING_ENABLED=false
    - QUERYDOCTOR_ANALYZER_SLOW_THRESHOLD_MS=250
    - QUERYDOCTOR_ANALYZER_SELECT_STAR_ENABLED=false
    """
    env = os.environ if environ is None else environ

    storage = StorageConfig()
    storage_kwargs: dict[str, Any] = {
        "driver": env.get(f"{ENV_PREFIX}STORAGE", storage.driver.value),
        "path": env.get(f"{ENV_PREFIX}STORAGE_PATH", storage.path),
        "retention_days": _parse_env_int(
            env.get(f"{ENV_PREFIX}RETENTION_DAYS"), storage.retention_days
        ),
        "cleanup_every": _parse_env_int(
            env.get(f"{ENV_PREFIX}CLEANUP_EVERY"), storage.cleanup_every
        ),
        "busy_timeout_ms": _parse_env_int(
            env.get(f"{ENV_PREFIX}BUSY_TIMEOUT_MS"), storage.busy_timeout_ms
        ),
    }

    data: dict[str, Any] = {
        "enabled": _parse_env_bool(env.get(f"{ENV_PREFIX}ENABLED"), True),
        "storage": storage_kwargs,
        "masking": {
            "enabled": _parse_env_bool(env.get(f"{ENV_PREFIX}MASKING_ENABLED"), True),
        },
        "capture": {
            "sample_rate": _parse_env_float(env.get(f"{ENV_PREFIX}SAMPLE_RATE"), 1.0),
        },
        "ci": {"fail_on": env.get(f"{ENV_PREFIX}FAIL_ON", "high")},
    }

    # QUERYDOCTOR_ANALYZER_<TYPE>_<SETTING>; types may contain underscores,
    # so match known setting names from the right.
    analyzers: dict[str, dict[str, Any]] = {}
    analyzer_prefix = f"{ENV_PREFIX}ANALYZER_"
    for key, value in env.items():
        if not key.startswith(analyzer_prefix):
            continue
        rest = key[len(analyzer_prefix):].lower()
        analyzer_type, setting = _split_analyzer_key(rest)
        if analyzer_type is None:
            logger.warning("Ignoring unrecognised analyzer setting %s", key)
            continue
        try:
            analyzers.setdefault(analyzer_type, {})[setting] = _parse_env_number(value)
        except ValueError:
            logger.warning("Could not parse threshold %s=%s", key, value)

    data["analyzers"] = analyzers
    return _build(data, "environment")


_ANALYZER_SETTINGS = (
    "enabled",
    "min_repetitions",
    "min_total_ms",
    "min_count",
    "threshold_ms",
    "min_occurrences",
    "min_avg_ms",
)


def _split_analyzer_key(rest: str) -> tuple[str | None, str]:
    for setting in _ANALYZER_SETTINGS:
        suffix = f"_{setting}"
        if rest.endswith(suffix) and len(rest) > len(suffix):
            return rest[: -len(suffix)], setting
    return None, rest


def load_config_from_file(path: Path) -> Config:
    """
    Load configuration from a JSON or YAML file.

    Falls back to environment variables when the file does not exist.
    A file that exists but cannot be parsed or validated raises
    ConfigurationError rather than silently running with defaults.
    """
    if not path.exists():
        logger.warning("Config file not found: %s, using environment", path)
        return load_config_from_env()

    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Failed to load config from {path}: {e}", config_key=str(path)
        ) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {path} must contain a mapping at the top level",
            config_key=str(path),
        )

    return _build(data, str(path))


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the global configuration instance.

    Loads from:
    1. QUERYDOCTOR_CONFIG_FILE environment variable (if set)
    2. Environment variables (default)

    Result is cached for the lifetime of the process.
    """
    config_file = os.environ.get(f"{ENV_PREFIX}CONFIG_FILE")

    if config_file:
        return load_config_from_file(Path(config_file))

    return load_config_from_env()


def reset_config() -> None:
    """Reset the cached configuration (mainly for testing)."""
    get_config.cache_clear()


def build_masker(config: Config) -> BindingMasker:
    """Create the binding masker described by the masking policy."""
    if not config.masking.enabled:
        return BindingMasker()
    try:
        return BindingMasker(config.masking.columns, config.masking.patterns)
    except re.error as e:
        raise ConfigurationError(
            f"Invalid masking pattern: {e}", config_key="masking.patterns"
        ) from e
