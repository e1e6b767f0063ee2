"""
Cadence Configuration — loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (CADENCE_*)
3. Project config (./cadence.toml)
4. User config (~/.cadence/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    CADENCE_DB_PATH → scheduler.db_path
    CADENCE_POLL_INTERVAL → scheduler.poll_interval
    CADENCE_DEFAULT_MAX_RETRIES → scheduler.default_max_retries
    CADENCE_BACKOFF_MAX_SECONDS → backoff.max_seconds
    CADENCE_LOG_DIR → logging.dir
    CADENCE_LOG_LEVEL → logging.console_level
    CADENCE_LOG_RETENTION_DAYS → logging.retention_days
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from cadence.core.errors import ConfigError

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SchedulerConfig(BaseModel):
    """Scheduler and worker configuration."""

    db_path: str = "~/.cadence/scheduler.db"
    poll_interval: int = 30  # seconds
    default_max_retries: int = 3
    overdue_grace_minutes: int = 5

    @field_validator("poll_interval")
    @classmethod
    def _positive_poll(cls, v: int) -> int:
        if v < 1:
            raise ValueError("poll_interval must be at least 1 second")
        return v

    @field_validator("default_max_retries", "overdue_grace_minutes")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v


class BackoffConfig(BaseModel):
    """
    Retry backoff policy.

    The first len(schedule) retries use the table; later retries use
    min(2 ** retry_count * base_seconds, max_seconds).
    """

    schedule: list[int] = Field(default_factory=lambda: [60, 120, 240, 480, 960])
    base_seconds: int = 60
    max_seconds: int = 3600

    @field_validator("schedule")
    @classmethod
    def _non_negative_schedule(cls, v: list[int]) -> list[int]:
        if any(s < 0 for s in v):
            raise ValueError("backoff delays must be >= 0")
        return v

    def delay_for(self, retry_count: int) -> int:
        """Delay in seconds before the retry following attempt `retry_count`."""
        if retry_count < len(self.schedule):
            return self.schedule[retry_count]
        return min(2**retry_count * self.base_seconds, self.max_seconds)


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class LoggingConfig(BaseModel):
    """Log output configuration."""

    dir: str = "~/.cadence/logs"
    console_level: str = "WARNING"
    file_level: str = "DEBUG"
    retention_days: int = 14  # 0 keeps every dated log file

    @field_validator("console_level", "file_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        name = v.upper()
        if name not in LOG_LEVELS:
            raise ValueError(f"unknown log level {v!r}, expected one of {', '.join(LOG_LEVELS)}")
        return name

    @field_validator("retention_days")
    @classmethod
    def _non_negative_retention(cls, v: int) -> int:
        if v < 0:
            raise ValueError("retention_days must be >= 0")
        return v


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CadenceConfig(BaseModel):
    """Root configuration for Cadence."""

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> CadenceConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        # Layer 1: User config (~/.cadence/config.toml)
        user_config_path = user_path or Path.home() / ".cadence" / "config.toml"
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        # Layer 2: Project config (./cadence.toml)
        project_config_path = project_path or Path.cwd() / "cadence.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        # Layer 3: Environment variables
        _deep_merge(merged, _load_from_env())

        # Layer 4: Explicit overrides
        if overrides:
            _deep_merge(merged, overrides)

        _substitute_env_vars(merged)

        try:
            return CadenceConfig(**merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def get_db_path(self) -> Path:
        return Path(self.scheduler.db_path).expanduser()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file."""
    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


def _load_from_env() -> dict[str, Any]:
    """Load configuration from CADENCE_* environment variables."""
    result: dict[str, Any] = {}

    env_mapping = {
        "CADENCE_DB_PATH": ("scheduler", "db_path"),
        "CADENCE_POLL_INTERVAL": ("scheduler", "poll_interval"),
        "CADENCE_DEFAULT_MAX_RETRIES": ("scheduler", "default_max_retries"),
        "CADENCE_BACKOFF_MAX_SECONDS": ("backoff", "max_seconds"),
        "CADENCE_LOG_DIR": ("logging", "dir"),
        "CADENCE_LOG_LEVEL": ("logging", "console_level"),
        "CADENCE_LOG_RETENTION_DAYS": ("logging", "retention_days"),
    }

    for env_var, (section, key) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            result.setdefault(section, {})[key] = _convert_value(value)

    return result


def _convert_value(value: str) -> Any:
    """Convert string value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _deep_merge(base: dict, override: dict) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _substitute(value: str) -> str:
    for var_name in _ENV_PATTERN.findall(value):
        value = value.replace(f"${{{var_name}}}", os.environ.get(var_name, ""))
    return value


def _substitute_env_vars(data: dict) -> None:
    """Recursively substitute ${ENV_VAR} patterns in string values."""
    for key, value in data.items():
        if isinstance(value, dict):
            _substitute_env_vars(value)
        elif isinstance(value, str):
            data[key] = _substitute(value)
        elif isinstance(value, list):
            data[key] = [_substitute(v) if isinstance(v, str) else v for v in value]
