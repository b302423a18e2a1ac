"""
Pydantic-based configuration system for stale-sweeper.

Loads the retention configuration from a YAML file. The resulting
SweeperConfig is frozen: it is built once at startup and handed by
reference to the service, scheduler and cleanup executor.

Usage:
    from sweeper.config import load_config, resolve_config_path
    config = load_config(resolve_config_path(None))
"""

import os
import sys
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sweeper.scheduler.cron import CronSchedule

DEFAULT_CONFIG_NAMES = ("config.yaml", "config.yml")
CONFIG_ENV_VAR = "SWEEPER_CONFIG"


class ConfigError(Exception):
    """Raised when the configuration cannot be located, read or validated."""


# ── Sub-configs ─────────────────────────────────────────────────────────────


class LoggingConfig(BaseModel):
    """Log sink settings (relative paths are resolved against the executable dir)."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    file: str = "logs/cleanlog.log"
    rotation: str = Field(default="10 MB", description="Rotate the log file at this size")
    retention: str = Field(default="10 days", description="Drop rotated files older than this")
    compression: str | None = Field(default=None, description="e.g. 'zip' to compress backups")


class ServiceConfig(BaseModel):
    """Identity of the OS-managed service."""

    model_config = ConfigDict(frozen=True)

    name: str = "stale-sweeper"
    display_name: str = "Stale file sweeper"
    description: str = "Periodically deletes stale files from the configured directories"


# ── Root Config ─────────────────────────────────────────────────────────────


class SweeperConfig(BaseModel):
    """Root configuration: which directories to sweep, how old is stale, and when."""

    model_config = ConfigDict(frozen=True)

    directories: List[str] = Field(default_factory=list, description="Roots swept in order")
    days: int = Field(default=3, ge=0, description="Files older than this many days are stale")
    time: str = Field(description="Cron expression (5 fields, or 6 with leading seconds)")
    stop_timeout_seconds: float = Field(
        default=30.0, ge=0, description="Max wait for an in-flight run when stopping"
    )
    logging: LoggingConfig = LoggingConfig()
    service: ServiceConfig = ServiceConfig()

    @field_validator("time")
    @classmethod
    def _validate_cron(cls, value: str) -> str:
        # CronError is a ValueError, so pydantic reports it as a validation error
        CronSchedule(value)
        return value.strip()

    @field_validator("directories")
    @classmethod
    def _validate_directories(cls, value: List[str]) -> List[str]:
        cleaned = [d.strip() for d in value]
        if any(not d for d in cleaned):
            raise ValueError("directories must not contain empty paths")
        return cleaned


# ── Config Loading ──────────────────────────────────────────────────────────


def executable_dir() -> Path:
    """Return the absolute, symlink-resolved directory of the running program.

    Under ``python -m sweeper.main`` (how the systemd unit starts the
    service) argv[0] points into the installed package, so the current
    working directory is used instead.
    """
    if not sys.argv or not sys.argv[0] or sys.argv[0] == "-c":
        return Path.cwd()
    program = Path(sys.argv[0]).resolve()
    if program.parent == Path(__file__).resolve().parent:
        return Path.cwd()
    return program.parent


def resolve_config_path(cli_path: str | Path | None, base_dir: Path | None = None) -> Path:
    """Decide which config file to load.

    Precedence: explicit CLI path, then the SWEEPER_CONFIG environment
    variable, then config.yaml / config.yml next to the executable.

    Args:
        cli_path: Path given on the command line, or None.
        base_dir: Directory searched for the default file. Defaults to executable_dir().

    Returns:
        The chosen path (it may not exist; load_config reports that).
    """
    if cli_path:
        return Path(cli_path)

    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)

    search_dir = base_dir if base_dir is not None else executable_dir()
    for name in DEFAULT_CONFIG_NAMES:
        candidate = search_dir / name
        if candidate.exists():
            return candidate
    return search_dir / DEFAULT_CONFIG_NAMES[0]


def load_config(config_path: str | Path) -> SweeperConfig:
    """Load and validate configuration from YAML.

    Args:
        config_path: Path to the YAML config file.

    Returns:
        Fully resolved, frozen SweeperConfig.

    Raises:
        ConfigError: The file is missing, unreadable, not a mapping, or invalid.
    """
    config_path = Path(config_path)

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data: Dict[str, Any] = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping at the top level")

    # An explicit `days:` with no value means "use the default"
    if data.get("days") is None:
        data.pop("days", None)

    try:
        return SweeperConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config in {config_path}: {e}") from e
