"""Configuration management with hierarchical loading."""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from symphony.domain.models import LaneAssignment
from symphony.infrastructure.exceptions import ConfigurationError, LaneConfigError
from symphony.infrastructure.logger import get_logger

logger = get_logger(__name__)

SYMPHONY_DIR = ".symphony"
LANE_CONFIG_FILE = "symphony.config.yml"

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str | int | float) -> float:
    """Convert a duration such as ``"30m"``, ``"5s"`` or ``90`` to seconds."""
    if isinstance(value, int | float):
        return float(value)
    match = _DURATION_RE.match(value)
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return float(amount) * _DURATION_UNITS[unit or "s"]


class SupervisorConfig(BaseModel):
    """Agent supervision configuration."""

    agent_timeout: str = "30m"
    max_attempts: int = Field(default=3, ge=1)
    poll_interval: str = "5s"
    max_agents: int = Field(default=4, ge=1)

    @field_validator("agent_timeout", "poll_interval", mode="before")
    @classmethod
    def validate_duration(cls, v: Any) -> str:
        parse_duration(v)
        return str(v)

    @property
    def agent_timeout_seconds(self) -> float:
        return parse_duration(self.agent_timeout)

    @property
    def poll_interval_seconds(self) -> float:
        return parse_duration(self.poll_interval)


class IntegrationConfig(BaseModel):
    """Integration branch and verification gate configuration."""

    protected_branch: str = "main"
    verify_command: str | None = None
    verify_timeout: str = "30m"
    max_test_attempts: int = Field(default=3, ge=1)

    @field_validator("verify_timeout", mode="before")
    @classmethod
    def validate_duration(cls, v: Any) -> str:
        parse_duration(v)
        return str(v)

    @property
    def verify_timeout_seconds(self) -> float:
        return parse_duration(self.verify_timeout)


class WorkerConfig(BaseModel):
    """Worker session (Claude CLI) configuration."""

    cli_path: str = "claude"
    extra_args: list[str] = Field(default_factory=lambda: ["--dangerously-skip-permissions"])


class Config(BaseModel):
    """Main configuration model."""

    version: str = "0.1.0"
    log_level: str = "INFO"
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    integration: IntegrationConfig = Field(default_factory=IntegrationConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)


class ConfigManager:
    """Manage configuration loading from multiple sources with hierarchy."""

    def __init__(self, project_root: Path | None = None) -> None:
        """Initialize config manager.

        Args:
            project_root: Root directory of the project (default: current directory)
        """
        self.project_root = project_root or Path.cwd()
        self._config: Config | None = None

    def load_config(self) -> Config:
        """Load configuration from all sources in hierarchy order.

        Configuration hierarchy (highest priority last):
        1. System defaults (embedded in Config model)
        2. Project defaults (.symphony/config.yaml)
        3. User overrides (~/.symphony/config.yaml)
        4. Project-local overrides (.symphony/local.yaml)
        5. Environment variables (SYMPHONY_* prefix)

        Returns:
            Merged configuration

        Raises:
            ConfigurationError: If the merged values fail validation
        """
        if self._config is not None:
            return self._config

        config_dict: dict[str, Any] = {}

        for path in (
            self.project_root / SYMPHONY_DIR / "config.yaml",
            Path.home() / SYMPHONY_DIR / "config.yaml",
            self.project_root / SYMPHONY_DIR / "local.yaml",
        ):
            if path.exists():
                config_dict = self._merge_dicts(config_dict, self._load_yaml(path))

        config_dict = self._apply_env_vars(config_dict)

        try:
            self._config = Config(**config_dict)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        return self._config

    def load_lanes(self, path: Path | None = None) -> LaneAssignment:
        """Load the lane assignment from ``symphony.config.yml``.

        Expected shape::

            lanes:
              frontend-agent: [src/ui]
              backend-agent: [src/api]
            shared: [src/shared]

        Raises:
            LaneConfigError: If the file is missing, empty or malformed
        """
        lane_path = path or self.project_root / LANE_CONFIG_FILE
        if not lane_path.exists():
            raise LaneConfigError(f"Lane configuration not found: {lane_path}")

        try:
            data = self._load_yaml(lane_path)
        except yaml.YAMLError as e:
            raise LaneConfigError(f"Cannot parse {lane_path}: {e}") from e

        lanes = data.get("lanes") if isinstance(data, dict) else None
        if not lanes or not isinstance(lanes, dict):
            raise LaneConfigError(f"No lanes defined in {lane_path}")

        try:
            assignment = LaneAssignment(lanes=lanes, shared=data.get("shared") or [])
        except ValidationError as e:
            raise LaneConfigError(f"Invalid lane configuration in {lane_path}: {e}") from e

        logger.debug("lanes_loaded", path=str(lane_path), roles=assignment.roles())
        return assignment

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        """Load YAML configuration file."""
        with open(path) as f:
            return yaml.safe_load(f) or {}

    def _merge_dicts(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Recursively merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_vars(self, config_dict: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variables with SYMPHONY_ prefix."""
        env_mappings = {
            "SYMPHONY_LOG_LEVEL": ["log_level"],
            "SYMPHONY_AGENT_TIMEOUT": ["supervisor", "agent_timeout"],
            "SYMPHONY_MAX_ATTEMPTS": ["supervisor", "max_attempts"],
            "SYMPHONY_POLL_INTERVAL": ["supervisor", "poll_interval"],
            "SYMPHONY_PROTECTED_BRANCH": ["integration", "protected_branch"],
            "SYMPHONY_VERIFY_COMMAND": ["integration", "verify_command"],
        }

        for env_var, path in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                current = config_dict
                for key in path[:-1]:
                    if key not in current:
                        current[key] = {}
                    current = current[key]
                try:
                    current[path[-1]] = int(value)
                except ValueError:
                    current[path[-1]] = value

        return config_dict

    def get_symphony_dir(self) -> Path:
        """Get path to the runtime directory (``.symphony``)."""
        return self.project_root / SYMPHONY_DIR

    def get_log_dir(self) -> Path:
        """Get path to log directory."""
        log_dir = self.get_symphony_dir() / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir
