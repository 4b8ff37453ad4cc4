"""Configuration management for rolloutctl using Pydantic."""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from rolloutctl.core.exceptions import ConfigError
from rolloutctl.core.output import OutputFormat
from rolloutctl.core.logging import LogLevel

_TRUTHY = ("1", "true", "yes", "on")


class ProgressIncrementBounds(BaseModel):
    """Per-tick progress increment range for simulated pipelines."""

    min: float = Field(default=1.0, ge=0, le=100)
    max: float = Field(default=10.0, gt=0, le=100)

    @model_validator(mode="after")
    def check_order(self) -> "ProgressIncrementBounds":
        if self.min > self.max:
            raise ValueError("progress_increment_bounds.min must not exceed max")
        return self


class SchedulerConfig(BaseModel):
    """Pipeline scheduler configuration."""

    tick_interval_ms: int = Field(default=3000, gt=0)
    progress_increment_bounds: ProgressIncrementBounds = Field(default_factory=ProgressIncrementBounds)
    seed: int | None = None

    def get_tick_interval_ms(self) -> int:
        """Get tick interval from environment or config."""
        value = os.environ.get("ROLLOUTCTL_TICK_INTERVAL_MS")
        if value:
            try:
                interval = int(value)
            except ValueError:
                raise ConfigError(f"ROLLOUTCTL_TICK_INTERVAL_MS must be an integer, got '{value}'")
            if interval <= 0:
                raise ConfigError("ROLLOUTCTL_TICK_INTERVAL_MS must be positive")
            return interval
        return self.tick_interval_ms


class HealthThresholds(BaseModel):
    """Canary health-check thresholds.

    A metric strictly below ``*_warning`` passes, strictly above ``*_critical``
    fails, anything in between is a warning.
    """

    error_rate_warning: float = Field(default=1.0, ge=0)
    error_rate_critical: float = Field(default=5.0, ge=0)
    response_time_warning_ms: float = Field(default=500.0, ge=0)
    response_time_critical_ms: float = Field(default=1000.0, ge=0)
    memory_warning_percent: float = Field(default=75.0, ge=0, le=100)
    memory_critical_percent: float = Field(default=90.0, ge=0, le=100)
    db_connection_warning_percent: float = Field(default=0.5, ge=0, le=100)
    db_connection_critical_percent: float = Field(default=2.0, ge=0, le=100)

    @model_validator(mode="after")
    def check_order(self) -> "HealthThresholds":
        pairs = [
            ("error_rate", self.error_rate_warning, self.error_rate_critical),
            ("response_time", self.response_time_warning_ms, self.response_time_critical_ms),
            ("memory", self.memory_warning_percent, self.memory_critical_percent),
            ("db_connection", self.db_connection_warning_percent, self.db_connection_critical_percent),
        ]
        for name, warning, critical in pairs:
            if warning > critical:
                raise ValueError(f"{name} warning threshold must not exceed critical threshold")
        return self


class CanaryConfig(BaseModel):
    """Canary rollout configuration."""

    auto_rollback: bool = True
    ramp_step_percent: float = Field(default=5.0, gt=0, le=100)
    initial_traffic_percent: float = Field(default=10.0, ge=0, le=100)
    target_traffic_percent: float = Field(default=100.0, ge=0, le=100)
    thresholds: HealthThresholds = Field(default_factory=HealthThresholds)

    def get_auto_rollback(self) -> bool:
        """Get auto-rollback flag from environment or config."""
        value = os.environ.get("ROLLOUTCTL_AUTO_ROLLBACK")
        if value is not None and value != "":
            return value.strip().lower() in _TRUTHY
        return self.auto_rollback


class ResourceConfig(BaseModel):
    """Infrastructure resource tracked by the monitor."""

    id: str
    type: Literal["compute", "storage", "network", "database", "cache"]
    name: str
    status: Literal["healthy", "warning", "critical", "provisioning", "terminating"] = "healthy"
    utilization_percent: float = Field(default=0.0, ge=0, le=100)
    cost_per_month: float = Field(default=0.0, ge=0)
    region: str = "us-east-1"
    auto_scaling: bool = False
    tags: list[str] = Field(default_factory=list)


def default_resources() -> list[ResourceConfig]:
    """Resources seeded into a fresh state directory."""
    return [
        ResourceConfig(
            id="web-servers", type="compute", name="Web Server Cluster",
            utilization_percent=68, cost_per_month=245.50,
            auto_scaling=True, tags=["production", "web"],
        ),
        ResourceConfig(
            id="database", type="database", name="Primary Database",
            utilization_percent=42, cost_per_month=189.75,
            tags=["production", "database"],
        ),
        ResourceConfig(
            id="cache-cluster", type="cache", name="Redis Cluster",
            status="warning", utilization_percent=87, cost_per_month=95.25,
            auto_scaling=True, tags=["production", "cache"],
        ),
        ResourceConfig(
            id="storage", type="storage", name="File Storage",
            utilization_percent=34, cost_per_month=67.80,
            tags=["production", "storage"],
        ),
    ]


class InfrastructureConfig(BaseModel):
    """Infrastructure monitor configuration."""

    warning_threshold_percent: float = Field(default=85.0, ge=0, le=100)
    critical_threshold_percent: float = Field(default=95.0, ge=0, le=100)
    max_drift_percent: float = Field(default=5.0, ge=0, le=100)
    resources: list[ResourceConfig] = Field(default_factory=default_resources)

    @model_validator(mode="after")
    def check_order(self) -> "InfrastructureConfig":
        if self.warning_threshold_percent > self.critical_threshold_percent:
            raise ValueError("warning_threshold_percent must not exceed critical_threshold_percent")
        ids = [r.id for r in self.resources]
        if len(ids) != len(set(ids)):
            raise ValueError("resource ids must be unique")
        return self


class MetricsConfig(BaseModel):
    """Deployment KPI configuration."""

    window_days: int = Field(default=30, gt=0)


class GlobalConfig(BaseModel):
    """Global settings."""

    output_format: OutputFormat = OutputFormat.TABLE
    color: str = "auto"  # auto, always, never
    verbosity: LogLevel = LogLevel.WARNING
    state_dir: str | None = None

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        if v not in ("auto", "always", "never"):
            raise ValueError("color must be 'auto', 'always', or 'never'")
        return v

    def get_state_dir(self) -> Path:
        """Get state directory from environment, config, or default."""
        value = os.environ.get("ROLLOUTCTL_STATE_DIR") or self.state_dir
        if value:
            return Path(value).expanduser()
        return Path.home() / ".rolloutctl" / "state"


class RolloutConfig(BaseModel):
    """Main configuration model."""

    model_config = {"populate_by_name": True}

    version: str = "1"
    global_settings: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    canary: CanaryConfig = Field(default_factory=CanaryConfig)
    infrastructure: InfrastructureConfig = Field(default_factory=InfrastructureConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


class ConfigLoader:
    """Loads and merges configuration from multiple sources."""

    CONFIG_FILENAMES = ["rolloutctl.yaml", "rolloutctl.yml", ".rolloutctl.yaml", ".rolloutctl.yml"]

    def __init__(self):
        self._config: RolloutConfig | None = None

    def load(self, config_file: str | Path | None = None) -> RolloutConfig:
        """Load configuration from files.

        Priority (highest to lowest):
        1. Explicitly specified config file
        2. Project config (./rolloutctl.yaml, searched upwards)
        3. User config (~/.rolloutctl/config.yaml)

        Args:
            config_file: Optional explicit config file path

        Returns:
            Merged configuration
        """
        configs: list[dict[str, Any]] = []

        user_config_path = Path.home() / ".rolloutctl" / "config.yaml"
        if user_config_path.exists():
            configs.append(self._load_yaml_file(user_config_path))

        project_config = self._find_project_config()
        if project_config:
            configs.append(self._load_yaml_file(project_config))

        if config_file:
            config_path = Path(config_file)
            if not config_path.exists():
                raise ConfigError(f"Config file not found: {config_file}")
            configs.append(self._load_yaml_file(config_path))

        merged = self._merge_configs(configs)

        try:
            self._config = RolloutConfig(**merged)
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}")
        return self._config

    def _find_project_config(self) -> Path | None:
        """Find project config file in current or parent directories."""
        current = Path.cwd()

        while current != current.parent:
            for filename in self.CONFIG_FILENAMES:
                config_path = current / filename
                if config_path.exists():
                    return config_path
            current = current.parent

        return None

    def _load_yaml_file(self, path: Path) -> dict[str, Any]:
        """Load a YAML config file."""
        try:
            with open(path) as f:
                content = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}")
        if not isinstance(content, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return content

    def _merge_configs(self, configs: list[dict[str, Any]]) -> dict[str, Any]:
        """Deep merge multiple configuration dictionaries."""
        result: dict[str, Any] = {}
        for config in configs:
            result = self._deep_merge(result, config)
        return result

    def _deep_merge(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result


# Global config loader instance
_config_loader = ConfigLoader()


def load_config(config_file: str | Path | None = None) -> RolloutConfig:
    """Load rolloutctl configuration.

    Args:
        config_file: Optional explicit config file path

    Returns:
        Loaded configuration
    """
    return _config_loader.load(config_file)


def get_default_config() -> RolloutConfig:
    """Get default configuration without loading from files."""
    return RolloutConfig()
