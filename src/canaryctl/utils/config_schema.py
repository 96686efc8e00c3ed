"""Configuration schema and validation for canaryctl.

Pydantic models for every section of ``config/default_config.yaml``. All
configuration goes through ``ControllerSettings`` before any component is
built.
"""

import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing_extensions import Self

from canaryctl.core.models import HealthThresholds
from canaryctl.core.traffic_splitter import apply_budget_seconds

logger = logging.getLogger(__name__)


class ControllerSection(BaseModel):
    """Tick loop and routing retry behaviour."""

    model_config = ConfigDict(extra="forbid")

    tick_interval_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Seconds between ticks of each deployment loop.",
    )
    rollout_timeout_seconds: float = Field(
        default=3600.0,
        gt=0.0,
        description="Default overall deadline for a rollout.",
    )
    apply_timeout_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="Bound on a single routing backend call.",
    )
    apply_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Routing attempts per tick, with exponential backoff.",
    )
    apply_retry_ceiling_seconds: float = Field(
        default=120.0,
        gt=0.0,
        description="How long routing may keep failing before a live rollout is rolled back.",
    )

    @model_validator(mode="after")
    def validate_ceiling(self) -> Self:
        """A ceiling shorter than one tick would roll back on the first failure."""
        if self.apply_retry_ceiling_seconds < self.tick_interval_seconds:
            raise ValueError(
                f"apply_retry_ceiling_seconds ({self.apply_retry_ceiling_seconds}) must be "
                f">= tick_interval_seconds ({self.tick_interval_seconds})"
            )
        return self

    @model_validator(mode="after")
    def validate_apply_budget(self) -> Self:
        """Every routing attempt of one tick, backoff included, must end before the next tick."""
        budget = apply_budget_seconds(self.apply_timeout_seconds, self.apply_attempts)
        if budget >= self.tick_interval_seconds:
            raise ValueError(
                f"apply_timeout_seconds x apply_attempts plus backoff ({budget:.2f}s) must be "
                f"< tick_interval_seconds ({self.tick_interval_seconds})"
            )
        return self


class MetricsSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    retention_multiplier: float = Field(
        default=1.0,
        gt=0.0,
        description="Retention is 2x the longest stage, times this factor.",
    )
    max_samples_per_version: int = Field(
        default=100_000,
        ge=100,
        description="Hard cap on retained samples per deployment and version.",
    )


class ThresholdsSection(BaseModel):
    """Defaults for requests that omit thresholds."""

    model_config = ConfigDict(extra="forbid")

    max_absolute_error_rate: float = Field(default=0.05, ge=0.0, le=1.0)
    max_absolute_p99_latency_ms: float = Field(default=1000.0, gt=0.0)
    max_relative_error_ratio: float = Field(default=1.5, gt=0.0)
    max_relative_latency_ratio: float = Field(default=1.5, gt=0.0)
    min_sample_count: int = Field(default=100, ge=1)

    def to_thresholds(self) -> HealthThresholds:
        return HealthThresholds(**self.model_dump())


class HealthSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    epsilon: float = Field(
        default=0.001,
        gt=0.0,
        description="Floor for ratio denominators when stable is near zero.",
    )
    default_thresholds: ThresholdsSection = Field(default_factory=ThresholdsSection)


class RoutingSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: Literal["memory", "file"] = Field(
        default="memory",
        description="memory: in-process only; file: YAML directive per deployment.",
    )
    directive_dir: str = Field(
        default="var/routing",
        description="Directory watched by the proxy sidecar (file backend).",
    )


class PersistenceSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    state_dir: str | None = Field(
        default=None,
        description="Deployment records and audit logs. None keeps everything in memory.",
    )

    @property
    def enabled(self) -> bool:
        return self.state_dir is not None

    @property
    def deployments_dir(self) -> Path | None:
        return Path(self.state_dir) / "deployments" if self.state_dir else None

    @property
    def events_dir(self) -> Path | None:
        return Path(self.state_dir) / "events" if self.state_dir else None


class LoggingSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_logs: bool = True
    event_log_dir: str | None = Field(
        default=None,
        description="Directory for the rotating rollout event log.",
    )


class ControllerSettings(BaseModel):
    """Complete controller configuration."""

    controller: ControllerSection = Field(default_factory=ControllerSection)
    metrics: MetricsSection = Field(default_factory=MetricsSection)
    health: HealthSection = Field(default_factory=HealthSection)
    routing: RoutingSection = Field(default_factory=RoutingSection)
    persistence: PersistenceSection = Field(default_factory=PersistenceSection)
    logging: LoggingSection = Field(default_factory=LoggingSection)

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",
        json_schema_extra={
            "examples": [
                {
                    "controller": {"tick_interval_seconds": 5, "rollout_timeout_seconds": 3600},
                    "routing": {"backend": "file", "directive_dir": "/var/run/canaryctl"},
                    "persistence": {"state_dir": "/var/lib/canaryctl"},
                }
            ]
        },
    )


def validate_config_dict(config_dict: dict[str, Any]) -> ControllerSettings:
    """Validate a configuration dictionary against the schema.

    Raises:
        ValueError: If configuration is invalid
    """
    try:
        return ControllerSettings(**config_dict)
    except Exception as e:
        err_str = str(e)
        if "extra_forbidden" in err_str or "Extra inputs are not permitted" in err_str:
            allowed = set(ControllerSettings.model_fields.keys())
            unknown = set(config_dict.keys()) - allowed
            if unknown:
                raise ValueError(
                    f"Configuration validation failed: unknown top-level keys: {sorted(unknown)}. "
                    f"Allowed keys: {sorted(allowed)}.\n"
                    f"Original error: {err_str}"
                ) from e
        raise ValueError(f"Configuration validation failed: {err_str}") from e


def get_default_settings() -> ControllerSettings:
    return ControllerSettings()
