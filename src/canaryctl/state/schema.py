"""Schema for persisted deployment records.

Everything written under ``<state_dir>/deployments/`` goes through these
models, so a hand-edited or truncated file fails loudly on load instead of
resurrecting a half-valid rollout.

Invariants:
- schema_version: monotonically increasing (currently 1)
- created_at <= deadline
- schedule percentages strictly ascending, last one 100
- routing weights sum to 100
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, model_validator

from canaryctl.core.models import Phase, Verdict

CURRENT_SCHEMA_VERSION = 1


class StageSpecRecord(BaseModel):
    percentage: int = Field(..., ge=1, le=100)
    min_duration_seconds: float = Field(..., gt=0)


class StageRecord(BaseModel):
    index: int = Field(..., ge=0)
    target_percentage: int = Field(..., ge=0, le=100)
    min_duration: float = Field(..., gt=0)
    started_at: float


class ThresholdsRecord(BaseModel):
    max_absolute_error_rate: float = Field(..., ge=0, le=1)
    max_absolute_p99_latency_ms: float = Field(..., gt=0)
    max_relative_error_ratio: float = Field(..., gt=0)
    max_relative_latency_ratio: float = Field(..., gt=0)
    min_sample_count: int = Field(..., ge=1)


class RoutingRecord(BaseModel):
    """Last routing directive the splitter confirmed."""

    stable_version_id: str
    canary_version_id: str
    stable_weight: int = Field(..., ge=0, le=100)
    canary_weight: int = Field(..., ge=0, le=100)
    epoch: int = Field(..., ge=0)

    @model_validator(mode="after")
    def validate_weights(self) -> RoutingRecord:
        if self.stable_weight + self.canary_weight != 100:
            raise ValueError(
                f"routing weights sum to {self.stable_weight + self.canary_weight}, expected 100"
            )
        return self


class DeploymentRecord(BaseModel):
    """One file per deployment: ``<state_dir>/deployments/<id>.json``."""

    model_config = ConfigDict(extra="forbid")

    schema_version: int = Field(default=CURRENT_SCHEMA_VERSION, ge=1)
    deployment_id: str = Field(..., min_length=1)
    stable_version_id: str = Field(..., min_length=1)
    canary_version_id: str = Field(..., min_length=1)
    original_stable_version_id: str = Field(..., min_length=1)
    schedule: list[StageSpecRecord] = Field(..., min_length=1)
    thresholds: ThresholdsRecord

    phase: Phase
    stage_index: int = Field(default=0, ge=0)
    reason: str = ""
    stages: list[StageRecord] = Field(default_factory=list)

    created_at: float
    deadline: float
    finished_at: float | None = None

    epoch: int = Field(default=0, ge=0)
    last_verdict: Verdict | None = None
    abort_requested: str | None = None
    apply_failing_since: float | None = None
    routing: RoutingRecord | None = None

    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def validate_consistency(self) -> DeploymentRecord:
        percentages = [stage.percentage for stage in self.schedule]
        if any(b <= a for a, b in zip(percentages, percentages[1:])):
            raise ValueError(f"schedule is not strictly ascending: {percentages}")
        if percentages[-1] != 100:
            raise ValueError(f"final stage must be 100, got {percentages[-1]}")
        if self.stage_index >= len(self.schedule):
            raise ValueError(
                f"stage_index {self.stage_index} out of range for {len(self.schedule)} stages"
            )
        if self.deadline < self.created_at:
            raise ValueError("deadline precedes created_at")
        return self
