"""Request and response schemas for the canaryctl HTTP API.

Wire fields are camelCase; the Python attributes stay snake_case and
either form is accepted on input.

Contract Fields (stable):
    - StartRolloutRequest: deploymentId, stableVersionId, canaryVersionId,
      schedule, thresholds, rolloutTimeoutSeconds
    - MetricSampleRequest: version, outcome, latencyMs
    - RolloutStatusResponse / RolloutEventResponse / ErrorResponse
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from canaryctl.core.controller import RolloutRequest, RolloutStatus
from canaryctl.core.models import HealthThresholds, RolloutEvent, StageSpec


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==============================================================================
# Request Schemas
# ==============================================================================


class StageSpecIn(_CamelModel):
    """One schedule entry. Range checks happen in the controller."""

    percentage: int
    min_duration_seconds: float


class ThresholdsIn(_CamelModel):
    """Health thresholds; omitted fields take the configured defaults."""

    max_absolute_error_rate: float | None = None
    max_absolute_p99_latency: float | None = Field(
        None, description="Canary p99 latency ceiling in milliseconds"
    )
    max_relative_error_ratio: float | None = None
    max_relative_latency_ratio: float | None = None
    min_sample_count: int | None = None

    def merged_with(self, defaults: HealthThresholds) -> HealthThresholds:
        values = defaults.to_dict()
        overrides = {
            "max_absolute_error_rate": self.max_absolute_error_rate,
            "max_absolute_p99_latency_ms": self.max_absolute_p99_latency,
            "max_relative_error_ratio": self.max_relative_error_ratio,
            "max_relative_latency_ratio": self.max_relative_latency_ratio,
            "min_sample_count": self.min_sample_count,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return HealthThresholds(**values)


class StartRolloutRequest(_CamelModel):
    """Request model for ``POST /rollouts``."""

    deployment_id: str = Field(..., min_length=1)
    stable_version_id: str = Field(..., min_length=1)
    canary_version_id: str = Field(..., min_length=1)
    schedule: list[StageSpecIn]
    thresholds: ThresholdsIn | None = None
    rollout_timeout_seconds: float | None = None

    def to_rollout_request(self, default_thresholds: HealthThresholds) -> RolloutRequest:
        thresholds = None
        if self.thresholds is not None:
            thresholds = self.thresholds.merged_with(default_thresholds)
        return RolloutRequest(
            deployment_id=self.deployment_id,
            stable_version_id=self.stable_version_id,
            canary_version_id=self.canary_version_id,
            stages=tuple(
                StageSpec(s.percentage, s.min_duration_seconds) for s in self.schedule
            ),
            thresholds=thresholds,
            rollout_timeout_seconds=self.rollout_timeout_seconds,
        )


class AbortRequest(_CamelModel):
    reason: str | None = Field(None, max_length=512)


class MetricSampleRequest(_CamelModel):
    """One request outcome reported by the proxy."""

    version: str
    outcome: str
    latency_ms: float


# ==============================================================================
# Response Schemas
# ==============================================================================


class WeightsOut(_CamelModel):
    stable: int
    canary: int


class StageSpecOut(_CamelModel):
    percentage: int
    min_duration_seconds: float


class RolloutStatusResponse(_CamelModel):
    """Status of one deployment.

    Contract Fields (stable):
        - deploymentId, state, phase, stageIndex, canaryPercentage
        - weights: routing currently in force
        - lastVerdict: healthy | degraded | inconclusive | null
    """

    deployment_id: str
    state: str
    phase: str
    stage_index: int
    stage_count: int
    target_percentage: int
    canary_percentage: int
    weights: WeightsOut
    stage_elapsed_seconds: float | None = None
    last_verdict: str | None = None
    reason: str = ""
    stable_version_id: str
    canary_version_id: str
    epoch: int
    created_at: float
    deadline: float
    finished_at: float | None = None
    abort_requested: bool = False
    schedule: list[StageSpecOut] = Field(default_factory=list)

    @classmethod
    def from_status(cls, status: RolloutStatus) -> RolloutStatusResponse:
        return cls(
            deployment_id=status.deployment_id,
            state=status.state,
            phase=status.phase.value,
            stage_index=status.stage_index,
            stage_count=status.stage_count,
            target_percentage=status.target_percentage,
            canary_percentage=status.canary_percentage,
            weights=WeightsOut(stable=status.weights.stable, canary=status.weights.canary),
            stage_elapsed_seconds=status.stage_elapsed_seconds,
            last_verdict=status.last_verdict.value if status.last_verdict else None,
            reason=status.reason,
            stable_version_id=status.stable_version_id,
            canary_version_id=status.canary_version_id,
            epoch=status.epoch,
            created_at=status.created_at,
            deadline=status.deadline,
            finished_at=status.finished_at,
            abort_requested=status.abort_requested,
            schedule=[
                StageSpecOut(percentage=s.percentage, min_duration_seconds=s.min_duration_seconds)
                for s in status.stages
            ],
        )


class RolloutListResponse(_CamelModel):
    rollouts: list[RolloutStatusResponse]


class RolloutEventResponse(_CamelModel):
    """One audited state transition."""

    deployment_id: str
    sequence: int
    from_state: str
    to_state: str
    reason: str
    timestamp: float
    persisted: bool = True

    @classmethod
    def from_event(cls, event: RolloutEvent) -> RolloutEventResponse:
        return cls(
            deployment_id=event.deployment_id,
            sequence=event.sequence,
            from_state=event.from_state,
            to_state=event.to_state,
            reason=event.reason,
            timestamp=event.timestamp,
            persisted=event.persisted,
        )


class RolloutEventsResponse(_CamelModel):
    deployment_id: str
    events: list[RolloutEventResponse]


class MetricAcceptedResponse(_CamelModel):
    accepted: bool


class ErrorResponse(BaseModel):
    """Error body shared by every non-2xx response."""

    error: dict[str, Any]
