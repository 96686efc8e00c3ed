"""Domain types for progressive canary rollouts.

All value objects are frozen dataclasses. ``Deployment`` is the only mutable
record and is owned exclusively by the ``RolloutController``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from canaryctl.utils.errors import ErrorCode, ValidationError


class Version(str, Enum):
    """Which side of the split a sample or weight belongs to."""

    STABLE = "stable"
    CANARY = "canary"


class Outcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class Verdict(str, Enum):
    """Health evaluator classification of the canary."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    INCONCLUSIVE = "inconclusive"


class Phase(str, Enum):
    """Rollout state machine phases."""

    INITIALIZING = "initializing"
    STAGING = "staging"
    MONITORING = "monitoring"
    ADVANCING = "advancing"
    PROMOTING = "promoting"
    ROLLING_BACK = "rolling_back"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.COMPLETED, Phase.ABORTED)


@dataclass(frozen=True)
class TrafficWeights:
    """Stable/canary split in whole percent. Always sums to exactly 100."""

    stable: int = 100
    canary: int = 0

    def __post_init__(self) -> None:
        if not (0 <= self.stable <= 100 and 0 <= self.canary <= 100):
            raise ValidationError(
                f"weights must be within 0..100, got stable={self.stable} canary={self.canary}",
                code=ErrorCode.E103_INVALID_WEIGHTS,
            )
        if self.stable + self.canary != 100:
            raise ValidationError(
                f"weights must sum to 100, got {self.stable + self.canary}",
                code=ErrorCode.E103_INVALID_WEIGHTS,
            )

    @classmethod
    def for_canary(cls, canary_percentage: int) -> TrafficWeights:
        return cls(stable=100 - canary_percentage, canary=canary_percentage)

    def to_dict(self) -> dict[str, int]:
        return {"stable": self.stable, "canary": self.canary}


@dataclass(frozen=True)
class StageSpec:
    """One entry of a requested schedule."""

    percentage: int
    min_duration_seconds: float


@dataclass(frozen=True)
class RolloutStage:
    """A schedule step that has actually started accumulating metrics."""

    index: int
    target_percentage: int
    min_duration: float
    started_at: float

    def elapsed(self, now: float) -> float:
        return max(0.0, now - self.started_at)

    def is_complete(self, now: float) -> bool:
        return self.elapsed(now) >= self.min_duration


@dataclass(frozen=True)
class HealthThresholds:
    """Absolute and relative limits applied to the canary.

    Attributes:
        max_absolute_error_rate: Canary error rate ceiling (0.0 to 1.0)
        max_absolute_p99_latency_ms: Canary p99 latency ceiling
        max_relative_error_ratio: Max canary/stable error rate ratio
        max_relative_latency_ratio: Max canary/stable p99 latency ratio
        min_sample_count: Canary samples needed before any verdict but inconclusive
    """

    max_absolute_error_rate: float = 0.05
    max_absolute_p99_latency_ms: float = 1000.0
    max_relative_error_ratio: float = 1.5
    max_relative_latency_ratio: float = 1.5
    min_sample_count: int = 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_absolute_error_rate": self.max_absolute_error_rate,
            "max_absolute_p99_latency_ms": self.max_absolute_p99_latency_ms,
            "max_relative_error_ratio": self.max_relative_error_ratio,
            "max_relative_latency_ratio": self.max_relative_latency_ratio,
            "min_sample_count": self.min_sample_count,
        }


@dataclass(frozen=True)
class MetricSample:
    version: Version
    timestamp: float
    outcome: Outcome
    latency_ms: float


@dataclass(frozen=True)
class AggregatedWindow:
    """Point-in-time aggregation over retained samples. Never stored."""

    sample_count: int = 0
    error_count: int = 0
    p50_ms: float = 0.0
    p95_ms: float = 0.0
    p99_ms: float = 0.0

    @property
    def error_rate(self) -> float:
        if self.sample_count == 0:
            return 0.0
        return self.error_count / self.sample_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "sample_count": self.sample_count,
            "error_count": self.error_count,
            "error_rate": self.error_rate,
            "p50_ms": self.p50_ms,
            "p95_ms": self.p95_ms,
            "p99_ms": self.p99_ms,
        }


@dataclass(frozen=True)
class RolloutEvent:
    """Append-only audit entry for one state transition."""

    deployment_id: str
    from_state: str
    to_state: str
    reason: str
    timestamp: float
    sequence: int = 0
    persisted: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "sequence": self.sequence,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "reason": self.reason,
            "timestamp": self.timestamp,
            "persisted": self.persisted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RolloutEvent:
        return cls(
            deployment_id=str(data["deployment_id"]),
            from_state=str(data["from_state"]),
            to_state=str(data["to_state"]),
            reason=str(data.get("reason", "")),
            timestamp=float(data["timestamp"]),
            sequence=int(data.get("sequence", 0)),
            persisted=bool(data.get("persisted", True)),
        )


@dataclass(frozen=True)
class RolloutState:
    """Immutable state machine value.

    ``percentages`` is the full schedule so transitions can be computed
    without consulting the deployment record.
    """

    phase: Phase
    percentages: tuple[int, ...]
    stage_index: int = 0
    reason: str = ""

    @property
    def percentage(self) -> int:
        """Canary percentage this state targets."""
        if self.phase in (Phase.INITIALIZING, Phase.ROLLING_BACK, Phase.ABORTED,
                          Phase.PROMOTING, Phase.COMPLETED):
            return 0
        return self.percentages[self.stage_index]

    @property
    def is_final_stage(self) -> bool:
        return self.stage_index == len(self.percentages) - 1

    @property
    def label(self) -> str:
        """Human-readable state, e.g. ``monitoring(25)``."""
        if self.phase in (Phase.STAGING, Phase.MONITORING, Phase.ADVANCING):
            return f"{self.phase.value}({self.percentages[self.stage_index]})"
        return self.phase.value


@dataclass
class Deployment:
    """Rollout target. Mutated only by the controller under its lock."""

    deployment_id: str
    stable_version_id: str
    canary_version_id: str
    schedule: tuple[StageSpec, ...]
    thresholds: HealthThresholds
    state: RolloutState
    created_at: float
    deadline: float
    original_stable_version_id: str = ""
    stages: list[RolloutStage] = field(default_factory=list)
    epoch: int = 0
    last_verdict: Verdict | None = None
    abort_requested: str | None = None
    apply_failing_since: float | None = None
    finished_at: float | None = None

    def __post_init__(self) -> None:
        if not self.original_stable_version_id:
            self.original_stable_version_id = self.stable_version_id

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def current_stage(self) -> RolloutStage | None:
        """Stage accumulating metrics, only while monitoring."""
        if self.state.phase is not Phase.MONITORING or not self.stages:
            return None
        return self.stages[-1]

    @property
    def max_stage_duration(self) -> float:
        return max(spec.min_duration_seconds for spec in self.schedule)
