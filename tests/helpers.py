"""Builders shared by the rollout tests."""

from __future__ import annotations

from typing import Any

from canaryctl.core.controller import RolloutRequest
from canaryctl.core.metric_store import MetricStore
from canaryctl.core.models import HealthThresholds, StageSpec

# Small enough that a handful of samples per tick gives a verdict.
FAST_THRESHOLDS = HealthThresholds(
    max_absolute_error_rate=0.05,
    max_absolute_p99_latency_ms=1000.0,
    max_relative_error_ratio=1.5,
    max_relative_latency_ratio=1.5,
    min_sample_count=20,
)


def rollout_request(
    deployment_id: str = "checkout",
    stages: tuple[tuple[int, float], ...] = ((5, 60.0), (25, 60.0), (100, 60.0)),
    **kwargs: Any,
) -> RolloutRequest:
    return RolloutRequest(
        deployment_id=deployment_id,
        stable_version_id=kwargs.pop("stable_version_id", "v1"),
        canary_version_id=kwargs.pop("canary_version_id", "v2"),
        stages=tuple(StageSpec(p, d) for p, d in stages),
        **kwargs,
    )


def feed(
    store: MetricStore,
    deployment_id: str,
    count: int = 20,
    canary_errors: int = 0,
    stable_errors: int = 0,
    latency_ms: float = 50.0,
    canary_latency_ms: float | None = None,
) -> None:
    """Record ``count`` samples per version at the store's current time."""
    for i in range(count):
        store.record(
            deployment_id,
            "canary",
            "error" if i < canary_errors else "success",
            canary_latency_ms if canary_latency_ms is not None else latency_ms,
        )
        store.record(
            deployment_id, "stable", "error" if i < stable_errors else "success", latency_ms
        )
