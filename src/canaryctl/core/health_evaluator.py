"""Health evaluator: classifies the canary for the stage in progress.

Decision order:
1. Canary below ``min_sample_count`` -> inconclusive (never act on thin data).
2. Absolute breach (error rate or p99 latency) -> degraded.
3. Relative breach against stable, with an ``epsilon`` floor on the
   denominator -> degraded. Skipped when stable itself has too few samples,
   which is always the case at the 100% stage.
4. Otherwise healthy.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from canaryctl.core.models import AggregatedWindow, HealthThresholds, Verdict, Version
from canaryctl.utils.errors import NotFoundError

if TYPE_CHECKING:
    from canaryctl.core.metric_store import MetricStore
    from canaryctl.observability.metrics import MetricsExporter

logger = logging.getLogger(__name__)

DEFAULT_EPSILON = 0.001


@dataclass(frozen=True)
class HealthReport:
    verdict: Verdict
    canary: AggregatedWindow
    stable: AggregatedWindow
    reasons: tuple[str, ...] = field(default_factory=tuple)

    @property
    def summary(self) -> str:
        return "; ".join(self.reasons) if self.reasons else self.verdict.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "reasons": list(self.reasons),
            "canary": self.canary.to_dict(),
            "stable": self.stable.to_dict(),
        }


@dataclass(frozen=True)
class _StageContext:
    thresholds: HealthThresholds
    started_at: float


def _ratio(numerator: float, denominator: float, epsilon: float) -> float:
    return numerator / max(denominator, epsilon)


def judge(
    canary: AggregatedWindow,
    stable: AggregatedWindow,
    thresholds: HealthThresholds,
    epsilon: float = DEFAULT_EPSILON,
) -> HealthReport:
    """Pure verdict over two windows.

    Args:
        canary: Canary window for the current stage
        stable: Stable window for the same period
        thresholds: Limits to apply
        epsilon: Floor for ratio denominators

    Returns:
        HealthReport with the verdict and every breached rule
    """
    if canary.sample_count < thresholds.min_sample_count:
        return HealthReport(
            verdict=Verdict.INCONCLUSIVE,
            canary=canary,
            stable=stable,
            reasons=(
                f"insufficient signal: {canary.sample_count} canary samples "
                f"< {thresholds.min_sample_count}",
            ),
        )

    reasons: list[str] = []

    if canary.error_rate > thresholds.max_absolute_error_rate:
        reasons.append(
            f"canary error rate {canary.error_rate:.2%} exceeds "
            f"{thresholds.max_absolute_error_rate:.2%}"
        )
    if canary.p99_ms > thresholds.max_absolute_p99_latency_ms:
        reasons.append(
            f"canary p99 {canary.p99_ms:.1f}ms exceeds "
            f"{thresholds.max_absolute_p99_latency_ms:.1f}ms"
        )

    if stable.sample_count >= thresholds.min_sample_count:
        error_ratio = _ratio(canary.error_rate, stable.error_rate, epsilon)
        if error_ratio > thresholds.max_relative_error_ratio:
            reasons.append(
                f"canary/stable error ratio {error_ratio:.2f} exceeds "
                f"{thresholds.max_relative_error_ratio:.2f}"
            )
        latency_ratio = _ratio(canary.p99_ms, stable.p99_ms, epsilon)
        if latency_ratio > thresholds.max_relative_latency_ratio:
            reasons.append(
                f"canary/stable p99 ratio {latency_ratio:.2f} exceeds "
                f"{thresholds.max_relative_latency_ratio:.2f}"
            )

    verdict = Verdict.DEGRADED if reasons else Verdict.HEALTHY
    return HealthReport(verdict=verdict, canary=canary, stable=stable, reasons=tuple(reasons))


class HealthEvaluator:
    """Reads the metric store for the stage the controller registered.

    The controller calls ``begin_stage`` whenever a stage starts monitoring,
    so ``evaluate`` only ever sees samples from the current stage.
    """

    def __init__(
        self,
        metric_store: MetricStore,
        epsilon: float = DEFAULT_EPSILON,
        metrics: MetricsExporter | None = None,
    ) -> None:
        if epsilon <= 0:
            raise ValueError("epsilon must be positive")
        self._store = metric_store
        self.epsilon = float(epsilon)
        self._metrics = metrics
        self._contexts: dict[str, _StageContext] = {}
        self._lock = threading.Lock()

    def begin_stage(
        self, deployment_id: str, thresholds: HealthThresholds, started_at: float
    ) -> None:
        with self._lock:
            self._contexts[deployment_id] = _StageContext(thresholds, started_at)

    def clear(self, deployment_id: str) -> None:
        with self._lock:
            self._contexts.pop(deployment_id, None)

    def assess(self, deployment_id: str) -> HealthReport:
        """Full report for the deployment's current stage.

        Raises:
            NotFoundError: No stage is registered for the deployment
        """
        with self._lock:
            context = self._contexts.get(deployment_id)
        if context is None:
            raise NotFoundError(deployment_id)

        canary = self._store.window(deployment_id, Version.CANARY, since=context.started_at)
        stable = self._store.window(deployment_id, Version.STABLE, since=context.started_at)
        report = judge(canary, stable, context.thresholds, self.epsilon)

        if self._metrics is not None:
            self._metrics.increment_verdicts(report.verdict.value)
        logger.debug(
            "Verdict for %s: %s (%s)", deployment_id, report.verdict.value, report.summary
        )
        return report

    def evaluate(self, deployment_id: str) -> Verdict:
        return self.assess(deployment_id).verdict
