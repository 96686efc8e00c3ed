"""Sliding-window store of per-version request outcomes.

Writers (request-serving boundary) and readers (health evaluator) only ever
share a per-deployment lock, and that lock is held just long enough to append
or to copy the retained samples. Percentiles are computed on the copy.

Malformed input never raises: the ingestion boundary has to stay available,
so negative latencies are clamped to zero and unknown labels are dropped,
both with a log line and a counter.

Deployments nobody writes to for a whole retention period are dropped on a
later write unless a rollout pinned them with ``set_retention``; the
controller calls ``forget`` once a rollout ends.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from canaryctl.core.models import AggregatedWindow, MetricSample, Outcome, Version
from canaryctl.utils.clock import Clock, get_default_clock

if TYPE_CHECKING:
    from canaryctl.observability.metrics import MetricsExporter

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 600.0
DEFAULT_MAX_SAMPLES_PER_VERSION = 100_000


@dataclass
class _DeploymentSamples:
    retention_seconds: float
    last_write: float
    # Set by set_retention; pinned entries are only dropped by forget
    pinned: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)
    buffers: dict[Version, deque[MetricSample]] = field(
        default_factory=lambda: {Version.STABLE: deque(), Version.CANARY: deque()}
    )


class MetricStore:
    """Thread-safe sliding-window aggregator keyed by deployment and version.

    Example:
        >>> store = MetricStore()
        >>> store.record("checkout", "canary", "success", 42.0)
        >>> store.window("checkout", "canary", since=0.0).sample_count
        1
    """

    def __init__(
        self,
        clock: Clock | None = None,
        default_retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        max_samples_per_version: int = DEFAULT_MAX_SAMPLES_PER_VERSION,
        metrics: MetricsExporter | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            clock: Time source for default timestamps and eviction
            default_retention_seconds: Retention for deployments without an
                explicit ``set_retention`` call
            max_samples_per_version: Hard cap on retained samples per buffer
            metrics: Optional exporter for ingestion counters

        Raises:
            ValueError: If retention or capacity is not positive
        """
        if default_retention_seconds <= 0:
            raise ValueError("default_retention_seconds must be positive")
        if max_samples_per_version < 1:
            raise ValueError("max_samples_per_version must be >= 1")

        self._clock = clock or get_default_clock()
        self._default_retention = float(default_retention_seconds)
        self._max_samples = int(max_samples_per_version)
        self._metrics = metrics
        self._deployments: dict[str, _DeploymentSamples] = {}
        self._registry_lock = threading.Lock()
        self._last_sweep = self._clock.now()

    def _samples_for(self, deployment_id: str) -> _DeploymentSamples:
        entry = self._deployments.get(deployment_id)
        if entry is not None:
            return entry
        with self._registry_lock:
            entry = self._deployments.get(deployment_id)
            if entry is None:
                entry = _DeploymentSamples(
                    retention_seconds=self._default_retention, last_write=self._clock.now()
                )
                self._deployments[deployment_id] = entry
            return entry

    def _sweep_idle(self, now: float) -> int:
        """Drop unpinned deployments with no write inside their retention.

        Runs at most once per default retention period.
        """
        if now - self._last_sweep < self._default_retention:
            return 0
        with self._registry_lock:
            if now - self._last_sweep < self._default_retention:
                return 0
            self._last_sweep = now
            idle = [
                deployment_id
                for deployment_id, entry in self._deployments.items()
                if not entry.pinned and now - entry.last_write > entry.retention_seconds
            ]
            for deployment_id in idle:
                del self._deployments[deployment_id]
        if idle:
            logger.debug("Dropped samples of %d idle deployment(s)", len(idle))
        return len(idle)

    def tracked_deployments(self) -> int:
        with self._registry_lock:
            return len(self._deployments)

    def set_retention(self, deployment_id: str, seconds: float) -> None:
        """Set how long samples for a deployment are kept.

        The controller calls this with ``2 x`` the longest stage duration.
        """
        if seconds <= 0:
            raise ValueError("retention must be positive")
        entry = self._samples_for(deployment_id)
        with entry.lock:
            entry.retention_seconds = float(seconds)
            entry.pinned = True
        self._sweep_idle(self._clock.now())

    def retention(self, deployment_id: str) -> float:
        entry = self._deployments.get(deployment_id)
        return entry.retention_seconds if entry else self._default_retention

    def forget(self, deployment_id: str) -> None:
        """Drop every sample and the retention setting of a deployment."""
        with self._registry_lock:
            self._deployments.pop(deployment_id, None)

    def record(
        self,
        deployment_id: str,
        version: Version | str,
        outcome: Outcome | str,
        latency_ms: float,
        timestamp: float | None = None,
    ) -> bool:
        """Append one outcome sample.

        Args:
            deployment_id: Rollout the request belongs to
            version: ``stable`` or ``canary``
            outcome: ``success`` or ``error``
            latency_ms: Request latency; negative values are clamped to 0
            timestamp: Sample time (defaults to now)

        Returns:
            True if the sample was stored, False if it was dropped
        """
        try:
            version_enum = Version(version)
            outcome_enum = Outcome(outcome)
        except ValueError:
            logger.warning(
                "Dropping sample for %s with unknown labels version=%r outcome=%r",
                deployment_id,
                version,
                outcome,
            )
            if self._metrics is not None:
                self._metrics.increment_samples_dropped("unknown_label")
            return False

        try:
            latency = float(latency_ms)
        except (TypeError, ValueError):
            latency = float("nan")
        if not np.isfinite(latency) or latency < 0:
            logger.warning(
                "Clamping invalid latency %r to 0 for %s/%s",
                latency_ms,
                deployment_id,
                version_enum.value,
            )
            if self._metrics is not None:
                self._metrics.increment_samples_clamped()
            latency = 0.0

        now = self._clock.now()
        sample = MetricSample(
            version=version_enum,
            timestamp=now if timestamp is None else float(timestamp),
            outcome=outcome_enum,
            latency_ms=latency,
        )

        self._sweep_idle(now)
        entry = self._samples_for(deployment_id)
        with entry.lock:
            entry.last_write = now
            buffer = entry.buffers[version_enum]
            buffer.append(sample)
            horizon = now - entry.retention_seconds
            while buffer and (buffer[0].timestamp < horizon or len(buffer) > self._max_samples):
                buffer.popleft()

        if self._metrics is not None:
            self._metrics.increment_samples_ingested(version_enum.value)
        return True

    def window(
        self,
        deployment_id: str,
        version: Version | str,
        since: float,
        until: float | None = None,
    ) -> AggregatedWindow:
        """Aggregate samples with ``since <= timestamp <= until``.

        Args:
            deployment_id: Rollout to read
            version: ``stable`` or ``canary``
            since: Window start (inclusive)
            until: Window end (inclusive, defaults to no upper bound)

        Returns:
            AggregatedWindow, empty if nothing matched
        """
        version_enum = Version(version)
        entry = self._deployments.get(deployment_id)
        if entry is None:
            return AggregatedWindow()

        with entry.lock:
            selected = [
                s
                for s in entry.buffers[version_enum]
                if s.timestamp >= since and (until is None or s.timestamp <= until)
            ]

        return self._aggregate(selected)

    @staticmethod
    def _aggregate(samples: list[MetricSample]) -> AggregatedWindow:
        if not samples:
            return AggregatedWindow()

        latencies = np.fromiter((s.latency_ms for s in samples), dtype=np.float64, count=len(samples))
        errors = sum(1 for s in samples if s.outcome is Outcome.ERROR)
        p50, p95, p99 = np.percentile(latencies, [50.0, 95.0, 99.0])
        return AggregatedWindow(
            sample_count=len(samples),
            error_count=errors,
            p50_ms=float(p50),
            p95_ms=float(p95),
            p99_ms=float(p99),
        )

    def sample_count(self, deployment_id: str, version: Version | str) -> int:
        """Number of retained samples (no time filter)."""
        entry = self._deployments.get(deployment_id)
        if entry is None:
            return 0
        with entry.lock:
            return len(entry.buffers[Version(version)])
