"""Prometheus-compatible metrics for the rollout controller.

Each ``MetricsExporter`` owns a private ``CollectorRegistry`` so tests can
create as many as they like without duplicate-registration errors.
"""

from threading import Lock
from typing import Any

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class MetricsExporter:
    """Prometheus metrics for rollouts.

    Provides:
    - Counters: transitions, verdicts, routing applies, samples
      (ingested/clamped/dropped), unpersisted audit events, HTTP requests
    - Gauges: canary weight per deployment, active rollouts
    - Histograms: routing apply latency
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics exporter.

        Args:
            registry: Optional custom Prometheus registry. If None, a fresh one.
        """
        self.registry = registry or CollectorRegistry()
        self._lock = Lock()

        # Counters
        self.transitions_total = Counter(
            "canaryctl_transitions_total",
            "Rollout state machine transitions",
            ["from_phase", "to_phase"],
            registry=self.registry,
        )

        self.verdicts_total = Counter(
            "canaryctl_verdicts_total",
            "Health evaluator verdicts",
            ["verdict"],
            registry=self.registry,
        )

        self.routing_applies_total = Counter(
            "canaryctl_routing_applies_total",
            "Routing apply calls by result (changed, noop, failed, stale)",
            ["result"],
            registry=self.registry,
        )

        self.samples_ingested_total = Counter(
            "canaryctl_samples_ingested_total",
            "Request samples accepted into the metric store",
            ["version"],
            registry=self.registry,
        )

        self.samples_clamped_total = Counter(
            "canaryctl_samples_clamped_total",
            "Samples whose latency was negative or non-finite and got clamped",
            registry=self.registry,
        )

        self.samples_dropped_total = Counter(
            "canaryctl_samples_dropped_total",
            "Samples rejected at ingestion",
            ["reason"],
            registry=self.registry,
        )

        self.audit_unpersisted_total = Counter(
            "canaryctl_audit_unpersisted_total",
            "Audit events the durable sink failed to store",
            registry=self.registry,
        )

        self.http_requests_total = Counter(
            "canaryctl_http_requests_total",
            "HTTP requests served by the control API",
            ["method", "endpoint", "status"],
            registry=self.registry,
        )

        # Gauges
        self.canary_weight = Gauge(
            "canaryctl_canary_weight_percent",
            "Canary traffic weight currently applied",
            ["deployment_id"],
            registry=self.registry,
        )

        self.active_rollouts = Gauge(
            "canaryctl_active_rollouts",
            "Deployments in a non-terminal phase",
            registry=self.registry,
        )

        # Histograms
        self.routing_apply_latency_seconds = Histogram(
            "canaryctl_routing_apply_latency_seconds",
            "Latency of successful routing applies",
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self.registry,
        )

    def increment_transitions(self, from_phase: str, to_phase: str, count: int = 1) -> None:
        with self._lock:
            self.transitions_total.labels(from_phase=from_phase, to_phase=to_phase).inc(count)

    def increment_verdicts(self, verdict: str, count: int = 1) -> None:
        with self._lock:
            self.verdicts_total.labels(verdict=verdict).inc(count)

    def increment_routing_applies(self, result: str, count: int = 1) -> None:
        with self._lock:
            self.routing_applies_total.labels(result=result).inc(count)

    def observe_routing_apply_latency(self, latency_seconds: float) -> None:
        with self._lock:
            self.routing_apply_latency_seconds.observe(latency_seconds)

    def increment_samples_ingested(self, version: str, count: int = 1) -> None:
        with self._lock:
            self.samples_ingested_total.labels(version=version).inc(count)

    def increment_samples_clamped(self, count: int = 1) -> None:
        with self._lock:
            self.samples_clamped_total.inc(count)

    def increment_samples_dropped(self, reason: str, count: int = 1) -> None:
        with self._lock:
            self.samples_dropped_total.labels(reason=reason).inc(count)

    def increment_audit_unpersisted(self, count: int = 1) -> None:
        with self._lock:
            self.audit_unpersisted_total.inc(count)

    def increment_http_requests(
        self, method: str, endpoint: str, status: str, count: int = 1
    ) -> None:
        """Increment HTTP requests counter.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: Route template, not the raw path
            status: HTTP status code (e.g., "200", "409")
            count: Number to increment by (default: 1)
        """
        with self._lock:
            self.http_requests_total.labels(method=method, endpoint=endpoint, status=status).inc(
                count
            )

    def set_canary_weight(self, deployment_id: str, percentage: int) -> None:
        with self._lock:
            self.canary_weight.labels(deployment_id=deployment_id).set(percentage)

    def set_active_rollouts(self, count: int) -> None:
        with self._lock:
            self.active_rollouts.set(count)

    def export_metrics(self) -> bytes:
        """Export metrics in Prometheus format.

        Returns:
            Prometheus-formatted metrics as bytes
        """
        return generate_latest(self.registry)

    def get_metrics_text(self) -> str:
        return self.export_metrics().decode("utf-8")

    def get_current_values(self) -> dict[str, Any]:
        """Unlabelled metric values, for tests and debugging.

        Reads the registry through ``get_sample_value`` rather than
        prometheus_client internals.
        """
        return {
            "active_rollouts": self.registry.get_sample_value("canaryctl_active_rollouts") or 0.0,
            "samples_clamped_total": self.registry.get_sample_value(
                "canaryctl_samples_clamped_total"
            )
            or 0.0,
            "audit_unpersisted_total": self.registry.get_sample_value(
                "canaryctl_audit_unpersisted_total"
            )
            or 0.0,
        }

    def sample_value(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of one sample, 0.0 if never set."""
        return self.registry.get_sample_value(name, labels or {}) or 0.0


_metrics_exporter: MetricsExporter | None = None
_metrics_exporter_lock = Lock()


def get_metrics_exporter(registry: CollectorRegistry | None = None) -> MetricsExporter:
    """Get or create the process-wide metrics exporter.

    Note:
        ``registry`` is only used when the singleton is first created.
    """
    global _metrics_exporter

    if _metrics_exporter is None:
        with _metrics_exporter_lock:
            if _metrics_exporter is None:
                _metrics_exporter = MetricsExporter(registry=registry)

    return _metrics_exporter
