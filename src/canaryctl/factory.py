"""
Factory for building a wired controller from ``ControllerSettings``.

This module turns validated settings into the running pieces: metric
store, routing backend and splitter, audit trail, deployment repository,
controller and scheduler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from canaryctl.core.audit import AuditTrail, JsonlAuditSink
from canaryctl.core.controller import RolloutController
from canaryctl.core.health_evaluator import HealthEvaluator
from canaryctl.core.metric_store import MetricStore
from canaryctl.core.scheduler import RolloutScheduler
from canaryctl.core.traffic_splitter import (
    FileRoutingBackend,
    InMemoryRoutingBackend,
    RoutingBackend,
    TrafficSplitter,
)
from canaryctl.observability.logger import ObservabilityLogger
from canaryctl.observability.metrics import MetricsExporter
from canaryctl.state.store import DeploymentRepository

if TYPE_CHECKING:
    from canaryctl.utils.clock import Clock
    from canaryctl.utils.config_schema import ControllerSettings

logger = logging.getLogger(__name__)


@dataclass
class ControllerRuntime:
    """Everything the API process needs, built from one settings object."""

    settings: ControllerSettings
    controller: RolloutController
    scheduler: RolloutScheduler
    metrics: MetricsExporter
    backend: RoutingBackend
    event_logger: ObservabilityLogger

    def shutdown(self, timeout: float = 5.0) -> None:
        self.scheduler.stop(timeout)
        self.controller.close()


def build_routing_backend(settings: ControllerSettings) -> RoutingBackend:
    if settings.routing.backend == "file":
        logger.info("Routing directives written to %s", settings.routing.directive_dir)
        return FileRoutingBackend(settings.routing.directive_dir)
    return InMemoryRoutingBackend()


def build_runtime(
    settings: ControllerSettings,
    clock: Clock | None = None,
    metrics: MetricsExporter | None = None,
    backend: RoutingBackend | None = None,
) -> ControllerRuntime:
    """
    Build a controller and scheduler from settings.

    Args:
        settings: Validated controller settings.
        clock: Time source (system clock if None).
        metrics: Prometheus exporter (a private registry if None).
        backend: Routing backend override; otherwise chosen by
            ``settings.routing.backend``.

    Returns:
        A ControllerRuntime; call ``scheduler.start()`` after ``controller.recover()``.
    """
    metrics = metrics or MetricsExporter()
    backend = backend or build_routing_backend(settings)
    event_logger = ObservabilityLogger(log_dir=settings.logging.event_log_dir)

    store = MetricStore(
        clock=clock,
        max_samples_per_version=settings.metrics.max_samples_per_version,
        metrics=metrics,
    )
    splitter = TrafficSplitter(
        backend,
        apply_timeout_seconds=settings.controller.apply_timeout_seconds,
        apply_attempts=settings.controller.apply_attempts,
        metrics=metrics,
    )
    evaluator = HealthEvaluator(store, epsilon=settings.health.epsilon, metrics=metrics)

    persistence = settings.persistence
    repository = None
    audit_sink = None
    if persistence.enabled:
        repository = DeploymentRepository(persistence.state_dir)
        audit_sink = JsonlAuditSink(persistence.events_dir)
        logger.info("Persisting rollout state under %s", persistence.state_dir)
    audit = AuditTrail(audit_sink, metrics=metrics)

    controller = RolloutController(
        store,
        splitter,
        evaluator=evaluator,
        audit=audit,
        repository=repository,
        clock=clock,
        rollout_timeout_seconds=settings.controller.rollout_timeout_seconds,
        apply_retry_ceiling_seconds=settings.controller.apply_retry_ceiling_seconds,
        retention_multiplier=settings.metrics.retention_multiplier,
        default_thresholds=settings.health.default_thresholds.to_thresholds(),
        metrics=metrics,
        event_logger=event_logger,
    )
    scheduler = RolloutScheduler(
        controller, tick_interval_seconds=settings.controller.tick_interval_seconds
    )
    return ControllerRuntime(
        settings=settings,
        controller=controller,
        scheduler=scheduler,
        metrics=metrics,
        backend=backend,
        event_logger=event_logger,
    )
