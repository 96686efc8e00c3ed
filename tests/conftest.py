"""
Shared pytest fixtures for canaryctl tests.

Every rollout test runs on a ``FakeClock``: stage timers and deadlines
advance only when a test moves the clock, so nothing sleeps on a schedule.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import pytest

from canaryctl.core.audit import AuditTrail, InMemoryAuditSink
from canaryctl.core.controller import RolloutController
from canaryctl.core.health_evaluator import HealthEvaluator
from canaryctl.core.metric_store import MetricStore
from canaryctl.core.traffic_splitter import InMemoryRoutingBackend, TrafficSplitter
from canaryctl.observability.logger import reset_observability_logger
from canaryctl.observability.metrics import MetricsExporter
from canaryctl.utils.clock import FakeClock, reset_default_clock
from tests.helpers import FAST_THRESHOLDS


@pytest.fixture(autouse=True)
def _reset_singletons() -> Iterator[None]:
    yield
    reset_default_clock()
    reset_observability_logger()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1_000.0)


@pytest.fixture
def metrics() -> MetricsExporter:
    """Exporter on a private registry so tests never share counters."""
    return MetricsExporter()


@pytest.fixture
def store(clock: FakeClock, metrics: MetricsExporter) -> MetricStore:
    return MetricStore(clock=clock, metrics=metrics)


@pytest.fixture
def backend() -> InMemoryRoutingBackend:
    return InMemoryRoutingBackend()


@pytest.fixture
def splitter(backend: InMemoryRoutingBackend, metrics: MetricsExporter) -> Iterator[TrafficSplitter]:
    splitter = TrafficSplitter(backend, apply_timeout_seconds=2.0, apply_attempts=1, metrics=metrics)
    yield splitter
    splitter.shutdown()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def make_controller(
    clock: FakeClock,
    store: MetricStore,
    splitter: TrafficSplitter,
    audit_sink: InMemoryAuditSink,
    metrics: MetricsExporter,
) -> Callable[..., RolloutController]:
    """Factory so tests can override controller options."""

    def _make(**overrides: Any) -> RolloutController:
        options: dict[str, Any] = {
            "evaluator": HealthEvaluator(store, metrics=metrics),
            "audit": AuditTrail(audit_sink, metrics=metrics),
            "clock": clock,
            "default_thresholds": FAST_THRESHOLDS,
            "metrics": metrics,
        }
        options.update(overrides)
        return RolloutController(store, splitter, **options)

    return _make


@pytest.fixture
def controller(make_controller: Callable[..., RolloutController]) -> RolloutController:
    return make_controller()

