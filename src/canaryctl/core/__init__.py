"""Core rollout engine: metric store, splitter, evaluator, state machine, controller."""

from .audit import AuditSink, AuditTrail, InMemoryAuditSink, JsonlAuditSink
from .controller import RolloutController, RolloutRequest, RolloutStatus
from .health_evaluator import HealthEvaluator, HealthReport, judge
from .metric_store import MetricStore
from .models import (
    AggregatedWindow,
    Deployment,
    HealthThresholds,
    MetricSample,
    Outcome,
    Phase,
    RolloutEvent,
    RolloutStage,
    RolloutState,
    StageSpec,
    TrafficWeights,
    Verdict,
    Version,
)
from .scheduler import RolloutScheduler
from .state_machine import ControlEvent, EventKind, transition
from .traffic_splitter import (
    FileRoutingBackend,
    InMemoryRoutingBackend,
    RoutingBackend,
    RoutingDirective,
    TrafficSplitter,
)

__all__ = [
    "AggregatedWindow",
    "AuditSink",
    "AuditTrail",
    "ControlEvent",
    "Deployment",
    "EventKind",
    "FileRoutingBackend",
    "HealthEvaluator",
    "HealthReport",
    "HealthThresholds",
    "InMemoryAuditSink",
    "InMemoryRoutingBackend",
    "JsonlAuditSink",
    "MetricSample",
    "MetricStore",
    "Outcome",
    "Phase",
    "RolloutController",
    "RolloutEvent",
    "RolloutRequest",
    "RolloutScheduler",
    "RolloutStage",
    "RolloutState",
    "RolloutStatus",
    "RoutingBackend",
    "RoutingDirective",
    "StageSpec",
    "TrafficSplitter",
    "TrafficWeights",
    "Verdict",
    "Version",
    "judge",
    "transition",
]
