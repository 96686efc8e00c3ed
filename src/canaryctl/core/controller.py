"""Rollout controller: drives deployments through the state machine.

The controller owns every ``Deployment`` record. Each ``tick`` reads the
clock once, applies the abort flag and the overall deadline, then performs
whatever the current phase needs (apply weights, consult the evaluator,
revert). Phase changes go through ``transition`` and are audited, logged,
counted and persisted.

Per-deployment ``RLock``s serialise ``tick`` and ``force_promote``. Abort
requests are recorded under a separate lock and picked up by the next tick,
so they never wait on a routing call in flight. Sample ingestion goes
straight to the metric store and never takes these locks.

Example:
    >>> controller = RolloutController(MetricStore(), TrafficSplitter(InMemoryRoutingBackend()))
    >>> status = controller.start(RolloutRequest("checkout", "v1", "v2", stages=(StageSpec(100, 60),)))
    >>> controller.tick("checkout").state
    'monitoring(100)'
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from canaryctl.core.audit import AuditTrail
from canaryctl.core.health_evaluator import HealthEvaluator
from canaryctl.core.models import (
    Deployment,
    HealthThresholds,
    Outcome,
    Phase,
    RolloutEvent,
    RolloutStage,
    StageSpec,
    TrafficWeights,
    Verdict,
    Version,
)
from canaryctl.core.state_machine import ControlEvent, EventKind, initial_state, transition
from canaryctl.core.traffic_splitter import RoutingDirective
from canaryctl.core.validation import (
    validate_identifier,
    validate_rollout_timeout,
    validate_schedule,
    validate_thresholds,
)
from canaryctl.utils.clock import Clock, get_default_clock
from canaryctl.utils.errors import (
    ConflictError,
    HealthBreach,
    NotFoundError,
    RolloutTimeoutError,
    StaleDirectiveError,
    StateSaveError,
    TransientInfraError,
    ValidationError,
)

if TYPE_CHECKING:
    from canaryctl.core.metric_store import MetricStore
    from canaryctl.core.traffic_splitter import TrafficSplitter
    from canaryctl.observability.logger import ObservabilityLogger
    from canaryctl.observability.metrics import MetricsExporter
    from canaryctl.state.store import DeploymentRepository

logger = logging.getLogger(__name__)

DEFAULT_ROLLOUT_TIMEOUT_SECONDS = 3600.0
DEFAULT_APPLY_RETRY_CEILING_SECONDS = 120.0

# Phases whose entry changes the desired routing and therefore the epoch.
_ROUTING_PHASES = (Phase.STAGING, Phase.PROMOTING, Phase.ROLLING_BACK)


@dataclass(frozen=True)
class RolloutRequest:
    """Operator request to start a rollout."""

    deployment_id: str
    stable_version_id: str
    canary_version_id: str
    stages: Sequence[StageSpec | Mapping[str, Any]]
    thresholds: HealthThresholds | None = None
    rollout_timeout_seconds: float | None = None


@dataclass(frozen=True)
class RolloutStatus:
    """Read-only snapshot returned by every controller operation."""

    deployment_id: str
    phase: Phase
    state: str
    stage_index: int
    stage_count: int
    target_percentage: int
    weights: TrafficWeights
    stage_elapsed_seconds: float | None
    last_verdict: Verdict | None
    reason: str
    stable_version_id: str
    canary_version_id: str
    epoch: int
    created_at: float
    deadline: float
    finished_at: float | None = None
    abort_requested: bool = False
    stages: tuple[StageSpec, ...] = field(default_factory=tuple)

    @property
    def canary_percentage(self) -> int:
        """Canary weight currently in force at the routing layer."""
        return self.weights.canary

    def to_dict(self) -> dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "phase": self.phase.value,
            "state": self.state,
            "stage_index": self.stage_index,
            "stage_count": self.stage_count,
            "target_percentage": self.target_percentage,
            "weights": self.weights.to_dict(),
            "stage_elapsed_seconds": self.stage_elapsed_seconds,
            "last_verdict": self.last_verdict.value if self.last_verdict else None,
            "reason": self.reason,
            "stable_version_id": self.stable_version_id,
            "canary_version_id": self.canary_version_id,
            "epoch": self.epoch,
            "created_at": self.created_at,
            "deadline": self.deadline,
            "finished_at": self.finished_at,
            "abort_requested": self.abort_requested,
            "stages": [
                {"percentage": s.percentage, "min_duration_seconds": s.min_duration_seconds}
                for s in self.stages
            ],
        }


class RolloutController:
    """Owns deployments and advances them one tick at a time."""

    def __init__(
        self,
        metric_store: MetricStore,
        splitter: TrafficSplitter,
        evaluator: HealthEvaluator | None = None,
        audit: AuditTrail | None = None,
        repository: DeploymentRepository | None = None,
        clock: Clock | None = None,
        rollout_timeout_seconds: float = DEFAULT_ROLLOUT_TIMEOUT_SECONDS,
        apply_retry_ceiling_seconds: float = DEFAULT_APPLY_RETRY_CEILING_SECONDS,
        retention_multiplier: float = 1.0,
        default_thresholds: HealthThresholds | None = None,
        metrics: MetricsExporter | None = None,
        event_logger: ObservabilityLogger | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            metric_store: Sample store shared with the ingestion path
            splitter: Routing directive emitter
            evaluator: Health evaluator (built over ``metric_store`` if None)
            audit: Audit trail (in-memory if None)
            repository: Durable deployment records (None: not persisted)
            clock: Time source; inject ``FakeClock`` in tests
            rollout_timeout_seconds: Default overall deadline per rollout
            apply_retry_ceiling_seconds: How long routing may keep failing
                before a live rollout is rolled back
            retention_multiplier: Scales metric retention (2x longest stage)
            default_thresholds: Thresholds for requests that omit them
            metrics: Prometheus exporter
            event_logger: Structured rollout event logger
        """
        if rollout_timeout_seconds <= 0:
            raise ValueError("rollout_timeout_seconds must be positive")
        if apply_retry_ceiling_seconds <= 0:
            raise ValueError("apply_retry_ceiling_seconds must be positive")
        if retention_multiplier <= 0:
            raise ValueError("retention_multiplier must be positive")

        self._store = metric_store
        self._splitter = splitter
        self._evaluator = evaluator or HealthEvaluator(metric_store, metrics=metrics)
        self._audit = audit or AuditTrail(metrics=metrics)
        self._repository = repository
        self._clock = clock or get_default_clock()
        self.rollout_timeout_seconds = float(rollout_timeout_seconds)
        self.apply_retry_ceiling_seconds = float(apply_retry_ceiling_seconds)
        self.retention_multiplier = float(retention_multiplier)
        self.default_thresholds = default_thresholds or HealthThresholds()
        self._metrics = metrics
        self._event_logger = event_logger

        self._deployments: dict[str, Deployment] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        self._abort_requests: dict[str, str] = {}
        self._abort_lock = threading.Lock()
        self._listeners: list[Callable[[str], None]] = []

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def audit(self) -> AuditTrail:
        return self._audit

    def add_listener(self, listener: Callable[[str], None]) -> None:
        """Call ``listener(deployment_id)`` whenever a deployment needs driving."""
        self._listeners.append(listener)

    def _notify(self, deployment_id: str) -> None:
        for listener in list(self._listeners):
            listener(deployment_id)

    def _lock_for(self, deployment_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(deployment_id)
        if lock is None:
            raise NotFoundError(deployment_id)
        return lock

    def _get(self, deployment_id: str) -> Deployment:
        with self._registry_lock:
            deployment = self._deployments.get(deployment_id)
        if deployment is None:
            raise NotFoundError(deployment_id)
        return deployment

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def start(self, request: RolloutRequest) -> RolloutStatus:
        """Validate and register a rollout, moving it to its first stage.

        Raises:
            ValidationError: Invalid identifiers, schedule or thresholds
            ConflictError: A non-terminal rollout with this id exists
        """
        validate_identifier(request.deployment_id, "deployment_id")
        validate_identifier(request.stable_version_id, "stable_version_id")
        validate_identifier(request.canary_version_id, "canary_version_id")
        if request.stable_version_id == request.canary_version_id:
            raise ValidationError("stable and canary versions must differ")
        schedule = validate_schedule(request.stages)
        thresholds = validate_thresholds(request.thresholds or self.default_thresholds)
        timeout = request.rollout_timeout_seconds
        if timeout is None:
            timeout = self.rollout_timeout_seconds
        else:
            timeout = validate_rollout_timeout(timeout)

        deployment_id = request.deployment_id
        with self._registry_lock:
            previous = self._deployments.get(deployment_id)
            if previous is not None and not previous.phase.is_terminal:
                raise ConflictError(
                    f"Deployment {deployment_id} already has an active rollout "
                    f"({previous.state.label})",
                    details={"deployment_id": deployment_id, "state": previous.state.label},
                )
            now = self._clock.now()
            deployment = Deployment(
                deployment_id=deployment_id,
                stable_version_id=request.stable_version_id,
                canary_version_id=request.canary_version_id,
                schedule=schedule,
                thresholds=thresholds,
                state=initial_state(tuple(s.percentage for s in schedule)),
                created_at=now,
                deadline=now + timeout,
                # Epochs keep rising across rollouts of the same id
                epoch=previous.epoch if previous is not None else 0,
            )
            self._deployments[deployment_id] = deployment
            lock = self._locks.setdefault(deployment_id, threading.RLock())
        with self._abort_lock:
            self._abort_requests.pop(deployment_id, None)

        with lock:
            if previous is not None:
                self._store.forget(deployment_id)
                self._evaluator.clear(deployment_id)
            self._store.set_retention(
                deployment_id,
                2.0 * deployment.max_stage_duration * self.retention_multiplier,
            )
            if self._event_logger is not None:
                self._event_logger.log_rollout_started(
                    deployment_id,
                    deployment.stable_version_id,
                    deployment.canary_version_id,
                    list(deployment.state.percentages),
                )
            self._transition(
                deployment,
                ControlEvent(EventKind.VALIDATED, f"{len(schedule)} stage(s) validated"),
                now,
            )
            self._update_active_gauge()
            self._persist(deployment)
            status = self._status(deployment, now)

        logger.info(
            "Started rollout %s: %s -> %s, stages %s",
            deployment_id,
            deployment.stable_version_id,
            deployment.canary_version_id,
            list(deployment.state.percentages),
        )
        self._notify(deployment_id)
        return status

    def tick(self, deployment_id: str) -> RolloutStatus:
        """Advance one deployment as far as the current time allows.

        Terminal deployments are returned unchanged.

        Raises:
            NotFoundError: Unknown deployment id
        """
        lock = self._lock_for(deployment_id)
        with lock:
            deployment = self._get(deployment_id)
            now = self._clock.now()
            if deployment.phase.is_terminal:
                return self._status(deployment, now)
            if self._audit.unpersisted():
                self._audit.reconcile()

            before = self._fingerprint(deployment)
            try:
                self._drive(deployment, now)
            except RolloutTimeoutError as e:
                self._begin_rollback(deployment, ControlEvent(EventKind.TIMEOUT, e.message), now)
            except HealthBreach as e:
                self._begin_rollback(deployment, ControlEvent(EventKind.DEGRADED, e.message), now)

            if self._fingerprint(deployment) != before:
                self._persist(deployment)
            return self._status(deployment, now)

    def request_abort(self, deployment_id: str, reason: str | None = None) -> RolloutStatus:
        """Set the abort flag; the next tick rolls the deployment back.

        Never waits for a tick in progress, so the returned status is a
        snapshot that may be mid-tick.

        Raises:
            NotFoundError: Unknown deployment id
            ConflictError: Deployment already terminal
        """
        deployment = self._get(deployment_id)
        self._flag_abort(deployment, reason)
        self._notify(deployment_id)
        return self._status(deployment, self._clock.now())

    def abort(self, deployment_id: str, reason: str | None = None) -> RolloutStatus:
        """Set the abort flag and tick immediately.

        Raises:
            NotFoundError: Unknown deployment id
            ConflictError: Deployment already terminal
        """
        self._flag_abort(self._get(deployment_id), reason)
        return self.tick(deployment_id)

    def force_promote(self, deployment_id: str) -> RolloutStatus:
        """Skip the remaining stages of a monitored rollout and promote.

        Raises:
            NotFoundError: Unknown deployment id
            ConflictError: Not monitoring, or an abort is pending
        """
        lock = self._lock_for(deployment_id)
        with lock:
            deployment = self._get(deployment_id)
            if deployment.phase is not Phase.MONITORING:
                raise ConflictError(
                    f"Force-promote requires a monitoring rollout; "
                    f"{deployment_id} is {deployment.state.label}",
                    details={"deployment_id": deployment_id, "state": deployment.state.label},
                )
            if self._abort_pending(deployment):
                raise ConflictError(
                    f"Deployment {deployment_id} has a pending abort",
                    details={"deployment_id": deployment_id},
                )
            now = self._clock.now()
            if self._event_logger is not None:
                self._event_logger.log_operator_action(
                    deployment_id, "force-promote", "operator force-promote"
                )
            self._transition(
                deployment, ControlEvent(EventKind.FORCE_PROMOTE, "operator force-promote"), now
            )
            self._promote(deployment, now)
            self._persist(deployment)
            return self._status(deployment, now)

    def status(self, deployment_id: str) -> RolloutStatus:
        lock = self._lock_for(deployment_id)
        with lock:
            return self._status(self._get(deployment_id), self._clock.now())

    def list_deployments(self) -> list[RolloutStatus]:
        with self._registry_lock:
            ids = list(self._deployments)
        statuses = [self.status(deployment_id) for deployment_id in ids]
        return sorted(statuses, key=lambda s: (s.created_at, s.deployment_id))

    def events(self, deployment_id: str) -> list[RolloutEvent]:
        self._get(deployment_id)
        return self._audit.history(deployment_id)

    def ingest(
        self,
        deployment_id: str,
        version: Version | str,
        outcome: Outcome | str,
        latency_ms: float,
    ) -> bool:
        """Record one request outcome. Never blocks on rollout locks."""
        return self._store.record(deployment_id, version, outcome, latency_ms)

    def recover(self) -> int:
        """Reload persisted deployments and resume the non-terminal ones.

        Returns:
            Number of deployments resumed
        """
        if self._repository is None:
            return 0

        resumed = 0
        for deployment, directive in self._repository.load_all():
            deployment_id = deployment.deployment_id
            with self._registry_lock:
                if deployment_id in self._deployments:
                    continue
                self._deployments[deployment_id] = deployment
                self._locks[deployment_id] = threading.RLock()

            if directive is not None:
                self._splitter.restore(directive)
            self._audit.restore(deployment_id)

            if deployment.phase.is_terminal:
                continue
            self._store.set_retention(
                deployment_id,
                2.0 * deployment.max_stage_duration * self.retention_multiplier,
            )
            stage = deployment.current_stage
            if stage is not None:
                self._evaluator.begin_stage(deployment_id, deployment.thresholds, stage.started_at)
            logger.info("Recovered rollout %s in %s", deployment_id, deployment.state.label)
            resumed += 1
            self._notify(deployment_id)

        self._update_active_gauge()
        return resumed

    def close(self) -> None:
        self._splitter.shutdown()

    # ------------------------------------------------------------------
    # Tick internals (caller holds the deployment lock)
    # ------------------------------------------------------------------

    def _drive(self, deployment: Deployment, now: float) -> None:
        self._claim_abort(deployment)
        if deployment.phase is not Phase.ROLLING_BACK:
            if deployment.abort_requested is not None:
                self._begin_rollback(
                    deployment, ControlEvent(EventKind.ABORT, deployment.abort_requested), now
                )
                return
            if now >= deployment.deadline:
                if deployment.last_verdict is Verdict.INCONCLUSIVE:
                    raise RolloutTimeoutError("timeout: insufficient signal")
                raise RolloutTimeoutError("timeout")

        phase = deployment.phase
        if phase is Phase.STAGING:
            self._stage(deployment, now)
        elif phase is Phase.MONITORING:
            self._monitor(deployment, now)
        elif phase is Phase.ADVANCING:
            self._advance(deployment, now)
        elif phase is Phase.PROMOTING:
            self._promote(deployment, now)
        elif phase is Phase.ROLLING_BACK:
            self._revert(deployment, now)

    def _stage(self, deployment: Deployment, now: float) -> None:
        state = deployment.state
        percentage = state.percentage
        directive = self._directive(
            deployment,
            deployment.stable_version_id,
            TrafficWeights.for_canary(percentage),
        )
        if not self._apply(deployment, directive, now):
            return
        self._transition(
            deployment,
            ControlEvent(EventKind.WEIGHTS_APPLIED, f"canary weight {percentage}% applied"),
            now,
        )
        spec = deployment.schedule[state.stage_index]
        deployment.stages.append(
            RolloutStage(
                index=state.stage_index,
                target_percentage=percentage,
                min_duration=spec.min_duration_seconds,
                started_at=now,
            )
        )
        deployment.last_verdict = None
        self._evaluator.begin_stage(deployment.deployment_id, deployment.thresholds, now)

    def _monitor(self, deployment: Deployment, now: float) -> None:
        report = self._evaluator.assess(deployment.deployment_id)
        deployment.last_verdict = report.verdict
        if self._event_logger is not None:
            self._event_logger.log_health_verdict(
                deployment.deployment_id, report.verdict.value, report.to_dict()
            )

        if report.verdict is Verdict.DEGRADED:
            raise HealthBreach(f"degraded: {report.summary}", details=report.to_dict())
        if report.verdict is Verdict.INCONCLUSIVE:
            self._transition(deployment, ControlEvent(EventKind.INCONCLUSIVE), now)
            return

        stage = deployment.current_stage
        if stage is None or not stage.is_complete(now):
            self._transition(deployment, ControlEvent(EventKind.HEALTHY), now)
            return

        self._transition(
            deployment,
            ControlEvent(
                EventKind.STAGE_COMPLETE,
                f"stage {stage.target_percentage}% healthy for {stage.elapsed(now):.0f}s",
            ),
            now,
        )
        if deployment.phase is Phase.ADVANCING:
            self._advance(deployment, now)
        elif deployment.phase is Phase.PROMOTING:
            self._promote(deployment, now)

    def _advance(self, deployment: Deployment, now: float) -> None:
        next_percentage = deployment.state.percentages[deployment.state.stage_index + 1]
        self._transition(
            deployment,
            ControlEvent(EventKind.ADVANCE, f"advancing to {next_percentage}%"),
            now,
        )
        self._stage(deployment, now)

    def _promote(self, deployment: Deployment, now: float) -> None:
        self._evaluator.clear(deployment.deployment_id)
        directive = self._directive(deployment, deployment.canary_version_id, TrafficWeights())
        if not self._apply(deployment, directive, now):
            return
        deployment.stable_version_id = deployment.canary_version_id
        self._transition(
            deployment,
            ControlEvent(
                EventKind.WEIGHTS_APPLIED,
                f"{deployment.canary_version_id} promoted to stable at 100%",
            ),
            now,
        )

    def _revert(self, deployment: Deployment, now: float) -> None:
        directive = self._directive(
            deployment, deployment.original_stable_version_id, TrafficWeights()
        )
        if self._apply(deployment, directive, now):
            self._transition(
                deployment,
                ControlEvent(EventKind.WEIGHTS_APPLIED, deployment.state.reason),
                now,
            )

    def _begin_rollback(self, deployment: Deployment, event: ControlEvent, now: float) -> None:
        if deployment.phase is Phase.ROLLING_BACK or deployment.phase.is_terminal:
            return
        self._evaluator.clear(deployment.deployment_id)
        deployment.apply_failing_since = None
        self._transition(deployment, event, now)
        self._revert(deployment, now)

    def _flag_abort(self, deployment: Deployment, reason: str | None) -> None:
        """Record an abort request for the next tick to act on.

        Runs without the deployment lock; the phase read may race a tick that
        is finishing the rollout, which ``_transition`` and ``start`` clean up.
        """
        deployment_id = deployment.deployment_id
        if deployment.phase.is_terminal:
            raise ConflictError(
                f"Deployment {deployment_id} is already {deployment.phase.value}",
                details={"deployment_id": deployment_id, "state": deployment.phase.value},
            )
        text = f"operator abort: {reason}" if reason else "operator abort"
        with self._abort_lock:
            if deployment_id in self._abort_requests or deployment.abort_requested is not None:
                return
            self._abort_requests[deployment_id] = text
        if self._event_logger is not None:
            self._event_logger.log_operator_action(deployment_id, "abort", text)

        # Persist now only if no tick is running; otherwise that tick claims it.
        lock = self._lock_for(deployment_id)
        if lock.acquire(blocking=False):
            try:
                if self._claim_abort(deployment):
                    self._persist(deployment)
            finally:
                lock.release()

    def _claim_abort(self, deployment: Deployment) -> bool:
        """Move a recorded abort request onto the deployment. Caller holds its lock."""
        with self._abort_lock:
            requested = self._abort_requests.pop(deployment.deployment_id, None)
        if (
            requested is None
            or deployment.abort_requested is not None
            or deployment.phase.is_terminal
        ):
            return False
        deployment.abort_requested = requested
        return True

    def _abort_pending(self, deployment: Deployment) -> bool:
        if deployment.phase.is_terminal:
            return False
        if deployment.abort_requested is not None:
            return True
        with self._abort_lock:
            return deployment.deployment_id in self._abort_requests

    def _directive(
        self, deployment: Deployment, stable_version_id: str, weights: TrafficWeights
    ) -> RoutingDirective:
        return RoutingDirective(
            deployment_id=deployment.deployment_id,
            stable_version_id=stable_version_id,
            canary_version_id=deployment.canary_version_id,
            weights=weights,
            epoch=deployment.epoch,
        )

    def _apply(self, deployment: Deployment, directive: RoutingDirective, now: float) -> bool:
        """Apply routing; False means hold and retry on a later tick.

        A live rollout whose routing keeps failing past the ceiling is rolled
        back. Rollback itself retries forever.
        """
        try:
            changed = self._splitter.apply(directive)
        except StaleDirectiveError as e:
            logger.error("Routing for %s fenced: %s", deployment.deployment_id, e)
            return False
        except TransientInfraError as e:
            if deployment.apply_failing_since is None:
                deployment.apply_failing_since = now
            failing_for = now - deployment.apply_failing_since
            if self._event_logger is not None:
                self._event_logger.log_routing_failed(
                    deployment.deployment_id, directive.weights.canary, e.message, failing_for
                )
            if (
                deployment.phase is not Phase.ROLLING_BACK
                and failing_for >= self.apply_retry_ceiling_seconds
            ):
                self._begin_rollback(
                    deployment,
                    ControlEvent(
                        EventKind.APPLY_EXHAUSTED,
                        f"routing apply failing for {failing_for:.0f}s: {e.message}",
                    ),
                    now,
                )
            return False

        deployment.apply_failing_since = None
        if changed and self._event_logger is not None:
            self._event_logger.log_routing_applied(
                deployment.deployment_id,
                directive.weights.stable,
                directive.weights.canary,
                directive.epoch,
            )
        return True

    def _transition(self, deployment: Deployment, event: ControlEvent, now: float) -> bool:
        previous = deployment.state
        state = transition(previous, event)
        if state == previous:
            return False

        deployment.state = state
        if state.phase in _ROUTING_PHASES and state.phase is not previous.phase:
            deployment.epoch += 1

        reason = event.reason or event.kind.value
        event_record = self._audit.record(
            deployment.deployment_id, previous.label, state.label, reason, now
        )
        if not event_record.persisted and self._event_logger is not None:
            self._event_logger.log_audit_unpersisted(
                deployment.deployment_id, event_record.sequence, state.label
            )
        if self._metrics is not None:
            self._metrics.increment_transitions(previous.phase.value, state.phase.value)
        if self._event_logger is not None:
            self._event_logger.log_state_transition(
                deployment.deployment_id, previous.label, state.label, reason, deployment.epoch
            )
        logger.info(
            "%s: %s -> %s (%s)", deployment.deployment_id, previous.label, state.label, reason
        )

        if state.phase.is_terminal:
            deployment.finished_at = now
            deployment.abort_requested = None
            with self._abort_lock:
                self._abort_requests.pop(deployment.deployment_id, None)
            self._evaluator.clear(deployment.deployment_id)
            self._store.forget(deployment.deployment_id)
            self._update_active_gauge()
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _status(self, deployment: Deployment, now: float) -> RolloutStatus:
        stage = deployment.current_stage
        return RolloutStatus(
            deployment_id=deployment.deployment_id,
            phase=deployment.phase,
            state=deployment.state.label,
            stage_index=deployment.state.stage_index,
            stage_count=len(deployment.schedule),
            target_percentage=deployment.state.percentage,
            weights=self._splitter.current_weights(deployment.deployment_id),
            stage_elapsed_seconds=stage.elapsed(now) if stage is not None else None,
            last_verdict=deployment.last_verdict,
            reason=deployment.state.reason,
            stable_version_id=deployment.stable_version_id,
            canary_version_id=deployment.canary_version_id,
            epoch=deployment.epoch,
            created_at=deployment.created_at,
            deadline=deployment.deadline,
            finished_at=deployment.finished_at,
            abort_requested=self._abort_pending(deployment),
            stages=deployment.schedule,
        )

    @staticmethod
    def _fingerprint(deployment: Deployment) -> tuple[Any, ...]:
        return (
            deployment.state,
            deployment.epoch,
            deployment.last_verdict,
            deployment.abort_requested,
            deployment.apply_failing_since,
            len(deployment.stages),
            deployment.stable_version_id,
        )

    def _persist(self, deployment: Deployment) -> None:
        if self._repository is None:
            return
        try:
            self._repository.save(
                deployment, self._splitter.current_directive(deployment.deployment_id)
            )
        except StateSaveError as e:
            logger.error("Could not persist %s: %s", deployment.deployment_id, e)

    def _update_active_gauge(self) -> None:
        if self._metrics is None:
            return
        with self._registry_lock:
            active = sum(1 for d in self._deployments.values() if not d.phase.is_terminal)
        self._metrics.set_active_rollouts(active)
