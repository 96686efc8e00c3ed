"""
Tests for RolloutController.

Tests cover:
- Start validation and conflicts
- Stage progression, promotion and rollback on one fake clock
- Operator abort and force-promote
- Routing failures and the retry ceiling
- Audit trail, metrics and listeners
"""

import math
import threading
import time

import pytest

from canaryctl.core.models import HealthThresholds, Phase, StageSpec, TrafficWeights, Verdict
from canaryctl.core.traffic_splitter import RoutingDirective
from canaryctl.utils.errors import ConflictError, NotFoundError, ValidationError
from tests.helpers import feed, rollout_request


def _drive_to_monitoring(controller, deployment_id="checkout", **kwargs):
    controller.start(rollout_request(deployment_id, **kwargs))
    return controller.tick(deployment_id)


class TestStart:
    def test_enters_first_stage_without_routing(self, controller, backend):
        status = controller.start(rollout_request())

        assert status.phase is Phase.STAGING
        assert status.state == "staging(5)"
        assert status.target_percentage == 5
        assert status.canary_percentage == 0
        assert status.epoch == 1
        assert status.stage_count == 3
        assert backend.emitted == []

    def test_records_validated_event(self, controller):
        controller.start(rollout_request())
        events = controller.events("checkout")
        assert [(e.from_state, e.to_state) for e in events] == [("initializing", "staging(5)")]
        assert events[0].sequence == 1

    def test_sets_retention_from_longest_stage(self, controller, store):
        controller.start(rollout_request(stages=((10, 30.0), (100, 90.0))))
        assert store.retention("checkout") == 180.0

    def test_default_rollout_timeout(self, controller):
        status = controller.start(rollout_request())
        assert status.deadline == status.created_at + controller.rollout_timeout_seconds

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"stages": ((5, 60.0), (50, 60.0))},
            {"stages": ()},
            {"canary_version_id": "v1"},
            {"deployment_id": "bad id"},
            {"rollout_timeout_seconds": 0},
            {"rollout_timeout_seconds": math.nan},
            {"rollout_timeout_seconds": math.inf},
            {"thresholds": HealthThresholds(min_sample_count=0)},
        ],
    )
    def test_rejects_invalid_request(self, controller, kwargs):
        deployment_id = kwargs.pop("deployment_id", "checkout")
        with pytest.raises(ValidationError):
            controller.start(rollout_request(deployment_id, **kwargs))
        assert controller.list_deployments() == []

    def test_conflict_while_active(self, controller):
        controller.start(rollout_request())
        with pytest.raises(ConflictError):
            controller.start(rollout_request(canary_version_id="v3"))

    def test_restart_after_terminal_keeps_epoch_rising(self, controller):
        _drive_to_monitoring(controller)
        first = controller.abort("checkout")
        assert first.phase is Phase.ABORTED

        second = controller.start(rollout_request(canary_version_id="v3"))
        assert second.epoch > first.epoch
        assert second.canary_version_id == "v3"
        assert controller.events("checkout")[-1].sequence > 1
        # the new rollout routes despite the higher-epoch history
        assert controller.tick("checkout").state == "monitoring(5)"


class TestProgression:
    def test_first_tick_applies_weights(self, controller, backend):
        controller.start(rollout_request())
        status = controller.tick("checkout")

        assert status.state == "monitoring(5)"
        assert status.weights == TrafficWeights(95, 5)
        assert status.stage_elapsed_seconds == 0.0
        assert backend.emitted[-1].weights.canary == 5

    def test_healthy_stage_waits_for_min_duration(self, controller, store, clock):
        _drive_to_monitoring(controller)
        clock.advance(30)
        feed(store, "checkout")

        status = controller.tick("checkout")

        assert status.state == "monitoring(5)"
        assert status.last_verdict is Verdict.HEALTHY
        assert status.stage_elapsed_seconds == 30.0

    def test_completed_stage_advances_and_stages_next(self, controller, store, clock, backend):
        _drive_to_monitoring(controller)
        clock.advance(60)
        feed(store, "checkout")

        status = controller.tick("checkout")

        assert status.state == "monitoring(25)"
        assert status.weights.canary == 25
        assert status.epoch == 2
        assert status.last_verdict is None
        labels = [e.to_state for e in controller.events("checkout")]
        assert labels[-3:] == ["advancing(5)", "staging(25)", "monitoring(25)"]

    def test_full_rollout_completes(self, controller, store, clock, backend, metrics):
        _drive_to_monitoring(controller)
        for _ in range(3):
            clock.advance(60)
            feed(store, "checkout")
            status = controller.tick("checkout")

        assert status.phase is Phase.COMPLETED
        assert status.reason == "all stages healthy"
        assert status.stable_version_id == "v2"
        assert status.weights == TrafficWeights(100, 0)
        assert status.finished_at == clock.now()
        final = backend.emitted[-1]
        assert final.stable_version_id == "v2"
        assert final.weights == TrafficWeights(100, 0)
        assert [e.to_state for e in controller.events("checkout")][-2:] == [
            "promoting",
            "completed",
        ]
        assert metrics.sample_value("canaryctl_active_rollouts") == 0.0

    def test_inconclusive_never_advances(self, controller, store, clock):
        _drive_to_monitoring(controller)
        for _ in range(5):
            clock.advance(60)
            feed(store, "checkout", count=2)
            status = controller.tick("checkout")

        assert status.state == "monitoring(5)"
        assert status.last_verdict is Verdict.INCONCLUSIVE

    def test_samples_before_stage_start_ignored(self, controller, store, clock):
        controller.start(rollout_request())
        feed(store, "checkout", canary_errors=20)
        clock.advance(1)
        controller.tick("checkout")
        feed(store, "checkout")

        assert controller.tick("checkout").last_verdict is Verdict.HEALTHY

    def test_terminal_tick_is_unchanged(self, controller, clock):
        _drive_to_monitoring(controller)
        aborted = controller.abort("checkout")
        clock.advance(600)
        again = controller.tick("checkout")
        assert again.state == aborted.state
        assert again.epoch == aborted.epoch
        assert again.finished_at == aborted.finished_at


class TestRollback:
    def test_degraded_rolls_back_in_one_tick(self, controller, store, clock, backend):
        _drive_to_monitoring(controller)
        clock.advance(10)
        feed(store, "checkout", canary_errors=10)

        status = controller.tick("checkout")

        assert status.phase is Phase.ABORTED
        assert status.reason.startswith("degraded:")
        assert status.weights == TrafficWeights(100, 0)
        assert status.stable_version_id == "v1"
        assert backend.emitted[-1].stable_version_id == "v1"
        assert [e.to_state for e in controller.events("checkout")][-2:] == [
            "rolling_back",
            "aborted",
        ]

    def test_relative_latency_breach(self, controller, store, clock):
        _drive_to_monitoring(controller)
        clock.advance(10)
        feed(store, "checkout", latency_ms=100.0, canary_latency_ms=400.0)
        status = controller.tick("checkout")
        assert status.phase is Phase.ABORTED
        assert "p99 ratio" in status.reason

    def test_timeout_with_insufficient_signal(self, controller, clock):
        _drive_to_monitoring(controller, rollout_timeout_seconds=100)
        clock.advance(50)
        assert controller.tick("checkout").last_verdict is Verdict.INCONCLUSIVE
        clock.advance(50)

        status = controller.tick("checkout")

        assert status.phase is Phase.ABORTED
        assert status.reason == "timeout: insufficient signal"

    def test_timeout_after_healthy_verdicts(self, controller, store, clock):
        _drive_to_monitoring(
            controller, stages=((5, 1000.0), (100, 60.0)), rollout_timeout_seconds=100
        )
        clock.advance(50)
        feed(store, "checkout")
        controller.tick("checkout")
        clock.advance(50)

        status = controller.tick("checkout")

        assert status.phase is Phase.ABORTED
        assert status.reason == "timeout"

    def test_timeout_applies_while_staging(self, controller, backend, clock):
        controller.start(rollout_request(rollout_timeout_seconds=10))
        backend.fail_next = 1
        controller.tick("checkout")
        clock.advance(10)
        status = controller.tick("checkout")
        assert status.phase is Phase.ABORTED
        assert status.reason == "timeout"


class TestOperatorActions:
    def test_abort(self, controller):
        _drive_to_monitoring(controller)
        status = controller.abort("checkout", "bad build")

        assert status.phase is Phase.ABORTED
        assert status.reason == "operator abort: bad build"
        assert status.abort_requested is False
        assert status.weights.canary == 0

    def test_abort_without_reason(self, controller):
        controller.start(rollout_request())
        assert controller.abort("checkout").reason == "operator abort"

    def test_request_abort_waits_for_tick(self, controller):
        _drive_to_monitoring(controller)
        status = controller.request_abort("checkout", "later")

        assert status.state == "monitoring(5)"
        assert status.abort_requested is True
        assert controller.tick("checkout").phase is Phase.ABORTED

    def test_request_abort_does_not_wait_for_routing(self, controller, backend):
        controller.start(rollout_request())
        backend.delay_seconds = 1.0
        ticking = threading.Thread(target=controller.tick, args=("checkout",))
        ticking.start()
        time.sleep(0.2)

        started = time.monotonic()
        status = controller.request_abort("checkout", "pager")
        elapsed = time.monotonic() - started
        ticking.join(5.0)
        backend.delay_seconds = 0.0

        assert elapsed < 0.5
        assert status.abort_requested is True
        status = controller.tick("checkout")
        assert status.phase is Phase.ABORTED
        assert status.reason == "operator abort: pager"
        assert status.abort_requested is False

    def test_abort_request_cleared_for_next_rollout(self, controller):
        _drive_to_monitoring(controller)
        controller.abort("checkout")
        # A request that lost the race with the rollout finishing
        controller._abort_requests["checkout"] = "operator abort: late"
        assert controller.status("checkout").abort_requested is False

        status = _drive_to_monitoring(controller)
        assert status.abort_requested is False
        assert status.state == "monitoring(5)"

    def test_abort_terminal_conflicts(self, controller):
        _drive_to_monitoring(controller)
        controller.abort("checkout")
        with pytest.raises(ConflictError):
            controller.abort("checkout")

    def test_abort_unknown(self, controller):
        with pytest.raises(NotFoundError):
            controller.abort("nope")

    def test_force_promote(self, controller, backend):
        _drive_to_monitoring(controller)
        status = controller.force_promote("checkout")

        assert status.phase is Phase.COMPLETED
        assert status.reason == "operator force-promote"
        assert status.stable_version_id == "v2"
        assert backend.emitted[-1].weights == TrafficWeights(100, 0)

    def test_force_promote_requires_monitoring(self, controller):
        controller.start(rollout_request())
        with pytest.raises(ConflictError):
            controller.force_promote("checkout")
        assert controller.status("checkout").state == "staging(5)"

    def test_force_promote_with_pending_abort(self, controller):
        _drive_to_monitoring(controller)
        controller.request_abort("checkout")
        with pytest.raises(ConflictError):
            controller.force_promote("checkout")


class TestRoutingFailures:
    def test_transient_failure_holds_then_recovers(self, controller, backend):
        controller.start(rollout_request())
        backend.fail_next = 1

        assert controller.tick("checkout").state == "staging(5)"
        assert controller.tick("checkout").state == "monitoring(5)"

    def test_ceiling_forces_rollback(self, make_controller, backend, clock):
        controller = make_controller(apply_retry_ceiling_seconds=30)
        controller.start(rollout_request())
        backend.available = False

        controller.tick("checkout")
        clock.advance(30)
        status = controller.tick("checkout")
        assert status.phase is Phase.ROLLING_BACK
        assert "routing apply failing" in status.reason

        clock.advance(300)
        assert controller.tick("checkout").phase is Phase.ROLLING_BACK

        backend.available = True
        assert controller.tick("checkout").phase is Phase.ABORTED

    def test_stale_directive_holds(self, controller, splitter, backend):
        controller.start(rollout_request())
        splitter.restore(
            RoutingDirective("checkout", "v1", "v2", TrafficWeights.for_canary(50), epoch=99)
        )
        assert controller.tick("checkout").state == "staging(5)"
        assert backend.emitted == []


class TestQueries:
    def test_status_unknown(self, controller):
        with pytest.raises(NotFoundError):
            controller.status("nope")
        with pytest.raises(NotFoundError):
            controller.tick("nope")
        with pytest.raises(NotFoundError):
            controller.events("nope")

    def test_list_in_creation_order(self, controller, clock):
        controller.start(rollout_request("search"))
        clock.advance(1)
        controller.start(rollout_request("checkout"))
        assert [s.deployment_id for s in controller.list_deployments()] == ["search", "checkout"]

    def test_status_to_dict(self, controller):
        data = controller.start(rollout_request()).to_dict()
        assert data["state"] == "staging(5)"
        assert data["weights"] == {"stable": 100, "canary": 0}
        assert data["stages"][0] == {"percentage": 5, "min_duration_seconds": 60.0}
        assert data["last_verdict"] is None

    def test_ingest_accepts_unknown_deployment(self, controller, store):
        assert controller.ingest("later", "canary", "success", 12.0) is True
        assert store.sample_count("later", "canary") == 1
        assert controller.ingest("later", "purple", "success", 12.0) is False


class TestSideEffects:
    def test_listeners_notified(self, controller):
        seen = []
        controller.add_listener(seen.append)
        controller.start(rollout_request())
        controller.request_abort("checkout")
        assert seen == ["checkout", "checkout"]

    def test_finished_rollout_releases_samples(self, controller, store, splitter):
        _drive_to_monitoring(controller)
        feed(store, "checkout")
        assert store.sample_count("checkout", "canary") > 0

        controller.abort("checkout")

        assert store.tracked_deployments() == 0
        assert store.sample_count("checkout", "canary") == 0
        assert splitter.current_weights("checkout") == TrafficWeights(100, 0)

    def test_transition_metrics(self, controller, metrics):
        _drive_to_monitoring(controller)
        assert metrics.sample_value(
            "canaryctl_transitions_total", {"from_phase": "staging", "to_phase": "monitoring"}
        ) == 1.0
        assert metrics.sample_value("canaryctl_active_rollouts") == 1.0

    def test_audit_outage_does_not_block(self, controller, audit_sink, store, clock):
        audit_sink.available = False
        _drive_to_monitoring(controller)

        events = controller.events("checkout")
        assert [e.persisted for e in events] == [False, False]
        assert controller.audit.unpersisted() == events

        audit_sink.available = True
        clock.advance(5)
        controller.tick("checkout")

        assert controller.audit.unpersisted() == []
        assert [e.sequence for e in audit_sink.read("checkout")] == [1, 2]

    def test_custom_thresholds(self, controller, store, clock):
        strict = HealthThresholds(max_absolute_error_rate=0.0, min_sample_count=20)
        _drive_to_monitoring(controller, thresholds=strict)
        clock.advance(10)
        feed(store, "checkout", canary_errors=1)
        assert controller.tick("checkout").phase is Phase.ABORTED

    def test_single_stage_schedule(self, controller, store, clock):
        _drive_to_monitoring(controller, stages=((100, 60.0),))
        clock.advance(60)
        feed(store, "checkout")
        assert controller.tick("checkout").phase is Phase.COMPLETED

    def test_status_reports_schedule(self, controller):
        status = controller.start(rollout_request(stages=((1, 5.0), (100, 5.0))))
        assert status.stages == (StageSpec(1, 5.0), StageSpec(100, 5.0))
