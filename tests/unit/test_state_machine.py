"""
Tests for the pure rollout state machine.

Tests cover:
- Forward path through staging, monitoring, advancing and promoting
- Rollback edges from every live phase
- Terminal phases swallowing events
- Rejected (phase, event) pairs
"""

import pytest

from canaryctl.core.models import Phase, RolloutState
from canaryctl.core.state_machine import ControlEvent, EventKind, initial_state, transition
from canaryctl.utils.errors import InvalidTransitionError

SCHEDULE = (5, 25, 100)


def _state(phase: Phase, stage_index: int = 0) -> RolloutState:
    return RolloutState(phase=phase, percentages=SCHEDULE, stage_index=stage_index)


def _event(kind: EventKind, reason: str = "") -> ControlEvent:
    return ControlEvent(kind, reason)


class TestForwardPath:
    def test_initial_state(self):
        state = initial_state(SCHEDULE)
        assert state.phase is Phase.INITIALIZING
        assert state.label == "initializing"
        assert state.percentage == 0

    def test_validated_enters_first_stage(self):
        state = transition(initial_state(SCHEDULE), _event(EventKind.VALIDATED))
        assert state.phase is Phase.STAGING
        assert state.label == "staging(5)"
        assert state.percentage == 5

    def test_weights_applied_starts_monitoring(self):
        state = transition(_state(Phase.STAGING, 1), _event(EventKind.WEIGHTS_APPLIED))
        assert state.label == "monitoring(25)"

    @pytest.mark.parametrize("kind", [EventKind.HEALTHY, EventKind.INCONCLUSIVE])
    def test_monitoring_holds(self, kind):
        """Healthy-but-young and inconclusive stages stay where they are."""
        state = _state(Phase.MONITORING, 1)
        assert transition(state, _event(kind)) is state

    def test_stage_complete_advances(self):
        state = transition(_state(Phase.MONITORING, 0), _event(EventKind.STAGE_COMPLETE))
        assert state.label == "advancing(5)"

    def test_advance_stages_next_percentage(self):
        state = transition(_state(Phase.ADVANCING, 0), _event(EventKind.ADVANCE))
        assert state.label == "staging(25)"
        assert state.stage_index == 1

    def test_final_stage_complete_promotes(self):
        state = transition(_state(Phase.MONITORING, 2), _event(EventKind.STAGE_COMPLETE))
        assert state.phase is Phase.PROMOTING
        assert state.reason == "all stages healthy"

    def test_promoting_completes(self):
        state = transition(_state(Phase.PROMOTING, 2), _event(EventKind.WEIGHTS_APPLIED))
        assert state.phase is Phase.COMPLETED
        assert state.label == "completed"

    def test_force_promote_from_monitoring(self):
        state = transition(_state(Phase.MONITORING, 0), _event(EventKind.FORCE_PROMOTE))
        assert state.phase is Phase.PROMOTING
        assert state.reason == "operator force-promote"

    def test_full_walk(self):
        """Every stage in order, ending completed."""
        state = transition(initial_state(SCHEDULE), _event(EventKind.VALIDATED))
        labels = [state.label]
        while state.phase is not Phase.COMPLETED:
            if state.phase is Phase.STAGING:
                state = transition(state, _event(EventKind.WEIGHTS_APPLIED))
            elif state.phase is Phase.MONITORING:
                state = transition(state, _event(EventKind.STAGE_COMPLETE))
            elif state.phase is Phase.ADVANCING:
                state = transition(state, _event(EventKind.ADVANCE))
            elif state.phase is Phase.PROMOTING:
                state = transition(state, _event(EventKind.WEIGHTS_APPLIED))
            labels.append(state.label)

        assert labels == [
            "staging(5)",
            "monitoring(5)",
            "advancing(5)",
            "staging(25)",
            "monitoring(25)",
            "advancing(25)",
            "staging(100)",
            "monitoring(100)",
            "promoting",
            "completed",
        ]


class TestRollback:
    @pytest.mark.parametrize(
        "phase", [Phase.STAGING, Phase.MONITORING, Phase.ADVANCING, Phase.PROMOTING]
    )
    @pytest.mark.parametrize(
        "kind",
        [EventKind.DEGRADED, EventKind.ABORT, EventKind.TIMEOUT, EventKind.APPLY_EXHAUSTED],
    )
    def test_rollback_from_live_phase(self, phase, kind):
        state = transition(_state(phase, 1), _event(kind, "why"))
        assert state.phase is Phase.ROLLING_BACK
        assert state.reason == "why"
        assert state.percentage == 0

    def test_rollback_reason_defaults_to_event(self):
        state = transition(_state(Phase.MONITORING), _event(EventKind.TIMEOUT))
        assert state.reason == "timeout"

    def test_rolling_back_ends_aborted(self):
        rolling = transition(_state(Phase.MONITORING), _event(EventKind.DEGRADED, "degraded"))
        state = transition(rolling, _event(EventKind.WEIGHTS_APPLIED))
        assert state.phase is Phase.ABORTED
        assert state.reason == "degraded"

    def test_rolling_back_ignores_further_rollback_events(self):
        rolling = transition(_state(Phase.MONITORING), _event(EventKind.DEGRADED, "first"))
        assert transition(rolling, _event(EventKind.ABORT, "second")) is rolling

    def test_rolling_back_rejects_progress(self):
        rolling = transition(_state(Phase.MONITORING), _event(EventKind.DEGRADED))
        with pytest.raises(InvalidTransitionError):
            transition(rolling, _event(EventKind.STAGE_COMPLETE))


class TestTerminal:
    @pytest.mark.parametrize("phase", [Phase.COMPLETED, Phase.ABORTED])
    @pytest.mark.parametrize("kind", list(EventKind))
    def test_terminal_swallows_everything(self, phase, kind):
        state = _state(phase)
        assert transition(state, _event(kind)) is state


class TestInvalidTransitions:
    @pytest.mark.parametrize(
        ("phase", "kind"),
        [
            (Phase.INITIALIZING, EventKind.WEIGHTS_APPLIED),
            (Phase.INITIALIZING, EventKind.ABORT),
            (Phase.STAGING, EventKind.STAGE_COMPLETE),
            (Phase.STAGING, EventKind.FORCE_PROMOTE),
            (Phase.MONITORING, EventKind.ADVANCE),
            (Phase.ADVANCING, EventKind.WEIGHTS_APPLIED),
            (Phase.PROMOTING, EventKind.FORCE_PROMOTE),
        ],
    )
    def test_rejected(self, phase, kind):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(_state(phase), _event(kind))
        assert exc_info.value.error_details.details == {
            "phase": phase.value,
            "event": kind.value,
        }
