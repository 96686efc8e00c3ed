"""Pure rollout state machine.

``transition(state, event)`` has no clock, no I/O and no locks; the
controller feeds it events derived from the routing layer and the health
evaluator and persists whatever comes back.

    initializing --validated--> staging(p0)
    staging(p) --weights_applied--> monitoring(p)
    monitoring(p) --stage_complete--> advancing(p) | promoting   (final stage)
    advancing(p) --advance--> staging(next p)
    monitoring(p) --force_promote--> promoting
    promoting --weights_applied--> completed
    rolling_back --weights_applied--> aborted
    * --degraded | abort | timeout | apply_exhausted--> rolling_back

Terminal states swallow every event unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from canaryctl.core.models import Phase, RolloutState
from canaryctl.utils.errors import InvalidTransitionError


class EventKind(str, Enum):
    VALIDATED = "validated"
    WEIGHTS_APPLIED = "weights_applied"
    APPLY_EXHAUSTED = "apply_exhausted"
    HEALTHY = "healthy"
    INCONCLUSIVE = "inconclusive"
    STAGE_COMPLETE = "stage_complete"
    DEGRADED = "degraded"
    ADVANCE = "advance"
    FORCE_PROMOTE = "force_promote"
    ABORT = "abort"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class ControlEvent:
    kind: EventKind
    reason: str = ""


# Events that force a rollback from any live phase.
_ROLLBACK_EVENTS = frozenset(
    {EventKind.DEGRADED, EventKind.ABORT, EventKind.TIMEOUT, EventKind.APPLY_EXHAUSTED}
)


def initial_state(percentages: tuple[int, ...]) -> RolloutState:
    return RolloutState(phase=Phase.INITIALIZING, percentages=tuple(percentages))


def transition(state: RolloutState, event: ControlEvent) -> RolloutState:
    """Compute the next state.

    Args:
        state: Current state
        event: Event observed by the controller

    Returns:
        The next state (``state`` itself for holds and terminal phases)

    Raises:
        InvalidTransitionError: The event has no edge from the current phase
    """
    phase = state.phase
    kind = event.kind

    if phase.is_terminal:
        return state

    if phase is Phase.ROLLING_BACK:
        if kind is EventKind.WEIGHTS_APPLIED:
            return replace(state, phase=Phase.ABORTED)
        if kind in _ROLLBACK_EVENTS:
            return state
        raise InvalidTransitionError(phase.value, kind.value)

    if kind in _ROLLBACK_EVENTS:
        if phase is Phase.INITIALIZING:
            raise InvalidTransitionError(phase.value, kind.value)
        return replace(state, phase=Phase.ROLLING_BACK, reason=event.reason or kind.value)

    if phase is Phase.INITIALIZING and kind is EventKind.VALIDATED:
        return replace(state, phase=Phase.STAGING, stage_index=0)

    if phase is Phase.STAGING and kind is EventKind.WEIGHTS_APPLIED:
        return replace(state, phase=Phase.MONITORING)

    if phase is Phase.MONITORING:
        if kind in (EventKind.HEALTHY, EventKind.INCONCLUSIVE):
            return state
        if kind is EventKind.STAGE_COMPLETE:
            if state.is_final_stage:
                return replace(state, phase=Phase.PROMOTING, reason=event.reason or "all stages healthy")
            return replace(state, phase=Phase.ADVANCING)
        if kind is EventKind.FORCE_PROMOTE:
            return replace(state, phase=Phase.PROMOTING, reason=event.reason or "operator force-promote")

    if phase is Phase.ADVANCING and kind is EventKind.ADVANCE:
        return replace(state, phase=Phase.STAGING, stage_index=state.stage_index + 1)

    if phase is Phase.PROMOTING and kind is EventKind.WEIGHTS_APPLIED:
        return replace(state, phase=Phase.COMPLETED)

    raise InvalidTransitionError(phase.value, kind.value)
