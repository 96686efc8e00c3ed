"""Tests for domain value objects and request validation."""

import math

import pytest

from canaryctl.core.models import (
    AggregatedWindow,
    HealthThresholds,
    Phase,
    RolloutEvent,
    RolloutStage,
    StageSpec,
    TrafficWeights,
)
from canaryctl.core.validation import (
    validate_identifier,
    validate_rollout_timeout,
    validate_schedule,
    validate_thresholds,
)
from canaryctl.utils.errors import ErrorCode, ValidationError


class TestTrafficWeights:
    def test_default_is_all_stable(self):
        weights = TrafficWeights()
        assert (weights.stable, weights.canary) == (100, 0)

    @pytest.mark.parametrize("canary", [0, 1, 5, 50, 99, 100])
    def test_for_canary_sums_to_100(self, canary):
        weights = TrafficWeights.for_canary(canary)
        assert weights.stable + weights.canary == 100
        assert weights.to_dict() == {"stable": 100 - canary, "canary": canary}

    def test_rejects_bad_sum(self):
        with pytest.raises(ValidationError) as exc_info:
            TrafficWeights(stable=90, canary=20)
        assert exc_info.value.code is ErrorCode.E103_INVALID_WEIGHTS

    def test_rejects_out_of_range(self):
        with pytest.raises(ValidationError):
            TrafficWeights(stable=110, canary=-10)


class TestRolloutStage:
    def test_completion_uses_min_duration(self):
        stage = RolloutStage(index=0, target_percentage=5, min_duration=60.0, started_at=100.0)
        assert not stage.is_complete(159.9)
        assert stage.is_complete(160.0)
        assert stage.elapsed(130.0) == 30.0

    def test_elapsed_never_negative(self):
        stage = RolloutStage(index=0, target_percentage=5, min_duration=60.0, started_at=100.0)
        assert stage.elapsed(50.0) == 0.0


class TestAggregatedWindow:
    def test_empty_error_rate(self):
        assert AggregatedWindow().error_rate == 0.0

    def test_error_rate(self):
        window = AggregatedWindow(sample_count=200, error_count=10)
        assert window.error_rate == pytest.approx(0.05)
        assert window.to_dict()["error_rate"] == pytest.approx(0.05)


class TestRolloutEvent:
    def test_dict_round_trip(self):
        event = RolloutEvent("checkout", "staging(5)", "monitoring(5)", "applied", 12.5, 3, False)
        assert RolloutEvent.from_dict(event.to_dict()) == event

    def test_phase_terminal_flags(self):
        assert Phase.COMPLETED.is_terminal
        assert Phase.ABORTED.is_terminal
        assert not Phase.ROLLING_BACK.is_terminal


class TestValidateIdentifier:
    @pytest.mark.parametrize("value", ["checkout", "svc-1", "v2.3.1", "A_b"])
    def test_accepts(self, value):
        assert validate_identifier(value, "deployment_id") == value

    @pytest.mark.parametrize("value", ["", "-leading", "has space", "x" * 129, None, 42])
    def test_rejects(self, value):
        with pytest.raises(ValidationError) as exc_info:
            validate_identifier(value, "deployment_id")
        assert exc_info.value.code is ErrorCode.E104_INVALID_IDENTIFIER
        assert exc_info.value.error_details.details == {"field": "deployment_id"}


class TestValidateSchedule:
    def test_accepts_stage_specs(self):
        schedule = validate_schedule([StageSpec(5, 60), StageSpec(25, 60), StageSpec(100, 60)])
        assert [s.percentage for s in schedule] == [5, 25, 100]
        assert all(isinstance(s.min_duration_seconds, float) for s in schedule)

    def test_accepts_mappings(self):
        schedule = validate_schedule(
            [{"percentage": 10, "min_duration_seconds": 30}, {"percentage": 100, "min_duration_seconds": 5}]
        )
        assert schedule == (StageSpec(10, 30.0), StageSpec(100, 5.0))

    def test_single_full_stage(self):
        assert validate_schedule([StageSpec(100, 1)]) == (StageSpec(100, 1.0),)

    @pytest.mark.parametrize(
        "stages",
        [
            [],
            [StageSpec(5, 60), StageSpec(5, 60), StageSpec(100, 60)],
            [StageSpec(25, 60), StageSpec(5, 60), StageSpec(100, 60)],
            [StageSpec(5, 60), StageSpec(50, 60)],
            [StageSpec(0, 60), StageSpec(100, 60)],
            [StageSpec(5, 60), StageSpec(101, 60)],
            [StageSpec(5, 0), StageSpec(100, 60)],
            [StageSpec(5, -1), StageSpec(100, 60)],
            [StageSpec(5, math.inf), StageSpec(100, 60)],
            [StageSpec(5.5, 60), StageSpec(100, 60)],
            [StageSpec(True, 60), StageSpec(100, 60)],
        ],
    )
    def test_rejects(self, stages):
        with pytest.raises(ValidationError) as exc_info:
            validate_schedule(stages)
        assert exc_info.value.code is ErrorCode.E101_INVALID_SCHEDULE

    def test_rejects_incomplete_mapping(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_schedule([{"percentage": 100}])
        assert exc_info.value.error_details.details == {"stage": 0}


class TestValidateThresholds:
    def test_defaults_are_valid(self):
        thresholds = HealthThresholds()
        assert validate_thresholds(thresholds) is thresholds

    def test_collects_every_violation(self):
        thresholds = HealthThresholds(
            max_absolute_error_rate=1.5,
            max_absolute_p99_latency_ms=0,
            max_relative_error_ratio=-1,
            max_relative_latency_ratio=math.nan,
            min_sample_count=0,
        )
        with pytest.raises(ValidationError) as exc_info:
            validate_thresholds(thresholds)
        assert exc_info.value.code is ErrorCode.E102_INVALID_THRESHOLDS
        assert len(exc_info.value.error_details.details["violations"]) == 5


class TestValidateRolloutTimeout:
    @pytest.mark.parametrize("value", [1, 0.5, 3600.0])
    def test_accepts_positive(self, value):
        assert validate_rollout_timeout(value) == float(value)

    @pytest.mark.parametrize("value", [0, -1.0, math.nan, math.inf, -math.inf, True, "60", None])
    def test_rejects(self, value):
        with pytest.raises(ValidationError) as exc_info:
            validate_rollout_timeout(value)
        assert exc_info.value.code is ErrorCode.E100_VALIDATION_ERROR
        assert exc_info.value.error_details.details == {"field": "rollout_timeout_seconds"}
