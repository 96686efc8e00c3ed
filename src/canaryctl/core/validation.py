"""Rollout request validation.

Everything here runs before a deployment record exists; a failure raises
``ValidationError`` and leaves no state behind.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from typing import Any

from canaryctl.core.models import HealthThresholds, StageSpec
from canaryctl.utils.errors import ErrorCode, ValidationError

_IDENTIFIER = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def validate_identifier(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not _IDENTIFIER.match(value):
        raise ValidationError(
            f"{field_name} must be 1-128 characters of [A-Za-z0-9._-], got {value!r}",
            details={"field": field_name},
            code=ErrorCode.E104_INVALID_IDENTIFIER,
        )
    return value


def validate_schedule(stages: Iterable[StageSpec | Mapping[str, Any]]) -> tuple[StageSpec, ...]:
    """Check a schedule is non-empty, strictly ascending and ends at 100%.

    Accepts ``StageSpec`` instances or mappings with ``percentage`` and
    ``min_duration_seconds`` keys.

    Raises:
        ValidationError: On any violation
    """
    specs: list[StageSpec] = []
    for position, stage in enumerate(stages):
        if isinstance(stage, StageSpec):
            spec = stage
        else:
            try:
                spec = StageSpec(
                    percentage=stage["percentage"],
                    min_duration_seconds=stage["min_duration_seconds"],
                )
            except (KeyError, TypeError) as e:
                raise ValidationError(
                    f"stage {position} is missing percentage or min_duration_seconds",
                    details={"stage": position},
                    code=ErrorCode.E101_INVALID_SCHEDULE,
                ) from e
        specs.append(spec)

    if not specs:
        raise ValidationError("schedule must contain at least one stage",
                              code=ErrorCode.E101_INVALID_SCHEDULE)

    previous = 0
    for position, spec in enumerate(specs):
        pct = spec.percentage
        if isinstance(pct, bool) or not isinstance(pct, int) or not 1 <= pct <= 100:
            raise ValidationError(
                f"stage {position}: percentage must be an integer in 1..100, got {pct!r}",
                details={"stage": position},
                code=ErrorCode.E101_INVALID_SCHEDULE,
            )
        if pct <= previous:
            raise ValidationError(
                f"stage {position}: percentages must be strictly ascending and unique "
                f"({pct} after {previous})",
                details={"stage": position},
                code=ErrorCode.E101_INVALID_SCHEDULE,
            )
        duration = spec.min_duration_seconds
        if (
            isinstance(duration, bool)
            or not isinstance(duration, (int, float))
            or not math.isfinite(duration)
            or duration <= 0
        ):
            raise ValidationError(
                f"stage {position}: min_duration_seconds must be positive, got {duration!r}",
                details={"stage": position},
                code=ErrorCode.E101_INVALID_SCHEDULE,
            )
        previous = pct

    if specs[-1].percentage != 100:
        raise ValidationError(
            f"final stage must be 100%, got {specs[-1].percentage}%",
            code=ErrorCode.E101_INVALID_SCHEDULE,
        )

    return tuple(StageSpec(s.percentage, float(s.min_duration_seconds)) for s in specs)


def _positive_number(value: Any) -> bool:
    return (
        not isinstance(value, bool)
        and isinstance(value, (int, float))
        and math.isfinite(value)
        and value > 0
    )


def validate_thresholds(thresholds: HealthThresholds) -> HealthThresholds:
    """Check threshold ranges.

    Raises:
        ValidationError: On any out-of-range value
    """
    problems: list[str] = []

    rate = thresholds.max_absolute_error_rate
    if isinstance(rate, bool) or not isinstance(rate, (int, float)) or not 0.0 <= rate <= 1.0:
        problems.append("max_absolute_error_rate must be within [0, 1]")
    if not _positive_number(thresholds.max_absolute_p99_latency_ms):
        problems.append("max_absolute_p99_latency_ms must be positive")
    if not _positive_number(thresholds.max_relative_error_ratio):
        problems.append("max_relative_error_ratio must be positive")
    if not _positive_number(thresholds.max_relative_latency_ratio):
        problems.append("max_relative_latency_ratio must be positive")
    count = thresholds.min_sample_count
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        problems.append("min_sample_count must be an integer >= 1")

    if problems:
        raise ValidationError(
            "; ".join(problems),
            details={"violations": problems},
            code=ErrorCode.E102_INVALID_THRESHOLDS,
        )
    return thresholds


def validate_rollout_timeout(value: Any) -> float:
    """Check an overall rollout deadline is a finite positive number of seconds."""
    if not _positive_number(value):
        raise ValidationError(
            f"rollout_timeout_seconds must be a finite positive number, got {value!r}",
            details={"field": "rollout_timeout_seconds"},
        )
    return float(value)
