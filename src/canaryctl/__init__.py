"""
canaryctl: progressive canary rollout controller.

Shifts traffic from a stable to a canary version in stages, compares the
two versions' error rates and p99 latency at every stage, and either
promotes the canary or reverts all traffic to stable.

Public API:
-----------
- RolloutController: Owns deployments and advances them tick by tick
- RolloutScheduler: Background ticker, one loop per active deployment
- RolloutRequest / RolloutStatus: Input and snapshot types
- build_runtime: Wire a controller from ``ControllerSettings``

Quick Start:
-----------
>>> from canaryctl import RolloutRequest, StageSpec, build_runtime
>>> from canaryctl.utils.config_schema import ControllerSettings
>>> runtime = build_runtime(ControllerSettings())
>>> runtime.controller.start(RolloutRequest(
...     "checkout", "v1", "v2", stages=(StageSpec(10, 300), StageSpec(100, 300))))
"""

from __future__ import annotations

from .core import (
    HealthThresholds,
    Phase,
    RolloutController,
    RolloutRequest,
    RolloutScheduler,
    RolloutStatus,
    StageSpec,
    Verdict,
)
from .factory import ControllerRuntime, build_runtime

__version__ = "0.1.0"

__all__ = [
    "ControllerRuntime",
    "HealthThresholds",
    "Phase",
    "RolloutController",
    "RolloutRequest",
    "RolloutScheduler",
    "RolloutStatus",
    "StageSpec",
    "Verdict",
    "__version__",
    "build_runtime",
]
