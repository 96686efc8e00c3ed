"""Traffic splitter: weighted routing directives for an external routing layer.

The controller never proxies traffic itself. It hands a declarative
``RoutingDirective`` to a ``RoutingBackend`` (load balancer config, mesh
resource, DNS weights) through ``TrafficSplitter.apply``.

Guarantees:
- Idempotence: re-applying the routing already in force is a no-op.
- Bounded latency: each backend call runs on a worker with a timeout; a
  timeout surfaces as ``TransientInfraError`` and the caller retries later.
- Fencing: every directive carries the deployment ``epoch``. Anything older
  than the newest epoch seen is refused, including a worker that was
  abandoned on timeout and reaches the backend late.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import yaml
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from canaryctl.core.models import TrafficWeights
from canaryctl.utils.errors import ErrorCode, StaleDirectiveError, TransientInfraError
from canaryctl.utils.fileio import write_file_atomic

if TYPE_CHECKING:
    from canaryctl.observability.metrics import MetricsExporter

logger = logging.getLogger(__name__)

APPLY_BACKOFF_MULTIPLIER = 0.05
APPLY_BACKOFF_MAX_SECONDS = 0.5


def apply_budget_seconds(apply_timeout_seconds: float, apply_attempts: int) -> float:
    """Longest one ``TrafficSplitter.apply`` call can block, backoff included."""
    backoff = sum(
        min(APPLY_BACKOFF_MULTIPLIER * 2**n, APPLY_BACKOFF_MAX_SECONDS)
        for n in range(apply_attempts - 1)
    )
    return apply_timeout_seconds * apply_attempts + backoff


@dataclass(frozen=True)
class RoutingDirective:
    """Desired routing for one deployment at one epoch."""

    deployment_id: str
    stable_version_id: str
    canary_version_id: str
    weights: TrafficWeights
    epoch: int

    def same_routing(self, other: RoutingDirective | None) -> bool:
        """True if ``other`` routes traffic identically (epoch ignored)."""
        if other is None:
            return False
        return (
            self.weights == other.weights
            and self.stable_version_id == other.stable_version_id
            and self.canary_version_id == other.canary_version_id
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "epoch": self.epoch,
            "routes": [
                {"version": self.stable_version_id, "role": "stable", "weight": self.weights.stable},
                {"version": self.canary_version_id, "role": "canary", "weight": self.weights.canary},
            ],
        }


@runtime_checkable
class RoutingBackend(Protocol):
    """One implementation per routing technology."""

    def emit(self, directive: RoutingDirective) -> None:
        """Push the directive. Raise on failure; the splitter wraps errors."""
        ...


class InMemoryRoutingBackend:
    """Keeps emitted directives in memory. Used in development and tests.

    ``fail_next`` / ``available`` let tests simulate an unreachable layer and
    ``delay_seconds`` simulates a slow one.
    """

    def __init__(self) -> None:
        self.emitted: list[RoutingDirective] = []
        self.available = True
        self.fail_next = 0
        self.delay_seconds = 0.0
        self._lock = threading.Lock()

    def emit(self, directive: RoutingDirective) -> None:
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        with self._lock:
            if self.fail_next > 0:
                self.fail_next -= 1
                raise ConnectionError("routing layer unreachable")
            if not self.available:
                raise ConnectionError("routing layer unreachable")
            self.emitted.append(directive)

    def directives_for(self, deployment_id: str) -> list[RoutingDirective]:
        with self._lock:
            return [d for d in self.emitted if d.deployment_id == deployment_id]


class FileRoutingBackend:
    """Writes one YAML directive per deployment for a proxy sidecar to watch.

    Layout: ``<directory>/<deployment_id>.yaml``. Writes are atomic
    (temp file + rename), so a watcher never sees a partial directive.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, deployment_id: str) -> Path:
        return self.directory / f"{deployment_id}.yaml"

    def emit(self, directive: RoutingDirective) -> None:
        payload = yaml.safe_dump(directive.to_dict(), sort_keys=False).encode("utf-8")
        write_file_atomic(self.path_for(directive.deployment_id), payload)

    def read(self, deployment_id: str) -> dict[str, Any] | None:
        path = self.path_for(deployment_id)
        if not path.is_file():
            return None
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)


class TrafficSplitter:
    """Computes, fences and emits weighted routing per deployment.

    Example:
        >>> splitter = TrafficSplitter(InMemoryRoutingBackend())
        >>> directive = RoutingDirective("checkout", "v1", "v2", TrafficWeights.for_canary(5), epoch=1)
        >>> splitter.apply(directive)
        True
        >>> splitter.apply(directive)
        False
    """

    def __init__(
        self,
        backend: RoutingBackend,
        apply_timeout_seconds: float = 1.0,
        apply_attempts: int = 3,
        max_workers: int = 8,
        metrics: MetricsExporter | None = None,
    ) -> None:
        """Initialize the splitter.

        Args:
            backend: Routing layer adapter
            apply_timeout_seconds: Per-attempt bound on a backend call
            apply_attempts: Attempts per ``apply`` call (exponential backoff)
            max_workers: Worker threads for backend calls
            metrics: Optional exporter for apply counters and latency
        """
        if apply_timeout_seconds <= 0:
            raise ValueError("apply_timeout_seconds must be positive")
        if apply_attempts < 1:
            raise ValueError("apply_attempts must be >= 1")

        self.backend = backend
        self.apply_timeout_seconds = float(apply_timeout_seconds)
        self.apply_attempts = int(apply_attempts)
        self._metrics = metrics
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="splitter")
        self._applied: dict[str, RoutingDirective] = {}
        self._high_water: dict[str, int] = {}
        self._fence_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _fence_lock(self, deployment_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._fence_locks.get(deployment_id)
            if lock is None:
                lock = threading.Lock()
                self._fence_locks[deployment_id] = lock
            return lock

    def current_weights(self, deployment_id: str) -> TrafficWeights:
        """Weights in force for the deployment (100/0 before any apply)."""
        with self._registry_lock:
            directive = self._applied.get(deployment_id)
        return directive.weights if directive else TrafficWeights()

    def current_directive(self, deployment_id: str) -> RoutingDirective | None:
        with self._registry_lock:
            return self._applied.get(deployment_id)

    def applied_epoch(self, deployment_id: str) -> int:
        with self._registry_lock:
            return self._high_water.get(deployment_id, -1)

    def restore(self, directive: RoutingDirective) -> None:
        """Seed state after a restart without emitting anything."""
        with self._registry_lock:
            self._applied[directive.deployment_id] = directive
            self._high_water[directive.deployment_id] = directive.epoch

    def _emit_fenced(self, directive: RoutingDirective) -> bool:
        """Runs on a worker thread. Returns True if routing changed."""
        with self._fence_lock(directive.deployment_id):
            with self._registry_lock:
                high_water = self._high_water.get(directive.deployment_id, -1)
                current = self._applied.get(directive.deployment_id)
            if directive.epoch < high_water:
                raise StaleDirectiveError(directive.deployment_id, directive.epoch, high_water)
            if directive.same_routing(current):
                with self._registry_lock:
                    self._high_water[directive.deployment_id] = directive.epoch
                    self._applied[directive.deployment_id] = directive
                return False

            self.backend.emit(directive)

            with self._registry_lock:
                self._high_water[directive.deployment_id] = directive.epoch
                self._applied[directive.deployment_id] = directive
            return True

    def _attempt(self, directive: RoutingDirective) -> bool:
        future = self._executor.submit(self._emit_fenced, directive)
        try:
            return future.result(timeout=self.apply_timeout_seconds)
        except FutureTimeoutError as e:
            raise TransientInfraError(
                f"routing layer did not answer within {self.apply_timeout_seconds:.1f}s",
                details={"deployment_id": directive.deployment_id, "epoch": directive.epoch},
                code=ErrorCode.E702_ROUTING_TIMEOUT,
            ) from e
        except StaleDirectiveError:
            raise
        except Exception as e:
            raise TransientInfraError(
                f"routing layer rejected directive: {e}",
                details={"deployment_id": directive.deployment_id, "epoch": directive.epoch},
                code=ErrorCode.E701_ROUTING_UNAVAILABLE,
            ) from e

    def apply(self, directive: RoutingDirective) -> bool:
        """Emit ``directive`` if it changes routing.

        Args:
            directive: Desired routing, fenced by ``directive.epoch``

        Returns:
            True if a routing change was emitted, False if already in force

        Raises:
            TransientInfraError: Backend failed or timed out on every attempt
            StaleDirectiveError: A newer epoch was already applied
        """
        started = time.perf_counter()
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.apply_attempts),
                wait=wait_exponential(
                    multiplier=APPLY_BACKOFF_MULTIPLIER, max=APPLY_BACKOFF_MAX_SECONDS
                ),
                retry=retry_if_exception_type(TransientInfraError),
                reraise=True,
            ):
                with attempt:
                    changed = self._attempt(directive)
        except StaleDirectiveError:
            logger.warning(
                "Fenced stale directive for %s (epoch %d)",
                directive.deployment_id,
                directive.epoch,
            )
            self._count("stale")
            raise
        except TransientInfraError:
            logger.warning(
                "Routing apply failed for %s epoch %d after %d attempt(s)",
                directive.deployment_id,
                directive.epoch,
                self.apply_attempts,
            )
            self._count("failed")
            raise

        if self._metrics is not None:
            self._metrics.observe_routing_apply_latency(time.perf_counter() - started)
            self._metrics.set_canary_weight(directive.deployment_id, directive.weights.canary)
        self._count("changed" if changed else "noop")
        if changed:
            logger.info(
                "Routing for %s set to stable=%d%% canary=%d%% (epoch %d)",
                directive.deployment_id,
                directive.weights.stable,
                directive.weights.canary,
                directive.epoch,
            )
        return changed

    def _count(self, result: str) -> None:
        if self._metrics is not None:
            self._metrics.increment_routing_applies(result)

    def forget(self, deployment_id: str) -> None:
        with self._registry_lock:
            self._applied.pop(deployment_id, None)
            self._high_water.pop(deployment_id, None)
            self._fence_locks.pop(deployment_id, None)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
