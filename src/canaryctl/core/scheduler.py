"""Background ticker: one thread per active deployment.

Each loop calls ``controller.tick`` and then waits on a per-deployment
``threading.Event`` for the tick interval, so ``schedule`` (used by start
and abort) wakes it early. A loop exits once its deployment is terminal.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from canaryctl.utils.errors import NotFoundError

if TYPE_CHECKING:
    from canaryctl.core.controller import RolloutController

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL_SECONDS = 5.0


class RolloutScheduler:
    """Runs ``controller.tick`` for every non-terminal deployment."""

    def __init__(
        self,
        controller: RolloutController,
        tick_interval_seconds: float = DEFAULT_TICK_INTERVAL_SECONDS,
    ) -> None:
        if tick_interval_seconds <= 0:
            raise ValueError("tick_interval_seconds must be positive")
        self.controller = controller
        self.tick_interval_seconds = float(tick_interval_seconds)
        self._threads: dict[str, threading.Thread] = {}
        self._wakeups: dict[str, threading.Event] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._attached = False

    def start(self) -> None:
        """Subscribe to the controller and pick up deployments already known."""
        self._stopped.clear()
        if not self._attached:
            self.controller.add_listener(self.schedule)
            self._attached = True
        for status in self.controller.list_deployments():
            if not status.phase.is_terminal:
                self.schedule(status.deployment_id)

    def schedule(self, deployment_id: str) -> None:
        """Ensure a loop runs for the deployment and wake it now."""
        if self._stopped.is_set():
            return
        with self._lock:
            wake = self._wakeups.get(deployment_id)
            if wake is not None:
                wake.set()
                return
            wake = threading.Event()
            thread = threading.Thread(
                target=self._run,
                args=(deployment_id, wake),
                name=f"rollout-{deployment_id}",
                daemon=True,
            )
            self._wakeups[deployment_id] = wake
            self._threads[deployment_id] = thread
        thread.start()
        logger.debug("Scheduled rollout loop for %s", deployment_id)

    def running(self) -> list[str]:
        with self._lock:
            return sorted(self._threads)

    def _run(self, deployment_id: str, wake: threading.Event) -> None:
        while not self._stopped.is_set():
            try:
                status = self.controller.tick(deployment_id)
            except NotFoundError:
                logger.warning("Rollout %s disappeared, stopping its loop", deployment_id)
                break
            except Exception:
                # The loop is the only driver of this rollout; keep it alive.
                logger.exception("Tick failed for %s", deployment_id)
            else:
                if status.phase.is_terminal:
                    with self._lock:
                        # A new rollout of the same id may have been scheduled meanwhile
                        if not wake.is_set():
                            self._forget(deployment_id, wake)
                            logger.debug("Rollout loop for %s finished", deployment_id)
                            return
                    wake.clear()
                    continue
            wake.wait(self.tick_interval_seconds)
            wake.clear()

        with self._lock:
            self._forget(deployment_id, wake)

    def _forget(self, deployment_id: str, wake: threading.Event) -> None:
        if self._wakeups.get(deployment_id) is wake:
            self._wakeups.pop(deployment_id, None)
            self._threads.pop(deployment_id, None)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop every loop and wait for them to exit."""
        self._stopped.set()
        with self._lock:
            threads = list(self._threads.values())
            for wake in self._wakeups.values():
                wake.set()
        for thread in threads:
            thread.join(timeout)
        logger.info("Rollout scheduler stopped (%d loop(s))", len(threads))
