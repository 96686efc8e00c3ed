"""Clock abstraction so rollout timing can be driven without real sleeps.

The controller, metric store and audit trail all read time through a
``Clock``. Production wiring uses ``SystemClock``; tests inject ``FakeClock``
and move it forward explicitly, which makes a 300 second stage take zero
wall-clock time.

Usage:
    clock = FakeClock(start=1_000.0)
    store = MetricStore(clock=clock)
    clock.advance(60.0)
"""

from __future__ import annotations

import threading
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of wall-clock seconds (like ``time.time()``)."""

    def now(self) -> float:
        ...


class SystemClock:
    """Real system clock."""

    def now(self) -> float:
        return time.time()


class FakeClock:
    """Manually advanced clock for deterministic tests.

    Thread-safe: loops and ingestion threads may read it while the test
    thread advances it.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        """Move time forward.

        Args:
            seconds: Non-negative number of seconds to advance

        Returns:
            The new current time

        Raises:
            ValueError: If seconds is negative
        """
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        with self._lock:
            self._now += seconds
            return self._now

    def set(self, value: float) -> None:
        """Jump to an absolute time; may not go backwards."""
        with self._lock:
            if value < self._now:
                raise ValueError("Cannot move a clock backwards")
            self._now = float(value)


_default_clock: Clock = SystemClock()


def get_default_clock() -> Clock:
    """Return the process-wide default clock."""
    return _default_clock


def set_default_clock(clock: Clock) -> None:
    """Replace the process-wide default clock (tests only)."""
    global _default_clock
    _default_clock = clock


def reset_default_clock() -> None:
    global _default_clock
    _default_clock = SystemClock()
