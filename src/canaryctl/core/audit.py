"""Append-only audit trail of rollout state transitions.

``AuditTrail`` is what the controller talks to. It stamps each event with a
per-deployment sequence number and a non-decreasing timestamp, keeps the
history in memory, and forwards the event to a durable ``AuditSink``.

A durable sink failure never blocks a rollout: routing safety wins over
audit completeness. The event is logged at error level and queued, and it
reads back with ``persisted=False`` until ``reconcile()`` has replayed the
queue in order. Stored history entries are never rewritten.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections import defaultdict
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from canaryctl.core.models import RolloutEvent
from canaryctl.utils.errors import AuditUnavailableError

if TYPE_CHECKING:
    from canaryctl.observability.metrics import MetricsExporter

logger = logging.getLogger(__name__)


@runtime_checkable
class AuditSink(Protocol):
    def append(self, event: RolloutEvent) -> None:
        """Durably store ``event``. Raise ``AuditUnavailableError`` on failure."""
        ...

    def read(self, deployment_id: str) -> list[RolloutEvent]:
        """Stored events for one deployment, in sequence order."""
        ...


class InMemoryAuditSink:
    """Volatile sink. ``available=False`` simulates an outage."""

    def __init__(self) -> None:
        self.events: list[RolloutEvent] = []
        self.available = True
        self._lock = threading.Lock()

    def append(self, event: RolloutEvent) -> None:
        with self._lock:
            if not self.available:
                raise AuditUnavailableError("in-memory audit sink marked unavailable")
            self.events.append(event)

    def read(self, deployment_id: str) -> list[RolloutEvent]:
        with self._lock:
            return [e for e in self.events if e.deployment_id == deployment_id]


class JsonlAuditSink:
    """One append-only JSON-lines file per deployment.

    Layout: ``<directory>/<deployment_id>.jsonl``, one event per line keyed
    by ``deployment_id`` + ``sequence``.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def path_for(self, deployment_id: str) -> Path:
        return self.directory / f"{deployment_id}.jsonl"

    def append(self, event: RolloutEvent) -> None:
        line = json.dumps(event.to_dict(), sort_keys=True) + "\n"
        try:
            with self._lock, open(self.path_for(event.deployment_id), "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise AuditUnavailableError(f"cannot append to audit log: {e}") from e

    def read(self, deployment_id: str) -> list[RolloutEvent]:
        path = self.path_for(deployment_id)
        if not path.is_file():
            return []
        events: list[RolloutEvent] = []
        with open(path, encoding="utf-8") as f:
            for raw in f:
                raw = raw.strip()
                if raw:
                    events.append(RolloutEvent.from_dict(json.loads(raw)))
        return events


class AuditTrail:
    """Sequencing, history and reconciliation in front of a durable sink."""

    def __init__(
        self,
        sink: AuditSink | None = None,
        metrics: MetricsExporter | None = None,
    ) -> None:
        self.sink: AuditSink = sink or InMemoryAuditSink()
        self._metrics = metrics
        self._history: dict[str, list[RolloutEvent]] = defaultdict(list)
        self._pending: list[RolloutEvent] = []
        self._unpersisted: set[tuple[str, int]] = set()
        self._lock = threading.Lock()

    def record(
        self,
        deployment_id: str,
        from_state: str,
        to_state: str,
        reason: str,
        timestamp: float,
    ) -> RolloutEvent:
        """Stamp, store and forward one transition.

        Returns:
            The stored event; ``persisted`` is False if the sink failed
        """
        with self._lock:
            history = self._history[deployment_id]
            sequence = history[-1].sequence + 1 if history else 1
            if history and timestamp < history[-1].timestamp:
                timestamp = history[-1].timestamp
            event = RolloutEvent(
                deployment_id=deployment_id,
                from_state=from_state,
                to_state=to_state,
                reason=reason,
                timestamp=timestamp,
                sequence=sequence,
            )
            self._flush_locked()
            failure: AuditUnavailableError | None = None
            if self._pending:
                failure = AuditUnavailableError("earlier events still queued")
            else:
                try:
                    self.sink.append(event)
                except AuditUnavailableError as e:
                    failure = e
            history.append(event)
            if failure is not None:
                event = replace(event, persisted=False)
                self._pending.append(event)
                self._unpersisted.add((deployment_id, sequence))
                logger.error(
                    "Audit event %s#%d (%s -> %s) not persisted: %s",
                    deployment_id,
                    sequence,
                    from_state,
                    to_state,
                    failure,
                )
                if self._metrics is not None:
                    self._metrics.increment_audit_unpersisted()
            return event

    def restore(self, deployment_id: str) -> int:
        """Reload history from the durable sink after a restart.

        Returns:
            Number of events loaded
        """
        events = sorted(self.sink.read(deployment_id), key=lambda e: e.sequence)
        with self._lock:
            self._history[deployment_id] = events
        return len(events)

    def history(self, deployment_id: str) -> list[RolloutEvent]:
        with self._lock:
            return [
                replace(event, persisted=False)
                if (deployment_id, event.sequence) in self._unpersisted
                else event
                for event in self._history.get(deployment_id, ())
            ]

    def unpersisted(self) -> list[RolloutEvent]:
        with self._lock:
            return list(self._pending)

    def reconcile(self) -> int:
        """Replay queued events to the sink, stopping at the first failure.

        Returns:
            Number of events persisted by this call
        """
        with self._lock:
            persisted = self._flush_locked()
        if persisted:
            logger.info("Reconciled %d audit event(s)", persisted)
        return persisted

    def _flush_locked(self) -> int:
        persisted = 0
        while self._pending:
            event = self._pending[0]
            stored = replace(event, persisted=True)
            try:
                self.sink.append(stored)
            except AuditUnavailableError as e:
                logger.warning("Audit reconciliation paused: %s", e)
                break
            self._pending.pop(0)
            self._unpersisted.discard((event.deployment_id, event.sequence))
            persisted += 1
        return persisted
