"""Structured JSON logging for rollout events.

Module loggers (``logging.getLogger(__name__)``) carry ordinary diagnostics.
``ObservabilityLogger`` emits the typed, machine-readable rollout events an
operator alerts on: each line is a JSON object with ``event_type``,
``deployment_id`` and a ``metrics`` payload.

Key features:
- Thread-safe singleton via ``get_observability_logger``
- Optional size-based file rotation
- ``configure_logging`` wires the root logger for the server process
"""

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any


class EventType(Enum):
    """Types of rollout events to log."""

    # Lifecycle
    ROLLOUT_STARTED = "rollout_started"
    STATE_TRANSITION = "state_transition"
    ROLLOUT_COMPLETED = "rollout_completed"
    ROLLOUT_ABORTED = "rollout_aborted"
    OPERATOR_ACTION = "operator_action"

    # Health
    HEALTH_VERDICT = "health_verdict"

    # Routing
    ROUTING_APPLIED = "routing_applied"
    ROUTING_FAILED = "routing_failed"

    # Durability
    AUDIT_UNPERSISTED = "audit_unpersisted"

    # Process
    SYSTEM_STARTUP = "system_startup"
    SYSTEM_SHUTDOWN = "system_shutdown"


_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "event_type",
        "correlation_id",
        "metrics",
    }
)


class JSONFormatter(logging.Formatter):
    """Render a log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "timestamp_unix": record.created,
            "level": record.levelname,
            "logger": record.name,
            "event_type": getattr(record, "event_type", "log"),
            "message": record.getMessage(),
            "metrics": getattr(record, "metrics", {}),
        }
        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def configure_logging(level: str | int = "INFO", json_logs: bool = True) -> None:
    """Configure the root logger for the controller process.

    Args:
        level: Level name or number
        json_logs: Emit JSON lines instead of plain text
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    if json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


class ObservabilityLogger:
    """Thread-safe emitter of typed rollout events."""

    def __init__(
        self,
        logger_name: str = "canaryctl.events",
        log_dir: Path | str | None = None,
        log_file: str = "canaryctl_events.log",
        max_bytes: int = 10 * 1024 * 1024,  # 10 MB
        backup_count: int = 5,
        console_output: bool = False,
        min_level: int = logging.INFO,
    ):
        """Initialize the event logger.

        Args:
            logger_name: Name for the logger instance
            log_dir: Directory for a rotating event log (None: no file)
            log_file: Name of the log file
            max_bytes: Maximum size of a log file before rotation
            backup_count: Number of backup files to keep
            console_output: Attach a dedicated JSON console handler
            min_level: Minimum level emitted by this logger's handlers
        """
        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(logging.DEBUG)
        self._lock = Lock()

        # Re-creating the logger must not stack handlers
        self.logger.handlers.clear()

        json_formatter = JSONFormatter()
        self.log_path: Path | None = None

        if log_dir is not None:
            directory = Path(log_dir)
            directory.mkdir(parents=True, exist_ok=True)
            self.log_path = directory / log_file
            file_handler = RotatingFileHandler(
                filename=str(self.log_path),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(min_level)
            file_handler.setFormatter(json_formatter)
            self.logger.addHandler(file_handler)

        if console_output:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(min_level)
            console_handler.setFormatter(json_formatter)
            self.logger.addHandler(console_handler)
            self.logger.propagate = False

        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self.min_level = min_level

    def _log_event(
        self,
        event_type: EventType,
        level: int,
        message: str,
        correlation_id: str | None = None,
        metrics: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> str:
        with self._lock:
            if correlation_id is None:
                correlation_id = str(uuid.uuid4())
            extra = {
                "event_type": event_type.value,
                "correlation_id": correlation_id,
                "metrics": metrics or {},
            }
            extra.update(kwargs)
            self.logger.log(level, message, extra=extra)
            return correlation_id

    def info(self, event_type: EventType, message: str, **kwargs: Any) -> str:
        return self._log_event(event_type, logging.INFO, message, **kwargs)

    def warning(self, event_type: EventType, message: str, **kwargs: Any) -> str:
        return self._log_event(event_type, logging.WARNING, message, **kwargs)

    def error(self, event_type: EventType, message: str, **kwargs: Any) -> str:
        return self._log_event(event_type, logging.ERROR, message, **kwargs)

    def log_rollout_started(
        self,
        deployment_id: str,
        stable_version_id: str,
        canary_version_id: str,
        percentages: list[int],
    ) -> str:
        """Log acceptance of a new rollout.

        Args:
            deployment_id: Deployment being rolled out
            stable_version_id: Version currently serving
            canary_version_id: Version under evaluation
            percentages: Canary percentage per stage

        Returns:
            Correlation ID
        """
        return self.info(
            EventType.ROLLOUT_STARTED,
            f"Rollout {deployment_id} started: {stable_version_id} -> {canary_version_id}",
            deployment_id=deployment_id,
            metrics={"stages": percentages},
        )

    def log_state_transition(
        self,
        deployment_id: str,
        from_state: str,
        to_state: str,
        reason: str,
        epoch: int,
    ) -> str:
        """Log one state machine transition.

        Terminal states get their own event type so alerting can key on them.

        Returns:
            Correlation ID
        """
        if to_state == "completed":
            event_type, level = EventType.ROLLOUT_COMPLETED, logging.INFO
        elif to_state == "aborted":
            event_type, level = EventType.ROLLOUT_ABORTED, logging.WARNING
        elif to_state == "rolling_back":
            event_type, level = EventType.STATE_TRANSITION, logging.WARNING
        else:
            event_type, level = EventType.STATE_TRANSITION, logging.INFO
        return self._log_event(
            event_type,
            level,
            f"{deployment_id}: {from_state} -> {to_state} ({reason})",
            deployment_id=deployment_id,
            metrics={"from_state": from_state, "to_state": to_state, "reason": reason, "epoch": epoch},
        )

    def log_health_verdict(
        self, deployment_id: str, verdict: str, details: dict[str, Any]
    ) -> str:
        level = logging.WARNING if verdict == "degraded" else logging.DEBUG
        return self._log_event(
            EventType.HEALTH_VERDICT,
            level,
            f"{deployment_id}: canary {verdict}",
            deployment_id=deployment_id,
            metrics=details,
        )

    def log_routing_applied(
        self, deployment_id: str, stable_weight: int, canary_weight: int, epoch: int
    ) -> str:
        return self.info(
            EventType.ROUTING_APPLIED,
            f"{deployment_id}: routing stable={stable_weight}% canary={canary_weight}%",
            deployment_id=deployment_id,
            metrics={"stable": stable_weight, "canary": canary_weight, "epoch": epoch},
        )

    def log_routing_failed(
        self, deployment_id: str, canary_percentage: int, error: str, failing_for_seconds: float
    ) -> str:
        return self.warning(
            EventType.ROUTING_FAILED,
            f"{deployment_id}: could not apply canary={canary_percentage}%: {error}",
            deployment_id=deployment_id,
            metrics={
                "canary_percentage": canary_percentage,
                "failing_for_seconds": round(failing_for_seconds, 3),
            },
        )

    def log_audit_unpersisted(self, deployment_id: str, sequence: int, to_state: str) -> str:
        return self.error(
            EventType.AUDIT_UNPERSISTED,
            f"{deployment_id}: audit event #{sequence} (-> {to_state}) queued for reconciliation",
            deployment_id=deployment_id,
            metrics={"sequence": sequence, "to_state": to_state},
        )

    def log_operator_action(self, deployment_id: str, action: str, reason: str) -> str:
        return self.info(
            EventType.OPERATOR_ACTION,
            f"{deployment_id}: operator {action} ({reason})",
            deployment_id=deployment_id,
            metrics={"action": action, "reason": reason},
        )

    def log_system_startup(self, version: str, config: dict[str, Any] | None = None) -> str:
        return self.info(
            EventType.SYSTEM_STARTUP,
            "canaryctl controller starting up",
            metrics={"version": version, "config": config or {}},
        )

    def log_system_shutdown(self, reason: str | None = None) -> str:
        return self.info(
            EventType.SYSTEM_SHUTDOWN,
            "canaryctl controller shutting down",
            metrics={"reason": reason} if reason else {},
        )

    def get_config(self) -> dict[str, Any]:
        return {
            "logger_name": self.logger.name,
            "log_path": str(self.log_path) if self.log_path else None,
            "max_bytes": self.max_bytes,
            "backup_count": self.backup_count,
            "min_level": logging.getLevelName(self.min_level),
            "handlers": len(self.logger.handlers),
        }


_observability_logger: ObservabilityLogger | None = None
_observability_logger_lock = Lock()


def get_observability_logger(
    logger_name: str = "canaryctl.events",
    **kwargs: Any,
) -> ObservabilityLogger:
    """Get or create the process-wide event logger.

    Thread-safe, double-checked locking. ``kwargs`` only apply on first call.
    """
    global _observability_logger

    if _observability_logger is None:
        with _observability_logger_lock:
            if _observability_logger is None:
                _observability_logger = ObservabilityLogger(logger_name=logger_name, **kwargs)

    return _observability_logger


def reset_observability_logger() -> None:
    """Drop the singleton (tests)."""
    global _observability_logger
    with _observability_logger_lock:
        _observability_logger = None
