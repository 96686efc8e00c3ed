"""Structured error codes and exception hierarchy for canaryctl.

Error codes follow the pattern: E{category}{number}
- E1xx: Input validation errors (rejected before any state exists)
- E4xx: Lookup and state conflict errors
- E5xx: Rollout health errors (fatal to a rollout)
- E7xx: Infrastructure errors (routing layer, audit log, persistence)
- E8xx: Configuration errors

Example:
    >>> from canaryctl.utils.errors import ErrorCode, ValidationError
    >>> raise ValidationError("final stage must be 100%", details={"final": 50})
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """Standardized error codes for the rollout controller."""

    # E1xx: Validation
    E100_VALIDATION_ERROR = "E100"
    E101_INVALID_SCHEDULE = "E101"
    E102_INVALID_THRESHOLDS = "E102"
    E103_INVALID_WEIGHTS = "E103"
    E104_INVALID_IDENTIFIER = "E104"

    # E4xx: Lookup / conflict
    E404_NOT_FOUND = "E404"
    E409_CONFLICT = "E409"
    E410_INVALID_TRANSITION = "E410"

    # E5xx: Rollout health
    E500_HEALTH_BREACH = "E500"
    E501_ROLLOUT_TIMEOUT = "E501"

    # E7xx: Infrastructure
    E700_INFRA_ERROR = "E700"
    E701_ROUTING_UNAVAILABLE = "E701"
    E702_ROUTING_TIMEOUT = "E702"
    E703_STALE_DIRECTIVE = "E703"
    E704_AUDIT_UNAVAILABLE = "E704"
    E705_STATE_PERSISTENCE_FAILED = "E705"

    # E8xx: Configuration
    E800_CONFIG_ERROR = "E800"
    E801_INVALID_CONFIG_FILE = "E801"
    E802_CONFIG_VALIDATION_FAILED = "E802"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.E100_VALIDATION_ERROR: "Input validation failed",
    ErrorCode.E101_INVALID_SCHEDULE: "Invalid rollout schedule",
    ErrorCode.E102_INVALID_THRESHOLDS: "Invalid health thresholds",
    ErrorCode.E103_INVALID_WEIGHTS: "Traffic weights must sum to 100",
    ErrorCode.E104_INVALID_IDENTIFIER: "Invalid deployment or version identifier",
    ErrorCode.E404_NOT_FOUND: "Deployment not found",
    ErrorCode.E409_CONFLICT: "Operation conflicts with current rollout state",
    ErrorCode.E410_INVALID_TRANSITION: "Transition not allowed from current phase",
    ErrorCode.E500_HEALTH_BREACH: "Canary health breach",
    ErrorCode.E501_ROLLOUT_TIMEOUT: "timeout",
    ErrorCode.E700_INFRA_ERROR: "Infrastructure error",
    ErrorCode.E701_ROUTING_UNAVAILABLE: "Routing layer unavailable",
    ErrorCode.E702_ROUTING_TIMEOUT: "Routing layer did not respond in time",
    ErrorCode.E703_STALE_DIRECTIVE: "Routing directive superseded by a newer epoch",
    ErrorCode.E704_AUDIT_UNAVAILABLE: "Durable audit log unavailable",
    ErrorCode.E705_STATE_PERSISTENCE_FAILED: "Failed to persist deployment state",
    ErrorCode.E800_CONFIG_ERROR: "Configuration error",
    ErrorCode.E801_INVALID_CONFIG_FILE: "Invalid configuration file",
    ErrorCode.E802_CONFIG_VALIDATION_FAILED: "Configuration validation failed",
}


@dataclass
class ErrorDetails:
    """Structured error details for logging and API responses.

    Attributes:
        code: Error code enum value
        message: Human-readable error message
        details: Additional error details
        recoverable: Whether retrying can succeed
    """

    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    recoverable: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "error_code": self.code.value,
            "message": self.message,
            "recoverable": self.recoverable,
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_log_dict(self) -> dict[str, Any]:
        """Flattened form for structured logging."""
        log_dict: dict[str, Any] = {
            "error_code": self.code.value,
            "error_message": self.message,
            "recoverable": self.recoverable,
        }
        for key, value in self.details.items():
            log_dict[f"detail_{key}"] = value
        return log_dict


class CanaryError(Exception):
    """Base exception for canaryctl errors with structured error codes.

    Example:
        >>> try:
        ...     raise CanaryError(ErrorCode.E409_CONFLICT, "rollout already completed")
        ... except CanaryError as e:
        ...     print(e.error_details.to_dict())
    """

    default_code: ErrorCode = ErrorCode.E100_VALIDATION_ERROR
    default_recoverable: bool = False

    def __init__(
        self,
        code: ErrorCode | None = None,
        message: str | None = None,
        details: dict[str, Any] | None = None,
        recoverable: bool | None = None,
    ) -> None:
        self.code = code or self.default_code
        self.message = message or ERROR_MESSAGES.get(self.code, "Unknown error")
        self.error_details = ErrorDetails(
            code=self.code,
            message=self.message,
            details=details or {},
            recoverable=self.default_recoverable if recoverable is None else recoverable,
        )
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    @property
    def recoverable(self) -> bool:
        return self.error_details.recoverable

    def log(self, level: int = logging.ERROR) -> None:
        """Log the error with structured details."""
        logger.log(level, "[%s] %s", self.code.value, self.message,
                   extra=self.error_details.to_log_dict())


# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------


class ValidationError(CanaryError):
    """Malformed schedule, thresholds or request. Never retried."""

    default_code = ErrorCode.E100_VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode | None = None,
    ) -> None:
        super().__init__(code, message, details)


class NotFoundError(CanaryError):
    """Unknown deployment id."""

    default_code = ErrorCode.E404_NOT_FOUND

    def __init__(self, deployment_id: str) -> None:
        self.deployment_id = deployment_id
        super().__init__(
            message=f"Deployment not found: {deployment_id}",
            details={"deployment_id": deployment_id},
        )


class ConflictError(CanaryError):
    """Operator action on a terminal or incompatible state. No state change."""

    default_code = ErrorCode.E409_CONFLICT

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode | None = None,
    ) -> None:
        super().__init__(code, message, details)


class InvalidTransitionError(ConflictError):
    """The state machine has no edge for this (phase, event) pair."""

    def __init__(self, phase: str, event: str) -> None:
        self.phase = phase
        self.event = event
        super().__init__(
            f"Event '{event}' is not allowed in phase '{phase}'",
            details={"phase": phase, "event": event},
            code=ErrorCode.E410_INVALID_TRANSITION,
        )


class TransientInfraError(CanaryError):
    """Routing layer or store temporarily unreachable. Retried on each tick."""

    default_code = ErrorCode.E700_INFRA_ERROR
    default_recoverable = True

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode | None = None,
    ) -> None:
        super().__init__(code, message, details)


class StaleDirectiveError(CanaryError):
    """A directive from a superseded epoch was fenced off."""

    default_code = ErrorCode.E703_STALE_DIRECTIVE

    def __init__(self, deployment_id: str, epoch: int, current_epoch: int) -> None:
        self.deployment_id = deployment_id
        self.epoch = epoch
        self.current_epoch = current_epoch
        super().__init__(
            message=(
                f"Directive epoch {epoch} for '{deployment_id}' is older than "
                f"applied epoch {current_epoch}"
            ),
            details={
                "deployment_id": deployment_id,
                "epoch": epoch,
                "current_epoch": current_epoch,
            },
        )


class HealthBreach(CanaryError):
    """Degraded canary. Always fatal to the rollout, never retried."""

    default_code = ErrorCode.E500_HEALTH_BREACH

    def __init__(self, reason: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=reason, details=details)


class RolloutTimeoutError(HealthBreach):
    """Rollout exceeded its overall duration without completing."""

    default_code = ErrorCode.E501_ROLLOUT_TIMEOUT

    def __init__(self, reason: str = "timeout", details: dict[str, Any] | None = None) -> None:
        super().__init__(reason, details)


class AuditUnavailableError(CanaryError):
    """The durable audit log could not accept an event."""

    default_code = ErrorCode.E704_AUDIT_UNAVAILABLE
    default_recoverable = True

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message=message)


class StateSaveError(CanaryError):
    """A deployment record could not be written. Logged, never fatal to a rollout."""

    default_code = ErrorCode.E705_STATE_PERSISTENCE_FAILED
    default_recoverable = True

    def __init__(self, message: str) -> None:
        super().__init__(message=message)


class StateLoadError(CanaryError):
    """A deployment record and its backup are both unreadable."""

    default_code = ErrorCode.E705_STATE_PERSISTENCE_FAILED

    def __init__(self, message: str) -> None:
        super().__init__(message=message)


class ConfigurationError(CanaryError):
    """Invalid or unreadable configuration."""

    default_code = ErrorCode.E800_CONFIG_ERROR

    def __init__(self, message: str, code: ErrorCode | None = None) -> None:
        super().__init__(code, message)


__all__ = [
    "ERROR_MESSAGES",
    "AuditUnavailableError",
    "CanaryError",
    "ConfigurationError",
    "ConflictError",
    "ErrorCode",
    "ErrorDetails",
    "HealthBreach",
    "InvalidTransitionError",
    "NotFoundError",
    "RolloutTimeoutError",
    "StaleDirectiveError",
    "StateLoadError",
    "StateSaveError",
    "TransientInfraError",
    "ValidationError",
]
