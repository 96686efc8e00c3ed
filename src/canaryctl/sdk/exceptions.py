"""
SDK exceptions for the canaryctl HTTP client.

Each HTTP failure class the CLI cares about has its own type so callers
can map them to exit codes without inspecting status numbers.
"""

from typing import Any


class RolloutClientError(Exception):
    """Base exception for all SDK errors.

    Attributes:
        message: Human-readable error message
        debug_id: Request id echoed by the API, if any
    """

    def __init__(self, message: str, debug_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.debug_id = debug_id

    def __str__(self) -> str:
        if self.debug_id:
            return f"{self.message} (debug_id={self.debug_id})"
        return self.message


class RolloutAPIError(RolloutClientError):
    """Non-2xx response from the API.

    Attributes:
        status_code: HTTP status code
        error_code: canaryctl error code (``E101`` ...) when the body carries one
        details: Additional error details from the body
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        debug_id: str | None = None,
    ) -> None:
        super().__init__(message, debug_id)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        base = f"[{self.status_code}] {self.message}"
        if self.error_code:
            base = f"[{self.status_code}] {self.error_code}: {self.message}"
        if self.debug_id:
            base += f" (debug_id={self.debug_id})"
        return base


class RolloutValidationError(RolloutAPIError):
    """HTTP 400: the request was rejected before any state changed."""


class RolloutNotFoundError(RolloutAPIError):
    """HTTP 404: unknown deployment id."""


class RolloutConflictError(RolloutAPIError):
    """HTTP 409: the operation is not valid in the deployment's current state."""


class RolloutServerError(RolloutAPIError):
    """Any other non-2xx response."""


class RolloutConnectionError(RolloutClientError):
    """The API could not be reached or did not answer in time."""
