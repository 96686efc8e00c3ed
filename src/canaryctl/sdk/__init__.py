"""Python client for the canaryctl HTTP API."""

from .exceptions import (
    RolloutAPIError,
    RolloutClientError,
    RolloutConflictError,
    RolloutConnectionError,
    RolloutNotFoundError,
    RolloutServerError,
    RolloutValidationError,
)
from .http_client import DEFAULT_BASE_URL, RolloutHTTPClient

__all__ = [
    "DEFAULT_BASE_URL",
    "RolloutAPIError",
    "RolloutClientError",
    "RolloutConflictError",
    "RolloutConnectionError",
    "RolloutHTTPClient",
    "RolloutNotFoundError",
    "RolloutServerError",
    "RolloutValidationError",
]
