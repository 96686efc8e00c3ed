"""
canaryctl utility modules.

- Structured error codes and exceptions
- Clock abstraction for deterministic tests
- Atomic file writes

Configuration loading lives in ``canaryctl.utils.config_loader`` and
``canaryctl.utils.config_schema``; import those modules directly.
"""

from .clock import Clock, FakeClock, SystemClock, get_default_clock
from .errors import (
    CanaryError,
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from .fileio import write_file_atomic

__all__ = [
    "CanaryError",
    "Clock",
    "ConflictError",
    "ErrorCode",
    "FakeClock",
    "NotFoundError",
    "SystemClock",
    "ValidationError",
    "get_default_clock",
    "write_file_atomic",
]
