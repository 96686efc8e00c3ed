"""Process entrypoints for the canaryctl HTTP API."""

from .serve import serve

__all__ = ["serve"]
