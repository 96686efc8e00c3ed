"""HTTP API for the rollout controller."""

from .app import create_app

__all__ = ["create_app"]
