"""Canonical runtime entrypoint for the canaryctl HTTP API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import uvicorn

from canaryctl.api.app import create_app
from canaryctl.config.runtime import RuntimeConfig, get_runtime_config
from canaryctl.observability.logger import configure_logging
from canaryctl.utils.config_loader import ConfigLoader

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)


def build_app(config: RuntimeConfig | None = None) -> FastAPI:
    """Load controller settings from ``config.config_path`` and build the app."""
    config = config or get_runtime_config()
    settings = ConfigLoader.load_settings(config.config_path)
    configure_logging(settings.logging.level, settings.logging.json_logs)
    return create_app(settings=settings)


def serve(
    *,
    host: str | None = None,
    port: int | None = None,
    log_level: str | None = None,
    config_path: str | None = None,
    dry_run: bool = False,
    **extra: Any,
) -> int:
    """
    Start the HTTP API server.

    Rollout state lives in this process, so the server always runs a
    single worker.

    Args:
        dry_run: Build the application and return without serving.
    """
    config = get_runtime_config()
    if host is not None:
        config.server.host = host
    if port is not None:
        config.server.port = port
    if log_level is not None:
        config.server.log_level = log_level.lower()
    if config_path is not None:
        config.config_path = config_path

    app = build_app(config)
    if dry_run:
        logger.info("Dry run: application built from %s", config.config_path)
        return 0

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level,
        timeout_keep_alive=config.server.timeout_keep_alive,
        **extra,
    )
    return 0


__all__ = ["build_app", "serve"]
