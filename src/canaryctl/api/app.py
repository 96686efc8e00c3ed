"""FastAPI application for the canaryctl rollout controller.

``create_app`` builds the controller from ``ControllerSettings`` (or takes
a prebuilt ``ControllerRuntime`` in tests). The lifespan reloads persisted
deployments, starts the background scheduler and stops it on shutdown.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from canaryctl import __version__
from canaryctl.api import health, routes
from canaryctl.api.middleware import RequestIDMiddleware
from canaryctl.config.runtime import DEFAULT_CONFIG_PATH
from canaryctl.factory import ControllerRuntime, build_runtime
from canaryctl.observability.logger import configure_logging
from canaryctl.utils.config_loader import ConfigLoader
from canaryctl.utils.config_schema import ControllerSettings
from canaryctl.utils.errors import (
    CanaryError,
    ConflictError,
    ErrorCode,
    ErrorDetails,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _status_for(error: CanaryError) -> int:
    if isinstance(error, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, ConflictError):
        return status.HTTP_409_CONFLICT
    if error.recoverable:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _error_body(details: ErrorDetails, request: Request) -> dict[str, Any]:
    body = details.to_dict()
    request_id = getattr(request.state, "request_id", None)
    if request_id is not None:
        body["request_id"] = request_id
    return {"error": body}


async def canary_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, CanaryError):
        raise exc
    code = _status_for(exc)
    if code >= 500:
        exc.log()
    return JSONResponse(status_code=code, content=_error_body(exc.error_details, request))


async def request_validation_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, RequestValidationError):
        raise exc
    problems = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    details = ErrorDetails(
        code=ErrorCode.E100_VALIDATION_ERROR,
        message="Request validation failed",
        details={"problems": problems},
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST, content=_error_body(details, request)
    )


def _make_lifespan(runtime: ControllerRuntime, start_scheduler: bool) -> Any:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # STARTUP
        resumed = runtime.controller.recover()
        if start_scheduler:
            runtime.scheduler.start()
            app.state.scheduler_started = True
        runtime.event_logger.log_system_startup(
            __version__,
            {
                "resumed": resumed,
                "routing_backend": runtime.settings.routing.backend,
                "persistence": runtime.settings.persistence.enabled,
            },
        )

        yield

        # SHUTDOWN
        runtime.event_logger.log_system_shutdown("lifespan shutdown")
        runtime.shutdown()
        app.state.scheduler_started = False

    return lifespan


def create_app(
    runtime: ControllerRuntime | None = None,
    settings: ControllerSettings | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        runtime: Prebuilt controller runtime (built from settings if None)
        settings: Controller settings; loaded from ``CONFIG_PATH`` if None
        start_scheduler: Run background ticks; tests drive ``tick`` directly

    Returns:
        The configured application
    """
    if runtime is None:
        if settings is None:
            settings = ConfigLoader.load_settings(os.environ.get("CONFIG_PATH", DEFAULT_CONFIG_PATH))
            configure_logging(settings.logging.level, settings.logging.json_logs)
        runtime = build_runtime(settings)

    fastapi_app = FastAPI(
        title="canaryctl",
        version=__version__,
        description="Progressive canary rollout controller",
        lifespan=_make_lifespan(runtime, start_scheduler),
    )
    fastapi_app.state.runtime = runtime
    fastapi_app.state.scheduler_enabled = start_scheduler
    fastapi_app.state.scheduler_started = False

    fastapi_app.add_middleware(RequestIDMiddleware, metrics=runtime.metrics)
    fastapi_app.add_exception_handler(CanaryError, canary_error_handler)
    fastapi_app.add_exception_handler(RequestValidationError, request_validation_handler)

    fastapi_app.include_router(health.router)
    fastapi_app.include_router(routes.router)
    return fastapi_app
