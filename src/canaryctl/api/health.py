"""Health check endpoints for the canaryctl API.

Health endpoints:
- GET /health         - Simple health check (always 200 if process alive)
- GET /health/live    - Liveness probe
- GET /health/ready   - Readiness probe (controller wired and scheduler running)
- GET /health/metrics - Prometheus metrics endpoint
"""

import time

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

router = APIRouter(prefix="/health", tags=["health"])


class SimpleHealthStatus(BaseModel):
    status: str


class LivenessStatus(BaseModel):
    status: str = Field(description="Always 'alive' if process is responsive")
    timestamp: float = Field(description="Unix timestamp of response")


class ReadinessStatus(BaseModel):
    ready: bool
    status: str = Field(description="'ready' or 'not_ready'")
    timestamp: float
    checks: dict[str, bool]
    active_rollouts: int = 0


@router.get("", response_model=SimpleHealthStatus)
async def health() -> SimpleHealthStatus:
    return SimpleHealthStatus(status="healthy")


@router.get("/live", response_model=LivenessStatus)
async def liveness() -> LivenessStatus:
    return LivenessStatus(status="alive", timestamp=time.time())


@router.get("/ready", response_model=ReadinessStatus)
async def readiness(request: Request, response: Response) -> ReadinessStatus:
    """Readiness probe.

    Returns 503 until the controller exists and, when enabled, the
    scheduler has been started by the application lifespan.
    """
    runtime = getattr(request.app.state, "runtime", None)
    checks = {
        "controller": runtime is not None,
        "scheduler": bool(getattr(request.app.state, "scheduler_started", False))
        or not getattr(request.app.state, "scheduler_enabled", True),
    }
    active = 0
    if runtime is not None:
        active = sum(
            1 for s in runtime.controller.list_deployments() if not s.phase.is_terminal
        )
    ready = all(checks.values())
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessStatus(
        ready=ready,
        status="ready" if ready else "not_ready",
        timestamp=time.time(),
        checks=checks,
        active_rollouts=active,
    )


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(request: Request) -> str:
    """Prometheus metrics in text exposition format."""
    runtime = request.app.state.runtime
    return runtime.metrics.get_metrics_text()
