"""Middleware components for the canaryctl API.

Provides:
- Request ID tracking and correlation
- Per-route HTTP request counters
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import TYPE_CHECKING

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.types import ASGIApp

    from canaryctl.observability.metrics import MetricsExporter

logger = logging.getLogger(__name__)


def _route_template(request: Request) -> str:
    """Route path template, so ids do not explode label cardinality."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path if isinstance(path, str) else "unmatched"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to add a request ID to every request and response.

    The request ID is:
    - Taken from the X-Request-ID header or generated
    - Added to response headers
    - Made available to handlers via ``request.state.request_id``
    """

    def __init__(self, app: ASGIApp, metrics: MetricsExporter | None = None) -> None:
        super().__init__(app)
        self._metrics = metrics

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error(
                "Request failed: %s",
                e,
                extra={"request_id": request_id, "path": request.url.path},
                exc_info=True,
            )
            raise
        finally:
            duration_ms = (time.time() - start_time) * 1000
            logger.debug(
                "Request completed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status": status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            if self._metrics is not None:
                self._metrics.increment_http_requests(
                    request.method, _route_template(request), str(status_code)
                )

        response.headers["X-Request-ID"] = request_id
        return response
