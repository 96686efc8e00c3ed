"""Rollout endpoints.

- POST /rollouts                         start a rollout (201)
- GET  /rollouts                         list deployments
- GET  /rollouts/{deployment_id}         status
- GET  /rollouts/{deployment_id}/events  audited transitions
- POST /rollouts/{deployment_id}/abort   operator abort
- POST /rollouts/{deployment_id}/promote operator force-promote
- POST /rollouts/{deployment_id}/metrics request outcome from the proxy (always 202)

Handlers that take rollout locks are plain ``def`` so FastAPI runs them
in its thread pool; metric ingestion never blocks and stays async.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request, status
from pydantic import ValidationError as PydanticValidationError

from canaryctl.api.schemas import (
    AbortRequest,
    ErrorResponse,
    MetricAcceptedResponse,
    MetricSampleRequest,
    RolloutEventResponse,
    RolloutEventsResponse,
    RolloutListResponse,
    RolloutStatusResponse,
    StartRolloutRequest,
)

if TYPE_CHECKING:
    from canaryctl.factory import ControllerRuntime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rollouts", tags=["rollouts"])

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def _runtime(request: Request) -> ControllerRuntime:
    return request.app.state.runtime


@router.post(
    "",
    response_model=RolloutStatusResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
    responses=_ERROR_RESPONSES,
)
def start_rollout(body: StartRolloutRequest, request: Request) -> RolloutStatusResponse:
    runtime = _runtime(request)
    rollout = body.to_rollout_request(runtime.controller.default_thresholds)
    result = runtime.controller.start(rollout)
    return RolloutStatusResponse.from_status(result)


@router.get("", response_model=RolloutListResponse, response_model_by_alias=True)
def list_rollouts(request: Request) -> RolloutListResponse:
    statuses = _runtime(request).controller.list_deployments()
    return RolloutListResponse(rollouts=[RolloutStatusResponse.from_status(s) for s in statuses])


@router.get(
    "/{deployment_id}",
    response_model=RolloutStatusResponse,
    response_model_by_alias=True,
    responses=_ERROR_RESPONSES,
)
def get_rollout(deployment_id: str, request: Request) -> RolloutStatusResponse:
    return RolloutStatusResponse.from_status(_runtime(request).controller.status(deployment_id))


@router.get(
    "/{deployment_id}/events",
    response_model=RolloutEventsResponse,
    response_model_by_alias=True,
    responses=_ERROR_RESPONSES,
)
def get_events(deployment_id: str, request: Request) -> RolloutEventsResponse:
    events = _runtime(request).controller.events(deployment_id)
    return RolloutEventsResponse(
        deployment_id=deployment_id,
        events=[RolloutEventResponse.from_event(e) for e in events],
    )


@router.post(
    "/{deployment_id}/abort",
    response_model=RolloutStatusResponse,
    response_model_by_alias=True,
    responses=_ERROR_RESPONSES,
)
def abort_rollout(
    deployment_id: str, request: Request, body: AbortRequest | None = None
) -> RolloutStatusResponse:
    reason = body.reason if body is not None else None
    result = _runtime(request).controller.abort(deployment_id, reason)
    return RolloutStatusResponse.from_status(result)


@router.post(
    "/{deployment_id}/promote",
    response_model=RolloutStatusResponse,
    response_model_by_alias=True,
    responses=_ERROR_RESPONSES,
)
def promote_rollout(deployment_id: str, request: Request) -> RolloutStatusResponse:
    result = _runtime(request).controller.force_promote(deployment_id)
    return RolloutStatusResponse.from_status(result)


@router.post(
    "/{deployment_id}/metrics",
    response_model=MetricAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def ingest_metric(deployment_id: str, request: Request) -> MetricAcceptedResponse:
    """Accept one sample. Malformed samples are logged and dropped, never rejected."""
    runtime = _runtime(request)
    raw = await request.body()
    try:
        sample = MetricSampleRequest.model_validate(json.loads(raw or b"null"))
    except (ValueError, PydanticValidationError) as e:
        logger.warning("Dropping malformed metric sample for %s: %s", deployment_id, e)
        runtime.metrics.increment_samples_dropped("malformed")
        return MetricAcceptedResponse(accepted=False)

    accepted = runtime.controller.ingest(
        deployment_id, sample.version, sample.outcome, sample.latency_ms
    )
    return MetricAcceptedResponse(accepted=accepted)
