"""
RolloutHTTPClient: HTTP client for the canaryctl API.

Example:
    >>> from canaryctl.sdk import RolloutHTTPClient
    >>> client = RolloutHTTPClient(base_url="http://localhost:8080")
    >>> client.start({"deploymentId": "checkout", "stableVersionId": "v1",
    ...               "canaryVersionId": "v2",
    ...               "schedule": [{"percentage": 100, "minDurationSeconds": 60}]})
    >>> client.status("checkout")["state"]
    'staging(100)'
"""

from __future__ import annotations

import logging
from typing import Any

import requests
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import Timeout

from canaryctl.sdk.exceptions import (
    RolloutAPIError,
    RolloutConflictError,
    RolloutConnectionError,
    RolloutNotFoundError,
    RolloutServerError,
    RolloutValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8080"

_ERRORS_BY_STATUS: dict[int, type[RolloutAPIError]] = {
    400: RolloutValidationError,
    404: RolloutNotFoundError,
    409: RolloutConflictError,
}


class RolloutHTTPClient:
    """Thin typed wrapper over the ``/rollouts`` endpoints.

    Raises:
        RolloutValidationError: 400 responses
        RolloutNotFoundError: 404 responses
        RolloutConflictError: 409 responses
        RolloutServerError: any other non-2xx response
        RolloutConnectionError: connection failures and timeouts
    """

    DEFAULT_TIMEOUT = 10.0

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout if timeout is not None else self.DEFAULT_TIMEOUT
        self._session = requests.Session()
        self._session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def timeout(self) -> float:
        return self._timeout

    def _raise_for_status(self, response: requests.Response) -> None:
        try:
            data = response.json()
        except ValueError:
            data = {}
        error = data.get("error", {}) if isinstance(data, dict) else {}
        if not isinstance(error, dict):
            error = {}
        message = error.get("message") or response.reason or "request failed"
        error_cls = _ERRORS_BY_STATUS.get(response.status_code, RolloutServerError)
        raise error_cls(
            message,
            status_code=response.status_code,
            error_code=error.get("error_code"),
            details=error.get("details"),
            debug_id=response.headers.get("x-request-id"),
        )

    def _request(self, method: str, path: str, json_body: Any = None) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(method, url, json=json_body, timeout=self._timeout)
        except Timeout as e:
            raise RolloutConnectionError(f"Request to {url} timed out after {self._timeout}s") from e
        except RequestsConnectionError as e:
            raise RolloutConnectionError(f"Cannot reach {self._base_url}: {e}") from e

        if not 200 <= response.status_code < 300:
            self._raise_for_status(response)
        try:
            return response.json()
        except ValueError as e:
            raise RolloutServerError(
                "Response is not JSON", status_code=response.status_code
            ) from e

    def start(self, body: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/rollouts", body)

    def list_rollouts(self) -> list[dict[str, Any]]:
        return self._request("GET", "/rollouts").get("rollouts", [])

    def status(self, deployment_id: str) -> dict[str, Any]:
        return self._request("GET", f"/rollouts/{deployment_id}")

    def events(self, deployment_id: str) -> list[dict[str, Any]]:
        return self._request("GET", f"/rollouts/{deployment_id}/events").get("events", [])

    def abort(self, deployment_id: str, reason: str | None = None) -> dict[str, Any]:
        return self._request("POST", f"/rollouts/{deployment_id}/abort", {"reason": reason})

    def promote(self, deployment_id: str) -> dict[str, Any]:
        return self._request("POST", f"/rollouts/{deployment_id}/promote")

    def report(
        self, deployment_id: str, version: str, outcome: str, latency_ms: float
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            f"/rollouts/{deployment_id}/metrics",
            {"version": version, "outcome": outcome, "latencyMs": latency_ms},
        )
