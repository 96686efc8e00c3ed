"""
Tests for RolloutHTTPClient.

The requests session is mocked; these tests pin the URL/method contract and
the mapping from HTTP failures to SDK exceptions.
"""

from unittest.mock import MagicMock, patch

import pytest
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import Timeout

from canaryctl.sdk import (
    RolloutConflictError,
    RolloutConnectionError,
    RolloutHTTPClient,
    RolloutNotFoundError,
    RolloutServerError,
    RolloutValidationError,
)


def _response(status_code, payload=None, headers=None, reason="OK"):
    response = MagicMock()
    response.status_code = status_code
    response.reason = reason
    response.headers = headers or {}
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def client():
    return RolloutHTTPClient(base_url="http://canary:8080/", timeout=3.0)


class TestRequests:
    def test_base_url_trailing_slash_stripped(self, client):
        assert client.base_url == "http://canary:8080"
        assert client.timeout == 3.0

    def test_default_timeout(self):
        assert RolloutHTTPClient().timeout == RolloutHTTPClient.DEFAULT_TIMEOUT

    @pytest.mark.parametrize(
        ("call", "method", "path", "body"),
        [
            (lambda c: c.start({"deploymentId": "checkout"}), "POST", "/rollouts",
             {"deploymentId": "checkout"}),
            (lambda c: c.status("checkout"), "GET", "/rollouts/checkout", None),
            (lambda c: c.abort("checkout", "bad"), "POST", "/rollouts/checkout/abort",
             {"reason": "bad"}),
            (lambda c: c.promote("checkout"), "POST", "/rollouts/checkout/promote", None),
            (lambda c: c.report("checkout", "canary", "error", 12.0), "POST",
             "/rollouts/checkout/metrics",
             {"version": "canary", "outcome": "error", "latencyMs": 12.0}),
        ],
    )
    def test_routes(self, client, call, method, path, body):
        with patch.object(client._session, "request", return_value=_response(200, {})) as request:
            call(client)
        request.assert_called_once_with(
            method, f"http://canary:8080{path}", json=body, timeout=3.0
        )

    def test_list_unwraps(self, client):
        payload = {"rollouts": [{"deploymentId": "checkout"}]}
        with patch.object(client._session, "request", return_value=_response(200, payload)):
            assert client.list_rollouts() == [{"deploymentId": "checkout"}]

    def test_events_unwraps(self, client):
        payload = {"deploymentId": "checkout", "events": [{"sequence": 1}]}
        with patch.object(client._session, "request", return_value=_response(200, payload)):
            assert client.events("checkout") == [{"sequence": 1}]


class TestErrors:
    @pytest.mark.parametrize(
        ("status_code", "error_cls"),
        [
            (400, RolloutValidationError),
            (404, RolloutNotFoundError),
            (409, RolloutConflictError),
            (500, RolloutServerError),
            (503, RolloutServerError),
        ],
    )
    def test_status_mapping(self, client, status_code, error_cls):
        body = {
            "error": {
                "error_code": "E409",
                "message": "already aborted",
                "details": {"deployment_id": "checkout"},
            }
        }
        response = _response(status_code, body, headers={"x-request-id": "req-1"})
        with patch.object(client._session, "request", return_value=response):
            with pytest.raises(error_cls) as exc_info:
                client.status("checkout")
        error = exc_info.value
        assert error.status_code == status_code
        assert error.error_code == "E409"
        assert error.details == {"deployment_id": "checkout"}
        assert error.debug_id == "req-1"
        assert str(error) == f"[{status_code}] E409: already aborted (debug_id=req-1)"

    def test_error_without_json_body(self, client):
        response = _response(502, None, reason="Bad Gateway")
        with patch.object(client._session, "request", return_value=response):
            with pytest.raises(RolloutServerError, match="Bad Gateway"):
                client.status("checkout")

    def test_success_without_json(self, client):
        with patch.object(client._session, "request", return_value=_response(200, None)):
            with pytest.raises(RolloutServerError, match="not JSON"):
                client.status("checkout")

    def test_timeout(self, client):
        with patch.object(client._session, "request", side_effect=Timeout()):
            with pytest.raises(RolloutConnectionError, match="timed out after 3.0s"):
                client.status("checkout")

    def test_unreachable(self, client):
        with patch.object(client._session, "request", side_effect=RequestsConnectionError("refused")):
            with pytest.raises(RolloutConnectionError, match="Cannot reach http://canary:8080"):
                client.list_rollouts()
