"""Tests for the error envelope format and error handling.

Error responses take the shape:
{
    "status": "error",
    "error": {
        "code": "<stable_code>",
        "message": "<human_readable>",
        "details": <object|array|null>
    },
    "request_id": "<uuid>"
}
"""

import json

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from xinli import app as app_module
from xinli.api.error_handling import _error_code_for_status, _error_response
from xinli.api.schemas import Envelope, ErrorBody
from xinli.logging import correlation_id_var
from xinli.service.runtime import get_runtime


class TestErrorBody:
    def test_required_fields(self):
        error = ErrorBody(code="unauthorized", message="invalid token")
        assert error.details is None

    def test_missing_message_raises(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="server_error")

    @pytest.mark.parametrize("code", ["forbidden", "rate_limited", "bogus"])
    def test_unknown_codes_rejected(self, code):
        with pytest.raises(ValidationError):
            ErrorBody(code=code, message="x")

    def test_upstream_error_code_accepted(self):
        assert ErrorBody(code="upstream_error", message="x").code == "upstream_error"


class TestEnvelope:
    def test_status_must_be_ok_or_error(self):
        with pytest.raises(ValidationError):
            Envelope(status="maybe")

    def test_request_id_generated(self):
        assert Envelope(status="ok").request_id != Envelope(status="ok").request_id


class TestStatusMapping:
    @pytest.mark.parametrize(
        "status, code",
        [
            (400, "validation_error"),
            (401, "unauthorized"),
            (404, "not_found"),
            (409, "conflict"),
            (422, "validation_error"),
            (502, "upstream_error"),
            (500, "server_error"),
            (418, "server_error"),
        ],
    )
    def test_error_code_for_status(self, status, code):
        assert _error_code_for_status(status) == code

    def test_error_response_uses_correlation_id(self):
        token = correlation_id_var.set("req-123")
        try:
            response = _error_response(401, "nope")
        finally:
            correlation_id_var.reset(token)
        body = json.loads(response.body)
        assert response.status_code == 401
        assert body["status"] == "error"
        assert body["request_id"] == "req-123"
        assert body["error"] == {"code": "unauthorized", "message": "nope", "details": None}


class TestHttpErrors:
    @pytest.fixture
    def client(self):
        return TestClient(app_module.app, raise_server_exceptions=False)

    def test_request_id_echoed_in_header_and_body(self, client):
        response = client.get("/v1/auth/me", headers={"X-Request-ID": "trace-1"})
        assert response.status_code == 401
        assert response.headers["X-Request-ID"] == "trace-1"
        assert response.json()["request_id"] == "trace-1"

    def test_unexpected_exception_becomes_server_error(self, client, monkeypatch):
        async def _explode(refresh_token):
            raise RuntimeError("boom")

        monkeypatch.setattr(get_runtime().sessions, "refresh_access_token", _explode)
        response = client.post("/v1/auth/refresh", json={"refreshToken": "x"})
        assert response.status_code == 500
        body = response.json()
        assert body["error"]["code"] == "server_error"
        assert "boom" not in body["error"]["message"]

    def test_security_headers_and_health(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["version"] == app_module.__version__
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "no-store" in response.headers["Cache-Control"]
        assert response.headers["API-Version"] == app_module.__version__
