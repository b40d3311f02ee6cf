"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, and no information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.errors import (
    AppError,
    AuthorizationAppError,
    ConflictAppError,
    InvalidDestinationAppError,
    NotFoundAppError,
    RateLimitedAppError,
    UpstreamAppError,
    ValidationAppError,
)
from app.core.exception_handlers import setup_exception_handlers, status_for


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    """Create test client with handlers enabled."""
    return TestClient(app_with_handlers, raise_server_exceptions=False)


def _raise_on(app: FastAPI, path: str, exc: Exception) -> None:
    @app.get(path)
    async def endpoint():
        raise exc


@pytest.mark.parametrize(
    ("exc", "expected_status"),
    [
        (ValidationAppError(code="bad", message="bad"), 400),
        (InvalidDestinationAppError(code="invalid_destination", message="bad"), 400),
        (AuthorizationAppError(code="owner_required", message="no"), 403),
        (NotFoundAppError(code="record_not_found", message="gone"), 404),
        (ConflictAppError(code="duplicate", message="dup", conflict_on="dedup_key"), 409),
        (RateLimitedAppError(code="rate_limited", message="slow down"), 429),
        (UpstreamAppError(code="record_store_unavailable", message="down"), 500),
        (AppError(code="other", message="other"), 500),
    ],
)
def test_status_for_maps_error_classes(exc: AppError, expected_status: int) -> None:
    assert status_for(exc) == expected_status


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    def test_validation_error_returns_400(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify ValidationAppError returns HTTP 400."""
        _raise_on(
            app_with_handlers,
            "/test-validation",
            ValidationAppError(code="test_validation", message="Test validation error"),
        )

        response = client.get("/test-validation")

        assert response.status_code == 400
        data = response.json()
        assert data["error"]["code"] == "test_validation"
        assert data["error"]["message"] == "Test validation error"
        assert "request_id" in data["error"]
        assert "details" not in data["error"]

    def test_invalid_destination_includes_reason(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify the rejected rule reaches the client."""
        _raise_on(
            app_with_handlers,
            "/test-destination",
            InvalidDestinationAppError(
                code="invalid_destination",
                message="Destination is too long (maximum 2048 characters).",
                details={"reason": "destination_too_long", "max_length": 2048, "actual_length": 3000},
            ),
        )

        response = client.get("/test-destination")

        assert response.status_code == 400
        details = response.json()["error"]["details"]
        assert details["reason"] == "destination_too_long"
        assert details["actual_length"] == 3000

    def test_authorization_error_returns_403(self, client: TestClient, app_with_handlers: FastAPI):
        _raise_on(
            app_with_handlers,
            "/test-auth",
            AuthorizationAppError(code="invalid_api_key", message="Invalid or missing API key"),
        )

        response = client.get("/test-auth")

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "invalid_api_key"

    def test_not_found_returns_404(self, client: TestClient, app_with_handlers: FastAPI):
        _raise_on(
            app_with_handlers,
            "/test-missing",
            NotFoundAppError(code="record_not_found", message="QR code not found."),
        )

        response = client.get("/test-missing")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "record_not_found"

    def test_rate_limited_sets_retry_headers(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify 429 responses carry Retry-After and X-RateLimit-* headers."""
        _raise_on(
            app_with_handlers,
            "/test-limited",
            RateLimitedAppError(
                code="rate_limited",
                message="Too many requests.",
                details={"retry_after": 42, "reset_at": 1767225600, "limit": 10},
            ),
        )

        response = client.get("/test-limited")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "42"
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.headers["X-RateLimit-Reset"] == "1767225600"
        assert response.json()["error"]["details"]["retry_after"] == 42

    def test_upstream_error_returns_500(self, client: TestClient, app_with_handlers: FastAPI):
        _raise_on(
            app_with_handlers,
            "/test-upstream",
            UpstreamAppError(code="generate_timeout", message="Operation timed out."),
        )

        response = client.get("/test-upstream")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "generate_timeout"
        assert "Retry-After" not in response.headers

    def test_error_response_format_is_consistent(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify error responses have consistent JSON structure."""
        _raise_on(app_with_handlers, "/test-format", ValidationAppError(code="test", message="test"))

        data = client.get("/test-format").json()

        assert set(data) == {"error"}
        assert {"code", "message", "request_id"} <= set(data["error"])


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_unexpected_exception_returns_generic_500(self, client: TestClient, app_with_handlers: FastAPI):
        _raise_on(app_with_handlers, "/test-boom", RuntimeError("database password is hunter2"))

        response = client.get("/test-boom")

        assert response.status_code == 500
        data = response.json()
        assert data["error"]["code"] == "internal_server_error"
        assert "hunter2" not in response.text

    def test_general_exception_handler_never_leaks_stack_trace(self):
        """Verify stack traces are never included in response."""
        from app.core.exception_handlers import general_exception_handler

        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = ValueError("Test error with details")
        response = asyncio.run(general_exception_handler(request, exc))

        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        response_text = response_body.decode()
        data = json.loads(response_text)
        assert data["error"]["code"] == "internal_server_error"
        assert "Traceback" not in response_text
        assert "File \"" not in response_text
        assert "ValueError" not in response_text


class TestErrorHandlerIntegration:
    """Integration tests for exception handler setup."""

    def test_setup_exception_handlers_registers_handlers(self, app_with_handlers: FastAPI):
        assert AppError in app_with_handlers.exception_handlers
        assert Exception in app_with_handlers.exception_handlers

    def test_multiple_handler_setups_does_not_fail(self):
        """Verify calling setup_exception_handlers multiple times is safe."""
        app = FastAPI()

        setup_exception_handlers(app)
        setup_exception_handlers(app)

        assert AppError in app.exception_handlers
