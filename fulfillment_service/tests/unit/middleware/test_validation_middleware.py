"""
Unit tests for Fulfillment Service Request Validation Middleware.
"""

import json
from unittest.mock import AsyncMock, Mock

import pytest
from starlette.responses import JSONResponse, Response

from fulfillment_service.app.middleware.security.validation_middleware import (
    FulfillmentServiceRequestValidationMiddleware,
    RequestRejected,
)


def body_request(
    body: bytes,
    path: str = "/api/v1/returns",
    method: str = "POST",
    content_type: str = "application/json",
    correlation_id: str = "",
) -> Mock:
    headers = {"content-type": content_type, "content-length": str(len(body))}
    if correlation_id:
        headers["X-Correlation-ID"] = correlation_id
    mock_request = Mock()
    mock_request.url.path = path
    mock_request.method = method
    mock_request.headers = headers
    mock_request.state = Mock()
    mock_request.body = AsyncMock(return_value=body)
    return mock_request


class TestFulfillmentServiceRequestValidationMiddleware:
    """Test cases for request validation middleware."""

    @pytest.fixture
    def middleware(self):
        return FulfillmentServiceRequestValidationMiddleware(app=Mock())

    def test_middleware_initialization(self, middleware):
        assert middleware.max_request_size == 1024 * 1024
        assert middleware.allowed_content_types == ["application/json"]
        assert "/health" in middleware.exclude_paths

    def test_size_limit_for_path(self, middleware):
        assert middleware.size_limit_for("/api/v1/orders") == 512 * 1024
        assert middleware.size_limit_for("/api/v1/payouts/3/decision") == 64 * 1024
        assert middleware.size_limit_for("/api/v1/analytics/refunds") == 1024 * 1024

    def test_json_within_limits_passes(self, middleware):
        middleware.check_json(b'{"items": [{"product_id": 1, "quantity": 2}]}')

    def test_large_array_detected(self):
        middleware = FulfillmentServiceRequestValidationMiddleware(app=Mock(), max_array_size=3)

        with pytest.raises(RequestRejected) as exc_info:
            middleware.check_json(json.dumps({"items": list(range(5))}).encode())
        assert exc_info.value.status_code == 400

        middleware.check_json(json.dumps({"items": list(range(3))}).encode())

    def test_dangerous_keys_detected(self, middleware):
        with pytest.raises(RequestRejected, match="dangerous keys"):
            middleware.check_json(b'{"items": [{"__proto__": {}}]}')

    def test_bodiless_post_is_allowed(self, middleware):
        middleware.check_content_type("")

    @pytest.mark.asyncio
    async def test_dispatch_valid_request_gets_correlation_id(self, middleware):
        mock_request = body_request(b'{"reason": "damaged"}', correlation_id="corr-1")
        mock_call_next = AsyncMock(return_value=Response("OK"))

        response = await middleware.dispatch(mock_request, mock_call_next)

        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "corr-1"
        assert mock_request.state.correlation_id == "corr-1"

    @pytest.mark.asyncio
    async def test_dispatch_invalid_json(self, middleware):
        mock_call_next = AsyncMock()

        response = await middleware.dispatch(body_request(b"{not json"), mock_call_next)

        assert isinstance(response, JSONResponse)
        assert response.status_code == 400
        error = json.loads(response.body)["error"]
        assert error["type"] == "request_validation_error"
        assert "Invalid JSON" in error["message"]
        mock_call_next.assert_not_called()

    @pytest.mark.asyncio
    async def test_dispatch_unsupported_content_type(self, middleware):
        response = await middleware.dispatch(
            body_request(b"a=1", content_type="application/x-www-form-urlencoded"),
            AsyncMock(),
        )

        assert response.status_code == 415

    @pytest.mark.asyncio
    async def test_dispatch_oversized_body(self, middleware):
        body = json.dumps({"description": "x" * (70 * 1024)}).encode()

        response = await middleware.dispatch(body_request(body), AsyncMock())

        assert response.status_code == 413

    @pytest.mark.asyncio
    async def test_dispatch_too_deep_json(self, middleware):
        payload: dict = {}
        node = payload
        for _ in range(12):
            node["n"] = {}
            node = node["n"]

        response = await middleware.dispatch(
            body_request(json.dumps(payload).encode()), AsyncMock()
        )

        assert response.status_code == 400
        assert "deeply nested" in json.loads(response.body)["error"]["message"]
