"""
Request validation middleware for Fulfillment Service.
Assigns the correlation ID and rejects oversized, wrongly typed or
suspicious JSON bodies before a request reaches the routers.
"""

import json
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ...utils.logging import setup_fulfillment_logging

logger = setup_fulfillment_logging("fulfillment_service_validation")

CORRELATION_HEADER = "X-Correlation-ID"
DANGEROUS_KEYS = frozenset({"__proto__", "constructor", "prototype"})
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

# Orders carry the item lines; everything else is a small command
PATH_SIZE_LIMITS: Dict[str, int] = {
    "/api/v1/orders": 512 * 1024,
    "/api/v1/returns": 64 * 1024,
    "/api/v1/payouts": 64 * 1024,
}


class RequestRejected(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class FulfillmentServiceRequestValidationMiddleware(BaseHTTPMiddleware):
    """
    Checks run in order: declared/actual body size against the per-path
    limit (413), content type (415), then JSON syntax, nesting depth,
    array length and prototype-pollution keys (400).
    """

    def __init__(
        self,
        app: Any,
        max_request_size: int = 1024 * 1024,
        allowed_content_types: Optional[List[str]] = None,
        exclude_paths: Optional[List[str]] = None,
        max_json_depth: int = 10,
        max_array_size: int = 1000,
    ):
        super().__init__(app)
        self.max_request_size = max_request_size
        self.allowed_content_types = allowed_content_types or ["application/json"]
        self.exclude_paths = exclude_paths or ["/health", "/docs", "/redoc", "/openapi.json"]
        self.max_json_depth = max_json_depth
        self.max_array_size = max_array_size

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        request.state.correlation_id = correlation_id

        if not any(request.url.path.startswith(path) for path in self.exclude_paths):
            try:
                await self.validate(request)
            except RequestRejected as rejection:
                return self._rejection_response(request, correlation_id, rejection)

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    def size_limit_for(self, path: str) -> int:
        for prefix, limit in PATH_SIZE_LIMITS.items():
            if path.startswith(prefix):
                return limit
        return self.max_request_size

    async def validate(self, request: Request) -> None:
        limit = self.size_limit_for(request.url.path)
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > limit:
            raise RequestRejected(413, f"Request size {declared} exceeds limit {limit}")

        if request.method not in BODY_METHODS:
            return

        body = await request.body()
        if len(body) > limit:
            raise RequestRejected(413, f"Request body size {len(body)} exceeds limit {limit}")

        self.check_content_type(request.headers.get("content-type", ""))
        if body:
            self.check_json(body)

    def check_content_type(self, content_type: str) -> None:
        content_type = content_type.lower()
        # Bodiless commands (e.g. POST .../complete) carry no content type
        if not content_type:
            return
        if not any(content_type.startswith(allowed) for allowed in self.allowed_content_types):
            raise RequestRejected(
                415,
                f"Content-Type '{content_type}' is not allowed. Allowed types: {self.allowed_content_types}",
            )

    def check_json(self, body: bytes) -> None:
        try:
            data = json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise RequestRejected(400, f"Invalid JSON: {e}")
        self._walk(data, depth=0)

    def _walk(self, node: Any, depth: int) -> None:
        """Depth-first scan that stops at the first violation."""
        if isinstance(node, dict):
            children = list(node.values())
            if any(isinstance(key, str) and key.lower() in DANGEROUS_KEYS for key in node):
                raise RequestRejected(400, "JSON contains potentially dangerous keys")
        elif isinstance(node, list):
            children = node
            if len(node) > self.max_array_size:
                raise RequestRejected(
                    400, f"JSON contains array larger than {self.max_array_size} elements"
                )
        else:
            return

        if depth + 1 > self.max_json_depth and children:
            raise RequestRejected(
                400, f"JSON object too deeply nested (max depth: {self.max_json_depth})"
            )
        for child in children:
            self._walk(child, depth + 1)

    def _rejection_response(
        self, request: Request, correlation_id: str, rejection: RequestRejected
    ) -> Response:
        logger.warning(
            f"Request validation failed: {rejection.message}",
            extra={
                "correlation_id": correlation_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": rejection.status_code,
                "event_type": "validation_failed",
            },
        )
        return JSONResponse(
            status_code=rejection.status_code,
            headers={CORRELATION_HEADER: correlation_id},
            content={
                "error": {
                    "type": "request_validation_error",
                    "message": rejection.message,
                    "correlation_id": correlation_id,
                    "details": {"path": request.url.path, "method": request.method},
                }
            },
        )


def setup_fulfillment_request_validation_middleware(
    app: FastAPI,
    max_request_size: int = 1024 * 1024,
    allowed_content_types: Optional[List[str]] = None,
    exclude_paths: Optional[List[str]] = None,
) -> None:
    app.add_middleware(
        FulfillmentServiceRequestValidationMiddleware,
        max_request_size=max_request_size,
        allowed_content_types=allowed_content_types,
        exclude_paths=exclude_paths,
    )
    logger.info(
        "Request validation middleware configured",
        extra={"max_request_size_kb": max_request_size / 1024, "event_type": "validation_middleware_setup"},
    )
