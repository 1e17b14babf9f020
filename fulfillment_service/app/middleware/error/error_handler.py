"""
Error handling middleware for Fulfillment Service.

Every error leaves the service in one envelope:
``{"error": {type, message, correlation_id, user_id, timestamp, path, method, details}}``.
Rejected operations carry their failure kind as ``type`` and their reason
code in ``details.reason``.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...core.exceptions import FailureKind, FulfillmentError, OperationFailedError
from ...services.results import Failure
from ...utils.logging import setup_fulfillment_logging

logger = setup_fulfillment_logging("fulfillment_service_error_handler")

FAILURE_STATUS_CODES = {
    FailureKind.VALIDATION: 422,
    FailureKind.PRECONDITION_FAILED: 409,
    FailureKind.CONFLICT: 409,
    FailureKind.INSUFFICIENT_BALANCE: 400,
    FailureKind.NOT_FOUND: 404,
    FailureKind.PERMISSION_DENIED: 403,
    FailureKind.DATA_INTEGRITY: 500,
    FailureKind.PERSISTENCE: 500,
}


def _field_errors(exc: Any) -> List[Dict[str, Any]]:
    return [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]


class FulfillmentServiceErrorHandler:
    """Registers the exception handlers and builds the error envelope."""

    @staticmethod
    def status_code_for(failure: Failure) -> int:
        return FAILURE_STATUS_CODES.get(failure.kind, 500)

    @staticmethod
    def error_response(
        request: Request,
        status_code: int,
        error_type: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", None) or request.headers.get(
            "X-Correlation-ID", "unknown"
        )
        user_id = getattr(request.state, "user_id", "anonymous")

        body: Dict[str, Any] = {
            "type": error_type,
            "message": message,
            "correlation_id": correlation_id,
            "user_id": user_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "path": request.url.path,
            "method": request.method,
        }
        if details:
            body["details"] = details

        if status_code < 500:
            logger.warning(
                f"Client error: {error_type}",
                extra={
                    "correlation_id": correlation_id,
                    "user_id": user_id,
                    "status_code": status_code,
                    "error_type": error_type,
                    "reason": (details or {}).get("reason"),
                    "path": request.url.path,
                    "method": request.method,
                },
            )

        return JSONResponse(status_code=status_code, content={"error": body})

    @classmethod
    def failure_response(cls, request: Request, failure: Failure) -> JSONResponse:
        details: Dict[str, Any] = {"reason": failure.reason}
        # Persistence failures were logged with their traceback by the unit of work
        if failure.kind != FailureKind.PERSISTENCE:
            details.update(failure.details)
        return cls.error_response(
            request, cls.status_code_for(failure), failure.kind.value, failure.message, details
        )

    @classmethod
    def setup_error_handlers(cls, app: FastAPI) -> None:
        @app.exception_handler(OperationFailedError)
        async def operation_failed_handler(request: Request, exc: OperationFailedError) -> JSONResponse:
            return cls.failure_response(request, exc.failure)

        @app.exception_handler(FulfillmentError)
        async def fulfillment_error_handler(request: Request, exc: FulfillmentError) -> JSONResponse:
            """Domain errors raised outside a unit of work."""
            return cls.failure_response(request, Failure.from_error(exc))

        @app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(
            request: Request, exc: StarletteHTTPException
        ) -> JSONResponse:
            return cls.error_response(
                request,
                exc.status_code,
                "http_error",
                str(exc.detail),
                {"path": request.url.path, "method": request.method},
            )

        @app.exception_handler(RequestValidationError)
        async def request_validation_handler(
            request: Request, exc: RequestValidationError
        ) -> JSONResponse:
            return cls.error_response(
                request,
                422,
                "validation_error",
                "Request validation failed",
                {"reason": "invalid_request", "validation_errors": _field_errors(exc)},
            )

        @app.exception_handler(ValidationError)
        async def model_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
            """A model built inside a route rejected its data."""
            return cls.error_response(
                request,
                400,
                "data_validation_error",
                "Data validation failed",
                {"validation_errors": _field_errors(exc)},
            )

        @app.exception_handler(Exception)
        async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
            logger.error(
                "Unhandled exception occurred",
                extra={
                    "correlation_id": getattr(request.state, "correlation_id", "unknown"),
                    "user_id": getattr(request.state, "user_id", "anonymous"),
                    "path": request.url.path,
                    "method": request.method,
                    "exception_type": type(exc).__name__,
                    "event_type": "unhandled_exception",
                },
                exc_info=exc,
            )
            return cls.error_response(
                request, 500, "internal_server_error", "An internal server error occurred"
            )


def setup_fulfillment_error_handling(app: FastAPI) -> None:
    FulfillmentServiceErrorHandler.setup_error_handlers(app)
    logger.info("Fulfillment Service error handling configured", extra={"event_type": "error_handler_setup"})
