"""
Authentication middleware for Fulfillment Service.

The API gateway resolves the session and forwards the identity as
``X-User-ID`` / ``X-User-Role`` headers; this service trusts them.
"""

from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ...services.results import Actor, Role
from ...utils.logging import setup_fulfillment_logging

logger = setup_fulfillment_logging("fulfillment_service_auth")

USER_ID_HEADER = "X-User-ID"
USER_ROLE_HEADER = "X-User-Role"

DEFAULT_EXCLUDE_PATHS = [
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/api/v1/health",
]


class FulfillmentServiceAuthMiddleware(BaseHTTPMiddleware):
    """
    Authentication middleware for Fulfillment Service.

    Features:
    - Identity extraction from gateway headers
    - Role validation against the known roles
    - Request authentication logging
    """

    def __init__(self, app: Any, exclude_paths: Optional[list[str]] = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or list(DEFAULT_EXCLUDE_PATHS)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if self._should_skip_auth(request.url.path):
            return await call_next(request)

        correlation_id = request.headers.get("X-Correlation-ID") or getattr(
            request.state, "correlation_id", "unknown"
        )

        auth_result = self._authenticate_request(request)
        if not auth_result["authenticated"]:
            logger.warning(
                f"Authentication failed: {auth_result['reason']}",
                extra={
                    "correlation_id": correlation_id,
                    "path": request.url.path,
                    "method": request.method,
                    "reason": auth_result["reason"],
                    "service": "fulfillment_service",
                    "event_type": "auth_failed",
                },
            )
            return JSONResponse(
                status_code=401,
                content={
                    "error": {
                        "type": "authentication_error",
                        "message": "Authentication required",
                        "correlation_id": correlation_id,
                        "details": {"reason": auth_result["reason"]},
                    }
                },
            )

        request.state.user_id = auth_result["user_id"]
        request.state.user_role = auth_result["user_role"]
        logger.debug(
            "Request authenticated",
            extra={
                "correlation_id": correlation_id,
                "user_id": auth_result["user_id"],
                "user_role": auth_result["user_role"],
                "path": request.url.path,
                "method": request.method,
                "event_type": "auth_success",
            },
        )
        return await call_next(request)

    def _should_skip_auth(self, path: str) -> bool:
        if path in self.exclude_paths:
            return True
        return any(path.startswith(exclude_path) for exclude_path in self.exclude_paths)

    def _authenticate_request(self, request: Request) -> Dict[str, Any]:
        raw_user_id = request.headers.get(USER_ID_HEADER)
        raw_role = request.headers.get(USER_ROLE_HEADER)

        if not raw_user_id or not raw_user_id.strip():
            return {"authenticated": False, "reason": "missing_user_id"}
        if not raw_user_id.strip().isdigit():
            return {"authenticated": False, "reason": "invalid_user_id"}
        if not raw_role:
            return {"authenticated": False, "reason": "missing_user_role"}

        role = raw_role.strip().lower()
        if role not in {member.value for member in Role}:
            return {"authenticated": False, "reason": "unknown_user_role"}

        return {
            "authenticated": True,
            "user_id": int(raw_user_id.strip()),
            "user_role": role,
        }


class AuthenticatedUser:
    """
    Dependency class for FastAPI route authentication.
    Resolves the request's ``Actor`` and optionally enforces a role.
    """

    def __init__(self, required_role: Optional[Role] = None):
        self.required_role = required_role

    async def __call__(self, request: Request) -> Actor:
        user_id = getattr(request.state, "user_id", None)
        user_role = getattr(request.state, "user_role", None)

        if user_id is None or user_role is None:
            raise HTTPException(status_code=401, detail="Authentication required")

        actor = Actor(user_id=int(user_id), role=Role(user_role))
        if self.required_role and actor.role != self.required_role:
            raise HTTPException(
                status_code=403, detail=f"Required role: {self.required_role.value}"
            )
        return actor


def setup_fulfillment_auth_middleware(
    app: FastAPI, exclude_paths: Optional[list[str]] = None
) -> None:
    """
    Setup authentication middleware for Fulfillment Service.

    Args:
        app: FastAPI application instance
        exclude_paths: List of paths to exclude from authentication
    """
    if exclude_paths is None:
        exclude_paths = list(DEFAULT_EXCLUDE_PATHS)

    app.add_middleware(FulfillmentServiceAuthMiddleware, exclude_paths=exclude_paths)

    logger.info(
        "Fulfillment Service authentication middleware configured",
        extra={
            "service": "fulfillment_service",
            "excluded_paths": exclude_paths,
            "event_type": "auth_middleware_setup",
        },
    )


# Route dependency resolving the gateway identity
authenticated_user = AuthenticatedUser()
