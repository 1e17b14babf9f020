"""
Authentication middleware for Fulfillment Service.
"""

from .auth_middleware import (
    AuthenticatedUser,
    FulfillmentServiceAuthMiddleware,
    authenticated_user,
    setup_fulfillment_auth_middleware,
)

__all__ = [
    "FulfillmentServiceAuthMiddleware",
    "AuthenticatedUser",
    "setup_fulfillment_auth_middleware",
    "authenticated_user",
]
