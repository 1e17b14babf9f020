"""
Security middleware for Fulfillment Service.
"""

from .validation_middleware import (
    FulfillmentServiceRequestValidationMiddleware,
    setup_fulfillment_request_validation_middleware,
)

__all__ = [
    "FulfillmentServiceRequestValidationMiddleware",
    "setup_fulfillment_request_validation_middleware",
]
