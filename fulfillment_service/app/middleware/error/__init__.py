"""
Error middleware for Fulfillment Service.
"""

from .error_handler import FulfillmentServiceErrorHandler, setup_fulfillment_error_handling

__all__ = ["FulfillmentServiceErrorHandler", "setup_fulfillment_error_handling"]
