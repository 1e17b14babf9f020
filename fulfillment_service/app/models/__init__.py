"""
Fulfillment Service Models

This module contains all database models for the Fulfillment Service.
All models inherit from FulfillmentServiceBaseModel which provides common fields.
"""

from .base import FulfillmentServiceBase, FulfillmentServiceBaseModel
from .notification import Notification, NotificationType
from .order import (
    MIXED_STATUS,
    FulfillmentStatus,
    Order,
    OrderItem,
    PaymentStatus,
)
from .payout import HELD_PAYOUT_STATUSES, Payout, PayoutStatus
from .return_request import (
    ACTIVE_RETURN_STATUSES,
    REFUNDED_RETURN_STATUSES,
    ReturnRequest,
    ReturnStatus,
)
from .vendor import VendorAccount

__all__ = [
    # Base classes
    "FulfillmentServiceBase",
    "FulfillmentServiceBaseModel",
    # Order models
    "Order",
    "OrderItem",
    "FulfillmentStatus",
    "PaymentStatus",
    "MIXED_STATUS",
    # Returns
    "ReturnRequest",
    "ReturnStatus",
    "ACTIVE_RETURN_STATUSES",
    "REFUNDED_RETURN_STATUSES",
    # Settlement
    "VendorAccount",
    "Payout",
    "PayoutStatus",
    "HELD_PAYOUT_STATUSES",
    # Notifications
    "Notification",
    "NotificationType",
]
