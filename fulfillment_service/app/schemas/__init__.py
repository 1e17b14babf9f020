"""
Fulfillment service API schemas
"""

from .analytics import RefundAnalyticsResponse
from .notification import (
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from .order import (
    AdvanceItemStatusRequest,
    CancelOrderRequest,
    OrderItemCreate,
    OrderItemResponse,
    OrderListResponse,
    OrderResponse,
    OrderSummary,
    PaymentStatusRequest,
    PickupCodeResponse,
    PlaceOrderRequest,
    VendorItemListResponse,
    VerifyPickupCodeRequest,
)
from .payout import (
    BankDetails,
    CommissionBackfillRequest,
    CommissionBackfillResponse,
    PayoutDecisionRequest,
    PayoutListResponse,
    PayoutRequestCreate,
    PayoutResponse,
    VendorAccountResponse,
    VendorAccountUpdate,
    VendorBalanceResponse,
)
from .returns import (
    PendingReturnAge,
    ReturnDecisionRequest,
    ReturnDropoffRequest,
    ReturnListResponse,
    ReturnRequestCreate,
    ReturnResponse,
)

__all__ = [
    # Orders
    "OrderItemCreate",
    "PlaceOrderRequest",
    "OrderItemResponse",
    "OrderResponse",
    "OrderSummary",
    "OrderListResponse",
    "VendorItemListResponse",
    "AdvanceItemStatusRequest",
    "CancelOrderRequest",
    "VerifyPickupCodeRequest",
    "PickupCodeResponse",
    "PaymentStatusRequest",
    # Returns
    "ReturnRequestCreate",
    "ReturnDecisionRequest",
    "ReturnDropoffRequest",
    "ReturnResponse",
    "ReturnListResponse",
    "PendingReturnAge",
    # Payouts and settlement
    "BankDetails",
    "PayoutRequestCreate",
    "PayoutDecisionRequest",
    "PayoutResponse",
    "PayoutListResponse",
    "VendorBalanceResponse",
    "VendorAccountUpdate",
    "VendorAccountResponse",
    "CommissionBackfillRequest",
    "CommissionBackfillResponse",
    # Notifications
    "NotificationResponse",
    "NotificationListResponse",
    "UnreadCountResponse",
    "MarkAllReadResponse",
    # Analytics
    "RefundAnalyticsResponse",
]
