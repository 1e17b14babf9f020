"""
Fulfillment service event schemas for order, return and payout events.
Provides data structures that work with local events.base.BaseEvent infrastructure.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

# Published event types
ORDER_ITEM_STATUS_CHANGED = "order_item.status_changed"
ORDER_STATUS_CHANGED = "order.status_changed"
ORDER_CANCELLED = "order.cancelled"
ORDER_HANDOVER_CONFIRMED = "order.handover_confirmed"
RETURN_REQUESTED = "return.requested"
RETURN_DECIDED = "return.decided"
RETURN_COMPLETED = "return.completed"
PAYOUT_REQUESTED = "payout.requested"
PAYOUT_DECIDED = "payout.decided"

# Consumed event types (payment gateway collaborator)
PAYMENT_PROCESSED = "payment.processed"
PAYMENT_FAILED = "payment.failed"
REFUND_PROCESSED = "refund.processed"


class FulfillmentEventData(BaseModel):
    """Base fulfillment event data structure"""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for BaseEvent compatibility"""
        return self.model_dump(mode="json")


class OrderItemStatusChangedEventData(FulfillmentEventData):
    order_id: int
    order_item_id: int
    vendor_id: int
    old_status: str
    new_status: str
    changed_by: int
    changed_at: datetime


class OrderStatusChangedEventData(FulfillmentEventData):
    order_id: int
    order_number: str
    customer_id: int
    old_status: str
    new_status: str
    changed_at: datetime


class OrderCancelledEventData(FulfillmentEventData):
    order_id: int
    order_number: str
    customer_id: int
    cancelled_by: int
    cancelled_item_ids: List[int]
    cancelled_at: datetime


class OrderHandoverConfirmedEventData(FulfillmentEventData):
    order_id: int
    order_number: str
    agent_id: int
    delivered_item_ids: List[int]
    confirmed_at: datetime


class ReturnRequestedEventData(FulfillmentEventData):
    return_id: int
    order_id: int
    order_item_id: int
    customer_id: int
    vendor_id: int
    reason: str
    requested_amount: Decimal
    requested_at: datetime


class ReturnDecidedEventData(FulfillmentEventData):
    return_id: int
    order_item_id: int
    customer_id: int
    vendor_id: int
    decision: str
    decided_by: int
    vendor_response: Optional[str] = None
    decided_at: datetime


class ReturnCompletedEventData(FulfillmentEventData):
    return_id: int
    order_item_id: int
    customer_id: int
    vendor_id: int
    refunded_amount: Decimal
    completed_at: datetime


class PayoutRequestedEventData(FulfillmentEventData):
    payout_id: int
    vendor_id: int
    amount: Decimal
    reference_code: str
    requested_at: datetime


class PayoutDecidedEventData(FulfillmentEventData):
    payout_id: int
    vendor_id: int
    amount: Decimal
    decision: str
    decided_by: int
    decided_at: datetime
