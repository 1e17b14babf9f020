from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.order import FulfillmentStatus, PaymentStatus


class OrderItemCreate(BaseModel):
    """Order line as produced by checkout"""

    product_id: int
    vendor_id: int
    product_name: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(..., gt=0, decimal_places=2)


class PlaceOrderRequest(BaseModel):
    """Create order request model"""

    items: List[OrderItemCreate] = Field(..., min_length=1)
    total_amount: Decimal = Field(..., ge=0)
    discount_amount: Decimal = Field(Decimal("0.00"), ge=0)
    tax_amount: Decimal = Field(Decimal("0.00"), ge=0)
    shipping_cost: Decimal = Field(Decimal("0.00"), ge=0)
    customer_id: Optional[int] = Field(None, description="Required when placed by an admin")
    agent_id: Optional[int] = Field(None, description="Pickup agent, if any")
    currency: str = Field("USD", min_length=3, max_length=3)
    coupon_code: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    product_id: int
    vendor_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    commission_rate: Optional[Decimal] = None
    commission_amount: Optional[Decimal] = None
    status: FulfillmentStatus
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class OrderResponse(BaseModel):
    """Order detail response model"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    customer_id: int
    agent_id: Optional[int] = None
    status: FulfillmentStatus
    display_status: str
    payment_status: PaymentStatus
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    currency: str
    coupon_code: Optional[str] = None
    pickup_code: Optional[str] = None
    pickup_code_issued_at: Optional[datetime] = None
    handover_confirmed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    notes: Optional[str] = None
    items: List[OrderItemResponse]
    created_at: datetime
    updated_at: datetime


class OrderSummary(BaseModel):
    """Order summary model for list responses"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    customer_id: int
    agent_id: Optional[int] = None
    status: FulfillmentStatus
    display_status: str
    payment_status: PaymentStatus
    total_amount: Decimal
    currency: str
    created_at: datetime
    updated_at: datetime


class OrderListResponse(BaseModel):
    orders: List[OrderSummary]
    total: int
    skip: int
    limit: int


class VendorItemListResponse(BaseModel):
    items: List[OrderItemResponse]
    total: int
    skip: int
    limit: int


class AdvanceItemStatusRequest(BaseModel):
    new_status: FulfillmentStatus
    expected_status: Optional[FulfillmentStatus] = Field(
        None, description="Status the caller last observed; stale requests are rejected"
    )


class CancelOrderRequest(BaseModel):
    expected_status: Optional[FulfillmentStatus] = None


class VerifyPickupCodeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=16)


class PickupCodeResponse(BaseModel):
    order_id: int
    pickup_code: str


class PaymentStatusRequest(BaseModel):
    payment_status: PaymentStatus
