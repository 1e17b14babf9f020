from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.return_request import ReturnStatus


class ReturnRequestCreate(BaseModel):
    order_item_id: int
    reason: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    requested_amount: Decimal = Field(..., gt=0)


class ReturnDecisionRequest(BaseModel):
    decision: Literal["approve", "reject"]
    vendor_response: Optional[str] = Field(None, max_length=2000)


class ReturnDropoffRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=16)


class ReturnResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_item_id: int
    order_id: int
    customer_id: int
    vendor_id: int
    reason: str
    description: Optional[str] = None
    requested_amount: Decimal
    status: ReturnStatus
    vendor_response: Optional[str] = None
    decided_by: Optional[int] = None
    requested_at: datetime
    decided_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    dropoff_code: Optional[str] = None
    dropoff_confirmed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ReturnListResponse(BaseModel):
    returns: List[ReturnResponse]
    total: int
    skip: int
    limit: int


class PendingReturnAge(BaseModel):
    return_id: int
    order_item_id: int
    vendor_id: int
    requested_amount: Decimal
    requested_at: datetime
    age_hours: float
