from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.payout import PayoutStatus


class BankDetails(BaseModel):
    bank_name: Optional[str] = Field(None, max_length=100)
    account_name: Optional[str] = Field(None, max_length=150)
    account_number: Optional[str] = Field(None, max_length=50)


class PayoutRequestCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    bank_details: Optional[BankDetails] = Field(
        None, description="Defaults to the bank details on the vendor account"
    )


class PayoutDecisionRequest(BaseModel):
    decision: Literal["approve", "reject"]
    admin_note: Optional[str] = Field(None, max_length=1000)


class PayoutResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vendor_id: int
    amount: Decimal
    status: PayoutStatus
    reference_code: str
    bank_name: str
    account_name: str
    account_number: str
    admin_note: Optional[str] = None
    decided_by: Optional[int] = None
    processing_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class PayoutListResponse(BaseModel):
    payouts: List[PayoutResponse]
    total: int
    skip: int
    limit: int


class VendorBalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    vendor_id: int
    gross_earnings: Decimal
    commission: Decimal
    refunded_amount: Decimal
    net_earnings: Decimal
    paid_out: Decimal
    held: Decimal
    available_balance: Decimal


class VendorAccountUpdate(BankDetails):
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=1)


class VendorAccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    vendor_id: int
    commission_rate: Decimal
    bank_name: Optional[str] = None
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CommissionBackfillRequest(BaseModel):
    commission_rate: Decimal = Field(..., ge=0, le=1)


class CommissionBackfillResponse(BaseModel):
    vendor_id: int
    commission_rate: Decimal
    updated_items: int
