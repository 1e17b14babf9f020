from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Query, status

from ...models.payout import PayoutStatus
from ...schemas.payout import (
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
from ...services.results import Actor
from ...services.settlement_service import SettlementService
from ..deps import ActorDep, SettlementServiceDep

router = APIRouter()


# =====================================================
# BALANCE AND VENDOR ACCOUNTS
# =====================================================


@router.get("/vendors/balance", status_code=status.HTTP_200_OK)
async def get_vendor_balance(
    vendor_id: Optional[int] = Query(None, description="Required for admins"),
    actor: Actor = ActorDep,
    settlement_service: SettlementService = SettlementServiceDep,
) -> VendorBalanceResponse:
    """Vendor balance recomputed from delivered items, refunds and payouts"""
    balance = (await settlement_service.get_vendor_balance(actor, vendor_id)).unwrap()
    return VendorBalanceResponse.model_validate(balance)


@router.get("/vendors/account", status_code=status.HTTP_200_OK)
async def get_vendor_account(
    vendor_id: Optional[int] = Query(None, description="Required for admins"),
    actor: Actor = ActorDep,
    settlement_service: SettlementService = SettlementServiceDep,
) -> VendorAccountResponse:
    account = (await settlement_service.get_vendor_account(actor, vendor_id)).unwrap()
    return VendorAccountResponse.model_validate(account)


@router.put("/vendors/{vendor_id}/account", status_code=status.HTTP_200_OK)
async def upsert_vendor_account(
    vendor_id: int,
    payload: VendorAccountUpdate,
    actor: Actor = ActorDep,
    settlement_service: SettlementService = SettlementServiceDep,
) -> VendorAccountResponse:
    """Admin: set commission rate and default bank destination"""
    result = await settlement_service.upsert_vendor_account(
        actor, vendor_id, payload.model_dump(exclude_none=True)
    )
    return VendorAccountResponse.model_validate(result.unwrap())


@router.post("/vendors/{vendor_id}/commission-backfill", status_code=status.HTTP_200_OK)
async def backfill_commission_snapshots(
    vendor_id: int,
    payload: CommissionBackfillRequest,
    actor: Actor = ActorDep,
    settlement_service: SettlementService = SettlementServiceDep,
) -> CommissionBackfillResponse:
    """Admin: fill missing commission snapshots from an explicit rate"""
    result = await settlement_service.backfill_commission_snapshots(
        actor, vendor_id, payload.commission_rate
    )
    return CommissionBackfillResponse(**result.unwrap())


# =====================================================
# PAYOUTS
# =====================================================


@router.post("/payouts", status_code=status.HTTP_201_CREATED)
async def request_payout(
    payload: PayoutRequestCreate,
    actor: Actor = ActorDep,
    settlement_service: SettlementService = SettlementServiceDep,
) -> PayoutResponse:
    """Vendor requests a withdrawal against the available balance"""
    result = await settlement_service.request_payout(
        actor,
        payload.amount,
        bank_details=payload.bank_details.model_dump() if payload.bank_details else None,
    )
    return PayoutResponse.model_validate(result.unwrap())


@router.get("/payouts", status_code=status.HTTP_200_OK)
async def list_payouts(
    vendor_id: Optional[int] = Query(None, description="Admin filter"),
    status_filter: Optional[PayoutStatus] = Query(None, alias="status"),
    min_amount: Optional[Decimal] = Query(None, ge=0),
    max_amount: Optional[Decimal] = Query(None, ge=0),
    created_from: Optional[datetime] = Query(None),
    created_to: Optional[datetime] = Query(None),
    sort_by: Literal["created_at", "amount", "status"] = Query("created_at"),
    order: Literal["asc", "desc"] = Query("desc"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    actor: Actor = ActorDep,
    settlement_service: SettlementService = SettlementServiceDep,
) -> PayoutListResponse:
    result = await settlement_service.list_payouts(
        actor,
        vendor_id=vendor_id,
        status_filter=status_filter.value if status_filter else None,
        min_amount=min_amount,
        max_amount=max_amount,
        created_from=created_from,
        created_to=created_to,
        sort_by=sort_by,
        descending=order == "desc",
        skip=skip,
        limit=limit,
    )
    return PayoutListResponse.model_validate(result.unwrap(), from_attributes=True)


@router.get("/payouts/{payout_id}", status_code=status.HTTP_200_OK)
async def get_payout(
    payout_id: int,
    actor: Actor = ActorDep,
    settlement_service: SettlementService = SettlementServiceDep,
) -> PayoutResponse:
    payout = (await settlement_service.get_payout(actor, payout_id)).unwrap()
    return PayoutResponse.model_validate(payout)


@router.post("/payouts/{payout_id}/processing", status_code=status.HTTP_200_OK)
async def start_payout_processing(
    payout_id: int,
    actor: Actor = ActorDep,
    settlement_service: SettlementService = SettlementServiceDep,
) -> PayoutResponse:
    """Admin marks the transfer as in flight"""
    payout = (await settlement_service.start_processing(actor, payout_id)).unwrap()
    return PayoutResponse.model_validate(payout)


@router.post("/payouts/{payout_id}/decision", status_code=status.HTTP_200_OK)
async def decide_payout(
    payout_id: int,
    payload: PayoutDecisionRequest,
    actor: Actor = ActorDep,
    settlement_service: SettlementService = SettlementServiceDep,
) -> PayoutResponse:
    """Admin completes or rejects a held payout"""
    result = await settlement_service.decide_payout(
        actor, payout_id, payload.decision, admin_note=payload.admin_note
    )
    return PayoutResponse.model_validate(result.unwrap())
