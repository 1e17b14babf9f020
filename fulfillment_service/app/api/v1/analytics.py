from typing import Literal, Optional

from fastapi import APIRouter, Query, status

from ...schemas.analytics import RefundAnalyticsResponse
from ...services.analytics_service import AnalyticsService
from ...services.results import Actor
from ..deps import ActorDep, AnalyticsServiceDep

router = APIRouter(prefix="/analytics")


@router.get("/refunds", status_code=status.HTTP_200_OK)
async def refund_analytics(
    period: Literal["7d", "30d", "90d", "1y"] = Query("30d"),
    vendor_id: Optional[int] = Query(None, description="Restrict to one vendor"),
    actor: Actor = ActorDep,
    analytics_service: AnalyticsService = AnalyticsServiceDep,
) -> RefundAnalyticsResponse:
    """Admin refund dashboard: trends, reasons, vendor risk and payouts"""
    result = await analytics_service.refund_analytics(actor, period=period, vendor_id=vendor_id)
    return RefundAnalyticsResponse.model_validate(result.unwrap())
