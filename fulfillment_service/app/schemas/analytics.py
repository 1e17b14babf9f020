from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel


class RefundTrend(BaseModel):
    direction: Literal["up", "down", "stable"]
    current_period: int
    previous_period: int
    change_percentage: float


class RefundSummary(BaseModel):
    total_refunds: int
    total_refund_amount: Decimal
    approved_refund_amount: Decimal
    approval_rate: float
    average_processing_hours: float
    refund_trend: RefundTrend


class DailyRefunds(BaseModel):
    date: str
    count: int
    amount: Decimal


class ReasonShare(BaseModel):
    reason: str
    count: int
    percentage: float


class StatusShare(BaseModel):
    status: str
    count: int
    amount: Decimal


class VendorPerformance(BaseModel):
    vendor_id: int
    total_order_items: int
    refund_count: int
    refund_amount: Decimal
    refund_rate: float
    avg_response_hours: float
    rejected_count: int
    risk_score: float
    risk_level: Literal["LOW", "MEDIUM", "HIGH"]


class FinancialImpact(BaseModel):
    gross_revenue: Decimal
    refunded_amount: Decimal
    net_revenue: Decimal
    refund_percentage: float
    commission_impact: Decimal


class ProcessingMetrics(BaseModel):
    decided_count: int
    pending_count: int
    oldest_pending_age_hours: float
    avg_vendor_response_hours: float
    admin_override_rate: float
    dropoff_confirmed_count: int


class PayoutStatusTotals(BaseModel):
    count: int
    amount: Decimal


class PayoutSummary(BaseModel):
    total_payouts: int
    total_amount: Decimal
    by_status: Dict[str, PayoutStatusTotals]
    held_amount: Decimal


class RefundAnalyticsResponse(BaseModel):
    period: str
    start: datetime
    end: datetime
    vendor_id: Optional[int] = None
    summary: RefundSummary
    refund_trends: List[DailyRefunds]
    refund_reasons: List[ReasonShare]
    status_distribution: List[StatusShare]
    vendor_performance: List[VendorPerformance]
    financial_impact: FinancialImpact
    processing_metrics: ProcessingMetrics
    payout_summary: PayoutSummary
