"""
Read-only refund and payout rollups for the admin dashboard.
"""

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import PermissionDenied, ValidationError
from ..core.settings import FulfillmentServiceSettings, get_settings
from ..models.base import utcnow
from ..models.payout import HELD_PAYOUT_STATUSES, PayoutStatus
from ..models.return_request import REFUNDED_RETURN_STATUSES, ReturnRequest, ReturnStatus
from ..repository.order_repository import OrderRepository
from ..repository.payout_repository import PayoutRepository
from ..repository.return_repository import ReturnRequestRepository
from ..utils.money import ZERO, to_money
from .results import Actor, TransactionalService, unit_of_work

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}

DECIDED_RETURN_STATUSES = (
    ReturnStatus.APPROVED.value,
    ReturnStatus.REJECTED.value,
    ReturnStatus.COMPLETED.value,
)


class RiskLevel:
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


def _percent(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def _hours(delta: timedelta) -> float:
    return delta.total_seconds() / 3600


def _mean(values: Sequence[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def risk_score(
    refund_rate: float,
    avg_response_hours: float,
    settings: Optional[FulfillmentServiceSettings] = None,
) -> float:
    """
    Weighted blend of refund rate and response time, each normalized
    against its ceiling. ``refund_rate`` is a fraction; result is 0..1.
    """
    settings = settings or get_settings()
    rate_component = min(refund_rate / settings.RISK_REFUND_RATE_CEILING, 1.0)
    time_component = min(avg_response_hours / settings.RISK_RESPONSE_TIME_CEILING_HOURS, 1.0)
    total_weight = settings.RISK_REFUND_RATE_WEIGHT + settings.RISK_RESPONSE_TIME_WEIGHT
    if total_weight <= 0:
        return 0.0
    score = (
        settings.RISK_REFUND_RATE_WEIGHT * rate_component
        + settings.RISK_RESPONSE_TIME_WEIGHT * time_component
    ) / total_weight
    return round(score, 4)


def risk_level(score: float, settings: Optional[FulfillmentServiceSettings] = None) -> str:
    settings = settings or get_settings()
    if score > settings.RISK_HIGH_THRESHOLD:
        return RiskLevel.HIGH
    if score > settings.RISK_MEDIUM_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def refund_trend(current: int, previous: int, threshold_percent: float) -> Dict[str, Any]:
    change = ((current - previous) / previous * 100) if previous else 0.0
    if change > threshold_percent:
        direction = "up"
    elif change < -threshold_percent:
        direction = "down"
    else:
        direction = "stable"
    return {
        "direction": direction,
        "current_period": current,
        "previous_period": previous,
        "change_percentage": round(change, 2),
    }


def resolve_period(period: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    if period not in PERIOD_DAYS:
        raise ValidationError(
            f"Unknown analytics period: {period}",
            reason="invalid_period",
            details={"period": period, "allowed": list(PERIOD_DAYS)},
        )
    now = now or utcnow()
    days = PERIOD_DAYS[period]
    start = now - timedelta(days=days)
    return {
        "period": period,
        "days": days,
        "start": start,
        "end": now,
        "previous_start": start - timedelta(days=days),
    }


class AnalyticsService(TransactionalService):
    def __init__(self, session: AsyncSession, event_producer: Optional[Any] = None):
        super().__init__(session, event_producer)
        self.settings = get_settings()
        self.order_repository = OrderRepository(session)
        self.return_repository = ReturnRequestRepository(session)
        self.payout_repository = PayoutRepository(session)

    @unit_of_work("refund_analytics")
    async def refund_analytics(
        self,
        actor: Actor,
        period: str = "30d",
        vendor_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        if not actor.is_privileged:
            raise PermissionDenied(
                "Analytics are restricted to admins", details={"role": actor.role.value}
            )
        window = resolve_period(period)
        start, end = window["start"], window["end"]

        current = await self.return_repository.requested_between(start, end, vendor_id)
        previous = await self.return_repository.requested_between(
            window["previous_start"], start, vendor_id
        )
        delivered = await self.order_repository.delivered_items_between(start, end, vendor_id)
        item_counts = await self.order_repository.item_counts_by_vendor(start, end)
        payouts = await self.payout_repository.created_between(start, end, vendor_id)

        vendor_performance = self._vendor_performance(current, item_counts)
        return {
            "period": window["period"],
            "start": start,
            "end": end,
            "vendor_id": vendor_id,
            "summary": self._summary(current, previous),
            "refund_trends": self._daily_trends(current, start, window["days"]),
            "refund_reasons": self._reason_distribution(current),
            "status_distribution": self._status_distribution(current),
            "vendor_performance": vendor_performance,
            "financial_impact": self._financial_impact(current, delivered),
            "processing_metrics": self._processing_metrics(current, vendor_performance, end),
            "payout_summary": self._payout_summary(payouts),
        }

    def _summary(
        self, current: List[ReturnRequest], previous: List[ReturnRequest]
    ) -> Dict[str, Any]:
        decided = [r for r in current if r.status in DECIDED_RETURN_STATUSES]
        granted = [r for r in decided if r.status in REFUNDED_RETURN_STATUSES]
        processing_hours = [
            _hours(r.decided_at - r.requested_at) for r in decided if r.decided_at
        ]
        return {
            "total_refunds": len(current),
            "total_refund_amount": to_money(sum((r.requested_amount for r in current), ZERO)),
            "approved_refund_amount": to_money(sum((r.requested_amount for r in granted), ZERO)),
            "approval_rate": _percent(len(granted), len(decided)),
            "average_processing_hours": _mean(processing_hours),
            "refund_trend": refund_trend(
                len(current), len(previous), self.settings.REFUND_TREND_THRESHOLD_PERCENT
            ),
        }

    def _daily_trends(
        self, current: List[ReturnRequest], start: datetime, days: int
    ) -> List[Dict[str, Any]]:
        counts: Counter = Counter()
        amounts: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        for request in current:
            day = request.requested_at.date().isoformat()
            counts[day] += 1
            amounts[day] += request.requested_amount

        trends = []
        for offset in range(days + 1):
            day = (start + timedelta(days=offset)).date().isoformat()
            trends.append({"date": day, "count": counts[day], "amount": to_money(amounts[day])})
        return trends

    def _reason_distribution(self, current: List[ReturnRequest]) -> List[Dict[str, Any]]:
        counts = Counter((r.reason or "Other") for r in current)
        return [
            {"reason": reason, "count": count, "percentage": _percent(count, len(current))}
            for reason, count in counts.most_common()
        ]

    def _status_distribution(self, current: List[ReturnRequest]) -> List[Dict[str, Any]]:
        distribution = []
        for status in ReturnStatus:
            matching = [r for r in current if r.status == status.value]
            if matching:
                distribution.append(
                    {
                        "status": status.value,
                        "count": len(matching),
                        "amount": to_money(sum((r.requested_amount for r in matching), ZERO)),
                    }
                )
        return distribution

    def _vendor_performance(
        self, current: List[ReturnRequest], item_counts: Dict[int, int]
    ) -> List[Dict[str, Any]]:
        by_vendor: Dict[int, List[ReturnRequest]] = defaultdict(list)
        for request in current:
            by_vendor[request.vendor_id].append(request)

        performance = []
        for vendor_id, requests in by_vendor.items():
            total_items = item_counts.get(vendor_id, 0)
            refund_rate = len(requests) / total_items if total_items else 0.0
            response_hours = [
                _hours(r.decided_at - r.requested_at) for r in requests if r.decided_at
            ]
            avg_response = _mean(response_hours)
            score = risk_score(refund_rate, avg_response, self.settings)
            performance.append(
                {
                    "vendor_id": vendor_id,
                    "total_order_items": total_items,
                    "refund_count": len(requests),
                    "refund_amount": to_money(sum((r.requested_amount for r in requests), ZERO)),
                    "refund_rate": round(refund_rate * 100, 2),
                    "avg_response_hours": avg_response,
                    "rejected_count": sum(
                        1 for r in requests if r.status == ReturnStatus.REJECTED.value
                    ),
                    "risk_score": score,
                    "risk_level": risk_level(score, self.settings),
                }
            )
        performance.sort(key=lambda entry: entry["risk_score"], reverse=True)
        return performance

    def _financial_impact(
        self, current: List[ReturnRequest], delivered: List[Any]
    ) -> Dict[str, Any]:
        gross = to_money(sum((item.line_total for item in delivered), ZERO))
        granted = [r for r in current if r.status in REFUNDED_RETURN_STATUSES]
        refunded = to_money(sum((r.requested_amount for r in granted), ZERO))
        commission_impact = to_money(
            sum(
                (
                    r.requested_amount * (r.order_item.commission_rate or ZERO)
                    for r in granted
                ),
                ZERO,
            )
        )
        return {
            "gross_revenue": gross,
            "refunded_amount": refunded,
            "net_revenue": to_money(gross - refunded),
            "refund_percentage": _percent(float(refunded), float(gross)),
            "commission_impact": commission_impact,
        }

    def _processing_metrics(
        self,
        current: List[ReturnRequest],
        vendor_performance: List[Dict[str, Any]],
        now: datetime,
    ) -> Dict[str, Any]:
        decided = [r for r in current if r.decided_at]
        overridden = [r for r in decided if r.decided_by != r.vendor_id]
        pending = [r for r in current if r.status == ReturnStatus.PENDING.value]
        oldest = min((r.requested_at for r in pending), default=None)
        return {
            "decided_count": len(decided),
            "pending_count": len(pending),
            "oldest_pending_age_hours": round(_hours(now - oldest), 2) if oldest else 0.0,
            "avg_vendor_response_hours": _mean(
                [entry["avg_response_hours"] for entry in vendor_performance]
            ),
            "admin_override_rate": _percent(len(overridden), len(decided)),
            "dropoff_confirmed_count": sum(1 for r in current if r.dropoff_confirmed_at),
        }

    def _payout_summary(self, payouts: List[Any]) -> Dict[str, Any]:
        by_status = {}
        for status in PayoutStatus:
            matching = [p for p in payouts if p.status == status.value]
            by_status[status.value] = {
                "count": len(matching),
                "amount": to_money(sum((p.amount for p in matching), ZERO)),
            }
        return {
            "total_payouts": len(payouts),
            "total_amount": to_money(sum((p.amount for p in payouts), ZERO)),
            "by_status": by_status,
            "held_amount": to_money(
                sum((by_status[status]["amount"] for status in HELD_PAYOUT_STATUSES), ZERO)
            ),
        }
