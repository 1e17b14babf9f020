"""
Unit tests for analytics scoring helpers.
"""

from datetime import datetime, timedelta

import pytest

from fulfillment_service.app.core.exceptions import ValidationError
from fulfillment_service.app.core.settings import FulfillmentServiceSettings
from fulfillment_service.app.services.analytics_service import (
    RiskLevel,
    refund_trend,
    resolve_period,
    risk_level,
    risk_score,
)


@pytest.fixture
def settings() -> FulfillmentServiceSettings:
    return FulfillmentServiceSettings(
        RISK_REFUND_RATE_WEIGHT=0.6,
        RISK_RESPONSE_TIME_WEIGHT=0.4,
        RISK_REFUND_RATE_CEILING=0.20,
        RISK_RESPONSE_TIME_CEILING_HOURS=96.0,
        RISK_HIGH_THRESHOLD=0.7,
        RISK_MEDIUM_THRESHOLD=0.4,
    )


class TestRiskScore:
    def test_zero_risk(self, settings):
        assert risk_score(0.0, 0.0, settings) == 0.0

    def test_components_are_capped(self, settings):
        assert risk_score(0.9, 500.0, settings) == 1.0

    def test_weighted_blend(self, settings):
        # half the refund ceiling, quarter of the response ceiling
        assert risk_score(0.10, 24.0, settings) == pytest.approx(0.6 * 0.5 + 0.4 * 0.25)

    def test_levels(self, settings):
        assert risk_level(0.71, settings) == RiskLevel.HIGH
        assert risk_level(0.7, settings) == RiskLevel.MEDIUM
        assert risk_level(0.41, settings) == RiskLevel.MEDIUM
        assert risk_level(0.4, settings) == RiskLevel.LOW


class TestRefundTrend:
    def test_up(self):
        trend = refund_trend(12, 10, 5.0)
        assert trend == {
            "direction": "up",
            "current_period": 12,
            "previous_period": 10,
            "change_percentage": 20.0,
        }

    def test_within_threshold_is_stable(self):
        assert refund_trend(102, 100, 5.0)["direction"] == "stable"

    def test_down(self):
        assert refund_trend(5, 10, 5.0)["direction"] == "down"

    def test_no_previous_period(self):
        assert refund_trend(3, 0, 5.0)["direction"] == "stable"


class TestResolvePeriod:
    def test_known_period(self):
        now = datetime(2026, 3, 31, 12, 0)
        window = resolve_period("7d", now=now)

        assert window["start"] == now - timedelta(days=7)
        assert window["end"] == now
        assert window["previous_start"] == now - timedelta(days=14)

    def test_unknown_period(self):
        with pytest.raises(ValidationError) as exc_info:
            resolve_period("2w")

        assert exc_info.value.reason == "invalid_period"
