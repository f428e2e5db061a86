"""
Tests for SLA risk scoring.
"""

from datetime import datetime, timedelta

import pytest

from shipments.sla_risk import calculate_sla_risk_score

NOW = datetime(2026, 10, 19, 12, 0, 0)


def _score(hours, status="picked_up", service_level="standard", is_vip=False):
    return calculate_sla_risk_score(status, service_level, is_vip, NOW + timedelta(hours=hours), now=NOW)


class TestSlaRiskScore:
    def test_delivered_is_risk_free(self):
        assert calculate_sla_risk_score("delivered", "same_day", True, NOW - timedelta(days=3), now=NOW) == 0.0

    @pytest.mark.parametrize(
        "hours, expected",
        [(72, 0.1), (30, 0.25), (20, 0.4), (6, 0.6)],
    )
    def test_approaching_bands(self, hours, expected):
        assert _score(hours) == expected

    @pytest.mark.parametrize(
        "hours, expected",
        [(-10, 0.7), (-30, 0.85), (-72, 0.95)],
    )
    def test_overdue_bands(self, hours, expected):
        assert _score(hours) == expected

    def test_in_transit_bump_inside_a_day(self):
        assert _score(20, status="in_transit") == 0.55
        assert _score(30, status="in_transit") == 0.25

    def test_overdue_pending_still_bumped(self):
        assert _score(-10, status="pending") == 0.9

    def test_service_level_and_vip(self):
        assert _score(72, service_level="express") == 0.2
        assert _score(72, service_level="same_day", is_vip=True) == 0.45

    def test_capped_at_one(self):
        assert _score(-72, status="pending", service_level="same_day", is_vip=True) == 1.0

    def test_without_promise(self):
        assert calculate_sla_risk_score("pending", "standard", False, None) == 0.1
        assert calculate_sla_risk_score("in_transit", "same_day", True, None) == 0.4

    def test_score_always_in_unit_interval(self):
        for hours in range(-100, 100, 7):
            for status in ("pending", "in_transit", "out_for_delivery"):
                score = _score(hours, status=status, service_level="same_day", is_vip=True)
                assert 0.0 <= score <= 1.0
