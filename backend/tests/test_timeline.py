"""
Tests for shipment timeline assembly.
"""

import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace

from shipments.timeline import build_timeline

T0 = datetime(2026, 10, 19, 8, 0, 0)


def _shipment(status, updated_minutes=600):
    return SimpleNamespace(
        tracking_number="FL-TL-1",
        current_status=status,
        created_at=T0,
        updated_at=T0 + timedelta(minutes=updated_minutes),
    )


def _scan(scan_type, minutes):
    return SimpleNamespace(
        scan_id=uuid.uuid4(),
        scan_type=scan_type,
        location="Somewhere",
        notes=None,
        timestamp=T0 + timedelta(minutes=minutes),
    )


def _issue(minutes):
    return SimpleNamespace(
        issue_id=uuid.uuid4(),
        issue_type="delay",
        description="Held at depot",
        status="open",
        created_at=T0 + timedelta(minutes=minutes),
    )


class TestTimeline:
    def test_events_merged_in_time_order(self):
        scans = [_scan("pickup", 10), _scan("depot_checkin", 60)]
        events = build_timeline(_shipment("in_transit"), scans, [_issue(30)])
        assert [e["type"] for e in events] == ["creation", "scan", "issue", "scan"]

    def test_status_transitions_annotated(self):
        scans = [_scan("pickup", 10), _scan("depot_checkin", 60), _scan("depot_checkout", 90)]
        events = build_timeline(_shipment("in_transit"), scans, [])
        pickup, checkin, checkout = events[1:]
        assert (pickup["data"]["previous_status"], pickup["data"]["new_status"]) == ("pending", "picked_up")
        assert (checkin["data"]["previous_status"], checkin["data"]["new_status"]) == ("picked_up", "in_transit")
        # No change, no annotation.
        assert "new_status" not in checkout["data"]

    def test_trailing_status_event_when_record_differs(self):
        events = build_timeline(_shipment("returned"), [_scan("pickup", 10)], [])
        assert events[-1]["type"] == "status"
        assert events[-1]["data"] == {"status": "returned", "previous_status": "picked_up"}
        assert events[-1]["timestamp"] == T0 + timedelta(minutes=600)

    def test_no_trailing_event_when_in_sync(self):
        events = build_timeline(_shipment("delivered"), [_scan("pickup", 10), _scan("delivered", 300)], [])
        assert events[-1]["type"] == "scan"

    def test_fresh_shipment_has_only_creation(self):
        events = build_timeline(_shipment("pending"), [], [])
        assert events == [
            {"type": "creation", "timestamp": T0, "data": {"status": "pending", "tracking_number": "FL-TL-1"}}
        ]
