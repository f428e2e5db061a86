"""
Shipment timeline — creation, scans and issues merged chronologically, with
status transitions annotated on the scans that caused them.
"""

from typing import Any

SCAN_STATUS = {
    "pickup": "picked_up",
    "depot_checkin": "in_transit",
    "depot_checkout": "in_transit",
    "out_for_delivery": "out_for_delivery",
    "delivered": "delivered",
    "failed_attempt": "in_transit",
}


def build_timeline(shipment, scans, issues) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = [
        {
            "type": "creation",
            "timestamp": shipment.created_at,
            "data": {"status": "pending", "tracking_number": shipment.tracking_number},
        }
    ]
    for scan in scans:
        events.append(
            {
                "type": "scan",
                "timestamp": scan.timestamp,
                "data": {
                    "scan_id": str(scan.scan_id),
                    "scan_type": scan.scan_type,
                    "location": scan.location,
                    "notes": scan.notes,
                },
            }
        )
    for issue in issues:
        events.append(
            {
                "type": "issue",
                "timestamp": issue.created_at,
                "data": {
                    "issue_id": str(issue.issue_id),
                    "issue_type": issue.issue_type,
                    "description": issue.description,
                    "status": issue.status,
                },
            }
        )

    # Stable sort keeps creation ahead of a scan sharing its timestamp.
    events.sort(key=lambda event: event["timestamp"])

    status = "pending"
    for event in events:
        if event["type"] != "scan":
            continue
        new_status = SCAN_STATUS.get(event["data"]["scan_type"])
        if new_status and new_status != status:
            event["data"]["previous_status"] = status
            event["data"]["new_status"] = new_status
            status = new_status

    if shipment.current_status != status:
        events.append(
            {
                "type": "status",
                "timestamp": shipment.updated_at,
                "data": {"status": shipment.current_status, "previous_status": status},
            }
        )
    return events
