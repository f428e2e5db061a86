"""
Delivery change requests — customer-initiated reschedules and re-addresses.

A request is created ``pending``. Approving it applies the change to the
shipment and moves the request to ``applied``; instruction updates carry no
shipment field and stay ``approved``.
"""

from datetime import datetime, timezone
from typing import Any

LOCKED_SHIPMENT_STATUSES = ("delivered", "returned")


def reschedule_date(change_type: str, new_value: str, new_date: datetime | None) -> datetime | None:
    """
    Target date of a request. An explicit ``new_date`` wins; a reschedule
    without one falls back to ``new_value`` when it parses as ISO 8601.
    """
    if new_date is not None:
        return new_date
    if change_type != "reschedule":
        return None
    try:
        parsed = datetime.fromisoformat(new_value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def apply_change(shipment, change) -> dict[str, Any]:
    """Copy an approved change onto the shipment. Returns the fields changed."""
    changes: dict[str, Any] = {}
    if change.change_type == "reschedule" and change.new_date is not None:
        shipment.promised_delivery_date = change.new_date
        changes["promised_delivery_date"] = change.new_date
    elif change.change_type == "change_address":
        shipment.to_address = change.new_value
        changes["to_address"] = change.new_value
    return changes
