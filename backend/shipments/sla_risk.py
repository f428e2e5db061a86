"""
SLA Risk Scoring — how likely a shipment is to miss its promised delivery.

Stepwise rules, 0.0 (safe) to 1.0 (certain breach):
  - Delivered shipments carry no risk.
  - Without a promise: 0.1 base (0.2 in transit), +0.1 VIP, +0.1 same-day.
  - Overdue:     < 24h → 0.7,  < 48h → 0.85,  else 0.95
  - Approaching: < 12h → 0.6,  < 24h → 0.4,  < 48h → 0.25,  else 0.1
  - Bumps inside 24h of the promise: in_transit +0.15, pending +0.2
  - Service level: same_day +0.15, express +0.1
  - VIP +0.2
"""

from datetime import datetime

OVERDUE_BANDS = ((24, 0.7), (48, 0.85))
OVERDUE_MAX = 0.95
APPROACHING_BANDS = ((12, 0.6), (24, 0.4), (48, 0.25))
APPROACHING_MIN = 0.1

STATUS_BUMPS = {"in_transit": 0.15, "pending": 0.2}
SERVICE_LEVEL_BUMPS = {"same_day": 0.15, "express": 0.1}
VIP_BUMP = 0.2


def _band(hours: float, bands: tuple[tuple[int, float], ...], fallback: float) -> float:
    for limit, score in bands:
        if hours < limit:
            return score
    return fallback


def _without_promise(current_status: str, service_level: str, is_vip: bool) -> float:
    risk = 0.2 if current_status == "in_transit" else 0.1
    if is_vip:
        risk += 0.1
    if service_level == "same_day":
        risk += 0.1
    return min(risk, 1.0)


def calculate_sla_risk_score(
    current_status: str,
    service_level: str,
    is_vip: bool,
    promised_delivery_date: datetime | None,
    now: datetime | None = None,
) -> float:
    """Score a shipment's SLA risk from its status, promise and priority."""
    if current_status == "delivered":
        return 0.0

    if promised_delivery_date is None:
        return round(_without_promise(current_status, service_level, is_vip), 4)

    now = now or datetime.utcnow()
    hours_until = (promised_delivery_date - now).total_seconds() / 3600

    if hours_until < 0:
        risk = _band(abs(hours_until), OVERDUE_BANDS, OVERDUE_MAX)
    else:
        risk = _band(hours_until, APPROACHING_BANDS, APPROACHING_MIN)

    # Overdue shipments also fall inside the 24h window.
    if hours_until < 24:
        risk += STATUS_BUMPS.get(current_status, 0.0)

    risk += SERVICE_LEVEL_BUMPS.get(service_level, 0.0)
    if is_vip:
        risk += VIP_BUMP

    return round(min(risk, 1.0), 4)


def score_shipment(shipment, now: datetime | None = None) -> float:
    """calculate_sla_risk_score for an ORM Shipment."""
    return calculate_sla_risk_score(
        current_status=shipment.current_status,
        service_level=shipment.service_level,
        is_vip=shipment.is_vip,
        promised_delivery_date=shipment.promised_delivery_date,
        now=now,
    )
