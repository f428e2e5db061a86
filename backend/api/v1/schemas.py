"""
Request and response shapes shared by more than one router.
"""

from datetime import datetime, timezone
from typing import Annotated
from uuid import UUID

from pydantic import AfterValidator, BaseModel


def to_naive_utc(value: datetime) -> datetime:
    """Columns store naive UTC; offset-aware input is converted, naive input is taken as UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


UtcDatetime = Annotated[datetime, AfterValidator(to_naive_utc)]


class UserBrief(BaseModel):
    user_id: UUID
    name: str
    email: str
    role: str

    model_config = {"from_attributes": True}


class ShipmentBrief(BaseModel):
    shipment_id: UUID
    tracking_number: str
    current_status: str
    service_level: str
    promised_delivery_date: datetime | None
    is_vip: bool
    sla_risk_score: float

    model_config = {"from_attributes": True}


class ScanResponse(BaseModel):
    scan_id: UUID
    shipment_id: UUID
    scan_type: str
    location: str
    timestamp: datetime
    notes: str | None

    model_config = {"from_attributes": True}
