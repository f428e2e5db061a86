"""
Shipments Router — Tracking, scans, status transitions and timelines.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from api.deps import get_db, require_roles
from api.v1.schemas import ScanResponse, UserBrief, UtcDatetime
from core.permissions import Actor, can_view_shipment, dispatcher_region_for, driver_id_for, forbid
from db.models import (
    SCAN_TYPES,
    SERVICE_LEVELS,
    SHIPMENT_STATUSES,
    DeliveryIssue,
    Route,
    RouteStop,
    Shipment,
    ShipmentScan,
    User,
)
from events import publisher
from shipments.sla_risk import score_shipment
from shipments.timeline import build_timeline

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/shipments", tags=["shipments"])

ALL_ROLES = ("customer", "driver", "dispatcher", "manager", "admin")
HANDLERS = ("driver", "dispatcher", "manager", "admin")


def _one_of(values: tuple[str, ...]) -> str:
    return f"^({'|'.join(values)})$"


# ─── Schemas ────────────────────────────────────────────────────────────────


class ShipmentCreate(BaseModel):
    tracking_number: str = Field(..., min_length=1, max_length=50)
    order_id: str | None = None
    customer_id: UUID
    from_address: str = Field(..., min_length=1)
    to_address: str = Field(..., min_length=1)
    service_level: str = Field("standard", pattern=_one_of(SERVICE_LEVELS))
    promised_delivery_date: UtcDatetime | None = None
    is_vip: bool = False


class ScanCreate(BaseModel):
    scan_type: str = Field(..., pattern=_one_of(SCAN_TYPES))
    location: str = Field(..., min_length=1, max_length=255)
    notes: str | None = None


class StatusUpdate(BaseModel):
    status: str = Field(..., pattern=_one_of(SHIPMENT_STATUSES))


class ShipmentResponse(BaseModel):
    shipment_id: UUID
    tracking_number: str
    order_id: str | None
    customer_id: UUID
    from_address: str
    to_address: str
    current_status: str
    service_level: str
    promised_delivery_date: datetime | None
    last_scan_at: datetime | None
    last_scan_location: str | None
    is_vip: bool
    sla_risk_score: float
    created_at: datetime
    updated_at: datetime
    customer: UserBrief | None = None
    scans: list[ScanResponse] = []

    model_config = {"from_attributes": True}


class ScanResult(BaseModel):
    scan: ScanResponse
    shipment: ShipmentResponse


class TimelineEvent(BaseModel):
    type: str
    timestamp: datetime
    data: dict[str, Any]


class TimelineResponse(BaseModel):
    shipment_id: UUID
    tracking_number: str
    current_status: str
    sla_risk_score: float
    timeline: list[TimelineEvent]


# ─── Helpers ────────────────────────────────────────────────────────────────


def _shipment_query():
    return select(Shipment).options(selectinload(Shipment.customer), selectinload(Shipment.scans))


async def _load_shipment(db: AsyncSession, shipment_id: UUID) -> Shipment:
    result = await db.execute(
        _shipment_query().where(Shipment.shipment_id == shipment_id).execution_options(populate_existing=True)
    )
    shipment = result.scalar_one_or_none()
    if shipment is None:
        raise HTTPException(status_code=404, detail="Shipment not found")
    return shipment


async def _visible_shipment(db: AsyncSession, actor: Actor, shipment_id: UUID) -> Shipment:
    shipment = await _load_shipment(db, shipment_id)
    if not await can_view_shipment(db, actor, shipment):
        raise forbid("You can only view shipments you are responsible for")
    return shipment


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[ShipmentResponse])
async def list_shipments(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*ALL_ROLES)),
):
    """
    List shipments visible to the caller, newest first.

    Customers see their own, dispatchers those routed through their region,
    drivers those on routes assigned to them.
    """
    query = _shipment_query()
    if actor.role == "customer":
        query = query.where(Shipment.customer_id == actor.user_id)
    elif actor.role == "dispatcher":
        region = await dispatcher_region_for(db, actor)
        if region is None:
            return []
        routed = (
            select(RouteStop.shipment_id)
            .join(Route, Route.route_id == RouteStop.route_id)
            .where(Route.region == region)
        )
        query = query.where(Shipment.shipment_id.in_(routed))
    elif actor.role == "driver":
        driver_id = await driver_id_for(db, actor)
        if driver_id is None:
            return []
        assigned = (
            select(RouteStop.shipment_id)
            .join(Route, Route.route_id == RouteStop.route_id)
            .where(Route.driver_id == driver_id)
        )
        query = query.where(Shipment.shipment_id.in_(assigned))

    result = await db.execute(query.order_by(Shipment.created_at.desc()))
    return result.scalars().all()


@router.get("/track/{tracking_number}", response_model=ShipmentResponse)
async def track_shipment(
    tracking_number: str,
    db: AsyncSession = Depends(get_db),
):
    """Public tracking lookup by tracking number."""
    result = await db.execute(_shipment_query().where(Shipment.tracking_number == tracking_number))
    shipment = result.scalar_one_or_none()
    if shipment is None:
        raise HTTPException(status_code=404, detail="Shipment not found")
    return shipment


@router.post("/", response_model=ShipmentResponse, status_code=201)
async def create_shipment(
    body: ShipmentCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("dispatcher", "manager", "admin")),
):
    customer = await db.execute(select(User).where(User.user_id == body.customer_id))
    customer = customer.scalar_one_or_none()
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    if customer.role != "customer":
        raise HTTPException(status_code=400, detail="Shipments must belong to a customer account")

    existing = await db.execute(
        select(Shipment.shipment_id).where(Shipment.tracking_number == body.tracking_number)
    )
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=400, detail="Tracking number already exists")

    shipment = Shipment(**body.model_dump())
    shipment.current_status = "pending"
    shipment.sla_risk_score = score_shipment(shipment)
    db.add(shipment)
    await db.commit()

    logger.info("shipment.created", tracking_number=shipment.tracking_number, user_id=str(actor.user_id))
    return await _load_shipment(db, shipment.shipment_id)


@router.get("/{shipment_id}", response_model=ShipmentResponse)
async def get_shipment(
    shipment_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*ALL_ROLES)),
):
    return await _visible_shipment(db, actor, shipment_id)


@router.get("/{shipment_id}/timeline", response_model=TimelineResponse)
async def get_timeline(
    shipment_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*ALL_ROLES)),
):
    """Creation, scans and issues in chronological order."""
    shipment = await _visible_shipment(db, actor, shipment_id)
    issues = await db.execute(
        select(DeliveryIssue)
        .where(DeliveryIssue.shipment_id == shipment_id)
        .order_by(DeliveryIssue.created_at.asc())
    )
    return {
        "shipment_id": shipment.shipment_id,
        "tracking_number": shipment.tracking_number,
        "current_status": shipment.current_status,
        "sla_risk_score": shipment.sla_risk_score,
        "timeline": build_timeline(shipment, shipment.scans, issues.scalars().all()),
    }


@router.post("/{shipment_id}/scans", response_model=ScanResult, status_code=201)
async def create_scan(
    shipment_id: UUID,
    body: ScanCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*HANDLERS)),
):
    """Append a scan, move last-seen location and rescore SLA risk."""
    result = await db.execute(select(Shipment).where(Shipment.shipment_id == shipment_id))
    shipment = result.scalar_one_or_none()
    if shipment is None:
        raise HTTPException(status_code=404, detail="Shipment not found")

    scan = ShipmentScan(shipment_id=shipment_id, timestamp=datetime.utcnow(), **body.model_dump())
    db.add(scan)
    shipment.last_scan_at = scan.timestamp
    shipment.last_scan_location = body.location
    shipment.sla_risk_score = score_shipment(shipment)
    await db.commit()

    shipment = await _load_shipment(db, shipment_id)
    logger.info(
        "shipment.scan_created",
        tracking_number=shipment.tracking_number,
        scan_type=body.scan_type,
        user_id=str(actor.user_id),
    )
    await publisher.emit_shipment("scan.created", shipment, scan_type=body.scan_type, location=body.location)
    return {"scan": scan, "shipment": shipment}


@router.patch("/{shipment_id}/status", response_model=ShipmentResponse)
async def update_status(
    shipment_id: UUID,
    body: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*HANDLERS)),
):
    """
    Move a shipment to a new status. Delivering a shipment without a
    delivered scan records one at its last known location.
    """
    result = await db.execute(select(Shipment).where(Shipment.shipment_id == shipment_id))
    shipment = result.scalar_one_or_none()
    if shipment is None:
        raise HTTPException(status_code=404, detail="Shipment not found")

    previous_status = shipment.current_status
    if body.status == "delivered" and previous_status != "delivered":
        delivered = await db.execute(
            select(ShipmentScan.scan_id).where(
                ShipmentScan.shipment_id == shipment_id,
                ShipmentScan.scan_type == "delivered",
            )
        )
        if delivered.first() is None:
            db.add(
                ShipmentScan(
                    shipment_id=shipment_id,
                    scan_type="delivered",
                    location=shipment.last_scan_location or "Delivery location",
                    timestamp=datetime.utcnow(),
                    notes="Status updated to delivered",
                )
            )

    shipment.current_status = body.status
    shipment.sla_risk_score = score_shipment(shipment)
    await db.commit()

    shipment = await _load_shipment(db, shipment_id)
    logger.info(
        "shipment.status_updated",
        tracking_number=shipment.tracking_number,
        previous_status=previous_status,
        new_status=body.status,
        user_id=str(actor.user_id),
    )
    await publisher.emit_shipment("status.updated", shipment, previous_status=previous_status)
    return shipment
