"""
Routes Router — Driver routes and their ordered stops.
"""

import datetime as dt
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from api.deps import get_db, require_roles
from api.v1.schemas import ShipmentBrief, UserBrief, UtcDatetime
from core.permissions import (
    Actor,
    can_update_stop,
    can_view_driver_routes,
    can_view_route,
    dispatcher_region_for,
    driver_id_for,
    forbid,
)
from db.models import ROUTE_STATUSES, Driver, Route, RouteStop, Shipment, Vehicle
from events import publisher

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/routes", tags=["routes"])

STAFF = ("dispatcher", "manager", "admin")
# driver_id and vehicle_id may be cleared with null; these may not
REQUIRED_ROUTE_FIELDS = ("date", "region", "status")


# ─── Schemas ────────────────────────────────────────────────────────────────


class RouteCreate(BaseModel):
    route_code: str = Field(..., min_length=1, max_length=50)
    date: dt.date
    driver_id: UUID | None = None
    vehicle_id: UUID | None = None
    region: str = Field(..., min_length=1, max_length=100)
    status: str = Field("planned", pattern=f"^({'|'.join(ROUTE_STATUSES)})$")


class RouteUpdate(BaseModel):
    date: dt.date | None = None
    driver_id: UUID | None = None
    vehicle_id: UUID | None = None
    region: str | None = None
    status: str | None = Field(None, pattern=f"^({'|'.join(ROUTE_STATUSES)})$")


class StopCreate(BaseModel):
    shipment_id: UUID
    sequence_number: int = Field(..., ge=1)
    planned_eta: UtcDatetime | None = None


class StopUpdate(BaseModel):
    sequence_number: int | None = Field(None, ge=1)
    planned_eta: UtcDatetime | None = None
    actual_arrival: UtcDatetime | None = None
    status: str | None = None


class DriverBrief(BaseModel):
    driver_id: UUID
    driver_code: str
    home_base: str
    user: UserBrief | None = None

    model_config = {"from_attributes": True}


class VehicleBrief(BaseModel):
    vehicle_id: UUID
    vehicle_code: str
    vehicle_type: str
    capacity_volume: float
    capacity_weight: float

    model_config = {"from_attributes": True}


class StopResponse(BaseModel):
    stop_id: UUID
    route_id: UUID
    shipment_id: UUID
    sequence_number: int
    planned_eta: dt.datetime | None
    actual_arrival: dt.datetime | None
    status: str | None
    shipment: ShipmentBrief | None = None

    model_config = {"from_attributes": True}


class RouteResponse(BaseModel):
    route_id: UUID
    route_code: str
    date: dt.date
    driver_id: UUID | None
    vehicle_id: UUID | None
    region: str
    status: str
    driver: DriverBrief | None = None
    vehicle: VehicleBrief | None = None
    stops: list[StopResponse] = []

    model_config = {"from_attributes": True}


# ─── Helpers ────────────────────────────────────────────────────────────────


def _route_query():
    return select(Route).options(
        selectinload(Route.driver).selectinload(Driver.user),
        selectinload(Route.vehicle),
        selectinload(Route.stops).selectinload(RouteStop.shipment),
    )


async def _load_route(db: AsyncSession, route_id: UUID) -> Route:
    result = await db.execute(
        _route_query().where(Route.route_id == route_id).execution_options(populate_existing=True)
    )
    route = result.scalar_one_or_none()
    if route is None:
        raise HTTPException(status_code=404, detail="Route not found")
    return route


async def _load_stop(db: AsyncSession, stop_id: UUID) -> RouteStop:
    result = await db.execute(
        select(RouteStop)
        .options(selectinload(RouteStop.shipment))
        .where(RouteStop.stop_id == stop_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _check_assignees(db: AsyncSession, driver_id: UUID | None, vehicle_id: UUID | None) -> None:
    if driver_id is not None:
        found = await db.execute(select(Driver.driver_id).where(Driver.driver_id == driver_id))
        if found.scalar_one_or_none() is None:
            raise HTTPException(status_code=404, detail="Driver not found")
    if vehicle_id is not None:
        found = await db.execute(select(Vehicle.vehicle_id).where(Vehicle.vehicle_id == vehicle_id))
        if found.scalar_one_or_none() is None:
            raise HTTPException(status_code=404, detail="Vehicle not found")


async def _sequence_taken(db: AsyncSession, route_id: UUID, sequence_number: int, exclude: UUID | None = None) -> bool:
    query = select(RouteStop.stop_id).where(
        RouteStop.route_id == route_id,
        RouteStop.sequence_number == sequence_number,
    )
    if exclude is not None:
        query = query.where(RouteStop.stop_id != exclude)
    result = await db.execute(query)
    return result.first() is not None


# ─── Routes ─────────────────────────────────────────────────────────────────


@router.post("/", response_model=RouteResponse, status_code=201)
async def create_route(
    body: RouteCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*STAFF)),
):
    """Create a route, optionally assigning a driver and vehicle."""
    await _check_assignees(db, body.driver_id, body.vehicle_id)

    existing = await db.execute(select(Route.route_id).where(Route.route_code == body.route_code))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=400, detail="Route code already exists")

    route = Route(**body.model_dump())
    db.add(route)
    await db.commit()

    logger.info("route.created", route_code=route.route_code, region=route.region, user_id=str(actor.user_id))
    return await _load_route(db, route.route_id)


@router.get("/", response_model=list[RouteResponse])
async def list_routes(
    route_date: dt.date | None = Query(None, alias="date"),
    driver_id: UUID | None = None,
    region: str | None = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("driver", *STAFF)),
):
    """
    List routes, newest first.

    Drivers always see only their own routes. Dispatchers are pinned to
    their assigned region whatever ``region`` says.
    """
    query = _route_query()
    if route_date is not None:
        query = query.where(Route.date == route_date)

    if actor.role == "driver":
        own_id = await driver_id_for(db, actor)
        if own_id is None:
            return []
        query = query.where(Route.driver_id == own_id)
    elif driver_id is not None:
        query = query.where(Route.driver_id == driver_id)

    if actor.role == "dispatcher":
        assigned = await dispatcher_region_for(db, actor)
        if assigned is None:
            return []
        query = query.where(Route.region == assigned)
    elif region:
        query = query.where(Route.region == region)

    result = await db.execute(query.order_by(Route.date.desc(), Route.route_code))
    return result.scalars().all()


@router.get("/driver/{driver_id}", response_model=list[RouteResponse])
async def list_driver_routes(
    driver_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("driver", "manager", "admin")),
):
    """Routes assigned to one driver. Drivers may only ask for themselves."""
    if not await can_view_driver_routes(db, actor, driver_id):
        raise forbid("Access denied: You can only view your own routes")

    found = await db.execute(select(Driver.driver_id).where(Driver.driver_id == driver_id))
    if found.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="Driver not found")

    result = await db.execute(
        _route_query().where(Route.driver_id == driver_id).order_by(Route.date.desc(), Route.route_code)
    )
    return result.scalars().all()


@router.get("/{route_id}", response_model=RouteResponse)
async def get_route(
    route_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("driver", *STAFF)),
):
    route = await _load_route(db, route_id)
    if not await can_view_route(db, actor, route):
        raise forbid("Access denied: You can only view your own routes")
    return route


@router.patch("/{route_id}", response_model=RouteResponse)
async def update_route(
    route_id: UUID,
    update: RouteUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*STAFF)),
):
    route = await _load_route(db, route_id)
    changes = update.model_dump(exclude_unset=True)
    await _check_assignees(db, changes.get("driver_id"), changes.get("vehicle_id"))

    for field, value in changes.items():
        if field in REQUIRED_ROUTE_FIELDS and value is None:
            continue
        setattr(route, field, value)
    await db.commit()

    logger.info("route.updated", route_id=str(route_id), fields=sorted(changes), user_id=str(actor.user_id))
    return await _load_route(db, route_id)


# ─── Stops ──────────────────────────────────────────────────────────────────


@router.get("/{route_id}/stops", response_model=list[StopResponse])
async def list_stops(
    route_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("driver", *STAFF)),
):
    route = await _load_route(db, route_id)
    if not await can_view_route(db, actor, route):
        raise forbid("Access denied: You can only view stops for your own routes")
    return route.stops


@router.post("/{route_id}/stops", response_model=StopResponse, status_code=201)
async def create_stop(
    route_id: UUID,
    body: StopCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*STAFF)),
):
    """Add a shipment to a route at a free sequence position."""
    route = await _load_route(db, route_id)

    shipment = await db.execute(select(Shipment.shipment_id).where(Shipment.shipment_id == body.shipment_id))
    if shipment.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="Shipment not found")

    if any(stop.shipment_id == body.shipment_id for stop in route.stops):
        raise HTTPException(status_code=400, detail="Shipment is already in this route")
    if any(stop.sequence_number == body.sequence_number for stop in route.stops):
        raise HTTPException(status_code=400, detail="Sequence number already exists in this route")

    stop = RouteStop(route_id=route_id, **body.model_dump())
    db.add(stop)
    await db.commit()

    logger.info(
        "route.stop_created",
        route_id=str(route_id),
        shipment_id=str(body.shipment_id),
        sequence_number=body.sequence_number,
        user_id=str(actor.user_id),
    )
    return await _load_stop(db, stop.stop_id)


@router.patch("/{route_id}/stops/{stop_id}", response_model=StopResponse)
async def update_stop(
    route_id: UUID,
    stop_id: UUID,
    update: StopUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("driver", *STAFF)),
):
    """Resequence a stop or record arrival. Drivers only on their own routes."""
    result = await db.execute(
        select(RouteStop).options(selectinload(RouteStop.route)).where(RouteStop.stop_id == stop_id)
    )
    stop = result.scalar_one_or_none()
    if stop is None or stop.route_id != route_id:
        raise HTTPException(status_code=404, detail="Route stop not found")

    route = stop.route
    if not await can_update_stop(db, actor, route):
        raise forbid("Access denied: You can only update stops for your own routes")

    changes = update.model_dump(exclude_unset=True)
    if changes.get("sequence_number") is not None and await _sequence_taken(
        db, route_id, changes["sequence_number"], exclude=stop_id
    ):
        raise HTTPException(status_code=400, detail="Sequence number already exists in this route")

    for field, value in changes.items():
        if field == "sequence_number" and value is None:
            continue
        setattr(stop, field, value)
    await db.commit()

    stop = await _load_stop(db, stop_id)
    await publisher.emit_stop_updated(route, stop)
    return stop
