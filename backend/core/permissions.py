"""
Role-based capability checks.

Each operation asks one question ("can this actor view this route?") instead
of branching on role inline. Endpoint-level role gates use ``require_roles``
from api.deps; the functions here cover record-level ownership.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import DispatcherProfile, Driver, Route, Shipment
from db.queries import route_context_for_shipment

STAFF_ROLES = ("dispatcher", "manager", "admin")
ROUTE_WRITE_ROLES = STAFF_ROLES


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, resolved from token claims."""

    user_id: uuid.UUID
    role: str
    email: str | None = None

    @classmethod
    def from_claims(cls, claims: dict) -> Actor:
        return cls(
            user_id=uuid.UUID(str(claims["sub"])),
            role=str(claims["role"]),
            email=claims.get("email"),
        )


def forbid(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


async def driver_id_for(db: AsyncSession, actor: Actor) -> uuid.UUID | None:
    """Driver profile id of a driver actor, or None."""
    if actor.role != "driver":
        return None
    result = await db.execute(select(Driver.driver_id).where(Driver.user_id == actor.user_id))
    return result.scalar_one_or_none()


async def dispatcher_region_for(db: AsyncSession, actor: Actor) -> str | None:
    """Assigned region of a dispatcher actor, or None."""
    if actor.role != "dispatcher":
        return None
    result = await db.execute(
        select(DispatcherProfile.assigned_region).where(DispatcherProfile.user_id == actor.user_id)
    )
    return result.scalar_one_or_none()


# ─── Routes & stops ─────────────────────────────────────────────────────────


async def can_view_route(db: AsyncSession, actor: Actor, route: Route) -> bool:
    if actor.role == "driver":
        driver_id = await driver_id_for(db, actor)
        return driver_id is not None and route.driver_id == driver_id
    return actor.role in STAFF_ROLES


async def can_update_stop(db: AsyncSession, actor: Actor, route: Route) -> bool:
    """Staff may edit any stop; drivers only stops on routes assigned to them."""
    if actor.role == "driver":
        driver_id = await driver_id_for(db, actor)
        return driver_id is not None and route.driver_id == driver_id
    return actor.role in ROUTE_WRITE_ROLES


async def can_view_driver_routes(db: AsyncSession, actor: Actor, driver_id: uuid.UUID) -> bool:
    if actor.role == "driver":
        return await driver_id_for(db, actor) == driver_id
    return actor.role in ("manager", "admin")


# ─── Shipments ──────────────────────────────────────────────────────────────


async def can_view_shipment(db: AsyncSession, actor: Actor, shipment: Shipment) -> bool:
    """
    Customers see their own shipments. Dispatchers see shipments stopped in
    their region, plus unrouted ones (still assignable). Drivers see only
    shipments on routes assigned to them.
    """
    if actor.role == "customer":
        return shipment.customer_id == actor.user_id
    if actor.role in ("manager", "admin"):
        return True

    routes = await route_context_for_shipment(db, shipment.shipment_id)
    if actor.role == "dispatcher":
        region = await dispatcher_region_for(db, actor)
        if region is None:
            return False
        return not routes or any(route.region == region for route in routes)
    if actor.role == "driver":
        driver_id = await driver_id_for(db, actor)
        return driver_id is not None and any(route.driver_id == driver_id for route in routes)
    return False
