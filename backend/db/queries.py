"""
Shared relational lookups.

The Route -> RouteStop -> Shipment join is used by the metrics engine, the
dispatcher region scoping and the issue filters, so it lives here once.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import METRIC_DIMENSIONS, Route, RouteStop


@dataclass(frozen=True)
class Dimension:
    """A scope a metric or listing is computed over."""

    type: str = "global"
    value: str | None = None

    def __post_init__(self) -> None:
        if self.type not in METRIC_DIMENSIONS:
            raise ValueError(f"Unknown dimension '{self.type}'")

    @property
    def is_global(self) -> bool:
        return self.type == "global"

    @classmethod
    def from_params(cls, dimension: str | None, value: str | None) -> Dimension | None:
        """Build a dimension from query params; both must be present."""
        if not dimension or not value:
            return None
        return cls(type=dimension, value=value)


async def shipment_ids_for_dimension(db: AsyncSession, dimension: Dimension) -> set[uuid.UUID] | None:
    """
    Resolve the shipment ids a dimension covers, deduplicated.

    Returns None for the global dimension (no filter), and an empty set when
    a scoped dimension has no value or matches nothing.
    """
    if dimension.is_global:
        return None
    if not dimension.value:
        return set()

    query = select(RouteStop.shipment_id).join(Route, Route.route_id == RouteStop.route_id)
    if dimension.type == "region":
        query = query.where(Route.region == dimension.value)
    elif dimension.type == "route":
        query = query.where(Route.route_id == _as_uuid(dimension.value))
    elif dimension.type == "driver":
        query = query.where(Route.driver_id == _as_uuid(dimension.value))

    result = await db.execute(query.distinct())
    return set(result.scalars().all())


async def distinct_regions(db: AsyncSession) -> list[str]:
    """All regions that have at least one route, sorted."""
    result = await db.execute(select(Route.region).distinct().order_by(Route.region))
    return list(result.scalars().all())


async def route_context_for_shipment(db: AsyncSession, shipment_id: uuid.UUID) -> list[Route]:
    """Routes a shipment is stopped on."""
    result = await db.execute(
        select(Route)
        .join(RouteStop, RouteStop.route_id == Route.route_id)
        .where(RouteStop.shipment_id == shipment_id)
    )
    return list(result.scalars().unique().all())


def _as_uuid(value: str | uuid.UUID) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None
