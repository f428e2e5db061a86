"""
Metrics Engine — Operational KPIs over shipments, scans and issues.

KPIs:
  - on_time_delivery_rate:      delivered on/before promise / delivered
  - first_attempt_success_rate: first delivery scan succeeded / delivery scans
  - open_issues_count:          issues still open or investigating
  - sla_risk_count:             shipments with sla_risk_score > threshold

Every KPI takes an optional Dimension (global / region / route / driver).
Without one, or with the global dimension, the result also carries a
per-region breakdown computed by re-running the KPI once per route region.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import OPEN_ISSUE_STATUSES, DeliveryIssue, MetricDefinition, MetricSnapshot, Shipment, ShipmentScan
from db.queries import Dimension, distinct_regions, shipment_ids_for_dimension
from events import publisher

logger = structlog.get_logger()

DELIVERY_ATTEMPT_SCANS = ("delivered", "failed_attempt")


class MetricNotFoundError(LookupError):
    pass


class DuplicateMetricKeyError(ValueError):
    pass


# ──────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────


def _wants_breakdown(dimension: Dimension | None) -> bool:
    return dimension is None or dimension.is_global


async def _scope(db: AsyncSession, dimension: Dimension | None) -> set[UUID] | None:
    if dimension is None:
        return None
    return await shipment_ids_for_dimension(db, dimension)


def _restrict(query, column, shipment_ids: set[UUID] | None):
    if shipment_ids is None:
        return query
    return query.where(column.in_(shipment_ids))


def _window(query, column, start: datetime | None, end: datetime | None):
    if start is not None:
        query = query.where(column >= start)
    if end is not None:
        query = query.where(column <= end)
    return query


async def _region_breakdown(
    db: AsyncSession,
    kpi: Callable[..., Awaitable[dict[str, Any]]],
    **kwargs: Any,
) -> dict[str, float]:
    breakdown = {}
    for region in await distinct_regions(db):
        result = await kpi(db, dimension=Dimension("region", region), **kwargs)
        breakdown[region] = result["value"]
    return breakdown


def _ratio(numerator: int, denominator: int) -> float:
    if denominator == 0:
        return 0.0
    return round(numerator / denominator, 2)


# ──────────────────────────────────────────────────────────────────────────
# KPIs
# ──────────────────────────────────────────────────────────────────────────


async def on_time_delivery_rate(
    db: AsyncSession,
    dimension: Dimension | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    """
    Share of delivered shipments whose last update is on or before the
    promised date. Shipments without a promised date count as late.
    """
    query = select(Shipment.promised_delivery_date, Shipment.updated_at).where(
        Shipment.current_status == "delivered"
    )
    query = _window(query, Shipment.updated_at, start, end)
    query = _restrict(query, Shipment.shipment_id, await _scope(db, dimension))

    rows = (await db.execute(query)).all()
    on_time = sum(1 for promised, delivered_at in rows if promised is not None and delivered_at <= promised)

    breakdown = None
    if _wants_breakdown(dimension):
        breakdown = await _region_breakdown(db, on_time_delivery_rate, start=start, end=end)
    return {"value": _ratio(on_time, len(rows)), "breakdown": breakdown}


async def first_attempt_success_rate(
    db: AsyncSession,
    dimension: Dimension | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    """
    Delivered shipments whose earliest delivery-attempt scan is ``delivered``,
    divided by the total number of delivery-attempt scans on those shipments.
    """
    query = select(Shipment.shipment_id).where(Shipment.current_status == "delivered")
    query = _window(query, Shipment.updated_at, start, end)
    query = _restrict(query, Shipment.shipment_id, await _scope(db, dimension))
    shipment_ids = list((await db.execute(query)).scalars().all())

    first_attempts = 0
    total_attempts = 0
    if shipment_ids:
        scans = await db.execute(
            select(ShipmentScan.shipment_id, ShipmentScan.scan_type)
            .where(
                ShipmentScan.shipment_id.in_(shipment_ids),
                ShipmentScan.scan_type.in_(DELIVERY_ATTEMPT_SCANS),
            )
            .order_by(ShipmentScan.shipment_id, ShipmentScan.timestamp)
        )
        seen: set[UUID] = set()
        for shipment_id, scan_type in scans.all():
            total_attempts += 1
            if shipment_id not in seen:
                seen.add(shipment_id)
                if scan_type == "delivered":
                    first_attempts += 1

    breakdown = None
    if _wants_breakdown(dimension):
        breakdown = await _region_breakdown(db, first_attempt_success_rate, start=start, end=end)
    return {"value": _ratio(first_attempts, total_attempts), "breakdown": breakdown}


async def open_issues_count(
    db: AsyncSession,
    dimension: Dimension | None = None,
) -> dict[str, Any]:
    query = select(func.count(DeliveryIssue.issue_id)).where(DeliveryIssue.status.in_(OPEN_ISSUE_STATUSES))
    query = _restrict(query, DeliveryIssue.shipment_id, await _scope(db, dimension))
    count = (await db.execute(query)).scalar() or 0

    breakdown = None
    if _wants_breakdown(dimension):
        breakdown = await _region_breakdown(db, open_issues_count)
    return {"value": count, "breakdown": breakdown}


async def sla_risk_count(
    db: AsyncSession,
    threshold: float | None = None,
    dimension: Dimension | None = None,
) -> dict[str, Any]:
    """Shipments whose sla_risk_score is strictly above ``threshold``."""
    if threshold is None:
        threshold = get_settings().sla_risk_threshold

    query = select(func.count(Shipment.shipment_id)).where(Shipment.sla_risk_score > threshold)
    query = _restrict(query, Shipment.shipment_id, await _scope(db, dimension))
    count = (await db.execute(query)).scalar() or 0

    breakdown = None
    if _wants_breakdown(dimension):
        breakdown = await _region_breakdown(db, sla_risk_count, threshold=threshold)
    return {"value": count, "breakdown": breakdown}


async def get_overview(
    db: AsyncSession,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    on_time = await on_time_delivery_rate(db, start=start, end=end)
    first_attempt = await first_attempt_success_rate(db, start=start, end=end)
    open_issues = await open_issues_count(db)
    sla_risk = await sla_risk_count(db)

    return {
        "on_time_delivery_rate": on_time["value"],
        "on_time_delivery_rate_breakdown": on_time["breakdown"],
        "first_attempt_success_rate": first_attempt["value"],
        "first_attempt_success_rate_breakdown": first_attempt["breakdown"],
        "open_issues_count": open_issues["value"],
        "open_issues_count_breakdown": open_issues["breakdown"],
        "sla_risk_count": sla_risk["value"],
        "sla_risk_count_breakdown": sla_risk["breakdown"],
        "computed_at": datetime.utcnow(),
    }


# ──────────────────────────────────────────────────────────────────────────
# Definitions & snapshots
# ──────────────────────────────────────────────────────────────────────────


async def get_definition(db: AsyncSession, metric_id: UUID) -> MetricDefinition:
    result = await db.execute(select(MetricDefinition).where(MetricDefinition.metric_id == metric_id))
    definition = result.scalar_one_or_none()
    if definition is None:
        raise MetricNotFoundError("Metric definition not found")
    return definition


async def compute_metric(
    db: AsyncSession,
    metric_id: UUID,
    dimension: Dimension | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    """Evaluate a definition by its key. Keys without a formula evaluate to 0."""
    definition = await get_definition(db, metric_id)

    if definition.key == "on_time_delivery_rate":
        return await on_time_delivery_rate(db, dimension, start, end)
    if definition.key == "first_attempt_success_rate":
        return await first_attempt_success_rate(db, dimension, start, end)
    if definition.key == "open_issues_count":
        return await open_issues_count(db, dimension)
    if definition.key == "sla_risk_count":
        return await sla_risk_count(db, dimension=dimension)

    logger.info("metrics.custom_key_unsupported", metric_key=definition.key)
    return {"value": 0, "breakdown": None}


async def generate_snapshot(
    db: AsyncSession,
    metric_id: UUID,
    start: datetime,
    end: datetime,
    dimension: Dimension | None = None,
) -> MetricSnapshot:
    """Compute a metric over [start, end], persist it and notify dashboards."""
    result = await compute_metric(db, metric_id, dimension, start, end)

    snapshot = MetricSnapshot(
        metric_id=metric_id,
        value=float(result["value"]),
        time_range_start=start,
        time_range_end=end,
        computed_at=datetime.utcnow(),
        breakdown=result["breakdown"] or None,
    )
    db.add(snapshot)
    await db.commit()
    await db.refresh(snapshot)

    logger.info(
        "metrics.snapshot_generated",
        metric_id=str(metric_id),
        value=snapshot.value,
        dimension=dimension.type if dimension else "global",
    )
    await publisher.emit_snapshot_created(snapshot)
    return snapshot


async def create_definition(db: AsyncSession, **fields: Any) -> MetricDefinition:
    existing = await db.execute(select(MetricDefinition.metric_id).where(MetricDefinition.key == fields["key"]))
    if existing.scalar_one_or_none() is not None:
        raise DuplicateMetricKeyError("Metric key already exists")

    definition = MetricDefinition(**fields)
    db.add(definition)
    await db.commit()
    await db.refresh(definition)
    return definition


async def list_snapshots(
    db: AsyncSession,
    metric_id: UUID | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
) -> list[MetricSnapshot]:
    query = select(MetricSnapshot)
    if metric_id is not None:
        query = query.where(MetricSnapshot.metric_id == metric_id)
    query = _window(query, MetricSnapshot.computed_at, start, end)
    query = query.order_by(MetricSnapshot.computed_at.desc())
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())
