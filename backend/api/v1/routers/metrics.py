"""
Metrics Router — KPI overview, metric definitions and snapshots.
"""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, require_roles
from api.v1.schemas import UtcDatetime
from core.permissions import Actor
from db.models import AGGREGATION_TYPES, METRIC_DIMENSIONS, ROLES, MetricDefinition, MetricSnapshot
from db.queries import Dimension
from metrics import engine

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])

VIEWERS = ("dispatcher", "manager", "admin")
NULLABLE_DEFINITION_FIELDS = ("description", "warning_threshold", "critical_threshold")


def _one_of(values: tuple[str, ...]) -> str:
    return f"^({'|'.join(values)})$"


# ─── Schemas ────────────────────────────────────────────────────────────────


class OverviewResponse(BaseModel):
    on_time_delivery_rate: float
    on_time_delivery_rate_breakdown: dict[str, float] | None
    first_attempt_success_rate: float
    first_attempt_success_rate_breakdown: dict[str, float] | None
    open_issues_count: int
    open_issues_count_breakdown: dict[str, int] | None
    sla_risk_count: int
    sla_risk_count_breakdown: dict[str, int] | None
    computed_at: datetime


class MetricValue(BaseModel):
    value: float
    breakdown: dict[str, float] | None = None


class DefinitionCreate(BaseModel):
    key: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    aggregation_type: str = Field(..., pattern=_one_of(AGGREGATION_TYPES))
    dimension: str = Field("global", pattern=_one_of(METRIC_DIMENSIONS))
    target_value: float
    warning_threshold: float | None = None
    critical_threshold: float | None = None
    owner_role: str = Field("admin", pattern=_one_of(ROLES))
    is_visible_on_dashboard: bool = True


class DefinitionUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    aggregation_type: str | None = Field(None, pattern=_one_of(AGGREGATION_TYPES))
    dimension: str | None = Field(None, pattern=_one_of(METRIC_DIMENSIONS))
    target_value: float | None = None
    warning_threshold: float | None = None
    critical_threshold: float | None = None
    owner_role: str | None = Field(None, pattern=_one_of(ROLES))
    is_visible_on_dashboard: bool | None = None


class SnapshotResponse(BaseModel):
    snapshot_id: UUID
    metric_id: UUID
    value: float
    time_range_start: datetime
    time_range_end: datetime
    computed_at: datetime
    breakdown: dict[str, float] | None

    model_config = {"from_attributes": True}


class DefinitionResponse(BaseModel):
    metric_id: UUID
    key: str
    name: str
    description: str | None
    aggregation_type: str
    dimension: str
    target_value: float
    warning_threshold: float | None
    critical_threshold: float | None
    owner_role: str
    is_visible_on_dashboard: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class DefinitionDetailResponse(DefinitionResponse):
    snapshots: list[SnapshotResponse] = []


class SnapshotGenerateRequest(BaseModel):
    time_range_start: UtcDatetime
    time_range_end: UtcDatetime
    dimension: str | None = Field(None, pattern=_one_of(METRIC_DIMENSIONS))
    dimension_value: str | None = None


# ─── Helpers ────────────────────────────────────────────────────────────────


async def _get_definition(db: AsyncSession, metric_id: UUID) -> MetricDefinition:
    try:
        return await engine.get_definition(db, metric_id)
    except engine.MetricNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


def _dimension(dimension: str | None, value: str | None) -> Dimension | None:
    try:
        return Dimension.from_params(dimension, value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


# ─── KPIs ───────────────────────────────────────────────────────────────────


@router.get("/overview", response_model=OverviewResponse)
async def get_overview(
    start_date: UtcDatetime | None = None,
    end_date: UtcDatetime | None = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*VIEWERS)),
):
    """All headline KPIs with per-region breakdowns."""
    return await engine.get_overview(db, start_date, end_date)


@router.post("/compute/{metric_id}", response_model=MetricValue)
async def compute_metric(
    metric_id: UUID,
    dimension: str | None = None,
    dimension_value: str | None = None,
    start_date: UtcDatetime | None = None,
    end_date: UtcDatetime | None = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*VIEWERS)),
):
    try:
        return await engine.compute_metric(
            db, metric_id, _dimension(dimension, dimension_value), start_date, end_date
        )
    except engine.MetricNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


# ─── Definitions ────────────────────────────────────────────────────────────


@router.get("/definitions", response_model=list[DefinitionResponse])
async def list_definitions(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*VIEWERS)),
):
    result = await db.execute(select(MetricDefinition).order_by(MetricDefinition.created_at.desc()))
    return result.scalars().all()


@router.get("/definitions/{metric_id}", response_model=DefinitionDetailResponse)
async def get_definition(
    metric_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*VIEWERS)),
):
    """A definition with its 10 most recent snapshots."""
    definition = await _get_definition(db, metric_id)
    snapshots = await engine.list_snapshots(db, metric_id=metric_id, limit=10)
    return {**DefinitionResponse.model_validate(definition).model_dump(), "snapshots": snapshots}


@router.post("/definitions", response_model=DefinitionResponse, status_code=201)
async def create_definition(
    body: DefinitionCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("admin")),
):
    try:
        definition = await engine.create_definition(db, **body.model_dump())
    except engine.DuplicateMetricKeyError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    logger.info("metrics.definition_created", metric_key=definition.key, user_id=str(actor.user_id))
    return definition


@router.patch("/definitions/{metric_id}", response_model=DefinitionResponse)
async def update_definition(
    metric_id: UUID,
    update: DefinitionUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("admin")),
):
    definition = await _get_definition(db, metric_id)
    for field, value in update.model_dump(exclude_unset=True).items():
        if value is None and field not in NULLABLE_DEFINITION_FIELDS:
            continue
        setattr(definition, field, value)
    definition.updated_at = datetime.utcnow()
    await db.commit()
    await db.refresh(definition)
    return definition


@router.delete("/definitions/{metric_id}", status_code=204)
async def delete_definition(
    metric_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("admin")),
):
    """Delete a definition together with all of its snapshots."""
    definition = await _get_definition(db, metric_id)
    await db.execute(delete(MetricSnapshot).where(MetricSnapshot.metric_id == metric_id))
    await db.delete(definition)
    await db.commit()
    logger.info("metrics.definition_deleted", metric_id=str(metric_id), user_id=str(actor.user_id))


# ─── Snapshots ──────────────────────────────────────────────────────────────


@router.get("/snapshots", response_model=list[SnapshotResponse])
async def list_snapshots(
    metric_id: UUID | None = None,
    start_date: UtcDatetime | None = None,
    end_date: UtcDatetime | None = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*VIEWERS)),
):
    return await engine.list_snapshots(db, metric_id=metric_id, start=start_date, end=end_date)


@router.get("/snapshots/{metric_id}", response_model=list[SnapshotResponse])
async def list_snapshots_for_metric(
    metric_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*VIEWERS)),
):
    return await engine.list_snapshots(db, metric_id=metric_id)


@router.post("/snapshots/generate/{metric_id}", response_model=SnapshotResponse, status_code=201)
async def generate_snapshot(
    metric_id: UUID,
    body: SnapshotGenerateRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("admin")),
):
    if body.time_range_end < body.time_range_start:
        raise HTTPException(status_code=400, detail="time_range_end must not precede time_range_start")
    try:
        return await engine.generate_snapshot(
            db,
            metric_id,
            body.time_range_start,
            body.time_range_end,
            _dimension(body.dimension, body.dimension_value),
        )
    except engine.MetricNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
