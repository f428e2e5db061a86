"""
Issues Router — Delivery issue intake, triage and resolution.
"""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from api.deps import get_db, require_roles
from api.v1.schemas import ShipmentBrief
from core.permissions import Actor, can_view_shipment, dispatcher_region_for, forbid
from db.models import ISSUE_STATUSES, ISSUE_TYPES, DeliveryIssue, Shipment
from db.queries import Dimension, shipment_ids_for_dimension
from escalations.ladder import maybe_trigger_for_issue
from events import publisher
from issues.severity import SEVERITY_BANDS, calculate_severity_score, classify_severity

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/issues", tags=["issues"])

STAFF = ("dispatcher", "manager", "admin")


# ─── Schemas ────────────────────────────────────────────────────────────────


class IssueCreate(BaseModel):
    shipment_id: UUID
    issue_type: str = Field(..., pattern=f"^({'|'.join(ISSUE_TYPES)})$")
    description: str = Field(..., min_length=10)


class IssueUpdate(BaseModel):
    status: str | None = Field(None, pattern=f"^({'|'.join(ISSUE_STATUSES)})$")
    resolution_notes: str | None = None


class IssueResponse(BaseModel):
    issue_id: UUID
    shipment_id: UUID
    reported_by_user_id: UUID
    issue_type: str
    description: str
    severity_score: float
    status: str
    resolution_notes: str | None
    created_at: datetime
    updated_at: datetime
    shipment: ShipmentBrief | None = None

    model_config = {"from_attributes": True}


# ─── Helpers ────────────────────────────────────────────────────────────────


async def _load_issue(db: AsyncSession, issue_id: UUID) -> DeliveryIssue:
    result = await db.execute(
        select(DeliveryIssue)
        .options(selectinload(DeliveryIssue.shipment))
        .where(DeliveryIssue.issue_id == issue_id)
        .execution_options(populate_existing=True)
    )
    issue = result.scalar_one_or_none()
    if issue is None:
        raise HTTPException(status_code=404, detail="Issue not found")
    return issue


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/", response_model=IssueResponse, status_code=201)
async def create_issue(
    body: IssueCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("customer", *STAFF)),
):
    """
    Report a delivery issue. The severity score is computed from the issue
    type, description and shipment context; severe issues auto-escalate.
    """
    result = await db.execute(select(Shipment).where(Shipment.shipment_id == body.shipment_id))
    shipment = result.scalar_one_or_none()
    if shipment is None:
        raise HTTPException(status_code=404, detail="Shipment not found")
    if actor.role == "customer" and shipment.customer_id != actor.user_id:
        raise forbid("You can only create issues for your own shipments")

    issue = DeliveryIssue(
        shipment_id=body.shipment_id,
        reported_by_user_id=actor.user_id,
        issue_type=body.issue_type,
        description=body.description,
        severity_score=calculate_severity_score(
            body.issue_type,
            body.description,
            is_vip=shipment.is_vip,
            sla_risk_score=shipment.sla_risk_score,
        ),
        status="open",
    )
    db.add(issue)
    await db.commit()

    logger.info(
        "issue.created",
        issue_id=str(issue.issue_id),
        shipment_id=str(issue.shipment_id),
        severity_score=issue.severity_score,
        severity=classify_severity(issue.severity_score),
    )
    await publisher.emit_issue("created", issue)
    await maybe_trigger_for_issue(db, issue)
    return await _load_issue(db, issue.issue_id)


@router.get("/", response_model=list[IssueResponse])
async def list_issues(
    severity: str | None = Query(None, pattern="^(critical|high|medium|low|all)$"),
    status: str | None = None,
    issue_type: str | None = None,
    region: str | None = None,
    shipment_id: UUID | None = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*STAFF)),
):
    """List issues, most severe first. Dispatchers see only their region."""
    query = select(DeliveryIssue).options(selectinload(DeliveryIssue.shipment))

    if severity and severity != "all":
        lower, upper = SEVERITY_BANDS[severity]
        if lower is not None:
            query = query.where(DeliveryIssue.severity_score >= lower)
        if upper is not None:
            query = query.where(DeliveryIssue.severity_score < upper)
    if status and status != "all":
        query = query.where(DeliveryIssue.status == status)
    if issue_type:
        query = query.where(DeliveryIssue.issue_type == issue_type)
    if shipment_id is not None:
        query = query.where(DeliveryIssue.shipment_id == shipment_id)

    if actor.role == "dispatcher":
        region = await dispatcher_region_for(db, actor)
        if region is None:
            return []
    if region:
        in_region = await shipment_ids_for_dimension(db, Dimension("region", region))
        if not in_region:
            return []
        query = query.where(DeliveryIssue.shipment_id.in_(in_region))

    result = await db.execute(
        query.order_by(DeliveryIssue.severity_score.desc(), DeliveryIssue.created_at.desc())
    )
    return result.scalars().all()


@router.get("/shipment/{shipment_id}", response_model=list[IssueResponse])
async def list_issues_for_shipment(
    shipment_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("customer", *STAFF)),
):
    result = await db.execute(select(Shipment).where(Shipment.shipment_id == shipment_id))
    shipment = result.scalar_one_or_none()
    if shipment is None:
        raise HTTPException(status_code=404, detail="Shipment not found")
    if actor.role == "customer" and shipment.customer_id != actor.user_id:
        raise forbid("You can only view issues for your own shipments")

    issues = await db.execute(
        select(DeliveryIssue)
        .options(selectinload(DeliveryIssue.shipment))
        .where(DeliveryIssue.shipment_id == shipment_id)
        .order_by(DeliveryIssue.created_at.desc())
    )
    return issues.scalars().all()


@router.get("/{issue_id}", response_model=IssueResponse)
async def get_issue(
    issue_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("customer", *STAFF)),
):
    issue = await _load_issue(db, issue_id)
    if not await can_view_shipment(db, actor, issue.shipment):
        raise forbid("You can only view issues for shipments you are responsible for")
    return issue


@router.patch("/{issue_id}", response_model=IssueResponse)
async def update_issue(
    issue_id: UUID,
    update: IssueUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*STAFF)),
):
    issue = await _load_issue(db, issue_id)
    for field, value in update.model_dump(exclude_unset=True).items():
        if field == "status" and value is None:
            continue
        setattr(issue, field, value)
    issue.updated_at = datetime.utcnow()
    await db.commit()

    logger.info("issue.updated", issue_id=str(issue_id), status=issue.status, user_id=str(actor.user_id))
    await publisher.emit_issue("updated", issue)
    return await _load_issue(db, issue_id)
