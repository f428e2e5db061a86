"""
Delivery Changes Router — Customer reschedule / re-address requests and staff review.
"""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from api.deps import get_db, require_roles
from api.v1.schemas import ShipmentBrief, UserBrief, UtcDatetime
from core.permissions import Actor, dispatcher_region_for, forbid
from db.models import CHANGE_STATUSES, CHANGE_TYPES, DeliveryChangeRequest, Shipment
from db.queries import Dimension, shipment_ids_for_dimension
from events import publisher
from shipments.delivery_changes import LOCKED_SHIPMENT_STATUSES, apply_change, reschedule_date
from shipments.sla_risk import score_shipment

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/delivery-changes", tags=["delivery-changes"])

REQUESTERS = ("customer", "dispatcher", "manager", "admin")
REVIEWERS = ("manager", "admin")


def _one_of(values: tuple[str, ...]) -> str:
    return f"^({'|'.join(values)})$"


# ─── Schemas ────────────────────────────────────────────────────────────────


class ChangeCreate(BaseModel):
    shipment_id: UUID
    change_type: str = Field(..., pattern=_one_of(CHANGE_TYPES))
    new_value: str = Field(..., min_length=1)
    new_date: UtcDatetime | None = None
    notes: str | None = None


class ChangeReview(BaseModel):
    status: str | None = Field(None, pattern=_one_of(CHANGE_STATUSES))
    notes: str | None = None


class ChangeResponse(BaseModel):
    request_id: UUID
    shipment_id: UUID
    requested_by_user_id: UUID
    change_type: str
    new_value: str
    new_date: datetime | None
    status: str
    notes: str | None
    reviewed_by_user_id: UUID | None
    reviewed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    shipment: ShipmentBrief | None = None
    requested_by: UserBrief | None = None
    reviewed_by: UserBrief | None = None

    model_config = {"from_attributes": True}


# ─── Helpers ────────────────────────────────────────────────────────────────


async def _load_change(db: AsyncSession, request_id: UUID) -> DeliveryChangeRequest:
    result = await db.execute(
        select(DeliveryChangeRequest)
        .options(
            selectinload(DeliveryChangeRequest.shipment),
            selectinload(DeliveryChangeRequest.requested_by),
            selectinload(DeliveryChangeRequest.reviewed_by),
        )
        .where(DeliveryChangeRequest.request_id == request_id)
        .execution_options(populate_existing=True)
    )
    change = result.scalar_one_or_none()
    if change is None:
        raise HTTPException(status_code=404, detail="Delivery change request not found")
    return change


async def _dispatcher_scope(db: AsyncSession, actor: Actor) -> set[UUID] | None:
    """Shipments routed through a dispatcher's region; None for other roles."""
    if actor.role != "dispatcher":
        return None
    region = await dispatcher_region_for(db, actor)
    if region is None:
        return set()
    return await shipment_ids_for_dimension(db, Dimension("region", region))


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/", response_model=ChangeResponse, status_code=201)
async def create_change(
    body: ChangeCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*REQUESTERS)),
):
    """
    Request a change to an undelivered shipment. Customers may only ask for
    their own shipments.
    """
    result = await db.execute(select(Shipment).where(Shipment.shipment_id == body.shipment_id))
    shipment = result.scalar_one_or_none()
    if shipment is None:
        raise HTTPException(status_code=404, detail="Shipment not found")
    if actor.role == "customer" and shipment.customer_id != actor.user_id:
        raise forbid("You can only request changes for your own shipments")
    scope = await _dispatcher_scope(db, actor)
    if scope is not None and shipment.shipment_id not in scope:
        raise forbid("You can only request changes for shipments in your assigned region")
    if shipment.current_status in LOCKED_SHIPMENT_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot change delivery for shipment with status: {shipment.current_status}",
        )

    change = DeliveryChangeRequest(
        shipment_id=body.shipment_id,
        requested_by_user_id=actor.user_id,
        change_type=body.change_type,
        new_value=body.new_value,
        new_date=reschedule_date(body.change_type, body.new_value, body.new_date),
        status="pending",
        notes=body.notes,
    )
    db.add(change)
    await db.commit()

    logger.info(
        "delivery_change.created",
        request_id=str(change.request_id),
        tracking_number=shipment.tracking_number,
        change_type=change.change_type,
        user_id=str(actor.user_id),
    )
    await publisher.emit_delivery_change("created", change, shipment.tracking_number)
    return await _load_change(db, change.request_id)


@router.get("/", response_model=list[ChangeResponse])
async def list_changes(
    shipment_id: UUID | None = None,
    status: str | None = None,
    change_type: str | None = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*REQUESTERS)),
):
    """List change requests, newest first. Customers see only their own."""
    query = select(DeliveryChangeRequest).options(
        selectinload(DeliveryChangeRequest.shipment),
        selectinload(DeliveryChangeRequest.requested_by),
        selectinload(DeliveryChangeRequest.reviewed_by),
    )
    if shipment_id is not None:
        query = query.where(DeliveryChangeRequest.shipment_id == shipment_id)
    if status:
        query = query.where(DeliveryChangeRequest.status == status)
    if change_type:
        query = query.where(DeliveryChangeRequest.change_type == change_type)

    if actor.role == "customer":
        query = query.where(DeliveryChangeRequest.requested_by_user_id == actor.user_id)
    scope = await _dispatcher_scope(db, actor)
    if scope is not None:
        if not scope:
            return []
        query = query.where(DeliveryChangeRequest.shipment_id.in_(scope))

    result = await db.execute(query.order_by(DeliveryChangeRequest.created_at.desc()))
    return result.scalars().all()


@router.get("/{request_id}", response_model=ChangeResponse)
async def get_change(
    request_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*REQUESTERS)),
):
    change = await _load_change(db, request_id)
    if actor.role == "customer" and change.requested_by_user_id != actor.user_id:
        raise forbid("You can only view your own change requests")
    scope = await _dispatcher_scope(db, actor)
    if scope is not None and change.shipment_id not in scope:
        raise forbid("You can only view change requests for shipments in your assigned region")
    return change


@router.patch("/{request_id}", response_model=ChangeResponse)
async def review_change(
    request_id: UUID,
    review: ChangeReview,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*REVIEWERS)),
):
    """
    Approve, reject or annotate a request. Approving a reschedule or address
    change applies it to the shipment and marks the request ``applied``.
    """
    change = await _load_change(db, request_id)
    if change.status == "applied":
        raise HTTPException(status_code=400, detail="Delivery change request has already been applied")

    if review.status is not None:
        change.status = review.status
    if review.notes is not None:
        change.notes = review.notes
    change.reviewed_by_user_id = actor.user_id
    change.reviewed_at = datetime.utcnow()

    shipment = change.shipment
    applied = {}
    if change.status == "approved":
        applied = apply_change(shipment, change)
        if applied:
            change.status = "applied"
            shipment.sla_risk_score = score_shipment(shipment)
    await db.commit()

    logger.info(
        "delivery_change.reviewed",
        request_id=str(request_id),
        status=change.status,
        applied=sorted(applied),
        user_id=str(actor.user_id),
    )
    if applied:
        await publisher.emit_shipment("status.updated", shipment, changes=applied)
    await publisher.emit_delivery_change("updated", change, shipment.tracking_number)
    return await _load_change(db, request_id)
