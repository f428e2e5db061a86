"""
Escalations Router — Trigger, advance and acknowledge the escalation ladder.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, require_roles
from api.v1.schemas import UserBrief
from core.permissions import Actor, dispatcher_region_for, forbid
from db.models import CONTACT_TYPES
from db.queries import Dimension, shipment_ids_for_dimension
from escalations import ladder

router = APIRouter(prefix="/api/v1/escalations", tags=["escalations"])

STAFF = ("dispatcher", "manager", "admin")


# ─── Schemas ────────────────────────────────────────────────────────────────


class TriggerRequest(BaseModel):
    shipment_id: UUID
    delivery_issue_id: UUID | None = None
    reason: str | None = None


class AdvanceRequest(BaseModel):
    reason: str | None = None


class AcknowledgeRequest(BaseModel):
    method: str = Field(..., min_length=1, max_length=50)
    notes: str | None = None


class ContactCreate(BaseModel):
    user_id: UUID
    position: str = Field(..., min_length=1, max_length=100)
    contact_type: str = Field(..., pattern=f"^({'|'.join(CONTACT_TYPES)})$")
    timeout_seconds: int = Field(..., ge=1)
    is_active: bool = True


class ContactResponse(BaseModel):
    contact_id: UUID
    user_id: UUID
    position: str
    contact_type: str
    timeout_seconds: int
    is_active: bool
    user: UserBrief | None = None

    model_config = {"from_attributes": True}


class EscalationLogResponse(BaseModel):
    log_id: UUID
    shipment_id: UUID
    delivery_issue_id: UUID | None
    contact_id: UUID
    attempt_number: int
    event_type: str
    payload: dict[str, Any] | None
    ack_received: bool
    ack_method: str | None
    acknowledged_at: datetime | None
    created_at: datetime
    contact: ContactResponse | None = None

    model_config = {"from_attributes": True}


class AcknowledgmentResponse(BaseModel):
    acknowledgment_id: UUID
    shipment_id: UUID
    delivery_issue_id: UUID | None
    user_id: UUID
    method: str
    notes: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class EscalationResponse(BaseModel):
    shipment_id: UUID
    delivery_issue_id: UUID | None
    current_status: str
    current_level: int
    current_contact: ContactResponse | None
    logs: list[EscalationLogResponse]


class EscalationDetailResponse(EscalationResponse):
    is_active: bool
    acknowledgments: list[AcknowledgmentResponse]


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, LookupError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


# ─── Ladder ─────────────────────────────────────────────────────────────────


@router.post("/trigger", response_model=EscalationLogResponse, status_code=201)
async def trigger_escalation(
    body: TriggerRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*STAFF)),
):
    """Page the first contact on the ladder for a shipment."""
    try:
        return await ladder.trigger_escalation(
            db,
            body.shipment_id,
            actor_id=actor.user_id,
            issue_id=body.delivery_issue_id,
            reason=body.reason,
        )
    except (ladder.EscalationNotFoundError, ladder.EscalationConflictError) as exc:
        raise _http_error(exc)


@router.post("/{shipment_id}/advance", response_model=EscalationLogResponse, status_code=201)
async def advance_escalation(
    shipment_id: UUID,
    body: AdvanceRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*STAFF)),
):
    try:
        return await ladder.advance_escalation(db, shipment_id, actor.user_id, reason=body.reason)
    except (ladder.EscalationNotFoundError, ladder.EscalationConflictError) as exc:
        raise _http_error(exc)


@router.post("/{shipment_id}/acknowledge", response_model=EscalationLogResponse)
async def acknowledge_escalation(
    shipment_id: UUID,
    body: AcknowledgeRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("manager", "admin")),
):
    try:
        return await ladder.acknowledge_escalation(db, shipment_id, actor.user_id, body.method, body.notes)
    except ladder.EscalationNotFoundError as exc:
        raise _http_error(exc)


@router.get("/", response_model=list[EscalationResponse])
async def list_escalations(
    shipment_id: UUID | None = None,
    delivery_issue_id: UUID | None = None,
    status: str | None = Query(None, pattern="^(active|acknowledged|resolved)$"),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*STAFF)),
):
    """Escalations grouped per shipment. Dispatchers see only their region."""
    region = None
    if actor.role == "dispatcher":
        region = await dispatcher_region_for(db, actor)
        if region is None:
            return []
    return await ladder.list_escalations(
        db,
        shipment_id=shipment_id,
        issue_id=delivery_issue_id,
        status=status,
        region=region,
    )


# ─── Contacts ───────────────────────────────────────────────────────────────


@router.get("/contacts", response_model=list[ContactResponse])
async def list_contacts(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("admin")),
):
    return await ladder.list_contacts(db)


@router.post("/contacts", response_model=ContactResponse, status_code=201)
async def create_contact(
    body: ContactCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles("admin")),
):
    try:
        return await ladder.create_contact(db, **body.model_dump())
    except ladder.EscalationNotFoundError as exc:
        raise _http_error(exc)


@router.get("/{shipment_id}", response_model=EscalationDetailResponse)
async def get_escalation(
    shipment_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_roles(*STAFF)),
):
    if actor.role == "dispatcher":
        region = await dispatcher_region_for(db, actor)
        if region is None:
            raise forbid("Dispatcher profile not found")
        in_region = await shipment_ids_for_dimension(db, Dimension("region", region))
        if shipment_id not in in_region:
            raise forbid("You can only view escalations for shipments in your assigned region")

    try:
        return await ladder.get_escalation(db, shipment_id)
    except ladder.EscalationNotFoundError as exc:
        raise _http_error(exc)
