"""
Escalation Ladder — Ordered paging of contacts for a troubled shipment.

Lifecycle:
  1. trigger      attempt 1 against the contact with the shortest timeout
  2. advance      next contact in ladder order, attempt = prior logs + 1
  3. acknowledge  newest unacknowledged attempt is marked and recorded

One escalation per shipment may be active (has an unacknowledged log) at a
time. Advancing is manual; contact timeouts only define ladder order.
"""

from collections import OrderedDict
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import get_settings
from db.models import (
    Acknowledgment,
    DeliveryIssue,
    EscalationContact,
    EscalationLog,
    Shipment,
    User,
)
from db.queries import Dimension, shipment_ids_for_dimension
from escalations import notify
from events import publisher

logger = structlog.get_logger()

ESCALATION_STATUSES = ("active", "acknowledged", "resolved")


class EscalationNotFoundError(LookupError):
    pass


class EscalationConflictError(ValueError):
    pass


# ──────────────────────────────────────────────────────────────────────────
# Derived state
# ──────────────────────────────────────────────────────────────────────────


def current_level(logs: Sequence[EscalationLog]) -> int:
    """Highest attempt number reached, 0 when nothing was logged."""
    return max((log.attempt_number for log in logs), default=0)


def derive_status(logs: Sequence[EscalationLog], issue_status: str | None = None) -> str:
    if any(not log.ack_received for log in logs):
        return "active"
    if issue_status in ("resolved", "closed"):
        return "resolved"
    return "acknowledged"


def _contact_payload(contact: EscalationContact) -> dict[str, Any]:
    return {
        "id": str(contact.contact_id),
        "user_id": str(contact.user_id),
        "position": contact.position,
        "contact_type": contact.contact_type,
        "timeout_seconds": contact.timeout_seconds,
    }


# ──────────────────────────────────────────────────────────────────────────
# Queries
# ──────────────────────────────────────────────────────────────────────────


async def active_contacts(db: AsyncSession) -> list[EscalationContact]:
    """Active contacts in ladder order (shortest timeout first)."""
    result = await db.execute(
        select(EscalationContact)
        .options(selectinload(EscalationContact.user))
        .where(EscalationContact.is_active.is_(True))
        .order_by(EscalationContact.timeout_seconds.asc(), EscalationContact.contact_id)
    )
    return list(result.scalars().all())


async def active_log_for(db: AsyncSession, shipment_id: UUID) -> EscalationLog | None:
    """Newest unacknowledged log for a shipment."""
    result = await db.execute(
        select(EscalationLog)
        .where(EscalationLog.shipment_id == shipment_id, EscalationLog.ack_received.is_(False))
        .order_by(EscalationLog.created_at.desc(), EscalationLog.attempt_number.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def load_log(db: AsyncSession, log_id: UUID) -> EscalationLog:
    result = await db.execute(
        select(EscalationLog)
        .options(
            selectinload(EscalationLog.contact).selectinload(EscalationContact.user),
            selectinload(EscalationLog.issue),
        )
        .where(EscalationLog.log_id == log_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _logs_for_shipments(db: AsyncSession, shipment_ids: set[UUID] | None, **filters: Any) -> list[EscalationLog]:
    query = select(EscalationLog).options(
        selectinload(EscalationLog.contact).selectinload(EscalationContact.user),
        selectinload(EscalationLog.issue),
    )
    if shipment_ids is not None:
        query = query.where(EscalationLog.shipment_id.in_(shipment_ids))
    if filters.get("shipment_id") is not None:
        query = query.where(EscalationLog.shipment_id == filters["shipment_id"])
    if filters.get("issue_id") is not None:
        query = query.where(EscalationLog.delivery_issue_id == filters["issue_id"])
    query = query.order_by(EscalationLog.shipment_id, EscalationLog.attempt_number.asc())
    result = await db.execute(query)
    return list(result.scalars().all())


# ──────────────────────────────────────────────────────────────────────────
# Lifecycle
# ──────────────────────────────────────────────────────────────────────────


async def trigger_escalation(
    db: AsyncSession,
    shipment_id: UUID,
    actor_id: UUID | None = None,
    issue_id: UUID | None = None,
    reason: str | None = None,
    payload: dict[str, Any] | None = None,
) -> EscalationLog:
    """
    Open an escalation at attempt 1 against the first contact on the ladder.

    ``actor_id`` is None when the system (issue intake, SLA scanner) triggers.
    """
    result = await db.execute(select(Shipment).where(Shipment.shipment_id == shipment_id))
    shipment = result.scalar_one_or_none()
    if shipment is None:
        raise EscalationNotFoundError("Shipment not found")

    if await active_log_for(db, shipment_id) is not None:
        raise EscalationConflictError("Active escalation already exists for this shipment")

    contacts = await active_contacts(db)
    if not contacts:
        raise EscalationConflictError("No active escalation contacts configured")

    first = contacts[0]
    log = EscalationLog(
        shipment_id=shipment_id,
        delivery_issue_id=issue_id,
        contact_id=first.contact_id,
        attempt_number=1,
        event_type="triggered",
        payload={
            **(payload or {}),
            "reason": reason or "Manual escalation triggered",
            "triggered_by": str(actor_id) if actor_id else "system",
            "contact": _contact_payload(first),
        },
    )
    db.add(log)
    await db.commit()

    log = await load_log(db, log.log_id)
    logger.info(
        "escalation.triggered",
        shipment_id=str(shipment_id),
        contact_id=str(first.contact_id),
        issue_id=str(issue_id) if issue_id else None,
    )
    await notify.notify_contact(first, log, shipment.tracking_number)
    await publisher.emit_escalation("triggered", log)
    return log


async def advance_escalation(
    db: AsyncSession,
    shipment_id: UUID,
    actor_id: UUID,
    reason: str | None = None,
) -> EscalationLog:
    """Page the next contact after the one currently holding the escalation."""
    current = await active_log_for(db, shipment_id)
    if current is None:
        raise EscalationNotFoundError("No active escalation found for this shipment")

    contacts = await active_contacts(db)
    ladder = [contact.contact_id for contact in contacts]
    if current.contact_id not in ladder or ladder.index(current.contact_id) >= len(ladder) - 1:
        raise EscalationConflictError("No more contacts in escalation ladder")
    next_contact = contacts[ladder.index(current.contact_id) + 1]

    prior = await db.execute(
        select(func.count(EscalationLog.log_id)).where(EscalationLog.shipment_id == shipment_id)
    )
    attempt_number = (prior.scalar() or 0) + 1

    log = EscalationLog(
        shipment_id=shipment_id,
        delivery_issue_id=current.delivery_issue_id,
        contact_id=next_contact.contact_id,
        attempt_number=attempt_number,
        event_type="advanced",
        payload={
            "reason": reason or "Timeout or no response from previous contact",
            "advanced_by": str(actor_id),
            "previous_contact_id": str(current.contact_id),
            "contact": _contact_payload(next_contact),
        },
    )
    db.add(log)
    await db.commit()

    log = await load_log(db, log.log_id)
    logger.info(
        "escalation.advanced",
        shipment_id=str(shipment_id),
        attempt_number=attempt_number,
        contact_id=str(next_contact.contact_id),
    )

    tracking = await db.execute(select(Shipment.tracking_number).where(Shipment.shipment_id == shipment_id))
    await notify.notify_contact(next_contact, log, tracking.scalar_one())
    await publisher.emit_escalation("advanced", log)
    return log


async def acknowledge_escalation(
    db: AsyncSession,
    shipment_id: UUID,
    actor_id: UUID,
    method: str,
    notes: str | None = None,
) -> EscalationLog:
    """
    Acknowledge the escalation and record who did it. The newest open
    attempt carries the acknowledgment details; earlier attempts the ladder
    advanced past are closed with it.
    """
    exists = await db.execute(select(Shipment.shipment_id).where(Shipment.shipment_id == shipment_id))
    if exists.scalar_one_or_none() is None:
        raise EscalationNotFoundError(f"Shipment {shipment_id} not found")

    current = await active_log_for(db, shipment_id)
    if current is None:
        raise EscalationNotFoundError("No active escalation found for this shipment")

    now = datetime.utcnow()
    superseded = await db.execute(
        select(EscalationLog).where(
            EscalationLog.shipment_id == shipment_id,
            EscalationLog.ack_received.is_(False),
        )
    )
    for log in superseded.scalars().all():
        log.ack_received = True
        log.ack_method = method
        log.acknowledged_at = now

    current.payload = {
        **(current.payload or {}),
        "acknowledged_by": str(actor_id),
        "acknowledged_at": now.isoformat(),
        "notes": notes,
    }
    db.add(
        Acknowledgment(
            shipment_id=shipment_id,
            delivery_issue_id=current.delivery_issue_id,
            user_id=actor_id,
            method=method,
            notes=notes,
        )
    )
    await db.commit()

    log = await load_log(db, current.log_id)
    logger.info("escalation.acknowledged", shipment_id=str(shipment_id), method=method)
    await publisher.emit_escalation("acknowledged", log)
    return log


async def maybe_trigger_for_issue(db: AsyncSession, issue: DeliveryIssue) -> EscalationLog | None:
    """
    Auto-escalate a freshly reported issue once its severity reaches the
    configured threshold. Issue intake must not fail because of the ladder,
    so conflicts are logged and swallowed here.
    """
    threshold = get_settings().escalation_severity_threshold
    if issue.severity_score < threshold:
        return None

    try:
        return await trigger_escalation(
            db,
            issue.shipment_id,
            issue_id=issue.issue_id,
            reason=f"High severity issue (score: {issue.severity_score})",
            payload={"issue_type": issue.issue_type, "description": issue.description},
        )
    except EscalationConflictError as exc:
        logger.warning(
            "escalation.auto_trigger_skipped",
            issue_id=str(issue.issue_id),
            shipment_id=str(issue.shipment_id),
            reason=str(exc),
        )
        return None


# ──────────────────────────────────────────────────────────────────────────
# Read models
# ──────────────────────────────────────────────────────────────────────────


def _summarize(shipment_id: UUID, logs: list[EscalationLog]) -> dict[str, Any]:
    issue = next((log.issue for log in logs if log.issue is not None), None)
    open_log = next((log for log in reversed(logs) if not log.ack_received), None)
    return {
        "shipment_id": shipment_id,
        "delivery_issue_id": logs[0].delivery_issue_id,
        "current_status": derive_status(logs, issue.status if issue else None),
        "current_level": current_level(logs),
        "current_contact": open_log.contact if open_log else None,
        "logs": logs,
    }


async def list_escalations(
    db: AsyncSession,
    shipment_id: UUID | None = None,
    issue_id: UUID | None = None,
    status: str | None = None,
    region: str | None = None,
) -> list[dict[str, Any]]:
    """
    Group attempt logs into one escalation per shipment.

    ``region`` restricts to shipments stopped on routes in that region.
    """
    scope = None
    if region is not None:
        scope = await shipment_ids_for_dimension(db, Dimension("region", region))
        if not scope:
            return []

    logs = await _logs_for_shipments(db, scope, shipment_id=shipment_id, issue_id=issue_id)

    grouped: OrderedDict[UUID, list[EscalationLog]] = OrderedDict()
    for log in logs:
        grouped.setdefault(log.shipment_id, []).append(log)

    escalations = [_summarize(sid, shipment_logs) for sid, shipment_logs in grouped.items()]
    if status is not None:
        escalations = [e for e in escalations if e["current_status"] == status]
    return escalations


async def get_escalation(db: AsyncSession, shipment_id: UUID) -> dict[str, Any]:
    logs = await _logs_for_shipments(db, None, shipment_id=shipment_id)
    if not logs:
        raise EscalationNotFoundError("No escalation logs found for this shipment")

    acks = await db.execute(
        select(Acknowledgment)
        .where(Acknowledgment.shipment_id == shipment_id)
        .order_by(Acknowledgment.created_at.desc())
    )
    summary = _summarize(shipment_id, logs)
    summary["acknowledgments"] = list(acks.scalars().all())
    summary["is_active"] = summary["current_status"] == "active"
    return summary


# ──────────────────────────────────────────────────────────────────────────
# Contacts
# ──────────────────────────────────────────────────────────────────────────


async def create_contact(db: AsyncSession, **fields: Any) -> EscalationContact:
    user = await db.execute(select(User.user_id).where(User.user_id == fields["user_id"]))
    if user.scalar_one_or_none() is None:
        raise EscalationNotFoundError("User not found")

    contact = EscalationContact(**fields)
    db.add(contact)
    await db.commit()

    result = await db.execute(
        select(EscalationContact)
        .options(selectinload(EscalationContact.user))
        .where(EscalationContact.contact_id == contact.contact_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def list_contacts(db: AsyncSession) -> list[EscalationContact]:
    """All contacts, active or not, in ladder order."""
    result = await db.execute(
        select(EscalationContact)
        .options(selectinload(EscalationContact.user))
        .order_by(EscalationContact.timeout_seconds.asc(), EscalationContact.contact_id)
    )
    return list(result.scalars().all())
