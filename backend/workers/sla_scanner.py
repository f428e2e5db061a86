"""
SLA risk rescan.

Every 15 minutes: rescore all shipments that are not in a terminal status,
write back scores that moved by more than ``sla_rescan_min_delta``, and open
an escalation for any rewritten shipment now above ``sla_risk_threshold``
that has no active escalation yet.
"""

import asyncio
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from workers.celery_app import celery_app

logger = structlog.get_logger()


async def _scan(
    db: AsyncSession,
    min_delta: float,
    threshold: float,
    now: datetime | None = None,
) -> dict:
    from db.models import TERMINAL_SHIPMENT_STATUSES, Shipment
    from escalations.ladder import EscalationConflictError, active_log_for, trigger_escalation
    from shipments.sla_risk import score_shipment

    result = await db.execute(
        select(Shipment).where(Shipment.current_status.not_in(TERMINAL_SHIPMENT_STATUSES))
    )
    shipments = list(result.scalars().all())
    now = now or datetime.utcnow()

    rescored = []
    for shipment in shipments:
        score = score_shipment(shipment, now=now)
        if abs(score - shipment.sla_risk_score) > min_delta:
            shipment.sla_risk_score = score
            rescored.append(shipment)
    await db.commit()

    escalated = 0
    for shipment in rescored:
        if shipment.sla_risk_score <= threshold:
            continue
        if await active_log_for(db, shipment.shipment_id) is not None:
            continue
        try:
            await trigger_escalation(
                db,
                shipment.shipment_id,
                reason=f"SLA risk score {shipment.sla_risk_score:.2f} exceeds threshold {threshold}",
            )
            escalated += 1
            logger.warning(
                "sla.escalation_triggered",
                tracking_number=shipment.tracking_number,
                sla_risk_score=shipment.sla_risk_score,
            )
        except EscalationConflictError as exc:
            logger.error("sla.escalation_failed", shipment_id=str(shipment.shipment_id), error=str(exc))

    return {
        "status": "success",
        "scanned": len(shipments),
        "updated": len(rescored),
        "escalated": escalated,
    }


@celery_app.task(
    name="workers.sla_scanner.scan_sla_risks",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def scan_sla_risks(self):
    """Rescore active shipments and escalate the ones newly at risk."""
    from core.config import get_settings
    from db.session import create_worker_session_factory

    run_id = self.request.id or "manual"
    settings = get_settings()

    async def _run():
        engine, session_factory = create_worker_session_factory(settings.database_url)
        try:
            async with session_factory() as db:
                summary = await _scan(db, settings.sla_rescan_min_delta, settings.sla_risk_threshold)
        finally:
            await engine.dispose()
        summary["run_id"] = run_id
        logger.info("sla.scan_complete", **summary)
        return summary

    try:
        return asyncio.run(_run())
    except Exception as exc:  # noqa: BLE001
        logger.error("sla.scan_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
