"""
Metric snapshot jobs.

Hourly: every dashboard-visible definition, global dimension, last hour.
Daily:  every definition, global plus one snapshot per route region, last
        24 hours.

A definition that fails to compute is logged and skipped; the rest of the
batch still runs.
"""

import asyncio
from datetime import datetime, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from workers.celery_app import celery_app

logger = structlog.get_logger()


async def _snapshot_batch(
    db: AsyncSession,
    window: timedelta,
    visible_only: bool,
    per_region: bool,
    now: datetime | None = None,
) -> dict:
    from db.models import MetricDefinition
    from db.queries import Dimension, distinct_regions
    from metrics.engine import generate_snapshot

    query = select(MetricDefinition).order_by(MetricDefinition.key)
    if visible_only:
        query = query.where(MetricDefinition.is_visible_on_dashboard.is_(True))
    definitions = list((await db.execute(query)).scalars().all())

    dimensions = [Dimension()]
    if per_region:
        dimensions += [Dimension("region", region) for region in await distinct_regions(db)]

    end = now or datetime.utcnow()
    start = end - window
    generated = 0
    failed = 0
    for definition in definitions:
        for dimension in dimensions:
            try:
                await generate_snapshot(db, definition.metric_id, start, end, dimension)
                generated += 1
            except Exception as exc:  # noqa: BLE001
                failed += 1
                await db.rollback()
                logger.error(
                    "metrics.snapshot_failed",
                    metric_key=definition.key,
                    dimension=dimension.type,
                    dimension_value=dimension.value,
                    error=str(exc),
                )

    return {
        "status": "success",
        "definitions": len(definitions),
        "dimensions": len(dimensions),
        "generated": generated,
        "failed": failed,
        "time_range_start": start.isoformat(),
        "time_range_end": end.isoformat(),
    }


def _run_batch(run_id: str, job: str, window: timedelta, visible_only: bool, per_region: bool) -> dict:
    from core.config import get_settings
    from db.session import create_worker_session_factory

    async def _run():
        engine, session_factory = create_worker_session_factory(get_settings().database_url)
        try:
            async with session_factory() as db:
                summary = await _snapshot_batch(db, window, visible_only, per_region)
        finally:
            await engine.dispose()
        summary["run_id"] = run_id
        logger.info(f"metrics.{job}_complete", **summary)
        return summary

    return asyncio.run(_run())


@celery_app.task(
    name="workers.metric_snapshots.generate_hourly_snapshots",
    bind=True,
    max_retries=2,
    default_retry_delay=120,
    acks_late=True,
)
def generate_hourly_snapshots(self):
    run_id = self.request.id or "manual"
    try:
        return _run_batch(run_id, "hourly_snapshots", timedelta(hours=1), visible_only=True, per_region=False)
    except Exception as exc:  # noqa: BLE001
        logger.error("metrics.hourly_snapshots_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.metric_snapshots.generate_daily_snapshots",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def generate_daily_snapshots(self):
    run_id = self.request.id or "manual"
    try:
        return _run_batch(run_id, "daily_snapshots", timedelta(days=1), visible_only=False, per_region=True)
    except Exception as exc:  # noqa: BLE001
        logger.error("metrics.daily_snapshots_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
