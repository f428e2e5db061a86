"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "fleetline",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.metric_snapshots.*": {"queue": "metrics"},
        "workers.sla_scanner.*": {"queue": "sla"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # ── Metrics ────────────────────────────────────────────────
        "metric-snapshots-hourly": {
            "task": "workers.metric_snapshots.generate_hourly_snapshots",
            "schedule": crontab(minute=0),
            "options": {"queue": "metrics"},
        },
        "metric-snapshots-daily": {
            "task": "workers.metric_snapshots.generate_daily_snapshots",
            "schedule": crontab(hour=0, minute=0),
            "options": {"queue": "metrics"},
        },
        # ── SLA Risk ───────────────────────────────────────────────
        "sla-risk-scan-15m": {
            "task": "workers.sla_scanner.scan_sla_risks",
            "schedule": crontab(minute="*/15"),
            "options": {"queue": "sla"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
