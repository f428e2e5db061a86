"""
Event publishing — post-commit fan-out of domain events.

Events go to Redis pub/sub; the WebSocket relay in events.websocket forwards
them to subscribed dashboards. Delivery is best-effort: a publish that fails
after the write has committed is logged, never retried, and never fails the
request.

Rooms:
  - metrics:overview     metrics.snapshot.created
  - issues               issue.created, issue.updated
  - escalations          escalation.triggered / .advanced / .acknowledged
  - shipment:{tracking}  shipment.scan.created, shipment.status.updated
  - routes:{route_code}  route.stop.updated
  - delivery-changes     delivery_change_request.created / .updated
                         (also sent to the shipment room)
"""

import json
from datetime import datetime
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from core.config import get_settings

logger = structlog.get_logger()

CHANNEL_PREFIX = "fleetline:"


def channel_for(room: str) -> str:
    return f"{CHANNEL_PREFIX}{room}"


def build_message(event: str, data: dict[str, Any]) -> str:
    return json.dumps(
        {
            "event": event,
            "timestamp": datetime.utcnow().isoformat(),
            "data": data,
        },
        default=str,
    )


async def publish_event(room: str, event: str, data: dict[str, Any]) -> int:
    """
    Publish one event to a room. Returns the number of subscribers reached
    (0 when Redis is unavailable).
    """
    settings = get_settings()
    redis = aioredis.from_url(settings.redis_url)
    try:
        subscribers = await redis.publish(channel_for(room), build_message(event, data))
        logger.debug("events.published", room=room, event_name=event, subscribers=subscribers)
        return subscribers
    except RedisError as exc:
        logger.warning("events.publish_failed", room=room, event_name=event, error=str(exc))
        return 0
    finally:
        await redis.aclose()


# ─── Typed emitters ─────────────────────────────────────────────────────────


async def emit_snapshot_created(snapshot) -> int:
    return await publish_event(
        "metrics:overview",
        "metrics.snapshot.created",
        {
            "snapshot_id": snapshot.snapshot_id,
            "metric_id": snapshot.metric_id,
            "value": snapshot.value,
            "breakdown": snapshot.breakdown,
            "time_range_start": snapshot.time_range_start,
            "time_range_end": snapshot.time_range_end,
            "computed_at": snapshot.computed_at,
        },
    )


async def emit_escalation(event: str, log) -> int:
    """event is one of triggered / advanced / acknowledged."""
    return await publish_event(
        "escalations",
        f"escalation.{event}",
        {
            "log_id": log.log_id,
            "shipment_id": log.shipment_id,
            "delivery_issue_id": log.delivery_issue_id,
            "contact_id": log.contact_id,
            "attempt_number": log.attempt_number,
            "event_type": log.event_type,
            "ack_received": log.ack_received,
            "ack_method": log.ack_method,
        },
    )


async def emit_issue(event: str, issue) -> int:
    return await publish_event(
        "issues",
        f"issue.{event}",
        {
            "issue_id": issue.issue_id,
            "shipment_id": issue.shipment_id,
            "issue_type": issue.issue_type,
            "severity_score": issue.severity_score,
            "status": issue.status,
        },
    )


async def emit_shipment(event: str, shipment, **extra: Any) -> int:
    return await publish_event(
        f"shipment:{shipment.tracking_number}",
        f"shipment.{event}",
        {
            "shipment_id": shipment.shipment_id,
            "tracking_number": shipment.tracking_number,
            "current_status": shipment.current_status,
            "sla_risk_score": shipment.sla_risk_score,
            **extra,
        },
    )


async def emit_stop_updated(route, stop) -> int:
    return await publish_event(
        f"routes:{route.route_code}",
        "route.stop.updated",
        {
            "route_id": route.route_id,
            "stop_id": stop.stop_id,
            "shipment_id": stop.shipment_id,
            "sequence_number": stop.sequence_number,
            "status": stop.status,
            "actual_arrival": stop.actual_arrival,
        },
    )


async def emit_delivery_change(event: str, change, tracking_number: str) -> int:
    data = {
        "request_id": change.request_id,
        "shipment_id": change.shipment_id,
        "tracking_number": tracking_number,
        "change_type": change.change_type,
        "status": change.status,
        "requested_by_user_id": change.requested_by_user_id,
        "reviewed_by_user_id": change.reviewed_by_user_id,
    }
    name = f"delivery_change_request.{event}"
    reached = await publish_event(f"shipment:{tracking_number}", name, data)
    reached += await publish_event("delivery-changes", name, data)
    return reached
