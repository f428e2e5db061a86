"""
Tests for record-level capability checks and WebSocket room access.
"""

import uuid

import pytest

from core.permissions import (
    Actor,
    can_update_stop,
    can_view_driver_routes,
    can_view_route,
    can_view_shipment,
    dispatcher_region_for,
    driver_id_for,
)
from core.security import create_access_token
from events.websocket import authenticate_ws, can_join_room


def _actor(seeded_db, key):
    user = seeded_db["users"][key]
    return Actor(user_id=user.user_id, role=user.role, email=user.email)


class TestActor:
    def test_from_claims(self):
        actor = Actor.from_claims({"sub": "00000000-0000-0000-0000-000000000009", "role": "driver"})
        assert actor.user_id == uuid.UUID("00000000-0000-0000-0000-000000000009")
        assert actor.email is None

    def test_from_claims_requires_role(self):
        with pytest.raises(KeyError):
            Actor.from_claims({"sub": str(uuid.uuid4())})


@pytest.mark.asyncio
class TestProfiles:
    async def test_driver_id_only_for_drivers(self, test_db, seeded_db):
        assert await driver_id_for(test_db, _actor(seeded_db, "driver")) == seeded_db["drivers"]["driver"].driver_id
        assert await driver_id_for(test_db, _actor(seeded_db, "manager")) is None

    async def test_dispatcher_region(self, test_db, seeded_db):
        assert await dispatcher_region_for(test_db, _actor(seeded_db, "dispatcher")) == "north"
        assert await dispatcher_region_for(test_db, _actor(seeded_db, "driver")) is None


@pytest.mark.asyncio
class TestRouteCapabilities:
    async def test_drivers_limited_to_assigned_routes(self, test_db, seeded_db):
        driver = _actor(seeded_db, "driver")
        north, south = seeded_db["routes"]["north"], seeded_db["routes"]["south"]
        assert await can_view_route(test_db, driver, north)
        assert not await can_view_route(test_db, driver, south)
        assert await can_update_stop(test_db, driver, north)
        assert not await can_update_stop(test_db, driver, south)

    async def test_staff_see_every_route(self, test_db, seeded_db):
        for key in ("dispatcher", "manager", "admin"):
            assert await can_view_route(test_db, _actor(seeded_db, key), seeded_db["routes"]["south"])

    async def test_customers_see_no_route(self, test_db, seeded_db):
        assert not await can_view_route(test_db, _actor(seeded_db, "customer"), seeded_db["routes"]["north"])
        assert not await can_update_stop(test_db, _actor(seeded_db, "customer"), seeded_db["routes"]["north"])

    async def test_driver_route_listing(self, test_db, seeded_db):
        driver = _actor(seeded_db, "driver")
        assert await can_view_driver_routes(test_db, driver, seeded_db["drivers"]["driver"].driver_id)
        assert not await can_view_driver_routes(test_db, driver, seeded_db["drivers"]["driver2"].driver_id)
        assert not await can_view_driver_routes(
            test_db, _actor(seeded_db, "dispatcher"), seeded_db["drivers"]["driver"].driver_id
        )


@pytest.mark.asyncio
class TestShipmentCapabilities:
    async def test_matrix(self, test_db, seeded_db):
        shipments = seeded_db["shipments"]
        expected = {
            "customer": {"north": True, "south": False, "unrouted": True},
            "customer2": {"north": False, "south": True, "unrouted": False},
            "dispatcher": {"north": True, "south": False, "unrouted": True},
            "driver": {"north": True, "south": False, "unrouted": False},
            "manager": {"north": True, "south": True, "unrouted": True},
        }
        for actor_key, visibility in expected.items():
            actor = _actor(seeded_db, actor_key)
            for shipment_key, allowed in visibility.items():
                assert await can_view_shipment(test_db, actor, shipments[shipment_key]) is allowed, (
                    actor_key,
                    shipment_key,
                )


@pytest.mark.asyncio
class TestRoomAccess:
    async def test_customer_follows_own_shipment_only(self, test_db, seeded_db):
        customer = _actor(seeded_db, "customer")
        assert await can_join_room(test_db, customer, "shipment:FL-NORTH-1")
        assert not await can_join_room(test_db, customer, "shipment:FL-SOUTH-1")
        assert not await can_join_room(test_db, customer, "routes:R-N-1")
        assert not await can_join_room(test_db, customer, "issues")

    async def test_driver_rooms(self, test_db, seeded_db):
        driver = _actor(seeded_db, "driver")
        assert await can_join_room(test_db, driver, "routes:R-N-1")
        assert not await can_join_room(test_db, driver, "routes:R-S-1")
        assert not await can_join_room(test_db, driver, "metrics:overview")
        assert await can_join_room(test_db, driver, "escalations")

    async def test_unknown_room_denied(self, test_db, seeded_db):
        assert not await can_join_room(test_db, _actor(seeded_db, "admin"), "payroll")
        assert await can_join_room(test_db, _actor(seeded_db, "dispatcher"), "metrics:overview")

    async def test_delivery_change_room_is_staff_only(self, test_db, seeded_db):
        assert await can_join_room(test_db, _actor(seeded_db, "manager"), "delivery-changes")
        assert not await can_join_room(test_db, _actor(seeded_db, "driver"), "delivery-changes")
        assert not await can_join_room(test_db, _actor(seeded_db, "customer"), "delivery-changes")


@pytest.mark.asyncio
class TestSocketAuthentication:
    async def test_valid_token_resolves_actor(self):
        token = create_access_token({"sub": "00000000-0000-0000-0000-000000000009", "role": "driver"})
        actor = await authenticate_ws(token)
        assert actor is not None
        assert actor.role == "driver"

    async def test_signed_token_with_non_uuid_subject_rejected(self):
        token = create_access_token({"sub": "auth0|legacy-user", "role": "admin"})
        assert await authenticate_ws(token) is None

    async def test_garbage_token_rejected(self):
        assert await authenticate_ws("not-a-jwt") is None
