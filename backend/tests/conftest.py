"""
Test Configuration — Fixtures for async DB, test client, and seeded fleet data.

Each test gets its own in-memory SQLite database (StaticPool keeps the single
connection alive across sessions), so app code is free to commit.
"""

import uuid
from datetime import date, datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from api.deps import get_current_user, get_db
from api.main import app
from db.session import Base

TEST_DATABASE_URL = "sqlite+aiosqlite://"

ADMIN_ID = "00000000-0000-0000-0000-000000000001"


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session = AsyncSession(bind=test_engine, expire_on_commit=False)
    yield session
    await session.close()


@pytest.fixture
def mock_user():
    """Claims of the authenticated caller. Mutated in place by ``login``."""
    return {
        "sub": ADMIN_ID,
        "role": "admin",
        "email": "admin@fleetline.dev",
    }


@pytest.fixture
def login(mock_user, seeded_db):
    """Switch the caller to one of the seeded users by key."""

    def _login(key: str):
        user = seeded_db["users"][key]
        mock_user.clear()
        mock_user.update({"sub": str(user.user_id), "role": user.role, "email": user.email})
        return user

    return _login


@pytest.fixture
async def client(test_db, mock_user):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return mock_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def published(monkeypatch):
    """Capture domain events instead of publishing them to Redis."""
    from events import publisher

    events = []

    async def fake_publish(room, event, data):
        events.append({"room": room, "event": event, "data": data})
        return 1

    monkeypatch.setattr(publisher, "publish_event", fake_publish)
    return events


@pytest.fixture(autouse=True)
def notified(monkeypatch):
    """Record escalation notifications instead of sending email."""
    from escalations import notify

    calls = []

    async def fake_notify(contact, log, tracking_number):
        calls.append({"contact_id": contact.contact_id, "attempt": log.attempt_number, "tracking": tracking_number})
        return True

    monkeypatch.setattr(notify, "notify_contact", fake_notify)
    return calls


@pytest.fixture
async def seeded_db(test_db):
    """
    Two regions, one route each, a driver per route and three shipments:

      north  R-N-1  driver "driver"   -> shipment "north"
      south  R-S-1  driver "driver2"  -> shipment "south"
      (unrouted)                       -> shipment "unrouted"
    """
    from db.models import (
        DispatcherProfile,
        Driver,
        EscalationContact,
        Route,
        RouteStop,
        Shipment,
        User,
        Vehicle,
    )

    users = {
        "admin": User(user_id=uuid.UUID(ADMIN_ID), name="Ada Admin", email="admin@fleetline.dev", role="admin"),
        "manager": User(name="Mina Manager", email="manager@fleetline.dev", role="manager"),
        "lead": User(name="Leo Lead", email="lead@fleetline.dev", role="manager"),
        "dispatcher": User(name="Dana North", email="dana@fleetline.dev", role="dispatcher"),
        "dispatcher_south": User(name="Sam South", email="sam@fleetline.dev", role="dispatcher"),
        "driver": User(name="Dev Driver", email="driver@fleetline.dev", role="driver"),
        "driver2": User(name="Dora Driver", email="driver2@fleetline.dev", role="driver"),
        "customer": User(name="Cara Customer", email="cara@example.com", role="customer"),
        "customer2": User(name="Carl Customer", email="carl@example.com", role="customer"),
    }
    test_db.add_all(users.values())
    await test_db.flush()

    vehicle = Vehicle(
        vehicle_code="VAN-001",
        capacity_volume=12.5,
        capacity_weight=1200,
        home_base="North Depot",
        vehicle_type="van",
    )
    test_db.add(vehicle)
    await test_db.flush()

    driver = Driver(driver_code="DRV-001", user_id=users["driver"].user_id, home_base="North Depot")
    driver2 = Driver(driver_code="DRV-002", user_id=users["driver2"].user_id, home_base="South Depot")
    test_db.add_all([driver, driver2])
    test_db.add_all(
        [
            DispatcherProfile(
                dispatcher_code="DSP-N",
                user_id=users["dispatcher"].user_id,
                assigned_region="north",
            ),
            DispatcherProfile(
                dispatcher_code="DSP-S",
                user_id=users["dispatcher_south"].user_id,
                assigned_region="south",
            ),
        ]
    )
    await test_db.flush()

    promised = datetime.utcnow() + timedelta(days=3)
    shipments = {
        "north": Shipment(
            tracking_number="FL-NORTH-1",
            customer_id=users["customer"].user_id,
            from_address="1 Warehouse Way",
            to_address="10 North St",
            current_status="in_transit",
            promised_delivery_date=promised,
            sla_risk_score=0.1,
        ),
        "south": Shipment(
            tracking_number="FL-SOUTH-1",
            customer_id=users["customer2"].user_id,
            from_address="1 Warehouse Way",
            to_address="20 South Ave",
            current_status="in_transit",
            promised_delivery_date=promised,
            sla_risk_score=0.1,
        ),
        "unrouted": Shipment(
            tracking_number="FL-UNROUTED-1",
            customer_id=users["customer"].user_id,
            from_address="1 Warehouse Way",
            to_address="30 Nowhere Rd",
            current_status="pending",
            sla_risk_score=0.1,
        ),
    }
    test_db.add_all(shipments.values())
    await test_db.flush()

    routes = {
        "north": Route(
            route_code="R-N-1",
            date=date.today(),
            driver_id=driver.driver_id,
            vehicle_id=vehicle.vehicle_id,
            region="north",
        ),
        "south": Route(route_code="R-S-1", date=date.today(), driver_id=driver2.driver_id, region="south"),
    }
    test_db.add_all(routes.values())
    await test_db.flush()

    stops = {
        "north": RouteStop(
            route_id=routes["north"].route_id,
            shipment_id=shipments["north"].shipment_id,
            sequence_number=1,
        ),
        "south": RouteStop(
            route_id=routes["south"].route_id,
            shipment_id=shipments["south"].shipment_id,
            sequence_number=1,
        ),
    }
    test_db.add_all(stops.values())

    # Deliberately inserted out of ladder order.
    contacts = {
        "second": EscalationContact(
            user_id=users["lead"].user_id,
            position="Operations Lead",
            contact_type="sms",
            timeout_seconds=900,
        ),
        "first": EscalationContact(
            user_id=users["manager"].user_id,
            position="Shift Manager",
            contact_type="email",
            timeout_seconds=300,
        ),
        "inactive": EscalationContact(
            user_id=users["admin"].user_id,
            position="Retired Pager",
            contact_type="phone",
            timeout_seconds=60,
            is_active=False,
        ),
    }
    test_db.add_all(contacts.values())
    await test_db.commit()

    return {
        "users": users,
        "vehicle": vehicle,
        "drivers": {"driver": driver, "driver2": driver2},
        "shipments": shipments,
        "routes": routes,
        "stops": stops,
        "contacts": contacts,
    }
