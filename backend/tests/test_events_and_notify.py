"""
Tests for event publishing and escalation notifications.

The autouse fixtures in conftest replace publish_event and notify_contact;
the real implementations are bound here at import time.
"""

import json
import uuid
from types import SimpleNamespace

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from escalations import notify
from escalations.notify import notify_contact as real_notify_contact
from events import publisher
from events.publisher import publish_event as real_publish_event


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.published = []
        self.closed = False

    async def publish(self, channel, message):
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.published.append((channel, json.loads(message)))
        return 2

    async def aclose(self):
        self.closed = True


def _settings(**overrides):
    values = {
        "redis_url": "redis://test",
        "sendgrid_api_key": "",
        "escalation_from_email": "escalations@fleetline.dev",
        "dashboard_url": "http://dash.test",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _contact(contact_type="email", email="pager@fleetline.dev"):
    return SimpleNamespace(
        contact_id=uuid.uuid4(),
        contact_type=contact_type,
        position="Shift Manager",
        user=SimpleNamespace(email=email) if email else None,
    )


LOG = SimpleNamespace(attempt_number=2, payload={"reason": "Parcel crushed"})


@pytest.mark.asyncio
class TestPublishEvent:
    async def test_publishes_to_prefixed_channel(self, monkeypatch):
        fake = FakeRedis()
        monkeypatch.setattr(publisher, "get_settings", lambda: _settings())
        monkeypatch.setattr(publisher.aioredis, "from_url", lambda url: fake)

        reached = await real_publish_event("escalations", "escalation.triggered", {"log_id": uuid.uuid4()})

        assert reached == 2
        channel, message = fake.published[0]
        assert channel == "fleetline:escalations"
        assert message["event"] == "escalation.triggered"
        assert "timestamp" in message
        assert fake.closed

    async def test_redis_failure_is_swallowed(self, monkeypatch):
        fake = FakeRedis(fail=True)
        monkeypatch.setattr(publisher, "get_settings", lambda: _settings())
        monkeypatch.setattr(publisher.aioredis, "from_url", lambda url: fake)

        assert await real_publish_event("issues", "issue.created", {}) == 0
        assert fake.closed

    async def test_shipment_room_keyed_by_tracking_number(self, published):
        shipment = SimpleNamespace(
            shipment_id=uuid.uuid4(),
            tracking_number="FL-1",
            current_status="in_transit",
            sla_risk_score=0.2,
        )
        await publisher.emit_shipment("status.updated", shipment, previous_status="picked_up")

        assert published == [
            {
                "room": "shipment:FL-1",
                "event": "shipment.status.updated",
                "data": {
                    "shipment_id": shipment.shipment_id,
                    "tracking_number": "FL-1",
                    "current_status": "in_transit",
                    "sla_risk_score": 0.2,
                    "previous_status": "picked_up",
                },
            }
        ]


class FakeSendGrid:
    sent = []

    def __init__(self, api_key):
        self.api_key = api_key

    def send(self, message):
        FakeSendGrid.sent.append(message)
        return SimpleNamespace(status_code=202)


@pytest.mark.asyncio
class TestNotifyContact:
    async def test_non_email_channels_not_sent(self, monkeypatch):
        monkeypatch.setattr(notify, "get_settings", lambda: _settings(sendgrid_api_key="SG.key"))
        assert await real_notify_contact(_contact("sms"), LOG, "FL-1") is False

    async def test_skipped_without_api_key(self, monkeypatch):
        monkeypatch.setattr(notify, "get_settings", lambda: _settings())
        assert await real_notify_contact(_contact(), LOG, "FL-1") is False

    async def test_skipped_without_address(self, monkeypatch):
        monkeypatch.setattr(notify, "get_settings", lambda: _settings(sendgrid_api_key="SG.key"))
        assert await real_notify_contact(_contact(email=None), LOG, "FL-1") is False

    async def test_sends_email(self, monkeypatch):
        FakeSendGrid.sent = []
        monkeypatch.setattr(notify, "get_settings", lambda: _settings(sendgrid_api_key="SG.key"))
        monkeypatch.setattr(notify.sendgrid, "SendGridAPIClient", FakeSendGrid)

        assert await real_notify_contact(_contact(), LOG, "FL-1") is True
        assert len(FakeSendGrid.sent) == 1

    async def test_provider_error_returns_false(self, monkeypatch):
        class Broken(FakeSendGrid):
            def send(self, message):
                raise RuntimeError("503 from provider")

        monkeypatch.setattr(notify, "get_settings", lambda: _settings(sendgrid_api_key="SG.key"))
        monkeypatch.setattr(notify.sendgrid, "SendGridAPIClient", Broken)

        assert await real_notify_contact(_contact(), LOG, "FL-1") is False
