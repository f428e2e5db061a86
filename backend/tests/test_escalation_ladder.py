"""
Tests for the escalation ladder — trigger, advance, acknowledge and the
derived escalation status.
"""

import uuid
from types import SimpleNamespace

import pytest

from escalations import ladder


async def _issue(test_db, shipment, reporter, severity, status="open"):
    from db.models import DeliveryIssue

    issue = DeliveryIssue(
        shipment_id=shipment.shipment_id,
        reported_by_user_id=reporter.user_id,
        issue_type="damaged",
        description="Box arrived crushed",
        severity_score=severity,
        status=status,
    )
    test_db.add(issue)
    await test_db.commit()
    return issue


class TestDerivedState:
    def test_current_level_is_highest_attempt(self):
        logs = [SimpleNamespace(attempt_number=n, ack_received=True) for n in (1, 3, 2)]
        assert ladder.current_level(logs) == 3

    def test_current_level_without_logs(self):
        assert ladder.current_level([]) == 0

    def test_unacknowledged_log_means_active(self):
        logs = [SimpleNamespace(ack_received=True), SimpleNamespace(ack_received=False)]
        assert ladder.derive_status(logs, "resolved") == "active"

    def test_acknowledged_until_issue_resolves(self):
        logs = [SimpleNamespace(ack_received=True)]
        assert ladder.derive_status(logs, "investigating") == "acknowledged"
        assert ladder.derive_status(logs, "closed") == "resolved"
        assert ladder.derive_status(logs) == "acknowledged"


@pytest.mark.asyncio
class TestLadderLifecycle:
    async def test_severe_issue_triggers_first_contact(self, test_db, seeded_db, published, notified):
        shipment = seeded_db["shipments"]["north"]
        issue = await _issue(test_db, shipment, seeded_db["users"]["customer"], severity=0.85)

        log = await ladder.maybe_trigger_for_issue(test_db, issue)

        from sqlalchemy import select

        from db.models import EscalationLog

        logs = (await test_db.execute(select(EscalationLog))).scalars().all()
        assert len(logs) == 1
        assert log.attempt_number == 1
        assert log.event_type == "triggered"
        assert log.contact_id == seeded_db["contacts"]["first"].contact_id
        assert log.delivery_issue_id == issue.issue_id
        assert log.payload["triggered_by"] == "system"
        assert log.payload["issue_type"] == "damaged"
        assert notified == [
            {"contact_id": seeded_db["contacts"]["first"].contact_id, "attempt": 1, "tracking": "FL-NORTH-1"}
        ]
        assert published[-1]["event"] == "escalation.triggered"

    async def test_mild_issue_does_not_trigger(self, test_db, seeded_db):
        issue = await _issue(test_db, seeded_db["shipments"]["north"], seeded_db["users"]["customer"], severity=0.79)
        assert await ladder.maybe_trigger_for_issue(test_db, issue) is None

    async def test_second_severe_issue_skips_while_active(self, test_db, seeded_db):
        shipment = seeded_db["shipments"]["north"]
        reporter = seeded_db["users"]["customer"]
        first = await _issue(test_db, shipment, reporter, severity=0.9)
        second = await _issue(test_db, shipment, reporter, severity=0.95)

        assert await ladder.maybe_trigger_for_issue(test_db, first) is not None
        assert await ladder.maybe_trigger_for_issue(test_db, second) is None

    async def test_trigger_unknown_shipment(self, test_db, seeded_db):
        with pytest.raises(ladder.EscalationNotFoundError):
            await ladder.trigger_escalation(test_db, uuid.uuid4())

    async def test_trigger_without_active_contacts(self, test_db, seeded_db):
        for contact in seeded_db["contacts"].values():
            contact.is_active = False
        await test_db.commit()

        with pytest.raises(ladder.EscalationConflictError, match="No active escalation contacts"):
            await ladder.trigger_escalation(test_db, seeded_db["shipments"]["north"].shipment_id)

    async def test_advance_walks_ladder_then_stops(self, test_db, seeded_db):
        shipment_id = seeded_db["shipments"]["south"].shipment_id
        manager_id = seeded_db["users"]["manager"].user_id
        await ladder.trigger_escalation(test_db, shipment_id, actor_id=manager_id, reason="Customer called twice")

        advanced = await ladder.advance_escalation(test_db, shipment_id, manager_id)
        assert advanced.attempt_number == 2
        assert advanced.event_type == "advanced"
        assert advanced.contact_id == seeded_db["contacts"]["second"].contact_id
        assert advanced.payload["previous_contact_id"] == str(seeded_db["contacts"]["first"].contact_id)

        with pytest.raises(ladder.EscalationConflictError, match="No more contacts"):
            await ladder.advance_escalation(test_db, shipment_id, manager_id)

    async def test_advance_without_escalation(self, test_db, seeded_db):
        with pytest.raises(ladder.EscalationNotFoundError):
            await ladder.advance_escalation(
                test_db, seeded_db["shipments"]["south"].shipment_id, seeded_db["users"]["manager"].user_id
            )

    async def test_acknowledge_records_who_and_how(self, test_db, seeded_db, published):
        from sqlalchemy import select

        from db.models import Acknowledgment

        shipment_id = seeded_db["shipments"]["north"].shipment_id
        manager_id = seeded_db["users"]["manager"].user_id
        await ladder.trigger_escalation(test_db, shipment_id, actor_id=manager_id)

        log = await ladder.acknowledge_escalation(test_db, shipment_id, manager_id, "phone", notes="On it")

        assert log.ack_received is True
        assert log.ack_method == "phone"
        assert log.acknowledged_at is not None
        assert log.payload["acknowledged_by"] == str(manager_id)
        acks = (await test_db.execute(select(Acknowledgment))).scalars().all()
        assert [(a.method, a.notes) for a in acks] == [("phone", "On it")]
        assert published[-1]["event"] == "escalation.acknowledged"

        with pytest.raises(ladder.EscalationNotFoundError):
            await ladder.acknowledge_escalation(test_db, shipment_id, manager_id, "phone")

    async def test_acknowledged_shipment_can_escalate_again(self, test_db, seeded_db):
        shipment_id = seeded_db["shipments"]["north"].shipment_id
        manager_id = seeded_db["users"]["manager"].user_id
        await ladder.trigger_escalation(test_db, shipment_id)
        await ladder.acknowledge_escalation(test_db, shipment_id, manager_id, "email")

        again = await ladder.trigger_escalation(test_db, shipment_id)
        assert again.attempt_number == 1


@pytest.mark.asyncio
class TestReadModels:
    async def test_get_escalation_summarizes_logs(self, test_db, seeded_db):
        shipment_id = seeded_db["shipments"]["north"].shipment_id
        manager_id = seeded_db["users"]["manager"].user_id
        await ladder.trigger_escalation(test_db, shipment_id)
        await ladder.advance_escalation(test_db, shipment_id, manager_id)

        summary = await ladder.get_escalation(test_db, shipment_id)
        assert summary["current_status"] == "active"
        assert summary["is_active"] is True
        assert summary["current_level"] == 2
        assert summary["current_contact"].contact_id == seeded_db["contacts"]["second"].contact_id
        assert [log.attempt_number for log in summary["logs"]] == [1, 2]

    async def test_acknowledging_closes_advanced_escalation(self, test_db, seeded_db):
        shipment_id = seeded_db["shipments"]["north"].shipment_id
        manager_id = seeded_db["users"]["manager"].user_id
        await ladder.trigger_escalation(test_db, shipment_id)
        await ladder.advance_escalation(test_db, shipment_id, manager_id)
        await ladder.acknowledge_escalation(test_db, shipment_id, manager_id, "slack")

        summary = await ladder.get_escalation(test_db, shipment_id)
        assert summary["current_status"] == "acknowledged"
        assert summary["current_contact"] is None
        assert summary["current_level"] == 2
        assert all(log.ack_method == "slack" for log in summary["logs"])
        assert summary["logs"][-1].payload["acknowledged_by"] == str(manager_id)

    async def test_get_escalation_without_logs(self, test_db, seeded_db):
        with pytest.raises(ladder.EscalationNotFoundError):
            await ladder.get_escalation(test_db, seeded_db["shipments"]["north"].shipment_id)

    async def test_list_filters_by_region_and_status(self, test_db, seeded_db):
        north = seeded_db["shipments"]["north"].shipment_id
        south = seeded_db["shipments"]["south"].shipment_id
        await ladder.trigger_escalation(test_db, north)
        await ladder.trigger_escalation(test_db, south)
        await ladder.acknowledge_escalation(test_db, south, seeded_db["users"]["manager"].user_id, "email")

        in_north = await ladder.list_escalations(test_db, region="north")
        assert [e["shipment_id"] for e in in_north] == [north]

        acknowledged = await ladder.list_escalations(test_db, status="acknowledged")
        assert [e["shipment_id"] for e in acknowledged] == [south]

    async def test_resolved_issue_resolves_escalation(self, test_db, seeded_db):
        shipment = seeded_db["shipments"]["north"]
        issue = await _issue(test_db, shipment, seeded_db["users"]["customer"], severity=0.9)
        await ladder.maybe_trigger_for_issue(test_db, issue)
        await ladder.acknowledge_escalation(test_db, shipment.shipment_id, seeded_db["users"]["manager"].user_id, "sms")
        issue.status = "resolved"
        await test_db.commit()

        (escalation,) = await ladder.list_escalations(test_db, issue_id=issue.issue_id)
        assert escalation["current_status"] == "resolved"

    async def test_contacts_listed_in_ladder_order(self, test_db, seeded_db):
        contacts = await ladder.list_contacts(test_db)
        assert [c.timeout_seconds for c in contacts] == [60, 300, 900]
        active = await ladder.active_contacts(test_db)
        assert [c.position for c in active] == ["Shift Manager", "Operations Lead"]

    async def test_create_contact_for_unknown_user(self, test_db, seeded_db):
        with pytest.raises(ladder.EscalationNotFoundError):
            await ladder.create_contact(
                test_db, user_id=uuid.uuid4(), position="Ghost", contact_type="email", timeout_seconds=30
            )
