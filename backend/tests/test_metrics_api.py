"""
API Integration Tests — Metrics overview, definitions and snapshots.
"""

import uuid
from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient


@pytest.fixture
async def on_time_metric(client: AsyncClient, seeded_db):
    resp = await client.post(
        "/api/v1/metrics/definitions",
        json={
            "key": "on_time_delivery_rate",
            "name": "On-Time Delivery Rate",
            "aggregation_type": "ratio",
            "target_value": 0.95,
            "warning_threshold": 0.9,
            "critical_threshold": 0.85,
        },
    )
    assert resp.status_code == 201
    return resp.json()


def _window():
    end = datetime.utcnow() + timedelta(minutes=5)
    return {
        "time_range_start": (end - timedelta(days=1)).isoformat(),
        "time_range_end": end.isoformat(),
    }


@pytest.mark.asyncio
class TestOverview:
    async def test_overview_empty_is_zero(self, client: AsyncClient, seeded_db):
        resp = await client.get("/api/v1/metrics/overview")
        assert resp.status_code == 200
        data = resp.json()
        assert data["on_time_delivery_rate"] == 0
        assert data["open_issues_count"] == 0
        assert data["sla_risk_count_breakdown"] == {"north": 0, "south": 0}

    async def test_driver_cannot_view_overview(self, client: AsyncClient, seeded_db, login):
        login("driver")
        resp = await client.get("/api/v1/metrics/overview")
        assert resp.status_code == 403

    async def test_dispatcher_can_view_overview(self, client: AsyncClient, seeded_db, login):
        login("dispatcher")
        resp = await client.get("/api/v1/metrics/overview")
        assert resp.status_code == 200

    async def test_overview_accepts_offset_window(self, client: AsyncClient, seeded_db):
        resp = await client.get(
            "/api/v1/metrics/overview",
            params={"start_date": "2020-01-01T00:00:00Z", "end_date": "2030-01-01T00:00:00+01:00"},
        )
        assert resp.status_code == 200


@pytest.mark.asyncio
class TestDefinitions:
    async def test_duplicate_key(self, client: AsyncClient, on_time_metric):
        resp = await client.post(
            "/api/v1/metrics/definitions",
            json={"key": "on_time_delivery_rate", "name": "Again", "aggregation_type": "ratio", "target_value": 1},
        )
        assert resp.status_code == 400

    async def test_manager_cannot_create(self, client: AsyncClient, seeded_db, login):
        login("manager")
        resp = await client.post(
            "/api/v1/metrics/definitions",
            json={"key": "x", "name": "X", "aggregation_type": "count", "target_value": 1},
        )
        assert resp.status_code == 403

    async def test_update_definition(self, client: AsyncClient, on_time_metric):
        resp = await client.patch(
            f"/api/v1/metrics/definitions/{on_time_metric['metric_id']}",
            json={"target_value": 0.97, "is_visible_on_dashboard": False},
        )
        assert resp.status_code == 200
        assert resp.json()["target_value"] == 0.97
        assert resp.json()["is_visible_on_dashboard"] is False

    async def test_update_definition_null_only_clears_optional_fields(self, client: AsyncClient, on_time_metric):
        resp = await client.patch(
            f"/api/v1/metrics/definitions/{on_time_metric['metric_id']}",
            json={"name": None, "target_value": None, "warning_threshold": None},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "On-Time Delivery Rate"
        assert data["target_value"] == 0.95
        assert data["warning_threshold"] is None

    async def test_missing_definition(self, client: AsyncClient, seeded_db):
        resp = await client.get(f"/api/v1/metrics/definitions/{uuid.uuid4()}")
        assert resp.status_code == 404

    async def test_delete_removes_snapshots(self, client: AsyncClient, on_time_metric):
        metric_id = on_time_metric["metric_id"]
        await client.post(f"/api/v1/metrics/snapshots/generate/{metric_id}", json=_window())

        resp = await client.delete(f"/api/v1/metrics/definitions/{metric_id}")
        assert resp.status_code == 204
        assert (await client.get(f"/api/v1/metrics/definitions/{metric_id}")).status_code == 404
        assert (await client.get("/api/v1/metrics/snapshots")).json() == []


@pytest.mark.asyncio
class TestSnapshots:
    async def test_generate_snapshot(self, client: AsyncClient, on_time_metric, published):
        metric_id = on_time_metric["metric_id"]
        resp = await client.post(f"/api/v1/metrics/snapshots/generate/{metric_id}", json=_window())
        assert resp.status_code == 201
        assert resp.json()["value"] == 0
        assert published[-1]["event"] == "metrics.snapshot.created"

        detail = await client.get(f"/api/v1/metrics/definitions/{metric_id}")
        assert len(detail.json()["snapshots"]) == 1
        listed = await client.get(f"/api/v1/metrics/snapshots/{metric_id}")
        assert len(listed.json()) == 1

    async def test_generate_for_region(self, client: AsyncClient, on_time_metric):
        body = {**_window(), "dimension": "region", "dimension_value": "north"}
        resp = await client.post(f"/api/v1/metrics/snapshots/generate/{on_time_metric['metric_id']}", json=body)
        assert resp.status_code == 201
        assert resp.json()["breakdown"] is None

    async def test_inverted_window_rejected(self, client: AsyncClient, on_time_metric):
        window = _window()
        body = {"time_range_start": window["time_range_end"], "time_range_end": window["time_range_start"]}
        resp = await client.post(f"/api/v1/metrics/snapshots/generate/{on_time_metric['metric_id']}", json=body)
        assert resp.status_code == 400

    async def test_unknown_metric(self, client: AsyncClient, seeded_db):
        resp = await client.post(f"/api/v1/metrics/snapshots/generate/{uuid.uuid4()}", json=_window())
        assert resp.status_code == 404

    async def test_compute_with_dimension(self, client: AsyncClient, on_time_metric):
        resp = await client.post(
            f"/api/v1/metrics/compute/{on_time_metric['metric_id']}?dimension=route&dimension_value=not-a-uuid"
        )
        assert resp.status_code == 200
        assert resp.json() == {"value": 0.0, "breakdown": None}
