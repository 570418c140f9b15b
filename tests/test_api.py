"""
Tests for the HTTP API

Tests cover:
- Policy CRUD and validation errors
- Lifecycle fact endpoints
- Snapshot, event, dashboard and scheduler endpoints
- Health, metrics and request ID propagation
"""
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from sla_engine.jobs import sla_batch
from sla_engine.jobs.sla_batch import SlaJobScheduler
from sla_engine.services.escalation import EscalationDispatcher


POLICY_PAYLOAD = {
    "workspace_id": "ws-1",
    "name": "Standard support",
    "applies_to": "ticket",
    "response_time_minutes": 60,
    "resolution_time_minutes": 480,
    "business_hours_only": False,
    "escalation_rules": [
        {"level": 1, "threshold_percent": 50, "action": {"type": "log"}},
        {"level": 2},
    ],
}


def recent(minutes_ago: int = 0) -> str:
    return (datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)).isoformat()


async def create_policy(client: AsyncClient, **overrides) -> dict:
    response = await client.post("/api/v1/sla/policies", json={**POLICY_PAYLOAD, **overrides})
    assert response.status_code == 201
    return response.json()


async def track(client: AsyncClient, target_id: str = "TKT-1", created_at: str = None) -> dict:
    response = await client.post("/api/v1/sla/targets", json={
        "workspace_id": "ws-1",
        "target_type": "ticket",
        "target_id": target_id,
        "created_at": created_at or recent(),
        "attributes": {"priority": "high"},
    })
    assert response.status_code == 200
    return response.json()


class TestPolicyEndpoints:
    """Tests for SLA policy management."""

    @pytest.mark.asyncio
    async def test_create_policy(self, client: AsyncClient):
        policy = await create_policy(client)

        assert policy["name"] == "Standard support"
        assert policy["warning_threshold"] == 80
        assert policy["business_hours"]["timezone"] == "UTC"
        assert [rule["level"] for rule in policy["escalation_rules"]] == [1, 2]

    @pytest.mark.asyncio
    async def test_create_policy_bad_timezone(self, client: AsyncClient):
        response = await client.post("/api/v1/sla/policies", json={
            **POLICY_PAYLOAD,
            "business_hours": {"start": "09:00", "end": "17:00", "timezone": "Atlantis/Central"},
        })

        assert response.status_code == 422
        assert "Atlantis/Central" in response.json()["detail"]
        assert response.json()["errors"]["field"] == "timezone"

    @pytest.mark.asyncio
    async def test_create_policy_missing_fields(self, client: AsyncClient):
        response = await client.post("/api/v1/sla/policies", json={"workspace_id": "ws-1"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_list_policies(self, client: AsyncClient):
        await create_policy(client, name="Low", priority=1)
        await create_policy(client, name="High", priority=5)

        response = await client.get("/api/v1/sla/policies", params={"workspace_id": "ws-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [p["name"] for p in data["policies"]] == ["High", "Low"]

    @pytest.mark.asyncio
    async def test_get_unknown_policy(self, client: AsyncClient):
        response = await client.get("/api/v1/sla/policies/missing")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_update_policy(self, client: AsyncClient):
        policy = await create_policy(client)

        response = await client.patch(
            f"/api/v1/sla/policies/{policy['id']}",
            json={"resolution_time_minutes": 600, "priority": 3},
        )

        assert response.status_code == 200
        assert response.json()["resolution_time_minutes"] == 600
        assert response.json()["priority"] == 3
        assert response.json()["response_time_minutes"] == 60

    @pytest.mark.asyncio
    async def test_update_policy_invalid_threshold(self, client: AsyncClient):
        policy = await create_policy(client)

        response = await client.patch(f"/api/v1/sla/policies/{policy['id']}", json={"warning_threshold": 0})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_update_policy_null_required_field(self, client: AsyncClient):
        """An explicit null for a required column is a 422, not a storage error."""
        policy = await create_policy(client)

        response = await client.patch(f"/api/v1/sla/policies/{policy['id']}", json={"is_active": None})

        assert response.status_code == 422
        assert response.json()["errors"]["field"] == "is_active"
        detail = await client.get(f"/api/v1/sla/policies/{policy['id']}")
        assert detail.json()["is_active"] is True

    @pytest.mark.asyncio
    async def test_deactivate_policy(self, client: AsyncClient):
        policy = await create_policy(client)

        response = await client.delete(f"/api/v1/sla/policies/{policy['id']}")
        assert response.status_code == 204

        detail = await client.get(f"/api/v1/sla/policies/{policy['id']}")
        assert detail.json()["is_active"] is False
        assert (await track(client))["applied"] is False


class TestLifecycleEndpoints:
    """Tests for lifecycle facts."""

    @pytest.mark.asyncio
    async def test_target_created(self, client: AsyncClient):
        await create_policy(client)

        result = await track(client)

        assert result["applied"] is True
        assert result["events"] == ["created"]
        assert len(result["instance_ids"]) == 1

    @pytest.mark.asyncio
    async def test_target_created_twice(self, client: AsyncClient):
        await create_policy(client)
        first = await track(client)

        second = await track(client)

        assert second["applied"] is False
        assert second["instance_ids"] == first["instance_ids"]

    @pytest.mark.asyncio
    async def test_target_without_policy(self, client: AsyncClient):
        result = await track(client)
        assert result == {"applied": False, "instance_ids": [], "events": []}

    @pytest.mark.asyncio
    async def test_first_response_applied_once(self, client: AsyncClient):
        await create_policy(client)
        await track(client, created_at=recent(10))

        first = await client.post("/api/v1/sla/targets/first-response", json={"target_id": "TKT-1"})
        repeat = await client.post("/api/v1/sla/targets/first-response", json={"target_id": "TKT-1"})

        assert first.status_code == 200
        assert first.json()["events"] == ["response_met"]
        assert repeat.json()["applied"] is False

    @pytest.mark.asyncio
    async def test_pause_resume_resolve_reopen_cancel(self, client: AsyncClient):
        await create_policy(client)
        await track(client, created_at=recent(30))

        paused = await client.post(
            "/api/v1/sla/targets/pause",
            json={"target_id": "TKT-1", "at": recent(20), "reason": "waiting on customer"},
        )
        resumed = await client.post("/api/v1/sla/targets/resume", json={"target_id": "TKT-1", "at": recent(10)})
        resolved = await client.post("/api/v1/sla/targets/resolved", json={"target_id": "TKT-1", "at": recent(5)})
        reopened = await client.post("/api/v1/sla/targets/reopened", json={"target_id": "TKT-1"})
        cancelled = await client.post(
            "/api/v1/sla/targets/cancelled", json={"target_id": "TKT-1", "reason": "merged"}
        )

        assert paused.json()["events"] == ["paused"]
        assert resumed.json()["events"] == ["resumed"]
        assert resolved.json()["events"] == ["response_met", "resolution_met"]
        assert reopened.json()["events"] == ["reopened"]
        assert cancelled.json()["events"] == ["cancelled"]

    @pytest.mark.asyncio
    async def test_fact_for_unknown_target(self, client: AsyncClient):
        response = await client.post("/api/v1/sla/targets/resolved", json={"target_id": "TKT-404"})

        assert response.status_code == 200
        assert response.json()["applied"] is False


class TestQueryEndpoints:
    """Tests for snapshots, events and dashboards."""

    @pytest.mark.asyncio
    async def test_target_snapshot_is_camel_case(self, client: AsyncClient):
        await create_policy(client)
        await track(client, created_at=recent(15))

        response = await client.get("/api/v1/sla/targets/TKT-1")

        assert response.status_code == 200
        data = response.json()
        assert data["targetId"] == "TKT-1"
        assert data["responseStatus"] == "pending"
        assert 40 <= data["responseRemainingMinutes"] <= 45
        assert data["isPaused"] is False
        assert data["currentEscalationLevel"] == 0

    @pytest.mark.asyncio
    async def test_unknown_target_snapshot(self, client: AsyncClient):
        response = await client.get("/api/v1/sla/targets/TKT-404")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_instance_events(self, client: AsyncClient):
        await create_policy(client)
        created = await track(client)
        await client.post("/api/v1/sla/targets/first-response", json={"target_id": "TKT-1"})
        instance_id = created["instance_ids"][0]

        response = await client.get(f"/api/v1/sla/instances/{instance_id}/events")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [e["event_type"] for e in data["events"]] == ["created", "response_met"]
        assert [e["sequence"] for e in data["events"]] == [1, 2]

    @pytest.mark.asyncio
    async def test_events_for_unknown_instance(self, client: AsyncClient):
        response = await client.get("/api/v1/sla/instances/missing/events")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_workspace_snapshot(self, client: AsyncClient):
        await create_policy(client)
        await track(client, "TKT-1")
        await track(client, "TKT-2")
        await client.post("/api/v1/sla/targets/resolved", json={"target_id": "TKT-2"})

        response = await client.get("/api/v1/sla/workspaces/ws-1/snapshot")

        assert response.status_code == 200
        data = response.json()
        assert data["workspaceId"] == "ws-1"
        assert [s["targetId"] for s in data["snapshots"]] == ["TKT-1"]

    @pytest.mark.asyncio
    async def test_dashboard(self, client: AsyncClient):
        await create_policy(client)
        await track(client, "TKT-1")
        await track(client, "TKT-2")
        await client.post("/api/v1/sla/targets/resolved", json={"target_id": "TKT-2"})

        response = await client.get("/api/v1/sla/workspaces/ws-1/dashboard")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["pending"] == 1
        assert data["met"] == 1
        assert data["breached"] == 0


class TestSchedulerEndpoints:
    """Tests for manual recomputation and scheduler status."""

    @pytest.mark.asyncio
    async def test_recalculate(self, client: AsyncClient, session_factory, publisher, monkeypatch):
        scheduler = SlaJobScheduler(
            publisher=publisher,
            dispatcher=EscalationDispatcher(publisher=publisher),
            session_factory=session_factory,
        )
        monkeypatch.setattr(sla_batch, "_sla_scheduler", scheduler)
        await create_policy(client)
        await track(client, created_at=recent(90))

        response = await client.post("/api/v1/sla/recalculate")

        assert response.status_code == 200
        data = response.json()
        assert data["total_processed"] == 1
        assert data["breached"] == 1
        assert data["escalated"] == 2
        assert data["errors"] == []

    @pytest.mark.asyncio
    async def test_scheduler_status(self, client: AsyncClient, monkeypatch):
        monkeypatch.setattr(sla_batch, "_sla_scheduler", SlaJobScheduler(interval_seconds=120))

        response = await client.get("/api/v1/sla/scheduler/status")

        assert response.status_code == 200
        data = response.json()
        assert data["running"] is False
        assert data["interval_seconds"] == 120
        assert data["run_count"] == 0


class TestMonitoringEndpoints:
    """Tests for health, metrics and request tracing."""

    @pytest.mark.asyncio
    async def test_root(self, client: AsyncClient):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient, monkeypatch):
        monkeypatch.setattr(sla_batch, "_sla_scheduler", SlaJobScheduler())

        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["scheduler"]["running"] is False
        assert "total_connections" in data["sse"]

    @pytest.mark.asyncio
    async def test_prometheus_metrics(self, client: AsyncClient):
        await client.get("/")

        response = await client.get("/api/v1/metrics")

        assert response.status_code == 200
        assert response.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
        assert "sla_engine_http_requests_total" in response.text
        assert "sla_engine_transitions_total" in response.text

    @pytest.mark.asyncio
    async def test_metrics_summary(self, client: AsyncClient):
        response = await client.get("/api/v1/metrics/summary")

        assert response.status_code == 200
        data = response.json()
        assert "application" in data
        assert "engine" in data

    @pytest.mark.asyncio
    async def test_sse_stats(self, client: AsyncClient):
        response = await client.get("/api/v1/sse/stats")

        assert response.status_code == 200
        assert "total_connections" in response.json()

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client: AsyncClient):
        response = await client.get("/", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert "X-Response-Time" in response.headers
