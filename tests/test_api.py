"""API tests for the ticket and job routes"""
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from agency_desk.main import create_app

from conftest import DEPARTMENT


@pytest.fixture
async def client(container):
    app = create_app(container)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def create_ticket(client, **overrides):
    payload = {"subject": "Cannot log in", "department_id": DEPARTMENT, "priority": "high"}
    payload.update(overrides)
    response = await client.post("/tickets", json=payload)
    assert response.status_code == 201
    return response.json()


class TestTicketRoutes:
    async def test_create_ticket(self, client):
        body = await create_ticket(client)

        assert body["assigned_agent_id"] == "agent-a"
        assert body["assignment_error"] is None
        assert body["ticket"]["status"] == "in_progress"
        assert body["first_response_due_at"] < body["resolution_due_at"]

    async def test_create_ticket_rejects_unknown_priority(self, client):
        response = await client.post(
            "/tickets",
            json={"subject": "x", "department_id": DEPARTMENT, "priority": "critical"},
        )

        assert response.status_code == 422

    async def test_get_ticket(self, client):
        created = await create_ticket(client)

        response = await client.get(f"/tickets/{created['ticket']['id']}")

        assert response.status_code == 200
        assert response.json()["subject"] == "Cannot log in"

    async def test_status_alias_is_accepted(self, client):
        created = await create_ticket(client, assigned_agent_id="agent-z")

        response = await client.patch(
            f"/tickets/{created['ticket']['id']}/status",
            json={"status": "Em Andamento"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "in_progress"

    async def test_unknown_status_is_rejected(self, client):
        created = await create_ticket(client)

        response = await client.patch(
            f"/tickets/{created['ticket']['id']}/status",
            json={"status": "done"},
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "InvalidStatusException"
        assert "resolved" in body["context"]["allowed"]

    async def test_closed_ticket_cannot_be_reopened(self, client):
        ticket_id = (await create_ticket(client))["ticket"]["id"]

        closed = await client.patch(f"/tickets/{ticket_id}/status", json={"status": "Fechado"})
        reopened = await client.patch(f"/tickets/{ticket_id}/status", json={"status": "open"})

        assert closed.status_code == 200
        assert closed.json()["closed_at"] is not None
        assert reopened.status_code == 409

    async def test_unknown_ticket(self, client):
        response = await client.patch(f"/tickets/{uuid4()}/status", json={"status": "open"})

        assert response.status_code == 404
        assert response.json()["error"] == "ResourceNotFoundException"

    async def test_ticket_sla(self, client):
        ticket_id = (await create_ticket(client))["ticket"]["id"]

        response = await client.get(f"/tickets/{ticket_id}/sla")

        assert response.status_code == 200
        body = response.json()
        assert body["ticket_id"] == ticket_id
        assert body["first_response_breached"] is False
        assert body["badge"]["kind"].startswith("first_response")

    async def test_record_response(self, client):
        ticket_id = (await create_ticket(client))["ticket"]["id"]

        response = await client.post(
            f"/tickets/{ticket_id}/responses",
            json={"agent_id": "agent-a", "message": "On it"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["first_response"] is True
        assert body["late"] is False

    async def test_intake_existing_ticket(self, client, seed_ticket):
        ticket_id = await seed_ticket()

        response = await client.post(f"/tickets/{ticket_id}/intake")

        assert response.status_code == 200
        assert response.json() == {"ticket_id": ticket_id, "agent_id": "agent-a"}

    async def test_intake_of_resolved_ticket_is_a_conflict(self, client, seed_ticket):
        ticket_id = await seed_ticket(status="resolved")

        response = await client.post(f"/tickets/{ticket_id}/intake")

        assert response.status_code == 409
        assert response.json()["error"] == "InvalidStatusTransitionException"

    async def test_sla_summary(self, client):
        await create_ticket(client)

        response = await client.get("/tickets/sla/summary")

        assert response.status_code == 200
        assert response.json()["tracked"] == 1
        assert response.json()["breach_rate"] == 0.0


class TestJobRoutes:
    async def test_escalation(self, client):
        response = await client.post("/jobs/escalation")

        assert response.status_code == 200
        assert response.json() == {"rules_checked": 1, "tickets_escalated": 0, "failures": []}

    async def test_auto_close(self, client):
        response = await client.post("/jobs/auto-close")

        assert response.status_code == 200
        assert response.json()["tickets_closed"] == 0
        assert response.json()["message"] is None

    async def test_sla_check(self, client):
        response = await client.post("/jobs/sla-check")

        assert response.status_code == 200
        assert response.json()["notifications_created"] == 0


class TestServiceRoutes:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["scheduler"] == "stopped"

    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "Agency Desk"

    async def test_correlation_id_is_echoed(self, client):
        response = await client.get("/health", headers={"X-Correlation-ID": "req-42"})

        assert response.headers["X-Correlation-ID"] == "req-42"

    async def test_missing_container_returns_503(self):
        app = create_app()
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/tickets/sla/summary")

        assert response.status_code == 503
