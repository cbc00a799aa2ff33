"""Integration tests for the ticket application services"""
from datetime import timedelta, timezone

import pytest
from sqlalchemy import select

from agency_desk.core import (
    InvalidStatusException,
    InvalidStatusTransitionException,
    NoEligibleAgentsException,
    ResourceNotFoundException,
)
from agency_desk.tickets.infrastructure import TicketMessageModel

from conftest import DEPARTMENT, NOW, StaticAgentDirectory


def utc(value):
    return value.replace(tzinfo=timezone.utc) if value is not None else None


class TestTicketIntake:
    async def test_create_ticket_tracks_sla_and_assigns(self, container, load_tracking, sink):
        result = await container.intake_service.create_ticket(
            subject="VPN down",
            department_id=DEPARTMENT,
            priority="high",
            now=NOW,
        )

        assert result.assigned_agent_id == "agent-a"
        assert result.ticket.status == "in_progress"
        assert result.tracking.first_response_due_at == NOW + timedelta(minutes=60)
        assert result.tracking.resolution_due_at == NOW + timedelta(minutes=480)

        row = await load_tracking(result.ticket.id)
        assert utc(row.first_response_due_at) == NOW + timedelta(minutes=60)
        assert not row.first_response_breached
        assert [e.kind for e in sink.events] == ["assignment"]

    async def test_create_ticket_without_policy_uses_default(self, container):
        result = await container.intake_service.create_ticket(
            subject="Question",
            department_id="sales",
            priority="low",
            now=NOW,
        )

        assert result.tracking.first_response_due_at == NOW + timedelta(minutes=60)
        assert result.tracking.resolution_due_at == NOW + timedelta(minutes=480)

    async def test_create_ticket_with_explicit_agent_skips_balancer(self, container, sink):
        result = await container.intake_service.create_ticket(
            subject="Follow-up",
            department_id=DEPARTMENT,
            priority="medium",
            assigned_agent_id="agent-z",
            now=NOW,
        )

        assert result.assigned_agent_id == "agent-z"
        assert result.ticket.status == "open"
        assert sink.events == []

    async def test_create_ticket_without_agents_stays_unassigned(self, container, load_ticket):
        container.assignment_balancer._directory = StaticAgentDirectory([])

        result = await container.intake_service.create_ticket(
            subject="Nobody home",
            department_id=DEPARTMENT,
            priority="high",
            now=NOW,
        )

        assert result.assigned_agent_id is None
        assert "No eligible agents" in result.assignment_error
        row = await load_ticket(result.ticket.id)
        assert row.assigned_to is None
        assert row.status == "open"

    async def test_on_ticket_created_starts_missing_tracking(self, container, seed_ticket, load_tracking):
        ticket_id = await seed_ticket(created_at=NOW)

        agent_id = await container.intake_service.on_ticket_created(ticket_id, now=NOW)

        assert agent_id == "agent-a"
        row = await load_tracking(ticket_id)
        assert utc(row.first_response_due_at) == NOW + timedelta(minutes=60)

    async def test_on_ticket_created_keeps_existing_assignee(self, container, seed_ticket, sink):
        ticket_id = await seed_ticket(assigned_to="agent-b", status="in_progress")

        assert await container.intake_service.on_ticket_created(ticket_id, now=NOW) == "agent-b"
        assert sink.events == []

    async def test_on_ticket_created_without_agents(self, container, seed_ticket):
        container.assignment_balancer._directory = StaticAgentDirectory([])
        ticket_id = await seed_ticket()

        with pytest.raises(NoEligibleAgentsException):
            await container.intake_service.on_ticket_created(ticket_id, now=NOW)

    async def test_on_ticket_created_leaves_resolved_ticket_alone(
        self, container, seed_ticket, load_ticket, load_tracking, sink
    ):
        resolved_at = NOW - timedelta(hours=1)
        ticket_id = await seed_ticket(
            status="resolved",
            resolved_at=resolved_at,
            tracking={
                "first_response_due_at": NOW - timedelta(hours=2),
                "resolution_due_at": NOW + timedelta(hours=4),
                "first_response_at": NOW - timedelta(hours=2, minutes=30),
                "resolution_at": resolved_at,
            },
        )

        with pytest.raises(InvalidStatusTransitionException):
            await container.intake_service.on_ticket_created(ticket_id, now=NOW)

        row = await load_ticket(ticket_id)
        assert row.status == "resolved"
        assert utc(row.resolved_at) == resolved_at
        assert row.assigned_to is None
        assert utc((await load_tracking(ticket_id)).resolution_at) == resolved_at
        assert sink.events == []

    async def test_on_ticket_created_returns_owner_of_closed_ticket(self, container, seed_ticket, load_tracking):
        ticket_id = await seed_ticket(status="closed", assigned_to="agent-b", closed_at=NOW)

        assert await container.intake_service.on_ticket_created(ticket_id, now=NOW) == "agent-b"
        assert await load_tracking(ticket_id) is None

    async def test_created_tickets_get_sequential_numbers(self, container, load_ticket):
        first = await container.intake_service.create_ticket(
            subject="First", department_id=DEPARTMENT, priority="high", now=NOW
        )
        second = await container.intake_service.create_ticket(
            subject="Second", department_id=DEPARTMENT, priority="high", now=NOW
        )

        assert first.ticket.ticket_number == 1
        assert second.ticket.ticket_number == 2
        assert (await load_ticket(second.ticket.id)).ticket_number == 2


class TestStatusUpdates:
    @pytest.fixture
    def tracked(self):
        return {
            "first_response_due_at": NOW + timedelta(hours=1),
            "resolution_due_at": NOW + timedelta(hours=8),
        }

    async def test_resolve_sets_timestamp_and_stops_clock(
        self, container, seed_ticket, load_ticket, load_tracking, tracked
    ):
        ticket_id = await seed_ticket(status="in_progress", assigned_to="agent-a", tracking=tracked)

        ticket = await container.status_service.update_ticket_status(ticket_id, "Resolvido", now=NOW)

        assert ticket.status == "resolved"
        assert ticket.resolved_at == NOW
        row = await load_ticket(ticket_id)
        assert row.status == "resolved"
        assert utc(row.resolved_at) == NOW
        assert utc((await load_tracking(ticket_id)).resolution_at) == NOW

    async def test_invalid_status_writes_nothing(self, container, seed_ticket, load_ticket, tracked):
        ticket_id = await seed_ticket(status="in_progress", tracking=tracked)

        with pytest.raises(InvalidStatusException):
            await container.status_service.update_ticket_status(ticket_id, "done", now=NOW)

        row = await load_ticket(ticket_id)
        assert row.status == "in_progress"
        assert utc(row.updated_at) != NOW

    async def test_reopen_clears_resolution(
        self, container, seed_ticket, load_ticket, load_tracking, tracked
    ):
        tracked["resolution_at"] = NOW - timedelta(hours=1)
        ticket_id = await seed_ticket(
            status="resolved",
            resolved_at=NOW - timedelta(hours=1),
            tracking=tracked,
        )

        await container.status_service.update_ticket_status(ticket_id, "Em Andamento", now=NOW)

        row = await load_ticket(ticket_id)
        assert row.status == "in_progress"
        assert row.resolved_at is None
        assert (await load_tracking(ticket_id)).resolution_at is None

    async def test_close_sets_closed_at(self, container, seed_ticket, load_ticket, tracked):
        ticket_id = await seed_ticket(status="resolved", resolved_at=NOW - timedelta(days=1), tracking=tracked)

        await container.status_service.update_ticket_status(ticket_id, "fechado", now=NOW)

        row = await load_ticket(ticket_id)
        assert row.status == "closed"
        assert utc(row.closed_at) == NOW
        assert utc(row.resolved_at) == NOW - timedelta(days=1)

    async def test_closed_ticket_cannot_be_reopened(self, container, seed_ticket, load_ticket):
        ticket_id = await seed_ticket(status="closed", closed_at=NOW - timedelta(days=1))

        with pytest.raises(InvalidStatusTransitionException):
            await container.status_service.update_ticket_status(ticket_id, "open", now=NOW)

        assert (await load_ticket(ticket_id)).status == "closed"

    async def test_closing_a_closed_ticket_is_a_no_op(self, container, seed_ticket, load_ticket):
        closed_at = NOW - timedelta(days=1)
        ticket_id = await seed_ticket(status="closed", closed_at=closed_at)

        await container.status_service.update_ticket_status(ticket_id, "closed", now=NOW)

        assert utc((await load_ticket(ticket_id)).closed_at) == closed_at

    async def test_unknown_ticket(self, container):
        with pytest.raises(ResourceNotFoundException):
            await container.status_service.update_ticket_status(
                "5a6c1b0e-3f7a-4b1c-9a43-7d2f0c1e9b55", "open", now=NOW
            )

    async def test_status_change_persists_breach_seen_on_the_way(
        self, container, seed_ticket, load_tracking
    ):
        ticket_id = await seed_ticket(
            status="in_progress",
            tracking={
                "first_response_due_at": NOW - timedelta(minutes=30),
                "resolution_due_at": NOW + timedelta(hours=6),
            },
        )

        await container.status_service.update_ticket_status(ticket_id, "resolved", now=NOW)

        row = await load_tracking(ticket_id)
        assert row.first_response_breached
        assert not row.resolution_breached


class TestSLATrackingService:
    async def test_breach_is_evaluated_and_persisted_on_read(self, container, seed_ticket, load_tracking):
        # high priority, 1h first-response target, no response for 90 minutes
        created = NOW - timedelta(minutes=90)
        ticket_id = await seed_ticket(
            status="in_progress",
            created_at=created,
            tracking={
                "first_response_due_at": created + timedelta(hours=1),
                "resolution_due_at": created + timedelta(hours=8),
            },
        )

        view = await container.sla_service.get_sla_status(ticket_id, now=NOW)

        assert view.tracking.first_response_breached
        assert view.badge.label == "Primeira Resposta Atrasada"
        assert (await load_tracking(ticket_id)).first_response_breached

    async def test_record_response_stops_first_response_clock(
        self, container, seed_ticket, load_ticket, load_tracking, session_factory
    ):
        ticket_id = await seed_ticket(
            status="in_progress",
            created_at=NOW - timedelta(minutes=20),
            tracking={
                "first_response_due_at": NOW + timedelta(minutes=40),
                "resolution_due_at": NOW + timedelta(hours=7),
            },
        )

        recorded = await container.sla_service.record_agent_response(
            ticket_id, agent_id="agent-a", message="Looking into it", now=NOW
        )

        assert recorded.first_response
        assert not recorded.late
        assert utc((await load_ticket(ticket_id)).last_response_at) == NOW
        assert utc((await load_tracking(ticket_id)).first_response_at) == NOW

        async with session_factory() as session:
            reply = (await session.execute(select(TicketMessageModel))).scalar_one()
        assert not reply.is_internal
        assert reply.user_id == "agent-a"

    async def test_late_response_is_reported_and_breach_kept(self, container, seed_ticket, load_tracking):
        ticket_id = await seed_ticket(
            status="in_progress",
            tracking={
                "first_response_due_at": NOW - timedelta(minutes=5),
                "resolution_due_at": NOW + timedelta(hours=7),
            },
        )

        recorded = await container.sla_service.record_agent_response(ticket_id, agent_id="agent-a", now=NOW)

        assert recorded.late
        row = await load_tracking(ticket_id)
        assert row.first_response_breached
        assert utc(row.first_response_at) == NOW

    async def test_second_response_only_moves_last_response(self, container, seed_ticket, load_ticket, load_tracking):
        first = NOW - timedelta(minutes=10)
        ticket_id = await seed_ticket(
            status="in_progress",
            last_response_at=first,
            tracking={
                "first_response_due_at": NOW + timedelta(minutes=30),
                "resolution_due_at": NOW + timedelta(hours=7),
                "first_response_at": first,
            },
        )

        recorded = await container.sla_service.record_agent_response(ticket_id, now=NOW)

        assert not recorded.first_response
        assert utc((await load_tracking(ticket_id)).first_response_at) == first
        assert utc((await load_ticket(ticket_id)).last_response_at) == NOW

    async def test_sla_status_without_tracking(self, container, seed_ticket):
        ticket_id = await seed_ticket()

        with pytest.raises(ResourceNotFoundException):
            await container.sla_service.get_sla_status(ticket_id, now=NOW)

    async def test_compliance_summary(self, container, seed_ticket):
        await seed_ticket(tracking={
            "first_response_due_at": NOW,
            "resolution_due_at": NOW,
            "first_response_breached": True,
        })
        await seed_ticket(tracking={
            "first_response_due_at": NOW,
            "resolution_due_at": NOW,
            "first_response_breached": True,
            "resolution_breached": True,
        })
        await seed_ticket(tracking={"first_response_due_at": NOW, "resolution_due_at": NOW})
        await seed_ticket(tracking={"first_response_due_at": NOW, "resolution_due_at": NOW})

        summary = await container.sla_service.compliance_summary()

        assert summary["tracked"] == 4
        assert summary["first_response_breached"] == 2
        assert summary["resolution_breached"] == 1
        assert summary["any_breached"] == 2
        assert summary["breach_rate"] == 50.0
