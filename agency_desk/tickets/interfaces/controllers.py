"""
Ticket Controllers (API Routes)
===============================

FastAPI routes for the ticket lifecycle and the batch job triggers.

Controllers are thin - they delegate to application services. Domain
errors are mapped to HTTP responses by the application exception handler.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from agency_desk.container import EngineContainer
from agency_desk.core import ResourceNotFoundException
from agency_desk.shared.infrastructure.logging import get_logger
from agency_desk.tickets.application.dto import (
    AgentResponseRecorded,
    AgentResponseRequest,
    AutoClosePassResponse,
    EscalationPassResponse,
    IntakeResponse,
    SLACheckPassResponse,
    SLASummaryResponse,
    StatusUpdateRequest,
    TicketCreateRequest,
    TicketCreatedResponse,
    TicketResponse,
    TicketSLAResponse,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/tickets", tags=["Tickets"])
jobs_router = APIRouter(prefix="/jobs", tags=["Jobs"])


# ========== Example payloads for Swagger ==========

TICKET_SLA_RESPONSE_EXAMPLE = {
    "ticket_id": "123e4567-e89b-12d3-a456-426614174000",
    "status": "in_progress",
    "first_response_due_at": "2024-01-15T11:00:00Z",
    "resolution_due_at": "2024-01-15T18:00:00Z",
    "first_response_at": None,
    "resolution_at": None,
    "first_response_breached": True,
    "resolution_breached": False,
    "badge": {
        "kind": "first_response_overdue",
        "label": "Primeira Resposta Atrasada",
        "minutes_remaining": -30
    }
}

ESCALATION_PASS_EXAMPLE = {
    "rules_checked": 2,
    "tickets_escalated": 1,
    "failures": []
}


# ========== Dependencies ==========

def get_container(request: Request) -> EngineContainer:
    """Get the engine container built at startup."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ticket engine not initialized"
        )
    return container


# ========== Ticket Routes ==========

@router.post(
    "",
    response_model=TicketCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a ticket",
    description="""
    Create a ticket, start its SLA clocks and assign it.

    SLA targets come from the department/priority policy, falling back to
    the system default. Without an explicit `assigned_agent_id` the ticket
    goes to the eligible agent with the fewest waiting/in-progress tickets
    and moves to `in_progress`. If nobody is eligible the ticket is still
    created and `assignment_error` says why.
    """
)
async def create_ticket(
    request: TicketCreateRequest,
    container: EngineContainer = Depends(get_container)
):
    result = await container.intake_service.create_ticket(
        subject=request.subject,
        description=request.description,
        department_id=request.department_id,
        priority=request.priority,
        client_id=request.client_id,
        created_by=request.created_by,
        assigned_agent_id=request.assigned_agent_id,
    )

    return TicketCreatedResponse(
        ticket=TicketResponse.from_domain(result.ticket),
        first_response_due_at=result.tracking.first_response_due_at,
        resolution_due_at=result.tracking.resolution_due_at,
        assigned_agent_id=result.assigned_agent_id,
        assignment_error=result.assignment_error,
    )


@router.get(
    "/sla/summary",
    response_model=SLASummaryResponse,
    summary="SLA compliance summary",
    description="Counts of tracked tickets and of persisted first-response and resolution breaches."
)
async def get_sla_summary(container: EngineContainer = Depends(get_container)):
    summary = await container.sla_service.compliance_summary()
    return SLASummaryResponse(**summary)


@router.get(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Get a ticket",
    responses={404: {"description": "Ticket not found"}}
)
async def get_ticket(
    ticket_id: str,
    container: EngineContainer = Depends(get_container)
):
    ticket = await container.ticket_repository.get_by_id(ticket_id)
    if ticket is None:
        raise ResourceNotFoundException("Ticket", ticket_id)
    return TicketResponse.from_domain(ticket)


@router.post(
    "/{ticket_id}/intake",
    response_model=IntakeResponse,
    summary="Run intake for an existing ticket",
    description="""
    Start SLA tracking for a ticket created elsewhere (if missing) and
    assign it when it has no agent yet.

    Returns 409 when no agent is eligible, or when the ticket is already
    resolved or closed and has no agent.
    """,
    responses={404: {"description": "Ticket not found"}, 409: {"description": "No eligible agents or ticket resolved/closed"}}
)
async def intake_ticket(
    ticket_id: str,
    container: EngineContainer = Depends(get_container)
):
    agent_id = await container.intake_service.on_ticket_created(ticket_id)
    return IntakeResponse(ticket_id=ticket_id, agent_id=agent_id)


@router.patch(
    "/{ticket_id}/status",
    response_model=TicketResponse,
    summary="Change ticket status",
    description="""
    Change a ticket's status. Any known alias is accepted
    (`in progress`, `Em Andamento`, `Resolvido`, ...).

    - `resolved` sets `resolved_at` and stops the resolution clock
    - `closed` sets `closed_at`; a closed ticket cannot be reopened (409)
    - Other statuses clear `resolved_at`/`closed_at`

    Unknown statuses are rejected with 422 and nothing is written.
    """,
    responses={
        404: {"description": "Ticket not found"},
        409: {"description": "Ticket is closed"},
        422: {"description": "Unknown status"}
    }
)
async def update_ticket_status(
    ticket_id: str,
    request: StatusUpdateRequest,
    container: EngineContainer = Depends(get_container)
):
    ticket = await container.status_service.update_ticket_status(ticket_id, request.status)
    return TicketResponse.from_domain(ticket)


@router.post(
    "/{ticket_id}/responses",
    response_model=AgentResponseRecorded,
    summary="Record an agent response",
    description="The first response stops the first-response clock; `late` reports a response after its due time."
)
async def record_response(
    ticket_id: str,
    request: AgentResponseRequest,
    container: EngineContainer = Depends(get_container)
):
    recorded = await container.sla_service.record_agent_response(
        ticket_id,
        agent_id=request.agent_id,
        message=request.message,
    )
    return AgentResponseRecorded(
        ticket_id=ticket_id,
        responded_at=recorded.ticket.last_response_at,
        first_response=recorded.first_response,
        late=recorded.late,
    )


@router.get(
    "/{ticket_id}/sla",
    response_model=TicketSLAResponse,
    summary="Get ticket SLA status",
    description="""
    SLA due times, breach flags and the badge for a ticket.

    Breaches are evaluated on read; newly observed breaches are persisted.
    """,
    responses={
        200: {
            "description": "Ticket SLA information",
            "content": {"application/json": {"example": TICKET_SLA_RESPONSE_EXAMPLE}}
        },
        404: {"description": "Ticket not found"}
    }
)
async def get_ticket_sla(
    ticket_id: str,
    container: EngineContainer = Depends(get_container)
):
    view = await container.sla_service.get_sla_status(ticket_id)
    return TicketSLAResponse.from_view(view)


# ========== Job Routes ==========

@jobs_router.post(
    "/escalation",
    response_model=EscalationPassResponse,
    summary="Run an escalation pass",
    description="Reassign tickets idle past each active rule's threshold. Safe to call repeatedly.",
    responses={
        200: {
            "description": "Pass summary",
            "content": {"application/json": {"example": ESCALATION_PASS_EXAMPLE}}
        }
    }
)
async def run_escalation(container: EngineContainer = Depends(get_container)):
    result = await container.escalation_scanner.run_escalation_pass()
    return EscalationPassResponse(
        rules_checked=result.rules_checked,
        tickets_escalated=result.tickets_escalated,
        failures=result.failures,
    )


@jobs_router.post(
    "/auto-close",
    response_model=AutoClosePassResponse,
    summary="Run an auto-close pass",
    description="Close tickets resolved longer than the active grace period. A no-op without active config."
)
async def run_auto_close(container: EngineContainer = Depends(get_container)):
    result = await container.auto_close_scanner.run_auto_close_pass()
    return AutoClosePassResponse(
        tickets_closed=result.tickets_closed,
        message=None if result.config_active else "No active config",
        failures=result.failures,
    )


@jobs_router.post(
    "/sla-check",
    response_model=SLACheckPassResponse,
    summary="Run an SLA warning pass",
    description="Warn assigned agents about deadlines due within the next hour (once per ticket)."
)
async def run_sla_check(container: EngineContainer = Depends(get_container)):
    result = await container.sla_check_scanner.run_sla_check_pass()
    return SLACheckPassResponse(
        checked_tickets=result.checked_tickets,
        notifications_created=result.notifications_created,
        failures=result.failures,
    )


# Export routers for inclusion in main app
tickets_router = router
