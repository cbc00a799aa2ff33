"""
Ticket Application DTOs
=======================

Data Transfer Objects for the ticket API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["low", "medium", "high", "urgent"]
TicketStatusStr = Literal["open", "in_progress", "waiting", "resolved", "closed"]


# ========== Request DTOs ==========

class TicketCreateRequest(BaseModel):
    """Request model for ticket creation."""
    subject: str = Field(..., min_length=1, description="Ticket subject")
    description: str = Field(default="", description="Ticket description")
    department_id: str = Field(..., min_length=1, description="Owning department")
    priority: PriorityStr = Field(default="medium", description="Ticket priority")
    client_id: Optional[str] = Field(None, description="Client the ticket belongs to")
    created_by: Optional[str] = Field(None, description="User that opened the ticket")
    assigned_agent_id: Optional[str] = Field(
        None,
        description="Explicit assignee (skips automatic assignment)"
    )


class StatusUpdateRequest(BaseModel):
    """
    Request model for a status change.

    The status is free text; it is normalized by the service so aliases
    such as "Em Andamento" are accepted.
    """
    status: str = Field(..., description="Requested status (any known alias)")


class AgentResponseRequest(BaseModel):
    """Request model for an agent reply."""
    agent_id: Optional[str] = Field(None, description="Responding agent")
    message: Optional[str] = Field(None, description="Reply body, stored on the ticket")


# ========== Response DTOs ==========

class TicketResponse(BaseModel):
    """Response model for a ticket."""
    id: str
    subject: str
    status: TicketStatusStr
    priority: PriorityStr
    department_id: str
    assigned_agent_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    last_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, ticket: Any) -> "TicketResponse":
        return cls(
            id=ticket.id,
            subject=ticket.subject,
            status=ticket.status,
            priority=ticket.priority,
            department_id=ticket.department_id,
            assigned_agent_id=ticket.assigned_agent_id,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            last_response_at=ticket.last_response_at,
            resolved_at=ticket.resolved_at,
            closed_at=ticket.closed_at,
        )


class SLABadgeResponse(BaseModel):
    """Response model for the SLA badge shown next to a ticket."""
    kind: str
    label: str
    minutes_remaining: Optional[int] = None


class TicketSLAResponse(BaseModel):
    """Response model for ticket SLA information."""
    ticket_id: str = Field(..., description="Ticket UUID")
    status: TicketStatusStr
    first_response_due_at: datetime
    resolution_due_at: datetime
    first_response_at: Optional[datetime] = None
    resolution_at: Optional[datetime] = None
    first_response_breached: bool
    resolution_breached: bool
    badge: Optional[SLABadgeResponse] = Field(
        None,
        description="Current badge (none once both clocks have stopped on an open ticket)"
    )

    @classmethod
    def from_view(cls, view: Any) -> "TicketSLAResponse":
        tracking = view.tracking
        badge = None
        if view.badge is not None:
            badge = SLABadgeResponse(
                kind=view.badge.kind,
                label=view.badge.label,
                minutes_remaining=view.badge.minutes_remaining,
            )
        return cls(
            ticket_id=view.ticket.id,
            status=view.ticket.status,
            first_response_due_at=tracking.first_response_due_at,
            resolution_due_at=tracking.resolution_due_at,
            first_response_at=tracking.first_response_at,
            resolution_at=tracking.resolution_at,
            first_response_breached=tracking.first_response_breached,
            resolution_breached=tracking.resolution_breached,
            badge=badge,
        )


class TicketCreatedResponse(BaseModel):
    """Response model for ticket creation."""
    ticket: TicketResponse
    first_response_due_at: datetime
    resolution_due_at: datetime
    assigned_agent_id: Optional[str] = None
    assignment_error: Optional[str] = Field(
        None,
        description="Why the ticket was left unassigned"
    )


class IntakeResponse(BaseModel):
    """Response model for intake of an existing ticket."""
    ticket_id: str
    agent_id: str


class AgentResponseRecorded(BaseModel):
    """Response model for a recorded agent reply."""
    ticket_id: str
    responded_at: datetime
    first_response: bool = Field(..., description="Whether this reply stopped the first-response clock")
    late: bool = Field(..., description="Whether the first response came after its due time")


class EscalationPassResponse(BaseModel):
    rules_checked: int
    tickets_escalated: int
    failures: List[Dict[str, Any]] = Field(default_factory=list)


class AutoClosePassResponse(BaseModel):
    tickets_closed: int
    message: Optional[str] = None
    failures: List[Dict[str, Any]] = Field(default_factory=list)


class SLACheckPassResponse(BaseModel):
    checked_tickets: int
    notifications_created: int
    failures: List[Dict[str, Any]] = Field(default_factory=list)


class SLASummaryResponse(BaseModel):
    """Summary statistics over tracked tickets."""
    tracked: int
    first_response_breached: int
    resolution_breached: int
    any_breached: int
    breach_rate: float = Field(..., description="Percentage of tickets breached")
