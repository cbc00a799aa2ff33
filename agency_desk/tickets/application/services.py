"""
Ticket Application Services
===========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories, sinks), not concrete implementations
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple
from uuid import uuid4

from agency_desk.config import TicketStatus
from agency_desk.core import (
    InvalidStatusTransitionException,
    NoEligibleAgentsException,
    ResourceNotFoundException,
)
from agency_desk.shared.infrastructure.logging import get_logger
from agency_desk.tickets.domain import (
    EngineConfig,
    EscalationRule,
    NotificationEvent,
    SLABadge,
    SLAPolicyResolver,
    SLATracking,
    StatusUpdate,
    Ticket,
    TicketMessage,
    status_update_payload,
    utc_now,
)

if TYPE_CHECKING:
    from agency_desk.tickets.application.assignment import AssignmentBalancer

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """
    Interface for ticket data access.

    Every write method is one atomic unit: the ticket row, its SLA
    tracking row and the audit message passed along are committed
    together or not at all.
    """

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""

    @abstractmethod
    async def create(self, ticket: Ticket, tracking: SLATracking) -> Ticket:
        """Insert a ticket together with its SLA tracking and allocate its number."""

    @abstractmethod
    async def apply_status_update(
        self,
        ticket_id: str,
        status_update: StatusUpdate,
        tracking: Optional[SLATracking] = None
    ) -> bool:
        """
        Apply a status payload (and the tracker state it implies).

        Returns False when the ticket is closed and the update would reopen it.
        """

    @abstractmethod
    async def record_response(
        self,
        ticket_id: str,
        responded_at: datetime,
        tracking: Optional[SLATracking] = None,
        message: Optional[TicketMessage] = None
    ) -> None:
        """Set last_response_at, update the tracker and store the reply."""

    @abstractmethod
    async def assign(
        self,
        ticket_id: str,
        agent_id: str,
        status_update: StatusUpdate,
        message: TicketMessage
    ) -> bool:
        """
        Assign an agent, apply the status payload and write the audit message.

        Returns False when the ticket is resolved or closed; nothing is written.
        """

    @abstractmethod
    async def count_open_workload(self, agent_ids: List[str]) -> Dict[str, int]:
        """Count waiting/in-progress tickets per agent (only agents with tickets)."""

    @abstractmethod
    async def find_escalation_candidates(
        self,
        rule: EscalationRule,
        cutoff: datetime
    ) -> List[Ticket]:
        """Tickets idle since before the cutoff and not yet owned by the rule target."""

    @abstractmethod
    async def escalate(
        self,
        ticket_id: str,
        rule: EscalationRule,
        cutoff: datetime,
        message: TicketMessage,
        now: datetime
    ) -> bool:
        """
        Reassign a ticket to the rule target.

        The candidate predicate is repeated in the UPDATE; returns False when
        the ticket no longer matches (already escalated by another pass).
        """

    @abstractmethod
    async def find_auto_close_candidates(self, cutoff: datetime) -> List[Ticket]:
        """Resolved tickets whose resolved_at is older than the cutoff."""

    @abstractmethod
    async def close_resolved(
        self,
        ticket_id: str,
        status_update: StatusUpdate,
        message: TicketMessage
    ) -> bool:
        """Close a ticket that is still resolved; returns False otherwise."""


class ISLATrackingRepository(ABC):
    """Interface for SLA tracking data access."""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[SLATracking]:
        """Get the tracking row of a ticket."""

    @abstractmethod
    async def create(self, tracking: SLATracking) -> SLATracking:
        """Insert a tracking row."""

    @abstractmethod
    async def persist_breaches(self, tracking: SLATracking) -> None:
        """Persist breach flags that are true (never writes false)."""

    @abstractmethod
    async def list_pending_before(
        self,
        horizon: datetime
    ) -> List[Tuple[SLATracking, Ticket]]:
        """Trackers of non-terminal tickets with a pending due time before the horizon."""

    @abstractmethod
    async def mark_warned(self, ticket_id: str, now: datetime) -> bool:
        """Set warned_at if still unset; returns False if already warned."""

    @abstractmethod
    async def breach_counts(self) -> Dict[str, int]:
        """Aggregate counts of tracked tickets and persisted breaches."""


class IAgentDirectory(ABC):
    """Role store: who may receive automatically assigned tickets."""

    @abstractmethod
    async def get_eligible_agent_ids(self, department_id: Optional[str]) -> List[str]:
        """Eligible agent ids in a stable order."""


class INotificationSink(ABC):
    """
    Receives notification events for delivery.

    Emission is fire-and-forget for the engine: implementations log their
    own delivery failures and report them through the return value.
    """

    @abstractmethod
    async def emit(self, event: NotificationEvent) -> bool:
        """Deliver an event; returns True on success."""


class IEngineConfigProvider(ABC):
    """Interface for engine configuration access."""

    @abstractmethod
    def get_config(self) -> EngineConfig:
        """Get current engine configuration."""


# ========== Results ==========

@dataclass
class SLAStatusView:
    """Ticket SLA as seen by a reader (breaches already evaluated)."""
    ticket: Ticket
    tracking: SLATracking
    badge: Optional[SLABadge]


@dataclass
class ResponseRecorded:
    """Outcome of recording an agent response."""
    ticket: Ticket
    tracking: Optional[SLATracking]
    first_response: bool
    late: bool


@dataclass
class IntakeResult:
    """Outcome of ticket creation / intake."""
    ticket: Ticket
    tracking: SLATracking
    assigned_agent_id: Optional[str]
    assignment_error: Optional[str] = None


# ========== Application Services ==========

class TicketStatusService:
    """
    The status update path.

    Normalizes the requested status before anything is read or written,
    then applies the payload and the SLA tracker changes in one update.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        sla_repository: ISLATrackingRepository
    ):
        self._ticket_repo = ticket_repository
        self._sla_repo = sla_repository

    async def update_ticket_status(
        self,
        ticket_id: str,
        raw_status: str,
        now: Optional[datetime] = None
    ) -> Ticket:
        """
        Change a ticket's status.

        Raises:
            InvalidStatusException: Unknown status string (nothing is written)
            ResourceNotFoundException: Unknown ticket
            InvalidStatusTransitionException: Attempt to reopen a closed ticket
        """
        now = now or utc_now()
        update = status_update_payload(raw_status, now)

        ticket = await self._ticket_repo.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)

        if ticket.is_closed:
            if update.status == TicketStatus.CLOSED:
                return ticket
            raise InvalidStatusTransitionException(ticket_id, ticket.status, update.status)

        tracking = await self._sla_repo.get(ticket_id)
        if tracking is not None:
            tracking.evaluate_breaches(now)
            if update.is_reopen:
                tracking.reopen()
            else:
                tracking.record_resolution(now)

        applied = await self._ticket_repo.apply_status_update(ticket_id, update, tracking)
        if not applied:
            raise InvalidStatusTransitionException(ticket_id, TicketStatus.CLOSED, update.status)

        previous = ticket.status
        ticket.apply_status_update(update)

        logger.info(
            "Ticket status updated",
            extra={
                "ticket_id": ticket_id,
                "requested_status": raw_status,
                "from_status": previous,
                "to_status": update.status,
            }
        )
        return ticket


class SLATrackingService:
    """SLA reads and the agent response event."""

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        sla_repository: ISLATrackingRepository
    ):
        self._ticket_repo = ticket_repository
        self._sla_repo = sla_repository

    async def get_sla_status(
        self,
        ticket_id: str,
        now: Optional[datetime] = None
    ) -> SLAStatusView:
        """
        Read a ticket's SLA state.

        Breaches are evaluated on read and newly observed ones are persisted.
        """
        now = now or utc_now()

        ticket = await self._ticket_repo.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)

        tracking = await self._sla_repo.get(ticket_id)
        if tracking is None:
            raise ResourceNotFoundException("SLA tracking", ticket_id)

        if tracking.evaluate_breaches(now):
            await self._sla_repo.persist_breaches(tracking)
            logger.info(
                "SLA breach recorded",
                extra={
                    "ticket_id": ticket_id,
                    "first_response_breached": tracking.first_response_breached,
                    "resolution_breached": tracking.resolution_breached,
                }
            )

        return SLAStatusView(ticket=ticket, tracking=tracking, badge=tracking.badge(ticket.status, now))

    async def record_agent_response(
        self,
        ticket_id: str,
        agent_id: Optional[str] = None,
        message: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ResponseRecorded:
        """
        Record an agent reply on a ticket.

        The first reply stops the first-response clock. A reply after the
        due time is reported; the breach itself comes from the evaluation
        that runs before the reply is recorded.
        """
        now = now or utc_now()

        ticket = await self._ticket_repo.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)

        tracking = await self._sla_repo.get(ticket_id)
        first_response = False
        late = False
        if tracking is not None:
            tracking.evaluate_breaches(now)
            first_response = tracking.first_response_at is None
            late = tracking.record_first_response(now)

        reply = None
        if message:
            reply = TicketMessage(
                ticket_id=ticket_id,
                user_id=agent_id,
                message=message,
                is_internal=False,
                created_at=now,
            )

        await self._ticket_repo.record_response(ticket_id, now, tracking, reply)
        ticket.last_response_at = now

        if late:
            logger.warning(
                "First response after SLA due time",
                extra={
                    "ticket_id": ticket_id,
                    "agent_id": agent_id,
                    "due_at": tracking.first_response_due_at.isoformat(),
                    "responded_at": now.isoformat(),
                }
            )

        return ResponseRecorded(ticket=ticket, tracking=tracking, first_response=first_response, late=late)

    async def compliance_summary(self) -> Dict[str, float]:
        """Persisted breach counts and breach rate over tracked tickets."""
        counts = await self._sla_repo.breach_counts()
        tracked = counts.get("tracked", 0)
        breached = counts.get("any_breached", 0)
        return {
            **counts,
            "breach_rate": (breached / tracked * 100) if tracked > 0 else 0.0,
        }


class TicketIntakeService:
    """
    Ticket creation and unassigned-ticket intake.

    Resolves the SLA policy and starts tracking, then hands unassigned
    tickets to the assignment balancer.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        sla_repository: ISLATrackingRepository,
        config_provider: IEngineConfigProvider,
        balancer: "AssignmentBalancer"
    ):
        self._ticket_repo = ticket_repository
        self._sla_repo = sla_repository
        self._config_provider = config_provider
        self._balancer = balancer

    def _start_tracking(self, ticket: Ticket, config: EngineConfig) -> SLATracking:
        targets = SLAPolicyResolver.resolve(config, ticket.department_id, ticket.priority)
        return SLATracking.start(ticket.id, ticket.created_at, targets)

    async def create_ticket(
        self,
        subject: str,
        department_id: str,
        priority: str,
        description: str = "",
        client_id: Optional[str] = None,
        created_by: Optional[str] = None,
        assigned_agent_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> IntakeResult:
        """
        Create a ticket with its SLA tracking and auto-assign it.

        A ticket that cannot be assigned is still created and left
        unassigned for manual triage; the reason is reported in the result.
        """
        now = now or utc_now()
        config = self._config_provider.get_config()

        ticket = Ticket(
            id=str(uuid4()),
            subject=subject,
            description=description,
            status=TicketStatus.OPEN,
            priority=priority,
            department_id=department_id,
            client_id=client_id,
            created_by=created_by,
            assigned_agent_id=assigned_agent_id,
            created_at=now,
            updated_at=now,
        )
        tracking = self._start_tracking(ticket, config)
        ticket = await self._ticket_repo.create(ticket, tracking)

        logger.info(
            "Ticket created",
            extra={
                "ticket_id": ticket.id,
                "department_id": department_id,
                "priority": priority,
                "first_response_due_at": tracking.first_response_due_at.isoformat(),
                "resolution_due_at": tracking.resolution_due_at.isoformat(),
            }
        )

        if assigned_agent_id:
            return IntakeResult(ticket=ticket, tracking=tracking, assigned_agent_id=assigned_agent_id)

        try:
            agent_id = await self._balancer.assign(ticket.id, department_id, now=now)
        except NoEligibleAgentsException as e:
            return IntakeResult(
                ticket=ticket,
                tracking=tracking,
                assigned_agent_id=None,
                assignment_error=e.message,
            )

        ticket.assigned_agent_id = agent_id
        ticket.status = TicketStatus.IN_PROGRESS
        return IntakeResult(ticket=ticket, tracking=tracking, assigned_agent_id=agent_id)

    async def on_ticket_created(
        self,
        ticket_id: str,
        now: Optional[datetime] = None
    ) -> str:
        """
        Intake for a ticket created elsewhere.

        Starts SLA tracking if the ticket has none, then assigns it when it
        is still unassigned. Returns the owning agent id.

        Raises:
            ResourceNotFoundException: Unknown ticket
            InvalidStatusTransitionException: The ticket is resolved or closed
                and has no agent
            NoEligibleAgentsException: Nobody can take the ticket
        """
        now = now or utc_now()

        ticket = await self._ticket_repo.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)

        # Resolved and closed tickets keep their SLA state as it is
        if ticket.is_terminal:
            if ticket.assigned_agent_id:
                return ticket.assigned_agent_id
            raise InvalidStatusTransitionException(ticket_id, ticket.status, TicketStatus.IN_PROGRESS)

        if await self._sla_repo.get(ticket_id) is None:
            tracking = self._start_tracking(ticket, self._config_provider.get_config())
            await self._sla_repo.create(tracking)

        if ticket.assigned_agent_id:
            return ticket.assigned_agent_id

        return await self._balancer.assign(ticket_id, ticket.department_id, now=now)
