"""
Assignment Balancer
===================

Assigns a new ticket to the eligible agent with the fewest open tickets.

Workload counts tickets in ``waiting`` or ``in_progress``. Ties go to the
agent that comes first in the directory's order.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from agency_desk.config import NotificationKind, TicketStatus
from agency_desk.core import (
    InvalidStatusTransitionException,
    NoEligibleAgentsException,
    ResourceNotFoundException,
)
from agency_desk.shared.infrastructure.logging import get_logger
from agency_desk.tickets.application.services import (
    IAgentDirectory,
    INotificationSink,
    ITicketRepository,
)
from agency_desk.tickets.domain import (
    NotificationEvent,
    TicketMessage,
    status_update_payload,
    utc_now,
)

logger = get_logger(__name__)

ASSIGNMENT_AUDIT_MESSAGE = (
    "🤖 Ticket atribuído automaticamente baseado na carga de trabalho da equipe."
)


def select_least_loaded(agent_ids: Sequence[str], workload: Dict[str, int]) -> Optional[str]:
    """
    Pick the agent with the smallest workload.

    Agents missing from ``workload`` have zero open tickets. A strict
    comparison keeps the first agent on ties.
    """
    selected = None
    min_load = None
    for agent_id in agent_ids:
        load = workload.get(agent_id, 0)
        if min_load is None or load < min_load:
            selected = agent_id
            min_load = load
    return selected


def _unique(agent_ids: List[str]) -> List[str]:
    seen = set()
    ordered = []
    for agent_id in agent_ids:
        if agent_id not in seen:
            seen.add(agent_id)
            ordered.append(agent_id)
    return ordered


class AssignmentBalancer:
    """Least-loaded assignment of unassigned tickets."""

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        agent_directory: IAgentDirectory,
        notification_sink: INotificationSink
    ):
        self._ticket_repo = ticket_repository
        self._directory = agent_directory
        self._sink = notification_sink

    async def assign(
        self,
        ticket_id: str,
        department_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> str:
        """
        Assign a ticket and move it to ``in_progress``.

        The assignment, the status change and the audit message are one
        write; the agent is notified after it commits.

        Returns:
            The chosen agent id

        Raises:
            NoEligibleAgentsException: The directory has no eligible agent
            ResourceNotFoundException: Unknown ticket
            InvalidStatusTransitionException: The ticket is resolved or closed
        """
        now = now or utc_now()

        ticket = await self._ticket_repo.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        if ticket.is_terminal:
            raise InvalidStatusTransitionException(ticket_id, ticket.status, TicketStatus.IN_PROGRESS)
        department_id = department_id or ticket.department_id

        agent_ids = _unique(await self._directory.get_eligible_agent_ids(department_id))
        if not agent_ids:
            logger.warning(
                "No eligible agents for assignment",
                extra={"ticket_id": ticket_id, "department_id": department_id}
            )
            raise NoEligibleAgentsException(ticket_id, department_id)

        workload = await self._ticket_repo.count_open_workload(agent_ids)
        agent_id = select_least_loaded(agent_ids, workload)

        update = status_update_payload(TicketStatus.IN_PROGRESS, now)
        audit = TicketMessage(
            ticket_id=ticket_id,
            user_id=agent_id,
            message=ASSIGNMENT_AUDIT_MESSAGE,
            created_at=now,
        )

        if not await self._ticket_repo.assign(ticket_id, agent_id, update, audit):
            # Resolved or closed between the read and the write
            raise InvalidStatusTransitionException(ticket_id, ticket.status, TicketStatus.IN_PROGRESS)

        logger.info(
            "Ticket auto-assigned",
            extra={
                "ticket_id": ticket_id,
                "agent_id": agent_id,
                "agent_workload": workload.get(agent_id, 0),
                "eligible_agents": len(agent_ids),
            }
        )

        await self._sink.emit(NotificationEvent(
            target_agent_id=agent_id,
            kind=NotificationKind.ASSIGNMENT,
            ticket_id=ticket_id,
            title=f"📋 Novo Ticket Atribuído - {ticket.reference}",
            message=f"O ticket \"{ticket.subject}\" foi automaticamente atribuído a você.",
        ))

        return agent_id
