"""
Ticket Domain Entities
======================

Pure Python domain entities for the ticket lifecycle and SLA engine.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Optional

from agency_desk.config import TicketStatus, SLABadgeKind, TERMINAL_STATUSES
from agency_desk.tickets.domain.status import StatusUpdate
from agency_desk.tickets.domain.value_objects import SLATargets


# Urgency bands of the SLA badge
FIRST_RESPONSE_URGENT_WINDOW = timedelta(minutes=60)
RESOLUTION_URGENT_WINDOW = timedelta(hours=4)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Ticket:
    """
    Ticket entity.

    Mutated only through the status-update path, the response path, the
    assignment balancer and the scanners.
    """

    id: str
    subject: str
    status: str
    priority: str
    department_id: str
    created_at: datetime
    updated_at: datetime

    description: str = ""
    ticket_number: Optional[int] = None
    client_id: Optional[str] = None
    created_by: Optional[str] = None
    assigned_agent_id: Optional[str] = None
    last_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    # Loaded with the ticket when the client has a portal user
    client_user_id: Optional[str] = None
    client_name: Optional[str] = None

    @property
    def reference(self) -> str:
        """Human-facing ticket reference used in notification titles."""
        if self.ticket_number is not None:
            return f"#{self.ticket_number}"
        return f"#{self.id[:8]}"

    @property
    def is_closed(self) -> bool:
        return self.status == TicketStatus.CLOSED

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def apply_status_update(self, update: StatusUpdate) -> None:
        """Mirror a persisted status update on the in-memory entity."""
        self.status = update.status
        self.updated_at = update.updated_at
        if update.status == TicketStatus.RESOLVED:
            self.resolved_at = update.resolved_at
            self.closed_at = None
        elif update.status == TicketStatus.CLOSED:
            self.closed_at = update.closed_at
        else:
            self.resolved_at = None
            self.closed_at = None


@dataclass(frozen=True)
class SLABadge:
    """What the UI shows next to a ticket about its SLA."""
    kind: str
    label: str
    minutes_remaining: Optional[int] = None


@dataclass
class SLATracking:
    """
    Per-ticket SLA state.

    Breach flags are monotonic: once true they are never set back to
    false, whatever happens to the timestamps later.
    """

    ticket_id: str
    first_response_due_at: datetime
    resolution_due_at: datetime
    first_response_at: Optional[datetime] = None
    first_response_breached: bool = False
    resolution_at: Optional[datetime] = None
    resolution_breached: bool = False
    warned_at: Optional[datetime] = None

    @classmethod
    def start(cls, ticket_id: str, created_at: datetime, targets: SLATargets) -> "SLATracking":
        """Tracking for a new ticket, due times computed from its creation."""
        return cls(
            ticket_id=ticket_id,
            first_response_due_at=created_at + targets.first_response,
            resolution_due_at=created_at + targets.resolution,
        )

    @property
    def is_any_breached(self) -> bool:
        return self.first_response_breached or self.resolution_breached

    def record_first_response(self, timestamp: Optional[datetime] = None) -> bool:
        """
        Record the first agent response.

        Returns True when the response came after its due time. The breach
        flag itself is only changed by evaluate_breaches().
        """
        if self.first_response_at is not None:
            return False
        self.first_response_at = timestamp or utc_now()
        return self.first_response_at > self.first_response_due_at

    def record_resolution(self, timestamp: Optional[datetime] = None) -> None:
        """Stop the resolution clock (keeps the first recorded time)."""
        if self.resolution_at is None:
            self.resolution_at = timestamp or utc_now()

    def reopen(self) -> None:
        """Restart the resolution clock of a reopened ticket."""
        self.resolution_at = None

    def evaluate_breaches(self, now: Optional[datetime] = None) -> bool:
        """
        Re-evaluate breach flags against the clock.

        Returns True if a flag flipped to true during this evaluation.
        """
        now = now or utc_now()
        first_response = self.first_response_at is None and now > self.first_response_due_at
        resolution = self.resolution_at is None and now > self.resolution_due_at

        changed = (first_response and not self.first_response_breached) or \
            (resolution and not self.resolution_breached)

        self.first_response_breached = self.first_response_breached or first_response
        self.resolution_breached = self.resolution_breached or resolution
        return changed

    def next_pending_deadline(self) -> Optional[datetime]:
        """The earliest due time whose event has not happened yet."""
        pending = []
        if self.first_response_at is None:
            pending.append(self.first_response_due_at)
        if self.resolution_at is None:
            pending.append(self.resolution_due_at)
        return min(pending) if pending else None

    def badge(self, status: str, now: Optional[datetime] = None) -> Optional[SLABadge]:
        """
        Badge for the ticket's current state.

        Resolved and closed tickets only report whether the resolution SLA
        held. Open tickets report the first-response clock until it is
        answered, then the resolution clock.
        """
        now = now or utc_now()

        if status in TERMINAL_STATUSES:
            if self.resolution_breached:
                return SLABadge(SLABadgeKind.BREACHED, "SLA Estourado")
            return SLABadge(SLABadgeKind.OK, "SLA OK")

        if self.first_response_at is None:
            remaining = self.first_response_due_at - now
            minutes = int(remaining.total_seconds() // 60)
            if remaining < timedelta(0):
                return SLABadge(SLABadgeKind.FIRST_RESPONSE_OVERDUE, "Primeira Resposta Atrasada", minutes)
            if remaining <= FIRST_RESPONSE_URGENT_WINDOW:
                return SLABadge(SLABadgeKind.FIRST_RESPONSE_URGENT, f"Responder em {minutes}min", minutes)
            return SLABadge(
                SLABadgeKind.FIRST_RESPONSE_ON_TRACK,
                f"Responder até {self.first_response_due_at:%d/%m %H:%M}",
                minutes,
            )

        if self.resolution_at is None:
            remaining = self.resolution_due_at - now
            minutes = int(remaining.total_seconds() // 60)
            if remaining < timedelta(0):
                return SLABadge(SLABadgeKind.RESOLUTION_OVERDUE, "SLA de Resolução Atrasado", minutes)
            if remaining <= RESOLUTION_URGENT_WINDOW:
                return SLABadge(SLABadgeKind.RESOLUTION_URGENT, f"Resolver em {minutes // 60}h", minutes)
            return SLABadge(
                SLABadgeKind.RESOLUTION_ON_TRACK,
                f"Resolver até {self.resolution_due_at:%d/%m %H:%M}",
                minutes,
            )

        return None


@dataclass
class TicketMessage:
    """A message on a ticket; internal messages are the audit trail."""
    ticket_id: str
    message: str
    user_id: Optional[str] = None
    is_internal: bool = True
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class NotificationEvent:
    """Event handed to the notification sink; delivery is the sink's concern."""
    target_agent_id: str
    kind: str
    ticket_id: str
    title: str
    message: str
