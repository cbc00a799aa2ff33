"""
Ticket Domain Layer
===================

Domain layer for the ticket lifecycle and SLA engine.

Contains:
- Status normalization: canonical statuses and the status update payload
- Entities: Ticket, SLATracking, TicketMessage, NotificationEvent
- Value Objects: EngineConfig, EscalationRule, AutoCloseConfig, SLATargets
- Domain Services: SLAPolicyResolver

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from agency_desk.tickets.domain.status import (
    STATUS_ALIASES,
    STATUS_LABELS,
    StatusUpdate,
    normalize_status,
    status_label,
    status_update_payload,
)
from agency_desk.tickets.domain.entities import (
    Ticket,
    SLATracking,
    SLABadge,
    TicketMessage,
    NotificationEvent,
    utc_now,
)
from agency_desk.tickets.domain.value_objects import (
    EngineConfig,
    SLAPolicyConfig,
    DefaultPolicyConfig,
    EscalationRule,
    AutoCloseConfig,
    SLATargets,
    SLAPolicyResolver,
)

__all__ = [
    # Status
    "STATUS_ALIASES",
    "STATUS_LABELS",
    "StatusUpdate",
    "normalize_status",
    "status_label",
    "status_update_payload",
    # Entities
    "Ticket",
    "SLATracking",
    "SLABadge",
    "TicketMessage",
    "NotificationEvent",
    "utc_now",
    # Value Objects & Services
    "EngineConfig",
    "SLAPolicyConfig",
    "DefaultPolicyConfig",
    "EscalationRule",
    "AutoCloseConfig",
    "SLATargets",
    "SLAPolicyResolver",
]
