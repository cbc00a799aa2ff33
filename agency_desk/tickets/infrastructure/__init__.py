"""
Ticket Infrastructure Layer
===========================

Infrastructure implementations for the ticket engine:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and the role-based agent directory
- External: Config watcher, notification sinks, pass scheduler
"""

from agency_desk.tickets.infrastructure.models import (
    TicketModel,
    SLATrackingModel,
    TicketMessageModel,
    NotificationModel,
    UserRoleModel,
    ClientModel,
)
from agency_desk.tickets.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    SQLAlchemySLATrackingRepository,
    SQLAlchemyAgentDirectory,
)
from agency_desk.tickets.infrastructure.external import (
    EngineConfigManager,
    StaticConfigProvider,
    DatabaseNotificationSink,
    WebhookNotificationSink,
    CompositeNotificationSink,
    CircuitBreaker,
    PassScheduler,
)

__all__ = [
    "TicketModel",
    "SLATrackingModel",
    "TicketMessageModel",
    "NotificationModel",
    "UserRoleModel",
    "ClientModel",
    "SQLAlchemyTicketRepository",
    "SQLAlchemySLATrackingRepository",
    "SQLAlchemyAgentDirectory",
    "EngineConfigManager",
    "StaticConfigProvider",
    "DatabaseNotificationSink",
    "WebhookNotificationSink",
    "CompositeNotificationSink",
    "CircuitBreaker",
    "PassScheduler",
]
