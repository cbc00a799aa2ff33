"""
Ticket Application Layer
========================

Application layer for the ticket lifecycle module.

Contains:
- Services: status updates, SLA reads and agent responses, ticket intake
- Assignment: least-loaded assignment balancer
- Scanners: escalation, auto-close and SLA warning passes
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from agency_desk.tickets.application.services import (
    TicketStatusService,
    SLATrackingService,
    TicketIntakeService,
    SLAStatusView,
    ResponseRecorded,
    IntakeResult,
    ITicketRepository,
    ISLATrackingRepository,
    IAgentDirectory,
    INotificationSink,
    IEngineConfigProvider,
)
from agency_desk.tickets.application.assignment import (
    AssignmentBalancer,
    select_least_loaded,
)
from agency_desk.tickets.application.scanners import (
    EscalationScanner,
    AutoCloseScanner,
    SLACheckScanner,
    EscalationPassResult,
    AutoClosePassResult,
    SLACheckPassResult,
)

__all__ = [
    # Services
    "TicketStatusService",
    "SLATrackingService",
    "TicketIntakeService",
    "SLAStatusView",
    "ResponseRecorded",
    "IntakeResult",
    "AssignmentBalancer",
    "select_least_loaded",
    # Scanners
    "EscalationScanner",
    "AutoCloseScanner",
    "SLACheckScanner",
    "EscalationPassResult",
    "AutoClosePassResult",
    "SLACheckPassResult",
    # Interfaces
    "ITicketRepository",
    "ISLATrackingRepository",
    "IAgentDirectory",
    "INotificationSink",
    "IEngineConfigProvider",
]
