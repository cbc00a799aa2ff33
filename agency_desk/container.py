"""
Composition Root
================

Wires repositories, sinks, services and scanners together.

The API, the CLI and the in-process scheduler all build one container
and work through it; tests build one against their own database and
collaborators.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agency_desk.config import Settings, settings as default_settings
from agency_desk.shared.infrastructure.logging import get_logger
from agency_desk.tickets.application import (
    AssignmentBalancer,
    AutoCloseScanner,
    EscalationScanner,
    IAgentDirectory,
    IEngineConfigProvider,
    INotificationSink,
    SLACheckScanner,
    SLATrackingService,
    TicketIntakeService,
    TicketStatusService,
)
from agency_desk.tickets.infrastructure import (
    CompositeNotificationSink,
    DatabaseNotificationSink,
    EngineConfigManager,
    PassScheduler,
    SQLAlchemyAgentDirectory,
    SQLAlchemySLATrackingRepository,
    SQLAlchemyTicketRepository,
    WebhookNotificationSink,
)

logger = get_logger(__name__)


class EngineContainer:
    """
    The Composition Root for the ticket engine.
    Handles dependency injection manually.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        config_provider: Optional[IEngineConfigProvider] = None,
        notification_sink: Optional[INotificationSink] = None,
        agent_directory: Optional[IAgentDirectory] = None
    ):
        self.settings = settings or default_settings
        self.session_factory = session_factory

        # Configuration
        self.config_manager: Optional[EngineConfigManager] = None
        if config_provider is None:
            self.config_manager = EngineConfigManager()
            self.config_manager.load(self.settings.engine_config_path)
            config_provider = self.config_manager
        self.config_provider = config_provider

        # Infrastructure Layer
        self.ticket_repository = SQLAlchemyTicketRepository(session_factory)
        self.sla_repository = SQLAlchemySLATrackingRepository(session_factory)
        self.agent_directory = agent_directory or SQLAlchemyAgentDirectory(
            session_factory,
            roles=self.settings.assignment_roles
        )

        self.webhook_sink: Optional[WebhookNotificationSink] = None
        if notification_sink is None:
            notification_sink = self._build_notification_sink(session_factory)
        self.notification_sink = notification_sink

        # Application Layer
        self.assignment_balancer = AssignmentBalancer(
            self.ticket_repository,
            self.agent_directory,
            self.notification_sink
        )
        self.status_service = TicketStatusService(self.ticket_repository, self.sla_repository)
        self.sla_service = SLATrackingService(self.ticket_repository, self.sla_repository)
        self.intake_service = TicketIntakeService(
            self.ticket_repository,
            self.sla_repository,
            self.config_provider,
            self.assignment_balancer
        )

        # Scanners
        self.escalation_scanner = EscalationScanner(
            self.ticket_repository,
            self.config_provider,
            self.notification_sink
        )
        self.auto_close_scanner = AutoCloseScanner(
            self.ticket_repository,
            self.config_provider,
            self.notification_sink
        )
        self.sla_check_scanner = SLACheckScanner(self.sla_repository, self.notification_sink)

        self.scheduler: Optional[PassScheduler] = None

    def _build_notification_sink(
        self,
        session_factory: async_sessionmaker[AsyncSession]
    ) -> INotificationSink:
        database_sink = DatabaseNotificationSink(session_factory)
        if not self.settings.notification_webhook_url:
            return database_sink

        self.webhook_sink = WebhookNotificationSink(
            self.settings.notification_webhook_url,
            timeout_seconds=self.settings.notification_timeout_seconds
        )
        return CompositeNotificationSink([database_sink, self.webhook_sink])

    async def start(self) -> None:
        """Start the config watcher and, when enabled, the pass scheduler."""
        if self.config_manager is not None and self.settings.watch_engine_config:
            self.config_manager.start_watching()

        if self.settings.scheduler_enabled:
            self.scheduler = PassScheduler()
            self.scheduler.add_pass(
                "escalation_pass",
                self.escalation_scanner.run_escalation_pass,
                self.settings.escalation_interval_seconds
            )
            self.scheduler.add_pass(
                "auto_close_pass",
                self.auto_close_scanner.run_auto_close_pass,
                self.settings.auto_close_interval_seconds
            )
            self.scheduler.add_pass(
                "sla_check_pass",
                self.sla_check_scanner.run_sla_check_pass,
                self.settings.sla_check_interval_seconds
            )
            await self.scheduler.start()

    async def close(self) -> None:
        """Stop background work and release HTTP clients."""
        if self.scheduler is not None:
            await self.scheduler.stop()
        if self.config_manager is not None:
            self.config_manager.stop_watching()
        if self.webhook_sink is not None:
            await self.webhook_sink.close()
