"""
pytest configuration and shared fixtures

Integration tests run against a throwaway SQLite database (aiosqlite)
with the same ORM models and repositories as production.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("WATCH_ENGINE_CONFIG", "false")

from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from agency_desk.config import settings
from agency_desk.container import EngineContainer
from agency_desk.infrastructure.database import create_tables
from agency_desk.tickets.application import IAgentDirectory, INotificationSink
from agency_desk.tickets.domain import (
    AutoCloseConfig,
    EngineConfig,
    EscalationRule,
    NotificationEvent,
    SLAPolicyConfig,
)
from agency_desk.tickets.infrastructure import (
    ClientModel,
    SLATrackingModel,
    StaticConfigProvider,
    TicketModel,
)

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
DEPARTMENT = "support"
SUPERVISOR = "supervisor-1"


class RecordingNotificationSink(INotificationSink):
    """Keeps emitted events in memory."""

    def __init__(self):
        self.events: List[NotificationEvent] = []

    async def emit(self, event: NotificationEvent) -> bool:
        self.events.append(event)
        return True

    def of_kind(self, kind: str) -> List[NotificationEvent]:
        return [event for event in self.events if event.kind == kind]


class StaticAgentDirectory(IAgentDirectory):
    """Fixed list of eligible agents, optionally per department."""

    def __init__(self, agent_ids: List[str], by_department: Optional[dict] = None):
        self.agent_ids = agent_ids
        self.by_department = by_department or {}

    async def get_eligible_agent_ids(self, department_id: Optional[str]) -> List[str]:
        return list(self.by_department.get(department_id, self.agent_ids))


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(
        sla_policies=[
            SLAPolicyConfig(
                department_id=DEPARTMENT,
                priority="high",
                first_response_minutes=60,
                resolution_minutes=480,
            ),
            SLAPolicyConfig(priority="urgent", first_response_minutes=15, resolution_minutes=240),
        ],
        escalation_rules=[
            EscalationRule(
                id="high-idle",
                department_id=DEPARTMENT,
                priority="high",
                hours_without_response=2,
                escalate_to_agent_id=SUPERVISOR,
            ),
        ],
        auto_close=[AutoCloseConfig(days_after_resolved=5)],
    )


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tickets.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def directory() -> StaticAgentDirectory:
    return StaticAgentDirectory(["agent-a", "agent-b"])


@pytest.fixture
def container(session_factory, engine_config, sink, directory) -> EngineContainer:
    return EngineContainer(
        session_factory,
        settings,
        config_provider=StaticConfigProvider(engine_config),
        notification_sink=sink,
        agent_directory=directory,
    )


@pytest.fixture
def seed_ticket(session_factory):
    """
    Insert a ticket row directly, bypassing the services.

    Returns an async function taking the column values to override; SLA
    tracking is added when ``tracking`` is given as a dict of columns.
    """

    async def _seed(
        status: str = "open",
        priority: str = "high",
        department_id: str = DEPARTMENT,
        assigned_to: Optional[str] = None,
        created_at: datetime = NOW - timedelta(hours=3),
        last_response_at: Optional[datetime] = None,
        resolved_at: Optional[datetime] = None,
        closed_at: Optional[datetime] = None,
        client_user_id: Optional[str] = None,
        tracking: Optional[dict] = None,
        subject: str = "Printer offline",
        ticket_number: Optional[int] = None,
    ) -> str:
        ticket_id = uuid4()
        async with session_factory() as session:
            async with session.begin():
                client_id = None
                if client_user_id is not None:
                    client_id = uuid4()
                    session.add(ClientModel(id=client_id, name="Acme Ltda", user_id=client_user_id))
                session.add(TicketModel(
                    id=ticket_id,
                    ticket_number=ticket_number,
                    subject=subject,
                    description="",
                    status=status,
                    priority=priority,
                    department_id=department_id,
                    client_id=client_id,
                    assigned_to=assigned_to,
                    created_at=created_at,
                    updated_at=created_at,
                    last_response_at=last_response_at,
                    resolved_at=resolved_at,
                    closed_at=closed_at,
                ))
                if tracking is not None:
                    session.add(SLATrackingModel(ticket_id=ticket_id, **tracking))
        return str(ticket_id)

    return _seed


@pytest.fixture
def load_ticket(session_factory):
    """Read a ticket row back."""

    async def _load(ticket_id: str) -> TicketModel:
        async with session_factory() as session:
            return await session.get(TicketModel, UUID(ticket_id))

    return _load


@pytest.fixture
def load_tracking(session_factory):
    """Read an SLA tracking row back."""

    async def _load(ticket_id: str) -> SLATrackingModel:
        async with session_factory() as session:
            return await session.get(SLATrackingModel, UUID(ticket_id))

    return _load
