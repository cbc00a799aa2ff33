"""
Ticket Infrastructure Repositories
==================================

Concrete implementations of repository interfaces using SQLAlchemy.

Each public method runs in its own transaction. Writes that must not
be repeated carry their eligibility predicate in the UPDATE itself and
report through the affected row count whether they applied.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agency_desk.config import TERMINAL_STATUSES, TicketStatus, WORKLOAD_STATUSES
from agency_desk.core import RepositoryException
from agency_desk.shared.infrastructure.logging import get_logger
from agency_desk.tickets.application.services import (
    IAgentDirectory,
    ISLATrackingRepository,
    ITicketRepository,
)
from agency_desk.tickets.domain import (
    EscalationRule,
    SLATracking,
    StatusUpdate,
    Ticket,
    TicketMessage,
)
from agency_desk.tickets.infrastructure.models import (
    ClientModel,
    SLATrackingModel,
    TicketMessageModel,
    TicketModel,
    UserRoleModel,
)

logger = get_logger(__name__)


def _uuid(value: Optional[str]) -> Optional[UUID]:
    """Parse an id; malformed ids match nothing."""
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Some backends (SQLite) hand back naive datetimes; all stored times are UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _ticket_from_row(
    model: TicketModel,
    client_user_id: Optional[str] = None,
    client_name: Optional[str] = None
) -> Ticket:
    return Ticket(
        id=str(model.id),
        ticket_number=model.ticket_number,
        subject=model.subject,
        description=model.description,
        status=model.status,
        priority=model.priority,
        department_id=model.department_id,
        client_id=str(model.client_id) if model.client_id else None,
        created_by=model.created_by,
        assigned_agent_id=model.assigned_to,
        created_at=_as_utc(model.created_at),
        updated_at=_as_utc(model.updated_at),
        last_response_at=_as_utc(model.last_response_at),
        resolved_at=_as_utc(model.resolved_at),
        closed_at=_as_utc(model.closed_at),
        client_user_id=client_user_id,
        client_name=client_name,
    )


def _tracking_from_model(model: SLATrackingModel) -> SLATracking:
    return SLATracking(
        ticket_id=str(model.ticket_id),
        first_response_due_at=_as_utc(model.first_response_due_at),
        resolution_due_at=_as_utc(model.resolution_due_at),
        first_response_at=_as_utc(model.first_response_at),
        first_response_breached=model.first_response_breached,
        resolution_at=_as_utc(model.resolution_at),
        resolution_breached=model.resolution_breached,
        warned_at=_as_utc(model.warned_at),
    )


def _message_model(message: TicketMessage, ticket_uuid: UUID) -> TicketMessageModel:
    return TicketMessageModel(
        ticket_id=ticket_uuid,
        user_id=message.user_id,
        message=message.message,
        is_internal=message.is_internal,
        created_at=message.created_at,
    )


def _breach_values(tracking: SLATracking) -> Dict[str, bool]:
    """Breach columns to write: only flags that are true."""
    values = {}
    if tracking.first_response_breached:
        values["first_response_breached"] = True
    if tracking.resolution_breached:
        values["resolution_breached"] = True
    return values


def _update(model):
    return update(model).execution_options(synchronize_session=False)


def _ticket_with_client():
    return (
        select(TicketModel, ClientModel.user_id, ClientModel.name)
        .outerjoin(ClientModel, ClientModel.id == TicketModel.client_id)
    )


class _SQLAlchemyRepository:
    """Shared transaction handling for the repositories."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error("Database error", extra={"error": str(e)})
            raise RepositoryException(f"Database error: {e}") from e

    @staticmethod
    async def _save_tracking(session: AsyncSession, tracking: SLATracking, now: datetime) -> None:
        values = {
            "first_response_at": tracking.first_response_at,
            "resolution_at": tracking.resolution_at,
            "updated_at": now,
            **_breach_values(tracking),
        }
        await session.execute(
            _update(SLATrackingModel)
            .where(SLATrackingModel.ticket_id == _uuid(tracking.ticket_id))
            .values(**values)
        )


class SQLAlchemyTicketRepository(_SQLAlchemyRepository, ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Handles persistence of Ticket entities using async SQLAlchemy.
    """

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        ticket_uuid = _uuid(ticket_id)
        if ticket_uuid is None:
            return None

        async with self._transaction() as session:
            result = await session.execute(_ticket_with_client().where(TicketModel.id == ticket_uuid))
            row = result.one_or_none()

        if row is None:
            return None
        return _ticket_from_row(*row)

    async def create(self, ticket: Ticket, tracking: SLATracking) -> Ticket:
        ticket_uuid = _uuid(ticket.id)
        if ticket_uuid is None:
            raise RepositoryException(f"Invalid ticket ID: {ticket.id}")

        async with self._transaction() as session:
            last_number = await session.scalar(select(func.max(TicketModel.ticket_number)))
            ticket.ticket_number = (last_number or 0) + 1
            session.add(TicketModel(
                id=ticket_uuid,
                ticket_number=ticket.ticket_number,
                subject=ticket.subject,
                description=ticket.description,
                status=ticket.status,
                priority=ticket.priority,
                department_id=ticket.department_id,
                client_id=_uuid(ticket.client_id),
                created_by=ticket.created_by,
                assigned_to=ticket.assigned_agent_id,
                created_at=ticket.created_at,
                updated_at=ticket.updated_at,
            ))
            session.add(SLATrackingModel(
                ticket_id=ticket_uuid,
                first_response_due_at=tracking.first_response_due_at,
                resolution_due_at=tracking.resolution_due_at,
                created_at=ticket.created_at,
                updated_at=ticket.created_at,
            ))

        return ticket

    async def apply_status_update(
        self,
        ticket_id: str,
        status_update: StatusUpdate,
        tracking: Optional[SLATracking] = None
    ) -> bool:
        stmt = _update(TicketModel).where(TicketModel.id == _uuid(ticket_id))
        if status_update.status != TicketStatus.CLOSED:
            stmt = stmt.where(TicketModel.status != TicketStatus.CLOSED)

        async with self._transaction() as session:
            result = await session.execute(stmt.values(**status_update.as_values()))
            if result.rowcount == 0:
                return False
            if tracking is not None:
                await self._save_tracking(session, tracking, status_update.updated_at)

        return True

    async def record_response(
        self,
        ticket_id: str,
        responded_at: datetime,
        tracking: Optional[SLATracking] = None,
        message: Optional[TicketMessage] = None
    ) -> None:
        ticket_uuid = _uuid(ticket_id)

        async with self._transaction() as session:
            await session.execute(
                _update(TicketModel)
                .where(TicketModel.id == ticket_uuid)
                .values(last_response_at=responded_at, updated_at=responded_at)
            )
            if tracking is not None:
                await self._save_tracking(session, tracking, responded_at)
            if message is not None:
                session.add(_message_model(message, ticket_uuid))

    async def assign(
        self,
        ticket_id: str,
        agent_id: str,
        status_update: StatusUpdate,
        message: TicketMessage
    ) -> bool:
        ticket_uuid = _uuid(ticket_id)

        async with self._transaction() as session:
            result = await session.execute(
                _update(TicketModel)
                .where(TicketModel.id == ticket_uuid, TicketModel.status.not_in(TERMINAL_STATUSES))
                .values(assigned_to=agent_id, **status_update.as_values())
            )
            if result.rowcount == 0:
                return False
            session.add(_message_model(message, ticket_uuid))

        return True

    async def count_open_workload(self, agent_ids: List[str]) -> Dict[str, int]:
        if not agent_ids:
            return {}

        stmt = (
            select(TicketModel.assigned_to, func.count(TicketModel.id))
            .where(
                TicketModel.assigned_to.in_(agent_ids),
                TicketModel.status.in_(WORKLOAD_STATUSES),
            )
            .group_by(TicketModel.assigned_to)
        )

        async with self._transaction() as session:
            result = await session.execute(stmt)
            return {agent_id: count for agent_id, count in result.all()}

    @staticmethod
    def _escalation_conditions(rule: EscalationRule, cutoff: datetime) -> list:
        conditions = [
            TicketModel.status.in_(WORKLOAD_STATUSES),
            TicketModel.priority == rule.priority,
            or_(
                TicketModel.assigned_to.is_(None),
                TicketModel.assigned_to != rule.escalate_to_agent_id,
            ),
            or_(
                TicketModel.last_response_at.is_(None),
                TicketModel.last_response_at < cutoff,
            ),
        ]
        if rule.department_id is not None:
            conditions.append(TicketModel.department_id == rule.department_id)
        return conditions

    async def find_escalation_candidates(
        self,
        rule: EscalationRule,
        cutoff: datetime
    ) -> List[Ticket]:
        stmt = (
            _ticket_with_client()
            .where(and_(*self._escalation_conditions(rule, cutoff)))
            .order_by(TicketModel.created_at.asc())
        )

        async with self._transaction() as session:
            result = await session.execute(stmt)
            return [_ticket_from_row(*row) for row in result.all()]

    async def escalate(
        self,
        ticket_id: str,
        rule: EscalationRule,
        cutoff: datetime,
        message: TicketMessage,
        now: datetime
    ) -> bool:
        ticket_uuid = _uuid(ticket_id)

        async with self._transaction() as session:
            result = await session.execute(
                _update(TicketModel)
                .where(TicketModel.id == ticket_uuid, *self._escalation_conditions(rule, cutoff))
                .values(assigned_to=rule.escalate_to_agent_id, updated_at=now)
            )
            if result.rowcount == 0:
                return False
            session.add(_message_model(message, ticket_uuid))

        return True

    async def find_auto_close_candidates(self, cutoff: datetime) -> List[Ticket]:
        stmt = (
            _ticket_with_client()
            .where(
                TicketModel.status == TicketStatus.RESOLVED,
                TicketModel.resolved_at.is_not(None),
                TicketModel.resolved_at < cutoff,
            )
            .order_by(TicketModel.resolved_at.asc())
        )

        async with self._transaction() as session:
            result = await session.execute(stmt)
            return [_ticket_from_row(*row) for row in result.all()]

    async def close_resolved(
        self,
        ticket_id: str,
        status_update: StatusUpdate,
        message: TicketMessage
    ) -> bool:
        ticket_uuid = _uuid(ticket_id)

        async with self._transaction() as session:
            result = await session.execute(
                _update(TicketModel)
                .where(TicketModel.id == ticket_uuid, TicketModel.status == TicketStatus.RESOLVED)
                .values(**status_update.as_values())
            )
            if result.rowcount == 0:
                return False
            session.add(_message_model(message, ticket_uuid))

        return True


class SQLAlchemySLATrackingRepository(_SQLAlchemyRepository, ISLATrackingRepository):
    """SQLAlchemy implementation of SLA tracking repository."""

    async def get(self, ticket_id: str) -> Optional[SLATracking]:
        ticket_uuid = _uuid(ticket_id)
        if ticket_uuid is None:
            return None

        async with self._transaction() as session:
            model = await session.get(SLATrackingModel, ticket_uuid)
            return _tracking_from_model(model) if model is not None else None

    async def create(self, tracking: SLATracking) -> SLATracking:
        ticket_uuid = _uuid(tracking.ticket_id)
        if ticket_uuid is None:
            raise RepositoryException(f"Invalid ticket ID: {tracking.ticket_id}")

        async with self._transaction() as session:
            session.add(SLATrackingModel(
                ticket_id=ticket_uuid,
                first_response_due_at=tracking.first_response_due_at,
                resolution_due_at=tracking.resolution_due_at,
                first_response_at=tracking.first_response_at,
                first_response_breached=tracking.first_response_breached,
                resolution_at=tracking.resolution_at,
                resolution_breached=tracking.resolution_breached,
            ))

        return tracking

    async def persist_breaches(self, tracking: SLATracking) -> None:
        values = _breach_values(tracking)
        if not values:
            return

        async with self._transaction() as session:
            await session.execute(
                _update(SLATrackingModel)
                .where(SLATrackingModel.ticket_id == _uuid(tracking.ticket_id))
                .values(**values)
            )

    async def list_pending_before(
        self,
        horizon: datetime
    ) -> List[Tuple[SLATracking, Ticket]]:
        stmt = (
            select(SLATrackingModel, TicketModel, ClientModel.user_id, ClientModel.name)
            .join(TicketModel, TicketModel.id == SLATrackingModel.ticket_id)
            .outerjoin(ClientModel, ClientModel.id == TicketModel.client_id)
            .where(
                TicketModel.status.not_in(TERMINAL_STATUSES),
                SLATrackingModel.first_response_breached.is_(False),
                SLATrackingModel.resolution_breached.is_(False),
                or_(
                    and_(
                        SLATrackingModel.first_response_at.is_(None),
                        SLATrackingModel.first_response_due_at <= horizon,
                    ),
                    and_(
                        SLATrackingModel.resolution_at.is_(None),
                        SLATrackingModel.resolution_due_at <= horizon,
                    ),
                ),
            )
            .order_by(SLATrackingModel.first_response_due_at.asc())
        )

        async with self._transaction() as session:
            result = await session.execute(stmt)
            return [
                (_tracking_from_model(tracking), _ticket_from_row(ticket, client_user_id, client_name))
                for tracking, ticket, client_user_id, client_name in result.all()
            ]

    async def mark_warned(self, ticket_id: str, now: datetime) -> bool:
        async with self._transaction() as session:
            result = await session.execute(
                _update(SLATrackingModel)
                .where(
                    SLATrackingModel.ticket_id == _uuid(ticket_id),
                    SLATrackingModel.warned_at.is_(None),
                )
                .values(warned_at=now, updated_at=now)
            )
            return result.rowcount == 1

    async def breach_counts(self) -> Dict[str, int]:
        def _count(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        stmt = select(
            func.count(SLATrackingModel.ticket_id),
            _count(SLATrackingModel.first_response_breached.is_(True)),
            _count(SLATrackingModel.resolution_breached.is_(True)),
            _count(or_(
                SLATrackingModel.first_response_breached.is_(True),
                SLATrackingModel.resolution_breached.is_(True),
            )),
        )

        async with self._transaction() as session:
            result = await session.execute(stmt)
            tracked, first_response, resolution, any_breached = result.one()

        return {
            "tracked": int(tracked),
            "first_response_breached": int(first_response),
            "resolution_breached": int(resolution),
            "any_breached": int(any_breached),
        }


class SQLAlchemyAgentDirectory(_SQLAlchemyRepository, IAgentDirectory):
    """
    Agent directory backed by the user_roles table.

    Users holding one of the assignment roles are eligible, either in the
    ticket's department or in every department (NULL department).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        roles: Sequence[str]
    ):
        super().__init__(session_factory)
        self._roles = list(roles)

    async def get_eligible_agent_ids(self, department_id: Optional[str]) -> List[str]:
        conditions = [UserRoleModel.role.in_(self._roles)]
        if department_id is not None:
            conditions.append(or_(
                UserRoleModel.department_id.is_(None),
                UserRoleModel.department_id == department_id,
            ))

        stmt = (
            select(UserRoleModel.user_id)
            .where(*conditions)
            .distinct()
            .order_by(UserRoleModel.user_id.asc())
        )

        async with self._transaction() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
