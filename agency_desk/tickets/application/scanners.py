"""
Ticket Scanners
===============

Batch passes run by an external scheduler (cron, APScheduler, a job
endpoint). Each pass is stateless and safe to run twice: the query
predicates exclude tickets that were already handled, and every write
repeats the predicate so a concurrent pass cannot act on the same ticket
twice.

A failure on one ticket (or one rule) is logged and collected in the
pass result; the pass carries on with the rest.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from agency_desk.config import NotificationKind, TicketStatus
from agency_desk.core import RepositoryException
from agency_desk.shared.infrastructure.logging import get_logger, log_latency
from agency_desk.tickets.application.services import (
    IEngineConfigProvider,
    INotificationSink,
    ISLATrackingRepository,
    ITicketRepository,
)
from agency_desk.tickets.domain import (
    EngineConfig,
    EscalationRule,
    NotificationEvent,
    SLATracking,
    Ticket,
    TicketMessage,
    status_update_payload,
    utc_now,
)

logger = get_logger(__name__)

DEFAULT_CLIENT_NAME = "Cliente"
SLA_WARNING_WINDOW = timedelta(hours=1)


@dataclass
class EscalationPassResult:
    rules_checked: int = 0
    tickets_escalated: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class AutoClosePassResult:
    tickets_closed: int = 0
    config_active: bool = True
    failures: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class SLACheckPassResult:
    checked_tickets: int = 0
    notifications_created: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)


def _hours(value: float) -> str:
    return f"{value:g}"


def _client(ticket: Ticket) -> str:
    return ticket.client_name or DEFAULT_CLIENT_NAME


def _record_failure(
    failures: List[Dict[str, Any]],
    message: str,
    error: Exception,
    **context: Any
) -> None:
    """Log a per-ticket failure and add it to the pass result."""
    if isinstance(error, RepositoryException):
        logger.error(message, extra={**context, "error": error.message})
        failures.append({**context, "error": error.message})
    else:
        logger.exception(message, extra={**context, "error": str(error)})
        failures.append({**context, "error": f"{type(error).__name__}: {error}"})


class EscalationScanner:
    """Reassigns tickets that went unanswered past a rule's threshold."""

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        config_provider: IEngineConfigProvider,
        notification_sink: INotificationSink
    ):
        self._ticket_repo = ticket_repository
        self._config_provider = config_provider
        self._sink = notification_sink

    async def run_escalation_pass(
        self,
        config: Optional[EngineConfig] = None,
        now: Optional[datetime] = None
    ) -> EscalationPassResult:
        """
        Run one escalation pass over every active rule.

        Escalation changes ownership only; the ticket status is left alone.
        """
        config = config or self._config_provider.get_config()
        now = now or utc_now()
        result = EscalationPassResult()

        with log_latency(logger, "escalation_pass"):
            for rule in config.active_escalation_rules():
                result.rules_checked += 1
                await self._apply_rule(rule, now, result)

        logger.info(
            "Escalation pass completed",
            extra={
                "rules_checked": result.rules_checked,
                "tickets_escalated": result.tickets_escalated,
                "failures": len(result.failures),
            }
        )
        return result

    async def _apply_rule(
        self,
        rule: EscalationRule,
        now: datetime,
        result: EscalationPassResult
    ) -> None:
        cutoff = now - rule.idle_threshold

        try:
            candidates = await self._ticket_repo.find_escalation_candidates(rule, cutoff)
        except RepositoryException as e:
            _record_failure(result.failures, "Failed to load escalation candidates", e, rule=rule.label)
            return

        for ticket in candidates:
            try:
                if not await self._escalate(ticket, rule, cutoff, now):
                    continue
                result.tickets_escalated += 1
                await self._notify(ticket, rule)
            except Exception as e:
                _record_failure(
                    result.failures, "Failed to escalate ticket", e,
                    ticket_id=ticket.id, rule=rule.label
                )

    async def _escalate(
        self,
        ticket: Ticket,
        rule: EscalationRule,
        cutoff: datetime,
        now: datetime
    ) -> bool:
        audit = TicketMessage(
            ticket_id=ticket.id,
            user_id=rule.escalate_to_agent_id,
            message=(
                "🔼 Ticket escalonado automaticamente devido à falta de resposta "
                f"em {_hours(rule.hours_without_response)} horas."
            ),
            created_at=now,
        )
        if not await self._ticket_repo.escalate(ticket.id, rule, cutoff, audit, now):
            return False

        logger.info(
            "Ticket escalated",
            extra={
                "ticket_id": ticket.id,
                "rule": rule.label,
                "from_agent_id": ticket.assigned_agent_id,
                "to_agent_id": rule.escalate_to_agent_id,
            }
        )
        return True

    async def _notify(self, ticket: Ticket, rule: EscalationRule) -> None:
        await self._sink.emit(NotificationEvent(
            target_agent_id=rule.escalate_to_agent_id,
            kind=NotificationKind.ESCALATION,
            ticket_id=ticket.id,
            title=f"🔼 Ticket Escalonado - {ticket.reference}",
            message=(
                f"O ticket \"{ticket.subject}\" de {_client(ticket)} foi escalonado "
                "para você devido à falta de resposta."
            ),
        ))


class AutoCloseScanner:
    """Closes tickets that stayed resolved for the configured grace period."""

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        config_provider: IEngineConfigProvider,
        notification_sink: INotificationSink
    ):
        self._ticket_repo = ticket_repository
        self._config_provider = config_provider
        self._sink = notification_sink

    async def run_auto_close_pass(
        self,
        config: Optional[EngineConfig] = None,
        now: Optional[datetime] = None
    ) -> AutoClosePassResult:
        config = config or self._config_provider.get_config()
        now = now or utc_now()

        auto_close = config.active_auto_close()
        if auto_close is None:
            logger.info("Auto-close pass skipped: no active config")
            return AutoClosePassResult(config_active=False)

        result = AutoClosePassResult()
        cutoff = now - auto_close.grace_period

        with log_latency(logger, "auto_close_pass"):
            try:
                candidates = await self._ticket_repo.find_auto_close_candidates(cutoff)
            except RepositoryException as e:
                _record_failure(result.failures, "Failed to load auto-close candidates", e)
                candidates = []

            for ticket in candidates:
                try:
                    if not await self._close(ticket, auto_close.days_after_resolved, now):
                        continue
                    result.tickets_closed += 1
                    await self._notify_client(ticket)
                except Exception as e:
                    _record_failure(result.failures, "Failed to auto-close ticket", e, ticket_id=ticket.id)

        logger.info(
            "Auto-close pass completed",
            extra={
                "days_after_resolved": auto_close.days_after_resolved,
                "tickets_closed": result.tickets_closed,
                "failures": len(result.failures),
            }
        )
        return result

    async def _close(self, ticket: Ticket, days_after_resolved: int, now: datetime) -> bool:
        update = status_update_payload(TicketStatus.CLOSED, now)
        audit = TicketMessage(
            ticket_id=ticket.id,
            user_id=ticket.assigned_agent_id or ticket.created_by,
            message=f"✅ Ticket fechado automaticamente após {days_after_resolved} dias resolvido.",
            created_at=now,
        )
        if not await self._ticket_repo.close_resolved(ticket.id, update, audit):
            return False

        logger.info(
            "Ticket auto-closed",
            extra={"ticket_id": ticket.id, "resolved_at": ticket.resolved_at.isoformat()}
        )
        return True

    async def _notify_client(self, ticket: Ticket) -> None:
        if not ticket.client_user_id:
            return
        await self._sink.emit(NotificationEvent(
            target_agent_id=ticket.client_user_id,
            kind=NotificationKind.CLOSURE,
            ticket_id=ticket.id,
            title=f"Ticket {ticket.reference} Fechado",
            message=(
                f"Seu ticket \"{ticket.subject}\" foi fechado automaticamente. "
                "Se precisar de mais ajuda, abra um novo ticket."
            ),
        ))


class SLACheckScanner:
    """
    Warns assigned agents about SLA deadlines that are about to pass.

    Each ticket is warned at most once. Trackers that are already past a
    due time get their breach flags persisted instead of a warning.
    """

    def __init__(
        self,
        sla_repository: ISLATrackingRepository,
        notification_sink: INotificationSink,
        warning_window: timedelta = SLA_WARNING_WINDOW
    ):
        self._sla_repo = sla_repository
        self._sink = notification_sink
        self._warning_window = warning_window

    async def run_sla_check_pass(self, now: Optional[datetime] = None) -> SLACheckPassResult:
        now = now or utc_now()
        result = SLACheckPassResult()

        with log_latency(logger, "sla_check_pass"):
            try:
                at_risk = await self._sla_repo.list_pending_before(now + self._warning_window)
            except RepositoryException as e:
                _record_failure(result.failures, "Failed to load SLA trackers", e)
                at_risk = []
            result.checked_tickets = len(at_risk)

            for tracking, ticket in at_risk:
                try:
                    if await self._check(tracking, ticket, now):
                        result.notifications_created += 1
                except Exception as e:
                    _record_failure(result.failures, "Failed to check ticket SLA", e, ticket_id=ticket.id)

        logger.info(
            "SLA check pass completed",
            extra={
                "checked_tickets": result.checked_tickets,
                "notifications_created": result.notifications_created,
                "failures": len(result.failures),
            }
        )
        return result

    async def _check(self, tracking: SLATracking, ticket: Ticket, now: datetime) -> bool:
        """Persist new breaches or warn the assigned agent; True when a warning went out."""
        if tracking.evaluate_breaches(now):
            await self._sla_repo.persist_breaches(tracking)
            return False
        if tracking.is_any_breached or tracking.warned_at is not None:
            return False
        if not ticket.assigned_agent_id:
            return False
        if not await self._sla_repo.mark_warned(ticket.id, now):
            return False

        deadline = tracking.next_pending_deadline()
        minutes = int((deadline - now).total_seconds() // 60)

        await self._sink.emit(NotificationEvent(
            target_agent_id=ticket.assigned_agent_id,
            kind=NotificationKind.SLA_WARNING,
            ticket_id=ticket.id,
            title=f"⏰ SLA próximo de estourar - Ticket {ticket.reference}",
            message=(
                f"O ticket \"{ticket.subject}\" de {_client(ticket)} está a "
                f"{minutes} minutos de estourar o SLA."
            ),
        ))
        return True
