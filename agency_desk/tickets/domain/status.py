"""
Ticket Status Normalization
===========================

Every status change in the system goes through this module. Raw input
(English tokens, space-separated variants, and the Portuguese labels the UI
has used) is folded into one of the five canonical statuses.

The dictionary is data: new synonyms are added to ``STATUS_ALIASES``,
never as new branches.
"""

import unicodedata
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from agency_desk.config import TicketStatus, VALID_STATUSES
from agency_desk.core import InvalidStatusException


STATUS_ALIASES: Dict[str, str] = {
    # English
    "open": TicketStatus.OPEN,
    "in_progress": TicketStatus.IN_PROGRESS,
    "in progress": TicketStatus.IN_PROGRESS,
    "waiting": TicketStatus.WAITING,
    "resolved": TicketStatus.RESOLVED,
    "closed": TicketStatus.CLOSED,
    # Portuguese
    "aberto": TicketStatus.OPEN,
    "em andamento": TicketStatus.IN_PROGRESS,
    "aguardando": TicketStatus.WAITING,
    "resolvido": TicketStatus.RESOLVED,
    "fechado": TicketStatus.CLOSED,
}

STATUS_LABELS: Dict[str, str] = {
    TicketStatus.OPEN: "Aberto",
    TicketStatus.IN_PROGRESS: "Em Andamento",
    TicketStatus.WAITING: "Aguardando",
    TicketStatus.RESOLVED: "Resolvido",
    TicketStatus.CLOSED: "Fechado",
}


def _fold(value: str) -> str:
    """Strip accents, case-fold and trim."""
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold().strip()


def normalize_status(raw: Any) -> str:
    """
    Canonicalize a status string.

    Args:
        raw: Status as typed by a user, sent by the UI or stored by legacy code

    Returns:
        One of the canonical statuses

    Raises:
        InvalidStatusException: If the input is not in the dictionary
    """
    if raw is None:
        raise InvalidStatusException(raw, VALID_STATUSES)

    status = STATUS_ALIASES.get(_fold(str(raw)))
    if status is None:
        raise InvalidStatusException(raw, VALID_STATUSES)
    return status


def status_label(status: str) -> str:
    """Portuguese UI label for a status (accepts any known alias)."""
    return STATUS_LABELS[normalize_status(status)]


@dataclass(frozen=True)
class StatusUpdate:
    """
    The fields a status change writes to the ticket row.

    Applied as a single UPDATE: status and its timestamp never land
    separately.
    """
    status: str
    updated_at: datetime
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @property
    def is_reopen(self) -> bool:
        """Non-terminal target: resolution and closure timestamps are cleared."""
        return self.status not in (TicketStatus.RESOLVED, TicketStatus.CLOSED)

    def as_values(self) -> Dict[str, Any]:
        """Column values for the ticket UPDATE."""
        values: Dict[str, Any] = {"status": self.status, "updated_at": self.updated_at}
        if self.status == TicketStatus.RESOLVED:
            values["resolved_at"] = self.resolved_at
            values["closed_at"] = None
        elif self.status == TicketStatus.CLOSED:
            values["closed_at"] = self.closed_at
        else:
            values["resolved_at"] = None
            values["closed_at"] = None
        return values


def status_update_payload(raw: Any, now: Optional[datetime] = None) -> StatusUpdate:
    """
    Normalize a status and attach the timestamp it implies.

    ``resolved`` carries ``resolved_at`` and ``closed`` carries ``closed_at``.

    Raises:
        InvalidStatusException: If the input is not in the dictionary
    """
    status = normalize_status(raw)
    timestamp = now or datetime.now(timezone.utc)

    if status == TicketStatus.RESOLVED:
        return StatusUpdate(status=status, updated_at=timestamp, resolved_at=timestamp)
    if status == TicketStatus.CLOSED:
        return StatusUpdate(status=status, updated_at=timestamp, closed_at=timestamp)
    return StatusUpdate(status=status, updated_at=timestamp)
