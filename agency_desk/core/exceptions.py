"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional, Any, List


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class InvalidStatusException(ValidationException):
    """Raised when a status string is not in the normalization dictionary."""

    def __init__(self, raw_status: Any, allowed: List[str]):
        self.raw_status = raw_status
        self.allowed = allowed
        super().__init__(
            f"Invalid status: {raw_status!r}. Allowed values: {', '.join(allowed)}",
            {"raw_status": str(raw_status), "allowed": allowed}
        )


class InvalidStatusTransitionException(DomainException):
    """Raised when a status change would leave a terminal state."""

    def __init__(self, ticket_id: str, current: str, requested: str):
        self.ticket_id = ticket_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Ticket {ticket_id} is {current} and cannot move to {requested}",
            {"ticket_id": ticket_id, "current": current, "requested": requested}
        )


class NoEligibleAgentsException(DomainException):
    """Raised when no agent qualifies for automatic assignment."""

    def __init__(self, ticket_id: str, department_id: Optional[str] = None):
        self.ticket_id = ticket_id
        self.department_id = department_id
        super().__init__(
            f"No eligible agents to assign ticket {ticket_id}",
            {"ticket_id": ticket_id, "department_id": department_id}
        )


class MissingSLAPolicyException(ConfigurationException):
    """
    Configuration gap for a (department, priority) pair.

    Never raised to callers: the policy resolver logs it and falls back
    to the system default policy.
    """

    def __init__(self, department_id: Optional[str], priority: str):
        self.department_id = department_id
        self.priority = priority
        super().__init__(
            f"No SLA policy for department {department_id!r} and priority {priority!r}",
            {"department_id": department_id, "priority": priority}
        )
