"""
Ticket Engine Value Objects
===========================

Immutable configuration and policy objects for the ticket engine.

The engine configuration (SLA policies, escalation rules, auto-close
settings) is read-only for the engine: it is loaded from YAML, validated
here, and passed to each component when a call or pass starts.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from agency_desk.config import VALID_PRIORITIES
from agency_desk.core import MissingSLAPolicyException
from agency_desk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

DEFAULT_FIRST_RESPONSE_MINUTES = 60
DEFAULT_RESOLUTION_MINUTES = 480


def _validate_priority(value: str) -> str:
    if value not in VALID_PRIORITIES:
        raise ValueError(f"priority must be one of {VALID_PRIORITIES}")
    return value


class SLAPolicyConfig(BaseModel):
    """SLA targets for one priority, optionally scoped to a department."""
    department_id: Optional[str] = Field(
        default=None,
        description="Department the policy applies to (None = every department)"
    )
    priority: str
    first_response_minutes: int = Field(gt=0)
    resolution_minutes: int = Field(gt=0)
    is_active: bool = True

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v: str) -> str:
        return _validate_priority(v)


class DefaultPolicyConfig(BaseModel):
    """System-wide fallback when no policy matches."""
    first_response_minutes: int = Field(default=DEFAULT_FIRST_RESPONSE_MINUTES, gt=0)
    resolution_minutes: int = Field(default=DEFAULT_RESOLUTION_MINUTES, gt=0)


class EscalationRule(BaseModel):
    """Reassign idle tickets of a department/priority to a supervisor."""
    id: Optional[str] = None
    department_id: Optional[str] = Field(
        default=None,
        description="Department to scan (None = every department)"
    )
    priority: str
    hours_without_response: float = Field(gt=0)
    escalate_to_agent_id: str = Field(min_length=1)
    is_active: bool = True

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v: str) -> str:
        return _validate_priority(v)

    @property
    def idle_threshold(self) -> timedelta:
        return timedelta(hours=self.hours_without_response)

    @property
    def label(self) -> str:
        return self.id or f"{self.department_id or '*'}:{self.priority}"


class AutoCloseConfig(BaseModel):
    """Close resolved tickets after a grace period."""
    days_after_resolved: int = Field(gt=0)
    is_active: bool = True

    @property
    def grace_period(self) -> timedelta:
        return timedelta(days=self.days_after_resolved)


class EngineConfig(BaseModel):
    """
    Engine configuration loaded from YAML.

    Example:
        sla_policies:
          - priority: high
            first_response_minutes: 60
            resolution_minutes: 480
        escalation_rules:
          - department_id: 5d0f...
            priority: urgent
            hours_without_response: 2
            escalate_to_agent_id: 9a1c...
        auto_close:
          - days_after_resolved: 5
    """
    sla_policies: List[SLAPolicyConfig] = Field(default_factory=list)
    default_policy: DefaultPolicyConfig = Field(default_factory=DefaultPolicyConfig)
    escalation_rules: List[EscalationRule] = Field(default_factory=list)
    auto_close: List[AutoCloseConfig] = Field(default_factory=list)

    def active_escalation_rules(self) -> List[EscalationRule]:
        return [rule for rule in self.escalation_rules if rule.is_active]

    def active_auto_close(self) -> Optional[AutoCloseConfig]:
        """The single active auto-close setting (first one wins)."""
        for config in self.auto_close:
            if config.is_active:
                return config
        return None


@dataclass(frozen=True)
class SLATargets:
    """Target durations for the two SLA clocks of a ticket."""
    first_response: timedelta
    resolution: timedelta
    is_default: bool = False

    @classmethod
    def from_minutes(
        cls,
        first_response_minutes: int,
        resolution_minutes: int,
        is_default: bool = False
    ) -> "SLATargets":
        return cls(
            first_response=timedelta(minutes=first_response_minutes),
            resolution=timedelta(minutes=resolution_minutes),
            is_default=is_default,
        )


class SLAPolicyResolver:
    """
    Resolves SLA targets for a (department, priority) pair.

    Lookup order: department-specific policy, department-agnostic policy,
    system default. A missing policy never blocks ticket intake.
    """

    @staticmethod
    def resolve(
        config: EngineConfig,
        department_id: Optional[str],
        priority: str
    ) -> SLATargets:
        active = [p for p in config.sla_policies if p.is_active and p.priority == priority]

        for policy in active:
            if department_id is not None and policy.department_id == department_id:
                return SLATargets.from_minutes(policy.first_response_minutes, policy.resolution_minutes)

        for policy in active:
            if policy.department_id is None:
                return SLATargets.from_minutes(policy.first_response_minutes, policy.resolution_minutes)

        gap = MissingSLAPolicyException(department_id, priority)
        logger.warning(
            "Falling back to default SLA policy",
            extra={"reason": gap.message, **gap.details}
        )
        return SLATargets.from_minutes(
            config.default_policy.first_response_minutes,
            config.default_policy.resolution_minutes,
            is_default=True,
        )
