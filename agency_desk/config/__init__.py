"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="agency-desk", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root logging level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/agency_desk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Ticket Engine ==========
    engine_config_path: Path = Field(
        default=Path("ticket_engine.yaml"),
        description="Path to the SLA policy / escalation / auto-close YAML file"
    )
    watch_engine_config: bool = Field(
        default=True,
        description="Reload the engine YAML file when it changes on disk"
    )
    assignment_roles: List[str] = Field(
        default=["admin"],
        description="Roles whose users are eligible for automatic ticket assignment"
    )

    # ========== In-process scheduler ==========
    scheduler_enabled: bool = Field(
        default=False,
        description="Run the batch passes in-process (otherwise an external cron calls /jobs)"
    )
    escalation_interval_seconds: int = Field(
        default=3600,
        description="Seconds between escalation passes",
        ge=10
    )
    auto_close_interval_seconds: int = Field(
        default=86400,
        description="Seconds between auto-close passes",
        ge=10
    )
    sla_check_interval_seconds: int = Field(
        default=900,
        description="Seconds between SLA check passes",
        ge=10
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook that receives notification events as JSON"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for webhook calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketStatus(str):
    """Canonical ticket lifecycle statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    WAITING = "waiting"
    RESOLVED = "resolved"
    CLOSED = "closed"


class Priority(str):
    """Ticket priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class NotificationKind(str):
    """Kinds of events handed to the notification sink."""
    ASSIGNMENT = "assignment"
    ESCALATION = "escalation"
    CLOSURE = "closure"
    SLA_WARNING = "sla_warning"


class SLABadgeKind(str):
    """SLA badge states shown next to a ticket."""
    OK = "ok"
    BREACHED = "breached"
    FIRST_RESPONSE_OVERDUE = "first_response_overdue"
    FIRST_RESPONSE_URGENT = "first_response_urgent"
    FIRST_RESPONSE_ON_TRACK = "first_response_on_track"
    RESOLUTION_OVERDUE = "resolution_overdue"
    RESOLUTION_URGENT = "resolution_urgent"
    RESOLUTION_ON_TRACK = "resolution_on_track"


# ========== Lists for validation ==========

VALID_STATUSES = [
    TicketStatus.OPEN, TicketStatus.IN_PROGRESS, TicketStatus.WAITING,
    TicketStatus.RESOLVED, TicketStatus.CLOSED
]
VALID_PRIORITIES = [
    Priority.LOW, Priority.MEDIUM,
    Priority.HIGH, Priority.URGENT
]
# Statuses that count towards an agent's workload and can be escalated
WORKLOAD_STATUSES = [TicketStatus.WAITING, TicketStatus.IN_PROGRESS]
TERMINAL_STATUSES = [TicketStatus.RESOLVED, TicketStatus.CLOSED]
