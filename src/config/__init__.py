"""
Configuration Module
====================

Application settings and domain constants for the SLA escalation engine.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-sla-engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="Ticket store connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)
    create_tables_on_startup: bool = Field(
        default=True,
        description="Create missing tables at startup (development only)"
    )

    # ========== SLA Engine ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA configuration YAML file"
    )
    sla_evaluation_interval: int = Field(
        default=300,
        description="Seconds between scheduled evaluation passes (0 disables the scheduler)",
        ge=0
    )
    sla_max_concurrent_runs: int = Field(
        default=3,
        description="Scheduled passes allowed to overlap before APScheduler skips a tick",
        ge=1
    )
    sla_batch_size: int = Field(
        default=500,
        description="Tickets fetched per page during a pass",
        ge=1
    )
    auto_close_grace_hours: int = Field(
        default=24,
        description="Hours a ticket stays Resolved before it is auto-closed",
        ge=1
    )
    collaborator_timeout_seconds: float = Field(
        default=5.0,
        description="Driver command timeout for ticket-store statements and bound for external notification calls",
        gt=0,
        le=60
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Mail relay webhook used for the email channel"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="HTTP timeout for the mail relay",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
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
        allowed = {"development", "staging", "production"}
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

class Priority(str, Enum):
    """Ticket priority levels."""
    URGENT = "Urgent"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    UNSET = "Unset"

    @classmethod
    def normalize(cls, raw: Optional[str]) -> "Priority":
        """
        Map a free-text priority label onto the closed enum.

        Labels are trimmed and lowercased before lookup, so "urgent",
        " URGENT " and "P1" all resolve to URGENT. Anything unknown is UNSET.
        """
        if isinstance(raw, Priority):
            return raw
        if raw is None:
            return cls.UNSET
        return PRIORITY_SYNONYMS.get(str(raw).strip().lower(), cls.UNSET)


PRIORITY_SYNONYMS = {
    "urgent": Priority.URGENT,
    "critical": Priority.URGENT,
    "p1": Priority.URGENT,
    "high": Priority.HIGH,
    "p2": Priority.HIGH,
    "medium": Priority.MEDIUM,
    "normal": Priority.MEDIUM,
    "p3": Priority.MEDIUM,
    "low": Priority.LOW,
    "p4": Priority.LOW,
}


class SLAType(str, Enum):
    """Types of SLA clocks."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class StatusClass(str, Enum):
    """How a status name affects SLA accrual."""
    ACTIVE = "active"
    PAUSED = "paused"
    TERMINAL = "terminal"


class SLAState(str, Enum):
    """SLA status states."""
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    BREACHED = "breached"
    NOT_APPLICABLE = "not_applicable"


class TriggerType(str, Enum):
    """How an escalation rule threshold is expressed."""
    PERCENTAGE = "percentage"
    OVERDUE_MINUTES = "overdue_minutes"


class ActionType(str, Enum):
    """Escalation actions a rule can carry."""
    NOTIFY_SUPERVISOR = "notify_supervisor"
    NOTIFY_GROUP = "notify_group"
    NOTIFY_USER = "notify_user"
    REASSIGN = "reassign"
    CHANGE_PRIORITY = "change_priority"
    ADD_NOTE = "add_note"


class NotificationChannel(str, Enum):
    """Delivery channels for escalation notifications."""
    IN_APP = "in_app"
    EMAIL = "email"


class AutoCloseCondition(str, Enum):
    """Which tickets an auto-close rule selects."""
    STATUS = "status"
    PENDING = "pending"
    NO_RESPONSE = "no_response"
    USER_CONFIRMED = "user_confirmed"


class WorkloadStatus(str, Enum):
    """Team pulse workload label."""
    OVERLOAD = "Overload"
    BUSY = "Busy"
    FREE = "Free"


# ========== Status names ==========

STATUS_RESOLVED = "Resolved"
STATUS_CLOSED = "Closed"
STATUS_CANCELED = "Canceled"

TERMINAL_STATUSES = frozenset({STATUS_RESOLVED, STATUS_CLOSED, STATUS_CANCELED})
# Final for auto-close: never selected by a rule, never reopened
CLOSED_STATUSES = frozenset({STATUS_CLOSED, STATUS_CANCELED})
PAUSED_STATUS_MARKERS = ("pending", "waiting")


# ========== Lists for validation ==========

VALID_PRIORITIES = [
    Priority.URGENT, Priority.HIGH,
    Priority.MEDIUM, Priority.LOW
]
VALID_SLA_TYPES = [SLAType.RESPONSE, SLAType.RESOLUTION]
