"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the help-desk ticket store and the SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from infrastructure.database import Base


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentModel(Base):
    """
    Help-desk agent that can hold tickets.

    Maps to the 'agents' table.
    """
    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class AssignmentGroupModel(Base):
    """Team of agents with an optional supervisor."""
    __tablename__ = "assignment_groups"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    supervisor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    auto_assign: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class GroupMemberModel(Base):
    """Membership of an agent in an assignment group."""
    __tablename__ = "group_members"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    group_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    agent_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("group_id", "agent_id", name="uq_group_member"),
    )


class TicketModel(Base):
    """
    Database model for a help-desk ticket.

    Maps to the 'tickets' table. Only the columns the SLA engine reads or
    writes are modelled.
    """
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    ticket_number: Mapped[Optional[str]] = mapped_column(String(50), unique=True, nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    # Free-text priority and status, as entered by the help desk
    priority: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status_name: Mapped[str] = mapped_column(String(100), nullable=False, default="Open", index=True)
    total_paused_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    requester_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Routing
    assigned_to: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    assignment_group_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    department_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    category_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    ticket_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    first_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class ActivityLogModel(Base):
    """
    Ticket activity entry.

    ``actor_id`` is null for entries written by the system.
    """
    __tablename__ = "activity_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    ticket_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False, default="comment")
    details: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class NotificationModel(Base):
    """In-app notification queued for a user."""
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(20), nullable=False, default="in_app")
    message: Mapped[str] = mapped_column(Text, nullable=False)
    reference_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class SLAPolicyModel(Base):
    """
    SLA policy with matching conditions.

    ``conditions`` holds optional lists keyed by department_ids,
    category_ids, priorities and ticket_types. An empty or missing list
    matches anything. Lower ``priority_order`` wins when several match.

    ``targets`` maps priority to {"response": minutes, "resolution": minutes}
    for this policy; ``business_hours_id`` names a calendar in the SLA
    configuration.
    """
    __tablename__ = "sla_policies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    conditions: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    targets: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    business_hours_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    priority_order: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class EscalationRuleModel(Base):
    """
    Escalation rule attached to an SLA policy.

    Maps to the 'escalation_rules' table.
    """
    __tablename__ = "escalation_rules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sla_policy_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    sla_type: Mapped[str] = mapped_column(String(20), nullable=False, default="resolution")
    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False, default="percentage")
    trigger_value: Mapped[float] = mapped_column(Float, nullable=False)
    actions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    notification_channels: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=lambda: ["in_app"])
    notification_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class FiringRecordModel(Base):
    """
    At-most-once marker for an escalation.

    The unique constraint is what makes concurrent passes safe.
    """
    __tablename__ = "escalation_firings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    ticket_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    rule_id: Mapped[str] = mapped_column(String(64), nullable=False)
    trigger_threshold: Mapped[float] = mapped_column(Float, nullable=False)
    fired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("ticket_id", "rule_id", "trigger_threshold", name="uq_escalation_firing"),
    )


class AutoCloseRuleModel(Base):
    """
    Auto-close rule.

    Maps to the 'auto_close_rules' table. ``condition_value`` holds the
    status name for status rules.
    """
    __tablename__ = "auto_close_rules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    condition_type: Mapped[str] = mapped_column(String(20), nullable=False, default="status")
    condition_value: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    after_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    after_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notify_user: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notify_agent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    add_note: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    note_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
