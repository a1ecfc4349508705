"""
SLA Domain Entities
====================

Pure Python domain entities for SLA evaluation and escalation.

These entities carry no infrastructure concerns. Ticket snapshots are read
from the ticket store; everything else here is either configuration
(rules, actions) or a derived result of one evaluation pass.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from config import (
    CLOSED_STATUSES,
    ActionType,
    AutoCloseCondition,
    NotificationChannel,
    Priority,
    SLAState,
    SLAType,
    StatusClass,
    TriggerType,
    WorkloadStatus,
)


@dataclass(frozen=True)
class TicketSnapshot:
    """
    Immutable read of one ticket at evaluation time.

    Owned by the ticket store; the engine never mutates a snapshot, it asks
    the store to change the ticket and re-reads on the next pass.
    """

    id: str
    priority: Priority
    status: str
    created_at: datetime
    updated_at: datetime
    paused_minutes: float = 0.0
    assigned_to: Optional[str] = None
    assignment_group_id: Optional[str] = None
    # Stops the response clock once set
    first_response_at: Optional[datetime] = None
    requester_id: Optional[str] = None

    # Display and policy-matching attributes
    ticket_number: Optional[str] = None
    department_id: Optional[str] = None
    category_id: Optional[str] = None
    ticket_type: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.priority, Priority):
            object.__setattr__(self, "priority", Priority.normalize(self.priority))
        if self.paused_minutes is None:
            object.__setattr__(self, "paused_minutes", 0.0)
        if self.paused_minutes < 0:
            raise ValueError("paused_minutes cannot be negative")

    @property
    def display_id(self) -> str:
        """Human-facing identifier used in messages."""
        return self.ticket_number or self.id


@dataclass(frozen=True)
class SLAEvaluation:
    """
    SLA state of one ticket for one SLA type at one instant.

    Never persisted; recomputed every pass from the snapshot, the target
    table and the current time.
    """

    ticket_id: str
    sla_type: SLAType
    status_class: StatusClass
    state: SLAState
    elapsed_minutes: float = 0.0
    target_minutes: float = 0.0
    ratio: float = 0.0
    breached: bool = False
    # Response clock stopped by a first response; elapsed is frozen there
    clock_stopped: bool = False

    @classmethod
    def not_applicable(
        cls,
        ticket_id: str,
        sla_type: SLAType,
        status_class: StatusClass
    ) -> "SLAEvaluation":
        """Sentinel for Paused and Terminal tickets."""
        return cls(
            ticket_id=ticket_id,
            sla_type=sla_type,
            status_class=status_class,
            state=SLAState.NOT_APPLICABLE,
        )

    @property
    def is_applicable(self) -> bool:
        return self.state != SLAState.NOT_APPLICABLE

    @property
    def percentage_elapsed(self) -> float:
        return self.ratio * 100

    @property
    def overdue_minutes(self) -> float:
        """Minutes past target; zero until the ticket is breached."""
        if not self.breached:
            return 0.0
        return self.elapsed_minutes - self.target_minutes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "sla_type": self.sla_type.value,
            "status_class": self.status_class.value,
            "state": self.state.value,
            "elapsed_minutes": round(self.elapsed_minutes, 2),
            "target_minutes": self.target_minutes,
            "ratio": round(self.ratio, 4),
            "breached": self.breached,
            "overdue_minutes": round(self.overdue_minutes, 2),
            "clock_stopped": self.clock_stopped,
        }


@dataclass(frozen=True)
class SLAPolicy:
    """
    SLA policy resolved for a ticket.

    ``targets`` overrides the configured target table for this policy only,
    keyed by priority label and SLA type. ``business_hours_id`` names a
    calendar from the SLA configuration; None means the default calendar.
    """

    id: str
    name: str = ""
    targets: Dict[str, Dict[str, float]] = field(default_factory=dict)
    business_hours_id: Optional[str] = None

    def __post_init__(self):
        normalised: Dict[str, Dict[str, float]] = {}
        for label, per_type in (self.targets or {}).items():
            priority = Priority.normalize(label)
            if priority == Priority.UNSET or not isinstance(per_type, dict):
                continue
            entry = normalised.setdefault(priority.value, {})
            for sla_type, minutes in per_type.items():
                try:
                    sla_type = SLAType(sla_type).value
                    minutes = float(minutes)
                except (TypeError, ValueError):
                    continue
                if minutes > 0:
                    entry[sla_type] = minutes
        object.__setattr__(self, "targets", normalised)

    def target_minutes(self, priority: Priority, sla_type: SLAType) -> Optional[float]:
        """Policy override for (priority, sla_type), or None."""
        entry = self.targets.get(Priority.normalize(priority).value)
        if not entry:
            return None
        return entry.get(SLAType(sla_type).value)


@dataclass(frozen=True)
class EscalationAction:
    """
    One step of an escalation rule.

    Tagged by ``type``; only the fields relevant to that type are set.
    """

    type: ActionType
    target_id: Optional[str] = None
    target_name: Optional[str] = None
    new_priority: Optional[Priority] = None
    note_text: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.type, ActionType):
            object.__setattr__(self, "type", ActionType(self.type))
        if self.new_priority is not None and not isinstance(self.new_priority, Priority):
            object.__setattr__(self, "new_priority", Priority.normalize(self.new_priority))

        if self.type in (ActionType.NOTIFY_GROUP, ActionType.NOTIFY_USER) and not self.target_id:
            raise ValueError(f"{self.type.value} requires target_id")
        if self.type == ActionType.CHANGE_PRIORITY and (
            self.new_priority is None or self.new_priority == Priority.UNSET
        ):
            raise ValueError("change_priority requires a recognised new_priority")
        if self.type == ActionType.ADD_NOTE and not self.note_text:
            raise ValueError("add_note requires note_text")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EscalationAction":
        return cls(
            type=ActionType(data["type"]),
            target_id=data.get("target_id"),
            target_name=data.get("target_name"),
            new_priority=data.get("new_priority"),
            note_text=data.get("note_text"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type.value}
        if self.target_id:
            data["target_id"] = self.target_id
        if self.target_name:
            data["target_name"] = self.target_name
        if self.new_priority:
            data["new_priority"] = self.new_priority.value
        if self.note_text:
            data["note_text"] = self.note_text
        return data


@dataclass
class EscalationRule:
    """
    Escalation rule bound to an SLA policy.

    ``trigger_value`` is a percentage of the target for PERCENTAGE rules
    and minutes past the target for OVERDUE_MINUTES rules.
    """

    id: str
    name: str
    sla_policy_id: str
    sla_type: SLAType
    trigger_type: TriggerType
    trigger_value: float
    actions: List[EscalationAction] = field(default_factory=list)
    notification_channels: List[NotificationChannel] = field(
        default_factory=lambda: [NotificationChannel.IN_APP]
    )
    notification_message: Optional[str] = None
    is_active: bool = True

    def __post_init__(self):
        self.sla_type = SLAType(self.sla_type)
        self.trigger_type = TriggerType(self.trigger_type)
        self.trigger_value = float(self.trigger_value)
        self.notification_channels = [NotificationChannel(c) for c in self.notification_channels]

        if self.trigger_type == TriggerType.PERCENTAGE and self.trigger_value <= 0:
            raise ValueError("percentage trigger_value must be greater than 0")
        if self.trigger_type == TriggerType.OVERDUE_MINUTES and self.trigger_value < 0:
            raise ValueError("overdue_minutes trigger_value must be 0 or more")

    def effective_threshold_percent(self, target_minutes: float) -> float:
        """Threshold expressed as percent of target, for ordering mixed rules."""
        if self.trigger_type == TriggerType.PERCENTAGE:
            return self.trigger_value
        if target_minutes <= 0:
            return 100.0
        return 100.0 + (self.trigger_value / target_minutes) * 100.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sla_policy_id": self.sla_policy_id,
            "sla_type": self.sla_type.value,
            "trigger_type": self.trigger_type.value,
            "trigger_value": self.trigger_value,
            "actions": [a.to_dict() for a in self.actions],
            "notification_channels": [c.value for c in self.notification_channels],
            "notification_message": self.notification_message,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class FiringRecord:
    """At-most-once marker for (ticket, rule, threshold)."""

    ticket_id: str
    rule_id: str
    trigger_threshold: float
    fired_at: datetime

    @property
    def key(self) -> tuple:
        return (self.rule_id, float(self.trigger_threshold))


class FiringOutcome(str, Enum):
    """Result of an insert-if-absent on the firing record store."""
    RECORDED = "recorded"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class ActionResult:
    """Outcome of one attempted action."""

    action_type: ActionType
    success: bool
    detail: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type.value,
            "success": self.success,
            "detail": self.detail,
            "error": self.error,
        }


class DispatchStatus(str, Enum):
    """What happened to one matched rule."""
    FIRED = "fired"
    DUPLICATE = "duplicate"
    RELEASED = "released"


@dataclass
class DispatchOutcome:
    """Per-rule dispatch result: the firing decision plus each action result."""

    rule_id: str
    threshold: float
    status: DispatchStatus
    results: List[ActionResult] = field(default_factory=list)

    @property
    def fired(self) -> bool:
        return self.status == DispatchStatus.FIRED

    @property
    def failed_action_count(self) -> int:
        return sum(1 for r in self.results if not r.success)


@dataclass(frozen=True)
class AutoCloseRule:
    """
    Closes tickets that have not been updated for ``after_days`` plus
    ``after_hours``.

    ``condition_value`` is the exact status name for STATUS rules and is
    ignored otherwise. USER_CONFIRMED rules are stored but never selected
    by a sweep; confirmation closes the ticket elsewhere.
    """

    id: str
    name: str
    condition_type: AutoCloseCondition
    condition_value: Optional[str] = None
    after_days: int = 0
    after_hours: int = 0
    notify_user: bool = False
    notify_agent: bool = False
    add_note: bool = False
    note_text: Optional[str] = None
    is_active: bool = True

    def __post_init__(self):
        if not isinstance(self.condition_type, AutoCloseCondition):
            object.__setattr__(self, "condition_type", AutoCloseCondition(self.condition_type))

        if self.after_days < 0 or self.after_hours < 0:
            raise ValueError("after_days and after_hours cannot be negative")
        if self.grace <= timedelta(0):
            raise ValueError("auto-close rule needs a positive after_days or after_hours")
        if self.condition_type == AutoCloseCondition.STATUS:
            if not self.condition_value:
                raise ValueError("status rule requires condition_value")
            if self.condition_value in CLOSED_STATUSES:
                raise ValueError(f"status rule cannot select {self.condition_value} tickets")
        if self.add_note and not self.note_text:
            raise ValueError("add_note requires note_text")

    @property
    def grace(self) -> timedelta:
        return timedelta(days=self.after_days, hours=self.after_hours)

    def cutoff(self, now: datetime) -> datetime:
        """Tickets last updated strictly before this instant are candidates."""
        return now - self.grace

    @property
    def status_filter(self) -> Optional[str]:
        """Exact status the store should filter on, when the rule has one."""
        if self.condition_type == AutoCloseCondition.STATUS:
            return self.condition_value
        return None


@dataclass(frozen=True)
class AutoCloseCandidate:
    """Ticket selected for closing and the rule that selected it."""

    ticket: TicketSnapshot
    rule: AutoCloseRule


@dataclass(frozen=True)
class TeamPulseEntry:
    """Workload rollup for one agent."""

    agent_id: str
    active_count: int
    overdue_count: int
    resolved_today_count: int
    workload_score: int
    status: WorkloadStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "active_count": self.active_count,
            "overdue_count": self.overdue_count,
            "resolved_today_count": self.resolved_today_count,
            "workload_score": self.workload_score,
            "status": self.status.value,
        }


@dataclass
class EvaluationSummary:
    """
    Result of one evaluation pass.

    Counts only cover tickets whose evaluation finished and was committed.
    """

    run_id: str
    trigger: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    processed_ticket_count: int = 0
    triggered_escalation_count: int = 0
    failed_action_count: int = 0
    failed_ticket_count: int = 0
    closed_ticket_ids: List[str] = field(default_factory=list)
    success: bool = True
    error: Optional[str] = None

    @property
    def closed_ticket_count(self) -> int:
        return len(self.closed_ticket_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "processed_ticket_count": self.processed_ticket_count,
            "triggered_escalation_count": self.triggered_escalation_count,
            "failed_action_count": self.failed_action_count,
            "failed_ticket_count": self.failed_ticket_count,
            "closed_ticket_count": self.closed_ticket_count,
            "success": self.success,
            "error": self.error,
        }
