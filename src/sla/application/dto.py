"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization for API responses.
Following YAGNI - only what's needed.
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Literal
from datetime import datetime

from sla.domain import (
    AutoCloseCandidate,
    EscalationRule,
    EvaluationSummary,
    FiringRecord,
    SLAEvaluation,
    TeamPulseEntry,
)


# ========== Type Aliases for Literals ==========
SLATypeStr = Literal["response", "resolution"]
SLAStateStr = Literal["on_track", "at_risk", "breached", "not_applicable"]
StatusClassStr = Literal["active", "paused", "terminal"]
WorkloadStatusStr = Literal["Overload", "Busy", "Free"]


# ========== Response DTOs ==========

class EngineRunResponse(BaseModel):
    """Result of a manually triggered evaluation pass."""
    success: bool
    processed_ticket_count: int = 0
    triggered_escalation_count: int = 0
    closed_ticket_count: int = 0
    error: Optional[str] = None
    run_id: Optional[str] = None

    @classmethod
    def from_summary(cls, summary: EvaluationSummary) -> "EngineRunResponse":
        return cls(
            success=summary.success,
            processed_ticket_count=summary.processed_ticket_count,
            triggered_escalation_count=summary.triggered_escalation_count,
            closed_ticket_count=summary.closed_ticket_count,
            error=summary.error,
            run_id=summary.run_id,
        )


class TeamPulseEntryResponse(BaseModel):
    """Workload of one agent."""
    agent_id: str
    active_count: int
    overdue_count: int
    resolved_today_count: int
    workload_score: int = Field(..., ge=0, le=100)
    status: WorkloadStatusStr

    @classmethod
    def from_domain(cls, entry: TeamPulseEntry) -> "TeamPulseEntryResponse":
        return cls(**entry.to_dict())


class SLAEvaluationResponse(BaseModel):
    """One SLA clock of a ticket."""
    sla_type: SLATypeStr
    status_class: StatusClassStr
    state: SLAStateStr
    elapsed_minutes: float
    target_minutes: float
    ratio: float
    breached: bool
    overdue_minutes: float
    clock_stopped: bool = False

    @classmethod
    def from_domain(cls, evaluation: SLAEvaluation) -> "SLAEvaluationResponse":
        data = evaluation.to_dict()
        data.pop("ticket_id")
        return cls(**data)


class FiringRecordResponse(BaseModel):
    """Escalation that has already fired."""
    rule_id: str
    trigger_threshold: float
    fired_at: datetime

    @classmethod
    def from_domain(cls, record: FiringRecord) -> "FiringRecordResponse":
        return cls(
            rule_id=record.rule_id,
            trigger_threshold=record.trigger_threshold,
            fired_at=record.fired_at,
        )


class TicketSLAResponse(BaseModel):
    """Response model for ticket SLA information."""
    ticket_id: str = Field(..., description="Ticket id")
    ticket_number: Optional[str] = None
    priority: str
    status: str
    assigned_to: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    sla_policy_id: Optional[str] = Field(None, description="Governing policy, if any")
    evaluations: List[SLAEvaluationResponse] = Field(default_factory=list)
    firings: List[FiringRecordResponse] = Field(default_factory=list)


class AutoClosePreviewItem(BaseModel):
    """Ticket that the next sweep would close, and the rule closing it."""
    ticket_id: str
    ticket_number: Optional[str] = None
    status: str
    assigned_to: Optional[str] = None
    last_updated_at: datetime
    rule_id: str
    rule_name: str

    @classmethod
    def from_domain(cls, candidate: AutoCloseCandidate) -> "AutoClosePreviewItem":
        ticket = candidate.ticket
        return cls(
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            status=ticket.status,
            assigned_to=ticket.assigned_to,
            last_updated_at=ticket.updated_at,
            rule_id=candidate.rule.id,
            rule_name=candidate.rule.name,
        )


class AutoClosePreviewResponse(BaseModel):
    """Response model for the auto-close preview."""
    tickets: List[AutoClosePreviewItem] = Field(default_factory=list)
    total_count: int = 0


class EscalationActionResponse(BaseModel):
    type: str
    target_id: Optional[str] = None
    target_name: Optional[str] = None
    new_priority: Optional[str] = None
    note_text: Optional[str] = None


class EscalationRuleResponse(BaseModel):
    """Configured escalation rule."""
    id: str
    name: str
    sla_policy_id: str
    sla_type: SLATypeStr
    trigger_type: Literal["percentage", "overdue_minutes"]
    trigger_value: float
    actions: List[EscalationActionResponse] = Field(default_factory=list)
    notification_channels: List[str] = Field(default_factory=list)
    notification_message: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_domain(cls, rule: EscalationRule) -> "EscalationRuleResponse":
        return cls(**rule.to_dict())
