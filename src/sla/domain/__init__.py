"""
SLA Domain Layer
================

Domain layer for the SLA escalation engine.

Contains:
- Entities: ticket snapshots, rules, actions, firing records, results
- Value Objects: SLAConfig and the stateless calculators
  (StatusClassifier, SLACalculator)
- Calendars: wall-clock and business-hours active time
- Domain Services: EscalationMatcher, AutoCloseSelector, TeamPulseAggregator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from sla.domain.calendar import (
    BusinessCalendar,
    BusinessHoursCalendar,
    WallClockCalendar,
)
from sla.domain.entities import (
    ActionResult,
    AutoCloseCandidate,
    AutoCloseRule,
    DispatchOutcome,
    DispatchStatus,
    EscalationAction,
    EscalationRule,
    EvaluationSummary,
    FiringOutcome,
    FiringRecord,
    SLAEvaluation,
    SLAPolicy,
    TeamPulseEntry,
    TicketSnapshot,
)
from sla.domain.services import (
    AutoCloseSelector,
    EscalationMatcher,
    TeamPulseAggregator,
    describe_sla_status,
    render_notification_message,
)
from sla.domain.value_objects import (
    BusinessHoursConfig,
    DayScheduleConfig,
    SLACalculator,
    SLAConfig,
    StatusClassifier,
)

__all__ = [
    # Entities
    "ActionResult",
    "AutoCloseCandidate",
    "AutoCloseRule",
    "DispatchOutcome",
    "DispatchStatus",
    "EscalationAction",
    "EscalationRule",
    "EvaluationSummary",
    "FiringOutcome",
    "FiringRecord",
    "SLAEvaluation",
    "SLAPolicy",
    "TeamPulseEntry",
    "TicketSnapshot",
    # Calendars
    "BusinessCalendar",
    "BusinessHoursCalendar",
    "WallClockCalendar",
    # Value Objects & Services
    "BusinessHoursConfig",
    "DayScheduleConfig",
    "SLACalculator",
    "SLAConfig",
    "StatusClassifier",
    "AutoCloseSelector",
    "EscalationMatcher",
    "TeamPulseAggregator",
    "describe_sla_status",
    "render_notification_message",
]
