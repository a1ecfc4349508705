"""
SLA Value Objects
==================

Immutable configuration objects and the stateless SLA calculations.

``StatusClassifier`` and ``SLACalculator`` are the only place where a
status name is classified and where overdue state is computed. The engine,
the team pulse and the ticket-state API all call into them.
"""

from datetime import date, datetime, time
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from config import (
    PAUSED_STATUS_MARKERS,
    TERMINAL_STATUSES,
    Priority,
    SLAState,
    SLAType,
    StatusClass,
    VALID_PRIORITIES,
    VALID_SLA_TYPES,
)
from sla.domain.calendar import (
    BusinessCalendar,
    BusinessHoursCalendar,
    WallClockCalendar,
)
from sla.domain.entities import SLAEvaluation, SLAPolicy, TicketSnapshot


# Minutes; the same target applies to both SLA types unless configured
DEFAULT_SLA_TARGET_MINUTES: Dict[Priority, float] = {
    Priority.URGENT: 4 * 60,
    Priority.HIGH: 8 * 60,
    Priority.MEDIUM: 48 * 60,
    Priority.LOW: 120 * 60,
}
FALLBACK_TARGET_MINUTES = 24 * 60

WEEKDAY_NAMES = {
    "monday": 0, "mon": 0,
    "tuesday": 1, "tue": 1,
    "wednesday": 2, "wed": 2,
    "thursday": 3, "thu": 3,
    "friday": 4, "fri": 4,
    "saturday": 5, "sat": 5,
    "sunday": 6, "sun": 6,
}


class DayScheduleConfig(BaseModel):
    """Working window for one weekday, with an optional break."""
    start: time
    end: time
    break_start: Optional[time] = None
    break_end: Optional[time] = None

    @model_validator(mode="after")
    def validate_window(self) -> "DayScheduleConfig":
        if self.end <= self.start:
            raise ValueError("end must be after start")
        if (self.break_start is None) != (self.break_end is None):
            raise ValueError("break_start and break_end must be set together")
        if self.break_start is not None:
            if not (self.start <= self.break_start < self.break_end <= self.end):
                raise ValueError("break must sit inside the working window")
        return self

    def intervals(self) -> List[tuple]:
        """Working intervals of the day with the break cut out."""
        if self.break_start is None:
            return [(self.start, self.end)]
        return [(self.start, self.break_start), (self.break_end, self.end)]


def _default_week() -> Dict[str, DayScheduleConfig]:
    return {
        day: DayScheduleConfig(start=time(9, 0), end=time(17, 0))
        for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
    }


class BusinessHoursConfig(BaseModel):
    """Business calendar; when disabled SLA clocks run on wall-clock time."""
    enabled: bool = False
    timezone: str = "UTC"
    weekly_schedule: Dict[str, DayScheduleConfig] = Field(default_factory=_default_week)
    holidays: List[date] = Field(default_factory=list)

    @field_validator("weekly_schedule")
    @classmethod
    def validate_weekdays(cls, v: Dict[str, DayScheduleConfig]) -> Dict[str, DayScheduleConfig]:
        unknown = [name for name in v if name.strip().lower() not in WEEKDAY_NAMES]
        if unknown:
            raise ValueError(f"unknown weekday names: {unknown}")
        return v

    def schedule_by_weekday(self) -> Dict[int, List[tuple]]:
        return {
            WEEKDAY_NAMES[name.strip().lower()]: day.intervals()
            for name, day in self.weekly_schedule.items()
        }


class SLAConfig(BaseModel):
    """
    SLA configuration loaded from YAML.

    ``sla_targets`` maps a priority label to per-type targets in minutes.
    Labels go through Priority.normalize, so "urgent" and "Urgent" are the
    same key. Missing priorities get the built-in defaults; anything that
    still has no target falls back to ``default_target_minutes``.
    """
    sla_targets: Dict[str, Dict[str, float]] = Field(
        default_factory=dict,
        validate_default=True,
        description="SLA targets in minutes by priority and SLA type"
    )
    default_target_minutes: float = Field(
        default=FALLBACK_TARGET_MINUTES,
        gt=0,
        description="Target used for Unset or unrecognised priorities"
    )
    at_risk_percent: float = Field(
        default=80,
        gt=0,
        le=100,
        description="Elapsed percentage at which a ticket is reported at risk"
    )
    business_hours: BusinessHoursConfig = Field(default_factory=BusinessHoursConfig)
    calendars: Dict[str, BusinessHoursConfig] = Field(
        default_factory=dict,
        description="Named business-hours calendars that SLA policies refer to"
    )

    @field_validator("sla_targets")
    @classmethod
    def validate_sla_targets(cls, v: Dict[str, Dict[str, float]]) -> Dict[str, Dict[str, float]]:
        """Normalise priority keys and fill in built-in defaults."""
        normalised: Dict[str, Dict[str, float]] = {}
        for label, targets in v.items():
            priority = Priority.normalize(label)
            if priority == Priority.UNSET:
                continue
            normalised[priority.value] = {
                sla_type: float(minutes)
                for sla_type, minutes in targets.items()
                if sla_type in {t.value for t in VALID_SLA_TYPES} and float(minutes) > 0
            }

        for priority in VALID_PRIORITIES:
            entry = normalised.setdefault(priority.value, {})
            for sla_type in VALID_SLA_TYPES:
                entry.setdefault(sla_type.value, DEFAULT_SLA_TARGET_MINUTES[priority])

        return normalised

    def get_target_minutes(
        self,
        priority: Priority,
        sla_type: SLAType,
        policy: Optional[SLAPolicy] = None
    ) -> float:
        """
        Target for (priority, sla_type); never raises.

        The policy's own target wins, then this table, then
        ``default_target_minutes``.

        Example:
            Priority "Urgent", resolution → 240 minutes
            Priority "Unset" → default_target_minutes (1440)
        """
        priority = Priority.normalize(priority)
        if policy is not None:
            override = policy.target_minutes(priority, sla_type)
            if override is not None:
                return override
        entry = self.sla_targets.get(priority.value)
        if not entry:
            return self.default_target_minutes
        return entry.get(SLAType(sla_type).value, self.default_target_minutes)

    def build_calendar(self, calendar_id: Optional[str] = None) -> BusinessCalendar:
        """
        Calendar for a policy's ``business_hours_id``.

        A named calendar always counts business hours. Without a name, or
        with a name that is not configured, ``business_hours`` applies and
        its ``enabled`` flag decides between business and wall-clock time.
        """
        if calendar_id and calendar_id in self.calendars:
            return BusinessHoursCalendar.from_config(self.calendars[calendar_id])
        if not self.business_hours.enabled:
            return WallClockCalendar()
        return BusinessHoursCalendar.from_config(self.business_hours)


class StatusClassifier:
    """Maps a status name onto Active, Paused or Terminal."""

    @staticmethod
    def classify(status_name: Optional[str]) -> StatusClass:
        """
        Classify a status name.

        The exact, case-sensitive terminal set is checked first so that
        "Closed" can never be read as paused. Then any name containing
        "pending" or "waiting" (any case) is paused. Everything else,
        including an empty name, is active.
        """
        name = status_name or ""
        if name in TERMINAL_STATUSES:
            return StatusClass.TERMINAL
        lowered = name.lower()
        if any(marker in lowered for marker in PAUSED_STATUS_MARKERS):
            return StatusClass.PAUSED
        return StatusClass.ACTIVE


class SLACalculator:
    """
    Overdue classifier.

    Stateless; every caller that needs to know whether a ticket is overdue
    goes through ``evaluate``.
    """

    @staticmethod
    def evaluate(
        ticket: TicketSnapshot,
        config: SLAConfig,
        now: datetime,
        sla_type: SLAType = SLAType.RESOLUTION,
        calendar: Optional[BusinessCalendar] = None,
        policy: Optional[SLAPolicy] = None,
    ) -> SLAEvaluation:
        """
        Compute the SLA state of ``ticket`` at ``now``.

        Paused and terminal tickets return the not-applicable sentinel.
        Breach is strict: exactly 100% elapsed is still not breached.
        The response clock ends at ``first_response_at`` when the ticket
        has one; the evaluation is then marked ``clock_stopped``.
        """
        sla_type = SLAType(sla_type)
        status_class = StatusClassifier.classify(ticket.status)
        if status_class != StatusClass.ACTIVE:
            return SLAEvaluation.not_applicable(ticket.id, sla_type, status_class)

        end = now
        clock_stopped = False
        if sla_type == SLAType.RESPONSE and ticket.first_response_at is not None:
            end = min(now, ticket.first_response_at)
            clock_stopped = True

        calendar = calendar or WallClockCalendar()
        elapsed = calendar.active_duration(ticket.created_at, end, ticket.paused_minutes)
        elapsed_minutes = elapsed.total_seconds() / 60

        target_minutes = config.get_target_minutes(ticket.priority, sla_type, policy)
        ratio = elapsed_minutes / target_minutes
        breached = ratio > 1.0

        if breached:
            state = SLAState.BREACHED
        elif ratio * 100 >= config.at_risk_percent:
            state = SLAState.AT_RISK
        else:
            state = SLAState.ON_TRACK

        return SLAEvaluation(
            ticket_id=ticket.id,
            sla_type=sla_type,
            status_class=status_class,
            state=state,
            elapsed_minutes=elapsed_minutes,
            target_minutes=target_minutes,
            ratio=ratio,
            breached=breached,
            clock_stopped=clock_stopped,
        )
