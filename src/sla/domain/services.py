"""
SLA Domain Services
====================

Stateless decisions built on top of ``SLACalculator``:

- EscalationMatcher: which rules fire for a ticket in this pass
- AutoCloseSelector: which tickets an auto-close rule closes
- TeamPulseAggregator: per-agent workload rollup
- Notification message rendering
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from config import (
    CLOSED_STATUSES,
    STATUS_CLOSED,
    STATUS_RESOLVED,
    TERMINAL_STATUSES,
    AutoCloseCondition,
    SLAType,
    StatusClass,
    TriggerType,
    WorkloadStatus,
)
from sla.domain.calendar import BusinessCalendar
from sla.domain.entities import (
    AutoCloseCandidate,
    AutoCloseRule,
    EscalationRule,
    FiringRecord,
    SLAEvaluation,
    SLAPolicy,
    TeamPulseEntry,
    TicketSnapshot,
)
from sla.domain.value_objects import SLACalculator, SLAConfig, StatusClassifier


DEFAULT_NOTIFICATION_TEMPLATE = (
    "SLA escalation for ticket #{ticket_id} ({priority}): {sla_status}. "
    "Assignee: {assignee}."
)


class EscalationMatcher:
    """
    Selects the escalation rules to fire for one ticket in one pass.

    ``match`` is pure: given the same evaluation and the same firing
    history it returns the same rules. The history is what makes repeated
    passes idempotent; the dispatcher records a firing for every rule it
    acts on, so the next pass filters it out.
    """

    @staticmethod
    def is_candidate(
        rule: EscalationRule,
        evaluation: SLAEvaluation,
        policy_id: Optional[str]
    ) -> bool:
        return (
            rule.is_active
            and policy_id is not None
            and rule.sla_policy_id == policy_id
            and rule.sla_type == evaluation.sla_type
        )

    @staticmethod
    def threshold_crossed(rule: EscalationRule, evaluation: SLAEvaluation) -> bool:
        if not evaluation.is_applicable or evaluation.clock_stopped:
            return False
        if rule.trigger_type == TriggerType.PERCENTAGE:
            return evaluation.percentage_elapsed >= rule.trigger_value
        return evaluation.breached and evaluation.overdue_minutes >= rule.trigger_value

    @classmethod
    def match(
        cls,
        ticket: TicketSnapshot,
        evaluation: SLAEvaluation,
        rules: Iterable[EscalationRule],
        history: Iterable[FiringRecord],
        policy_id: Optional[str],
    ) -> List[EscalationRule]:
        """
        Rules whose threshold is crossed and that have not fired yet.

        Returned in ascending threshold order (overdue-minute rules are
        placed after the 100% mark) so earlier warnings go out first when
        several thresholds are crossed in the same pass.
        """
        fired = {record.key for record in history if record.ticket_id == ticket.id}

        matched = [
            rule for rule in rules
            if cls.is_candidate(rule, evaluation, policy_id)
            and cls.threshold_crossed(rule, evaluation)
            and (rule.id, rule.trigger_value) not in fired
        ]
        return sorted(
            matched,
            key=lambda r: (r.effective_threshold_percent(evaluation.target_minutes), str(r.id)),
        )


def describe_sla_status(rule: EscalationRule, evaluation: SLAEvaluation) -> str:
    """Short status phrase substituted for {sla_status}."""
    if rule.trigger_type == TriggerType.PERCENTAGE:
        return f"{evaluation.percentage_elapsed:.0f}% elapsed"
    return f"{evaluation.overdue_minutes:.0f} min overdue"


def render_notification_message(
    rule: EscalationRule,
    ticket: TicketSnapshot,
    evaluation: SLAEvaluation
) -> str:
    """
    Fill the rule's template.

    Placeholders are replaced literally, so other braces in a template
    are left untouched.
    """
    message = rule.notification_message or DEFAULT_NOTIFICATION_TEMPLATE
    replacements = {
        "{ticket_id}": ticket.display_id,
        "{sla_status}": describe_sla_status(rule, evaluation),
        "{assignee}": ticket.assigned_to or "Unassigned",
        "{priority}": ticket.priority.value,
    }
    for placeholder, value in replacements.items():
        message = message.replace(placeholder, value)
    return message


class AutoCloseSelector:
    """Decides which tickets auto-close rules pick up."""

    @staticmethod
    def applies(rule: AutoCloseRule, ticket: TicketSnapshot, now: datetime) -> bool:
        """
        Whether ``rule`` closes ``ticket`` at ``now``.

        Closed and canceled tickets are never selected, so a closed ticket
        cannot be closed twice.
        """
        if not rule.is_active or ticket.status in CLOSED_STATUSES:
            return False
        if not ticket.updated_at < rule.cutoff(now):
            return False

        if rule.condition_type == AutoCloseCondition.STATUS:
            return ticket.status == rule.condition_value
        if rule.condition_type == AutoCloseCondition.PENDING:
            return StatusClassifier.classify(ticket.status) == StatusClass.PAUSED
        if rule.condition_type == AutoCloseCondition.NO_RESPONSE:
            # Last update is the inactivity signal
            return ticket.status not in TERMINAL_STATUSES
        return False

    @classmethod
    def select(
        cls,
        rules: Sequence[AutoCloseRule],
        candidates_by_rule: Mapping[str, Iterable[TicketSnapshot]],
        now: datetime
    ) -> List[AutoCloseCandidate]:
        """
        Pair each ticket with the first rule, in ``rules`` order, that closes it.

        ``candidates_by_rule`` holds the stale tickets listed for each rule id.
        """
        selected: List[AutoCloseCandidate] = []
        seen = set()
        for rule in rules:
            for ticket in candidates_by_rule.get(rule.id, ()):
                if ticket.id in seen or not cls.applies(rule, ticket, now):
                    continue
                seen.add(ticket.id)
                selected.append(AutoCloseCandidate(ticket=ticket, rule=rule))
        return selected


# Team pulse thresholds
OVERLOAD_ACTIVE_THRESHOLD = 8
BUSY_ACTIVE_THRESHOLD = 3
SCORE_BASE = 100
SCORE_ACTIVE_PENALTY = 5
SCORE_RESOLVED_BONUS = 2


class TeamPulseAggregator:
    """Stateless per-agent workload rollup; recomputed on every call."""

    @staticmethod
    def workload_score(active: int, resolved: int) -> int:
        raw = SCORE_BASE - active * SCORE_ACTIVE_PENALTY + resolved * SCORE_RESOLVED_BONUS
        return max(0, min(100, raw))

    @staticmethod
    def workload_status(active: int) -> WorkloadStatus:
        if active > OVERLOAD_ACTIVE_THRESHOLD:
            return WorkloadStatus.OVERLOAD
        if active > BUSY_ACTIVE_THRESHOLD:
            return WorkloadStatus.BUSY
        return WorkloadStatus.FREE

    @classmethod
    def aggregate(
        cls,
        tickets: Sequence[TicketSnapshot],
        config: SLAConfig,
        now: datetime,
        start_of_day: datetime,
        agent_ids: Optional[Iterable[str]] = None,
        calendar: Optional[BusinessCalendar] = None,
        policies: Optional[Mapping[str, SLAPolicy]] = None,
    ) -> List[TeamPulseEntry]:
        """
        Roll up active, overdue and resolved-today counts per assigned agent.

        Unassigned tickets are ignored. Agents listed in ``agent_ids`` appear
        even with no tickets. ``policies`` maps ticket id to its SLA policy,
        whose targets and calendar then decide overdue. Entries are ordered
        most-loaded first.
        """
        policies = policies or {}
        calendars: Dict[str, BusinessCalendar] = {}
        counts: Dict[str, Dict[str, int]] = defaultdict(
            lambda: {"active": 0, "overdue": 0, "resolved": 0}
        )
        for agent_id in agent_ids or ():
            counts.setdefault(agent_id, {"active": 0, "overdue": 0, "resolved": 0})

        for ticket in tickets:
            if not ticket.assigned_to:
                continue
            bucket = counts[ticket.assigned_to]
            status_class = StatusClassifier.classify(ticket.status)

            if status_class == StatusClass.ACTIVE:
                bucket["active"] += 1
                policy = policies.get(ticket.id)
                ticket_calendar = calendar
                if policy is not None and policy.business_hours_id:
                    if policy.business_hours_id not in calendars:
                        calendars[policy.business_hours_id] = config.build_calendar(
                            policy.business_hours_id
                        )
                    ticket_calendar = calendars[policy.business_hours_id]
                evaluation = SLACalculator.evaluate(
                    ticket, config, now, SLAType.RESOLUTION, ticket_calendar, policy
                )
                if evaluation.breached:
                    bucket["overdue"] += 1
            elif ticket.status in (STATUS_RESOLVED, STATUS_CLOSED) and ticket.updated_at >= start_of_day:
                bucket["resolved"] += 1

        entries = [
            TeamPulseEntry(
                agent_id=agent_id,
                active_count=c["active"],
                overdue_count=c["overdue"],
                resolved_today_count=c["resolved"],
                workload_score=cls.workload_score(c["active"], c["resolved"]),
                status=cls.workload_status(c["active"]),
            )
            for agent_id, c in counts.items()
        ]
        return sorted(entries, key=lambda e: (e.workload_score, e.agent_id))
