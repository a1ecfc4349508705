"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain services and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo

from config import SLAType
from core import EvaluationAbortedException, ResourceNotFoundException
from shared.infrastructure.logging import get_context_logger
from sla.application.dispatcher import ActionDispatcher
from sla.application.interfaces import (
    IClock,
    IEscalationRuleRepository,
    IFiringRecordRepository,
    ISLAConfigProvider,
    ISLAPolicyResolver,
    ITicketRepository,
    IUnitOfWork,
)
from sla.application.sweeper import AutoCloseSweeper
from sla.domain import (
    BusinessCalendar,
    DispatchOutcome,
    EscalationMatcher,
    EscalationRule,
    EvaluationSummary,
    FiringRecord,
    SLACalculator,
    SLAConfig,
    SLAEvaluation,
    SLAPolicy,
    TeamPulseAggregator,
    TeamPulseEntry,
    TicketSnapshot,
)

# Response is evaluated before resolution when a policy has both
SLA_TYPE_ORDER = (SLAType.RESPONSE, SLAType.RESOLUTION)


class SLAEngine:
    """
    One evaluation pass over every active ticket.

    The engine holds no state between passes. Whatever it needs to know
    about earlier passes comes from the firing records.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        policy_resolver: ISLAPolicyResolver,
        rule_repository: IEscalationRuleRepository,
        firing_repository: IFiringRecordRepository,
        dispatcher: ActionDispatcher,
        sweeper: AutoCloseSweeper,
        config_provider: ISLAConfigProvider,
        clock: IClock,
        unit_of_work: IUnitOfWork,
        batch_size: int = 500
    ):
        self._tickets = ticket_repository
        self._policies = policy_resolver
        self._rules = rule_repository
        self._firings = firing_repository
        self._dispatcher = dispatcher
        self._sweeper = sweeper
        self._config_provider = config_provider
        self._clock = clock
        self._uow = unit_of_work
        self._batch_size = batch_size

    async def run_pass(
        self,
        now: Optional[datetime] = None,
        trigger: str = "manual",
        run_id: Optional[str] = None
    ) -> EvaluationSummary:
        """
        Evaluate, escalate and sweep.

        Args:
            now: Evaluation instant; read from the clock when omitted
            trigger: "scheduled" or "manual", for logs
            run_id: Correlation id for the pass

        Returns:
            EvaluationSummary with counts for committed tickets

        Raises:
            EvaluationAbortedException: clock or ticket store unavailable
        """
        run_id = run_id or uuid4().hex
        log = get_context_logger(__name__, run_id)

        if now is None:
            try:
                now = self._clock.now()
            except Exception as e:
                raise EvaluationAbortedException("Clock unavailable", {"error": str(e)}) from e

        config = self._config_provider.get_config()
        summary = EvaluationSummary(run_id=run_id, trigger=trigger, started_at=now)
        rules_by_policy: Dict[str, List[EscalationRule]] = {}
        calendars: Dict[Optional[str], BusinessCalendar] = {}

        log.info("Evaluation pass started", extra={"trigger": trigger})

        offset = 0
        while True:
            try:
                page = await self._tickets.list_active_tickets(
                    limit=self._batch_size, offset=offset
                )
            except Exception as e:
                raise EvaluationAbortedException(
                    "Ticket store unavailable",
                    {"error": str(e), "offset": offset}
                ) from e

            for ticket in page:
                try:
                    outcomes = await self._evaluate_ticket(
                        ticket, config, now, rules_by_policy, calendars
                    )
                    await self._uow.commit()
                except Exception as e:
                    await self._uow.rollback()
                    summary.failed_ticket_count += 1
                    log.warning(
                        "Ticket evaluation failed",
                        extra={"ticket_id": ticket.id, "error": f"{type(e).__name__}: {e}"}
                    )
                    continue

                summary.processed_ticket_count += 1
                summary.triggered_escalation_count += sum(1 for o in outcomes if o.fired)
                summary.failed_action_count += sum(o.failed_action_count for o in outcomes)

            if len(page) < self._batch_size:
                break
            offset += len(page)

        summary.closed_ticket_ids = await self._sweeper.sweep(now)
        summary.finished_at = self._clock.now()

        log.info("Evaluation pass finished", extra=summary.to_dict())
        return summary

    async def _evaluate_ticket(
        self,
        ticket: TicketSnapshot,
        config: SLAConfig,
        now: datetime,
        rules_by_policy: Dict[str, List[EscalationRule]],
        calendars: Dict[Optional[str], BusinessCalendar]
    ) -> List[DispatchOutcome]:
        policy = await self._policies.resolve_policy(ticket)
        if policy is None:
            return []
        policy_id = policy.id

        if policy_id not in rules_by_policy:
            rules_by_policy[policy_id] = await self._rules.list_active_rules(policy_id)
        rules = rules_by_policy[policy_id]
        if not rules:
            return []

        history = await self._firings.list_for_ticket(ticket.id)
        sla_types = {rule.sla_type for rule in rules}
        if policy.business_hours_id not in calendars:
            calendars[policy.business_hours_id] = config.build_calendar(policy.business_hours_id)
        calendar = calendars[policy.business_hours_id]

        outcomes: List[DispatchOutcome] = []
        for sla_type in SLA_TYPE_ORDER:
            if sla_type not in sla_types:
                continue
            evaluation = SLACalculator.evaluate(ticket, config, now, sla_type, calendar, policy)
            if not evaluation.is_applicable:
                break
            for rule in EscalationMatcher.match(ticket, evaluation, rules, history, policy_id):
                outcomes.append(await self._dispatcher.dispatch(ticket, rule, evaluation))
        return outcomes


@dataclass
class TicketSLAReport:
    """SLA state of one ticket as shown by the API."""
    ticket: TicketSnapshot
    policy_id: Optional[str]
    evaluations: List[SLAEvaluation] = field(default_factory=list)
    firings: List[FiringRecord] = field(default_factory=list)


class SLAService:
    """
    Read-only SLA lookups for a single ticket.

    Uses the same overdue classifier as the engine so the API never
    disagrees with what the engine acts on.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        policy_resolver: ISLAPolicyResolver,
        firing_repository: IFiringRecordRepository,
        config_provider: ISLAConfigProvider,
        clock: IClock
    ):
        self._tickets = ticket_repository
        self._policies = policy_resolver
        self._firings = firing_repository
        self._config_provider = config_provider
        self._clock = clock

    async def get_ticket_sla(self, ticket_id: str) -> TicketSLAReport:
        ticket = await self._tickets.get_snapshot(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)

        config = self._config_provider.get_config()
        now = self._clock.now()
        policy = await self._policies.resolve_policy(ticket)
        calendar = config.build_calendar(policy.business_hours_id if policy else None)

        return TicketSLAReport(
            ticket=ticket,
            policy_id=policy.id if policy else None,
            evaluations=[
                SLACalculator.evaluate(ticket, config, now, sla_type, calendar, policy)
                for sla_type in SLA_TYPE_ORDER
            ],
            firings=await self._firings.list_for_ticket(ticket_id),
        )


class TeamPulseService:
    """Per-agent workload for the supervisor dashboard."""

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        config_provider: ISLAConfigProvider,
        clock: IClock,
        policy_resolver: Optional[ISLAPolicyResolver] = None
    ):
        self._tickets = ticket_repository
        self._config_provider = config_provider
        self._clock = clock
        self._policies = policy_resolver

    def start_of_day(self, now: datetime, config: SLAConfig) -> datetime:
        """Local midnight in the business-hours timezone, as UTC."""
        local = now.astimezone(ZoneInfo(config.business_hours.timezone))
        midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight.astimezone(timezone.utc)

    async def get_team_pulse(self, include_idle_agents: bool = True) -> List[TeamPulseEntry]:
        config = self._config_provider.get_config()
        now = self._clock.now()
        start_of_day = self.start_of_day(now, config)

        tickets = await self._tickets.list_for_team_pulse(since=start_of_day)
        agent_ids = await self._tickets.list_agent_ids() if include_idle_agents else None

        policies: Dict[str, SLAPolicy] = {}
        if self._policies is not None:
            for ticket in tickets:
                policy = await self._policies.resolve_policy(ticket)
                if policy is not None:
                    policies[ticket.id] = policy

        return TeamPulseAggregator.aggregate(
            tickets,
            config,
            now,
            start_of_day,
            agent_ids=agent_ids,
            calendar=config.build_calendar(),
            policies=policies,
        )
