"""
Action Dispatcher
=================

Applies the actions of a matched escalation rule and records the firing.
"""

from typing import List

from config import ActionType
from core import ApplicationException, DomainException
from shared.infrastructure.logging import get_logger
from sla.application.interfaces import (
    IClock,
    IFiringRecordRepository,
    INotificationSink,
    ITicketRepository,
)
from sla.domain import (
    ActionResult,
    DispatchOutcome,
    DispatchStatus,
    EscalationAction,
    EscalationRule,
    FiringOutcome,
    SLAEvaluation,
    TicketSnapshot,
    render_notification_message,
)

logger = get_logger(__name__)


class ActionDispatcher:
    """
    Executes a rule's actions against the ticket store and notification sink.

    The firing record is claimed with an insert-if-absent before any action
    runs, so two overlapping passes cannot both act on the same
    (ticket, rule, threshold). An action that fails with an application
    error is recorded and the remaining actions still run. When every
    action fails the claim is released and the rule is retried on the next
    pass.

    Any other error, such as a database driver timeout, leaves the shared
    session unusable and propagates so the ticket is rolled back as a
    whole. Notification timeouts are applied by the sink, never around a
    database statement.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        firing_repository: IFiringRecordRepository,
        notification_sink: INotificationSink,
        clock: IClock
    ):
        self._tickets = ticket_repository
        self._firings = firing_repository
        self._notifier = notification_sink
        self._clock = clock

    async def dispatch(
        self,
        ticket: TicketSnapshot,
        rule: EscalationRule,
        evaluation: SLAEvaluation
    ) -> DispatchOutcome:
        threshold = rule.trigger_value

        claim = await self._firings.record_firing(
            ticket.id, rule.id, threshold, self._clock.now()
        )
        if claim == FiringOutcome.ALREADY_EXISTS:
            logger.info(
                "Escalation already fired by another pass",
                extra={"ticket_id": ticket.id, "rule_id": rule.id, "threshold": threshold}
            )
            return DispatchOutcome(rule.id, threshold, DispatchStatus.DUPLICATE)

        message = render_notification_message(rule, ticket, evaluation)
        results: List[ActionResult] = []
        for action in rule.actions:
            results.append(await self._attempt(ticket, rule, action, message))

        status = DispatchStatus.FIRED
        if results and not any(r.success for r in results):
            await self._firings.release_firing(ticket.id, rule.id, threshold)
            status = DispatchStatus.RELEASED

        logger.info(
            "Escalation dispatched",
            extra={
                "ticket_id": ticket.id,
                "rule_id": rule.id,
                "threshold": threshold,
                "sla_type": evaluation.sla_type.value,
                "ratio": round(evaluation.ratio, 4),
                "status": status.value,
                "actions_failed": sum(1 for r in results if not r.success),
                "actions_total": len(results)
            }
        )
        return DispatchOutcome(rule.id, threshold, status, results)

    async def _attempt(
        self,
        ticket: TicketSnapshot,
        rule: EscalationRule,
        action: EscalationAction,
        message: str
    ) -> ActionResult:
        try:
            detail = await self._apply(ticket, rule, action, message)
            return ActionResult(action.type, True, detail=detail)
        except ApplicationException as e:
            error = f"{type(e).__name__}: {e}"

        logger.warning(
            "Escalation action failed",
            extra={
                "ticket_id": ticket.id,
                "rule_id": rule.id,
                "action_type": action.type.value,
                "error": error
            }
        )
        return ActionResult(action.type, False, error=error)

    async def _apply(
        self,
        ticket: TicketSnapshot,
        rule: EscalationRule,
        action: EscalationAction,
        message: str
    ) -> str:
        if action.type == ActionType.NOTIFY_SUPERVISOR:
            if not ticket.assignment_group_id:
                raise DomainException("Ticket has no assignment group to find a supervisor")
            supervisor_id = await self._tickets.get_supervisor_id(ticket.assignment_group_id)
            if not supervisor_id:
                raise DomainException(
                    f"Group {ticket.assignment_group_id} has no supervisor"
                )
            return await self._notify(ticket, rule, [supervisor_id], message)

        if action.type == ActionType.NOTIFY_GROUP:
            members = await self._tickets.list_group_member_ids(action.target_id)
            if not members:
                raise DomainException(f"Group {action.target_id} has no members")
            return await self._notify(ticket, rule, members, message)

        if action.type == ActionType.NOTIFY_USER:
            return await self._notify(ticket, rule, [action.target_id], message)

        if action.type == ActionType.REASSIGN:
            new_assignee = await self._tickets.reassign(ticket.id, action.target_id)
            return f"reassigned to {new_assignee}"

        if action.type == ActionType.CHANGE_PRIORITY:
            await self._tickets.update_priority(ticket.id, action.new_priority)
            return f"priority changed to {action.new_priority.value}"

        if action.type == ActionType.ADD_NOTE:
            await self._tickets.append_activity_log(ticket.id, action.note_text, actor_id=None)
            return "note added"

        raise DomainException(f"Unsupported action type: {action.type}")

    async def _notify(
        self,
        ticket: TicketSnapshot,
        rule: EscalationRule,
        recipients: List[str],
        message: str
    ) -> str:
        for channel in rule.notification_channels:
            for recipient in recipients:
                await self._notifier.enqueue(channel, recipient, message, reference_id=ticket.id)
        return f"notified {len(recipients)} recipient(s) on {len(rule.notification_channels)} channel(s)"
