"""
Auto-Close Sweeper
==================

Closes tickets selected by the auto-close rules. With no rules configured
the built-in rule applies: Resolved for longer than the grace period.
"""

from datetime import datetime
from typing import Dict, List, Optional

from config import STATUS_CLOSED, STATUS_RESOLVED, AutoCloseCondition, NotificationChannel
from core import DomainException, EvaluationAbortedException
from shared.infrastructure.logging import get_logger
from sla.application.interfaces import (
    IAutoCloseRuleRepository,
    INotificationSink,
    ITicketRepository,
    IUnitOfWork,
)
from sla.domain import AutoCloseCandidate, AutoCloseRule, AutoCloseSelector, TicketSnapshot

logger = get_logger(__name__)

AUTO_CLOSE_NOTE = "System auto-closed ticket after {hours} hours in Resolved status"
USER_CLOSED_MESSAGE = "Ticket {ticket_id} has been automatically closed due to inactivity."
AGENT_CLOSED_MESSAGE = 'Ticket {ticket_id} has been automatically closed by rule "{rule_name}".'


def default_auto_close_rule(grace_hours: int = 24) -> AutoCloseRule:
    """Resolved for ``grace_hours`` → Closed, with a system note."""
    return AutoCloseRule(
        id="default-resolved",
        name=f"Resolved for {grace_hours} hours",
        condition_type=AutoCloseCondition.STATUS,
        condition_value=STATUS_RESOLVED,
        after_hours=grace_hours,
        add_note=True,
        note_text=AUTO_CLOSE_NOTE.format(hours=grace_hours),
    )


class AutoCloseSweeper:
    """
    One-way transition to Closed.

    Closed tickets are never selected again, so a ticket closed by an
    earlier sweep is not picked up twice. Each ticket is closed in its own
    transaction.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        unit_of_work: IUnitOfWork,
        rule_repository: Optional[IAutoCloseRuleRepository] = None,
        notification_sink: Optional[INotificationSink] = None,
        grace_hours: int = 24
    ):
        self._tickets = ticket_repository
        self._uow = unit_of_work
        self._rules = rule_repository
        self._notifier = notification_sink
        self._default_rule = default_auto_close_rule(grace_hours)

    async def active_rules(self) -> List[AutoCloseRule]:
        """Stored rules, or the built-in rule when none are active."""
        rules = await self._rules.list_active_rules() if self._rules else []
        return rules or [self._default_rule]

    async def preview(self, now: datetime) -> List[AutoCloseCandidate]:
        """Tickets the next sweep at ``now`` would close; nothing is changed."""
        rules = [
            r for r in await self.active_rules()
            if r.condition_type != AutoCloseCondition.USER_CONFIRMED
        ]
        candidates_by_rule: Dict[str, List[TicketSnapshot]] = {}
        for rule in rules:
            candidates_by_rule[rule.id] = await self._tickets.list_stale_tickets(
                rule.cutoff(now), rule.status_filter
            )
        return AutoCloseSelector.select(rules, candidates_by_rule, now)

    async def sweep(self, now: datetime) -> List[str]:
        """
        Close every selected ticket; returns the ids that were closed.

        A failure on one ticket is logged and skipped. Failing to list
        rules or candidates at all aborts the pass.
        """
        try:
            candidates = await self.preview(now)
        except Exception as e:
            raise EvaluationAbortedException(
                "Ticket store unavailable during auto-close sweep",
                {"error": str(e)}
            ) from e

        closed: List[str] = []
        for candidate in candidates:
            ticket = candidate.ticket
            try:
                await self._close(candidate, now)
                await self._uow.commit()
            except Exception as e:
                await self._uow.rollback()
                logger.warning(
                    "Auto-close failed for ticket",
                    extra={
                        "ticket_id": ticket.id,
                        "rule_id": candidate.rule.id,
                        "error": f"{type(e).__name__}: {e}"
                    }
                )
                continue
            closed.append(ticket.id)

        if candidates:
            logger.info(
                "Auto-close sweep complete",
                extra={"candidates": len(candidates), "closed": len(closed)}
            )
        return closed

    async def _close(self, candidate: AutoCloseCandidate, now: datetime) -> None:
        ticket, rule = candidate.ticket, candidate.rule
        await self._tickets.update_status(ticket.id, STATUS_CLOSED, updated_at=now)

        if rule.add_note:
            await self._tickets.append_activity_log(ticket.id, rule.note_text, actor_id=None)

        notifications = []
        if rule.notify_user and ticket.requester_id:
            notifications.append((
                ticket.requester_id,
                USER_CLOSED_MESSAGE.format(ticket_id=ticket.display_id),
            ))
        if rule.notify_agent and ticket.assigned_to:
            notifications.append((
                ticket.assigned_to,
                AGENT_CLOSED_MESSAGE.format(ticket_id=ticket.display_id, rule_name=rule.name),
            ))
        if notifications and self._notifier is None:
            raise DomainException(f"Auto-close rule {rule.id} notifies but no sink is configured")

        for recipient, message in notifications:
            await self._notifier.enqueue(
                NotificationChannel.IN_APP, recipient, message, reference_id=ticket.id
            )
