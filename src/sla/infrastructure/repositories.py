"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. Repositories flush but never commit; the
unit of work owns the transaction.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import CLOSED_STATUSES, TERMINAL_STATUSES, NotificationChannel, Priority
from core import DomainException, RepositoryException, ResourceNotFoundException
from shared.infrastructure.logging import get_logger
from sla.application import (
    IAutoCloseRuleRepository,
    IEscalationRuleRepository,
    IFiringRecordRepository,
    INotificationSink,
    ISLAPolicyResolver,
    ITicketRepository,
    IUnitOfWork,
)
from sla.domain import (
    AutoCloseRule,
    EscalationAction,
    EscalationRule,
    FiringOutcome,
    FiringRecord,
    SLAPolicy,
    TicketSnapshot,
)
from sla.infrastructure.models import (
    ActivityLogModel,
    AgentModel,
    AssignmentGroupModel,
    AutoCloseRuleModel,
    EscalationRuleModel,
    FiringRecordModel,
    GroupMemberModel,
    NotificationModel,
    SLAPolicyModel,
    TicketModel,
)

logger = get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; the domain expects aware UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_snapshot(model: TicketModel) -> TicketSnapshot:
    return TicketSnapshot(
        id=model.id,
        priority=model.priority,
        status=model.status_name,
        created_at=_as_utc(model.created_at),
        updated_at=_as_utc(model.updated_at),
        paused_minutes=model.total_paused_minutes or 0.0,
        assigned_to=model.assigned_to,
        assignment_group_id=model.assignment_group_id,
        ticket_number=model.ticket_number,
        department_id=model.department_id,
        category_id=model.category_id,
        ticket_type=model.ticket_type,
        first_response_at=_as_utc(model.first_response_at),
        requester_id=model.requester_id,
    )


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Reads tickets as immutable snapshots and applies the mutations the
    escalation engine and the auto-close sweeper need.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_active_tickets(
        self,
        filters: Optional[Dict] = None,
        limit: int = 500,
        offset: int = 0
    ) -> List[TicketSnapshot]:
        """List non-terminal tickets, oldest first."""
        filters = filters or {}
        stmt = select(TicketModel).where(TicketModel.status_name.not_in(TERMINAL_STATUSES))

        if "assigned_to" in filters:
            stmt = stmt.where(TicketModel.assigned_to == filters["assigned_to"])
        if "assignment_group_id" in filters:
            stmt = stmt.where(TicketModel.assignment_group_id == filters["assignment_group_id"])

        stmt = stmt.order_by(TicketModel.created_at.asc(), TicketModel.id.asc())
        stmt = stmt.limit(limit).offset(offset)

        result = await self._session.execute(stmt)
        return [_to_snapshot(m) for m in result.scalars().all()]

    async def list_stale_tickets(
        self,
        cutoff: datetime,
        status_name: Optional[str] = None
    ) -> List[TicketSnapshot]:
        stmt = (
            select(TicketModel)
            .where(TicketModel.status_name.not_in(CLOSED_STATUSES))
            .where(TicketModel.updated_at < cutoff)
        )
        if status_name is not None:
            stmt = stmt.where(TicketModel.status_name == status_name)
        stmt = stmt.order_by(TicketModel.updated_at.asc(), TicketModel.id.asc())
        result = await self._session.execute(stmt)
        return [_to_snapshot(m) for m in result.scalars().all()]

    async def list_for_team_pulse(self, since: datetime) -> List[TicketSnapshot]:
        stmt = (
            select(TicketModel)
            .where(TicketModel.assigned_to.is_not(None))
            .where(or_(
                TicketModel.status_name.not_in(TERMINAL_STATUSES),
                TicketModel.updated_at >= since,
            ))
        )
        result = await self._session.execute(stmt)
        return [_to_snapshot(m) for m in result.scalars().all()]

    async def list_agent_ids(self) -> List[str]:
        stmt = select(AgentModel.id).where(AgentModel.is_active.is_(True)).order_by(AgentModel.id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_snapshot(self, ticket_id: str) -> Optional[TicketSnapshot]:
        model = await self._session.get(TicketModel, ticket_id)
        return _to_snapshot(model) if model else None

    async def update_status(self, ticket_id: str, new_status: str, updated_at: datetime) -> None:
        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id)
            .values(status_name=new_status, updated_at=updated_at)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise ResourceNotFoundException("Ticket", ticket_id)

    async def update_priority(self, ticket_id: str, priority: Priority) -> None:
        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id)
            .values(priority=Priority(priority).value)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise ResourceNotFoundException("Ticket", ticket_id)

    async def reassign(self, ticket_id: str, target_group_id: Optional[str] = None) -> Optional[str]:
        """
        Hand the ticket to the least-loaded available member of the group.

        Load is the number of open tickets per agent. Ties go to whoever
        was assigned longest ago. The current assignee is never picked.
        """
        ticket = await self._session.get(TicketModel, ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)

        group_id = target_group_id or ticket.assignment_group_id
        if not group_id:
            raise DomainException("Ticket has no assignment group to reassign within")

        members_stmt = (
            select(GroupMemberModel)
            .where(GroupMemberModel.group_id == group_id)
            .where(GroupMemberModel.is_available.is_(True))
        )
        members = [
            m for m in (await self._session.execute(members_stmt)).scalars().all()
            if m.agent_id != ticket.assigned_to
        ]
        if not members:
            raise DomainException(f"No available agent in group {group_id}")

        load_stmt = (
            select(TicketModel.assigned_to, func.count(TicketModel.id))
            .where(TicketModel.assigned_to.in_([m.agent_id for m in members]))
            .where(TicketModel.status_name.not_in(TERMINAL_STATUSES))
            .group_by(TicketModel.assigned_to)
        )
        load = dict((await self._session.execute(load_stmt)).all())

        chosen = min(
            members,
            key=lambda m: (load.get(m.agent_id, 0), _as_utc(m.last_assigned_at) or _EPOCH, m.agent_id)
        )

        now = datetime.now(timezone.utc)
        previous = ticket.assigned_to
        ticket.assigned_to = chosen.agent_id
        ticket.assignment_group_id = group_id
        chosen.last_assigned_at = now

        self._session.add(ActivityLogModel(
            id=str(uuid4()),
            ticket_id=ticket_id,
            actor_id=None,
            action="reassigned",
            details=f"Reassigned from {previous or 'Unassigned'} to {chosen.agent_id} by SLA escalation",
            created_at=now,
        ))
        await self._session.flush()
        return chosen.agent_id

    async def append_activity_log(
        self,
        ticket_id: str,
        text: str,
        actor_id: Optional[str] = None
    ) -> None:
        self._session.add(ActivityLogModel(
            id=str(uuid4()),
            ticket_id=ticket_id,
            actor_id=actor_id,
            action="comment",
            details=text,
            created_at=datetime.now(timezone.utc),
        ))
        await self._session.flush()

    async def get_supervisor_id(self, group_id: str) -> Optional[str]:
        group = await self._session.get(AssignmentGroupModel, group_id)
        return group.supervisor_id if group else None

    async def list_group_member_ids(self, group_id: str) -> List[str]:
        stmt = (
            select(GroupMemberModel.agent_id)
            .where(GroupMemberModel.group_id == group_id)
            .order_by(GroupMemberModel.agent_id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class SQLAlchemyPolicyResolver(ISLAPolicyResolver):
    """
    Resolves the SLA policy for a ticket.

    Policies are read once per resolver; a resolver lives for one pass.
    The cache holds plain values, never ORM instances, because a rollback
    of one ticket's transaction expires every instance in the session.
    """

    CONDITION_FIELDS = {
        "department_ids": "department_id",
        "category_ids": "category_id",
        "ticket_types": "ticket_type",
    }

    def __init__(self, session: AsyncSession):
        self._session = session
        self._policies: Optional[List[Tuple[Dict[str, Any], SLAPolicy]]] = None

    @staticmethod
    def to_domain(model: SLAPolicyModel) -> SLAPolicy:
        return SLAPolicy(
            id=model.id,
            name=model.name,
            targets=dict(model.targets or {}),
            business_hours_id=model.business_hours_id,
        )

    async def _load(self) -> List[Tuple[Dict[str, Any], SLAPolicy]]:
        if self._policies is None:
            stmt = (
                select(SLAPolicyModel)
                .where(SLAPolicyModel.is_active.is_(True))
                .order_by(SLAPolicyModel.priority_order.asc(), SLAPolicyModel.created_at.asc())
            )
            models = (await self._session.execute(stmt)).scalars().all()
            self._policies = [(dict(m.conditions or {}), self.to_domain(m)) for m in models]
        return self._policies

    @classmethod
    def matches(cls, conditions: Dict[str, Any], ticket: TicketSnapshot) -> bool:
        """Every non-empty condition list must contain the ticket's value."""
        conditions = conditions or {}
        for key, attr in cls.CONDITION_FIELDS.items():
            allowed = conditions.get(key)
            if allowed and getattr(ticket, attr) not in allowed:
                return False

        priorities = conditions.get("priorities")
        if priorities and ticket.priority not in {Priority.normalize(p) for p in priorities}:
            return False
        return True

    async def resolve_policy(self, ticket: TicketSnapshot) -> Optional[SLAPolicy]:
        for conditions, policy in await self._load():
            if self.matches(conditions, ticket):
                return policy
        return None


class SQLAlchemyEscalationRuleRepository(IEscalationRuleRepository):
    """Escalation rules stored in the database."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def to_domain(model: EscalationRuleModel) -> EscalationRule:
        return EscalationRule(
            id=model.id,
            name=model.name,
            sla_policy_id=model.sla_policy_id,
            sla_type=model.sla_type,
            trigger_type=model.trigger_type,
            trigger_value=model.trigger_value,
            actions=[EscalationAction.from_dict(a) for a in model.actions or []],
            notification_channels=model.notification_channels or [NotificationChannel.IN_APP],
            notification_message=model.notification_message,
            is_active=model.is_active,
        )

    async def list_active_rules(self, policy_id: Optional[str] = None) -> List[EscalationRule]:
        stmt = select(EscalationRuleModel).where(EscalationRuleModel.is_active.is_(True))
        if policy_id is not None:
            stmt = stmt.where(EscalationRuleModel.sla_policy_id == policy_id)
        stmt = stmt.order_by(EscalationRuleModel.trigger_value.asc(), EscalationRuleModel.id.asc())

        rules = []
        for model in (await self._session.execute(stmt)).scalars().all():
            try:
                rules.append(self.to_domain(model))
            except (KeyError, ValueError) as e:
                logger.warning(
                    "Skipping invalid escalation rule",
                    extra={"rule_id": model.id, "error": str(e)}
                )
        return rules


class SQLAlchemyAutoCloseRuleRepository(IAutoCloseRuleRepository):
    """Auto-close rules stored in the database, oldest first."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def to_domain(model: AutoCloseRuleModel) -> AutoCloseRule:
        return AutoCloseRule(
            id=model.id,
            name=model.name,
            condition_type=model.condition_type,
            condition_value=model.condition_value,
            after_days=model.after_days or 0,
            after_hours=model.after_hours or 0,
            notify_user=model.notify_user,
            notify_agent=model.notify_agent,
            add_note=model.add_note,
            note_text=model.note_text,
            is_active=model.is_active,
        )

    async def list_active_rules(self) -> List[AutoCloseRule]:
        stmt = (
            select(AutoCloseRuleModel)
            .where(AutoCloseRuleModel.is_active.is_(True))
            .order_by(AutoCloseRuleModel.created_at.asc(), AutoCloseRuleModel.id.asc())
        )

        rules = []
        for model in (await self._session.execute(stmt)).scalars().all():
            try:
                rules.append(self.to_domain(model))
            except ValueError as e:
                logger.warning(
                    "Skipping invalid auto-close rule",
                    extra={"rule_id": model.id, "error": str(e)}
                )
        return rules


class SQLAlchemyFiringRecordRepository(IFiringRecordRepository):
    """
    Firing records backed by a UNIQUE (ticket_id, rule_id, trigger_threshold).

    On PostgreSQL and SQLite the claim is a single INSERT .. ON CONFLICT DO
    NOTHING, so two passes racing on the same key cannot both win.
    """

    CONFLICT_COLUMNS = ["ticket_id", "rule_id", "trigger_threshold"]

    def __init__(self, session: AsyncSession):
        self._session = session

    def _dialect_insert(self):
        dialect = self._session.bind.dialect.name if self._session.bind else ""
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
            return insert
        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
            return insert
        return None

    async def has_fired(self, ticket_id: str, rule_id: str, threshold: float) -> bool:
        stmt = select(FiringRecordModel.id).where(
            FiringRecordModel.ticket_id == ticket_id,
            FiringRecordModel.rule_id == rule_id,
            FiringRecordModel.trigger_threshold == float(threshold),
        )
        return (await self._session.execute(stmt)).first() is not None

    async def record_firing(
        self,
        ticket_id: str,
        rule_id: str,
        threshold: float,
        fired_at: datetime
    ) -> FiringOutcome:
        values = {
            "id": str(uuid4()),
            "ticket_id": ticket_id,
            "rule_id": rule_id,
            "trigger_threshold": float(threshold),
            "fired_at": fired_at,
        }

        insert = self._dialect_insert()
        if insert is not None:
            stmt = insert(FiringRecordModel).values(**values).on_conflict_do_nothing(
                index_elements=self.CONFLICT_COLUMNS
            )
            result = await self._session.execute(stmt)
            return FiringOutcome.RECORDED if result.rowcount == 1 else FiringOutcome.ALREADY_EXISTS

        try:
            async with self._session.begin_nested():
                self._session.add(FiringRecordModel(**values))
        except IntegrityError:
            return FiringOutcome.ALREADY_EXISTS
        return FiringOutcome.RECORDED

    async def release_firing(self, ticket_id: str, rule_id: str, threshold: float) -> None:
        stmt = delete(FiringRecordModel).where(
            FiringRecordModel.ticket_id == ticket_id,
            FiringRecordModel.rule_id == rule_id,
            FiringRecordModel.trigger_threshold == float(threshold),
        )
        await self._session.execute(stmt)

    async def list_for_ticket(self, ticket_id: str) -> List[FiringRecord]:
        stmt = (
            select(FiringRecordModel)
            .where(FiringRecordModel.ticket_id == ticket_id)
            .order_by(FiringRecordModel.fired_at.asc())
        )
        return [
            FiringRecord(
                ticket_id=m.ticket_id,
                rule_id=m.rule_id,
                trigger_threshold=m.trigger_threshold,
                fired_at=_as_utc(m.fired_at),
            )
            for m in (await self._session.execute(stmt)).scalars().all()
        ]


class InAppNotificationSink(INotificationSink):
    """Writes in-app notifications to the notifications table."""

    shares_session = True

    def __init__(self, session: AsyncSession):
        self._session = session

    async def enqueue(
        self,
        channel: NotificationChannel,
        recipient: str,
        message: str,
        reference_id: Optional[str] = None
    ) -> None:
        if not recipient:
            raise RepositoryException("Notification recipient is required")
        self._session.add(NotificationModel(
            id=str(uuid4()),
            recipient_id=recipient,
            channel=NotificationChannel(channel).value,
            message=message,
            reference_id=reference_id,
            created_at=datetime.now(timezone.utc),
        ))
        await self._session.flush()


class SQLAlchemyUnitOfWork(IUnitOfWork):
    """Commits or rolls back the session shared by the repositories."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()
