"""Tests for the SQLAlchemy repositories against in-memory SQLite."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from config import AutoCloseCondition, NotificationChannel, Priority, SLAType, settings
from core import DomainException, RepositoryException, ResourceNotFoundException
from infrastructure.database import _engine_options
from sla.domain import FiringOutcome
from sla.infrastructure import (
    InAppNotificationSink,
    SQLAlchemyAutoCloseRuleRepository,
    SQLAlchemyEscalationRuleRepository,
    SQLAlchemyFiringRecordRepository,
    SQLAlchemyPolicyResolver,
    SQLAlchemyTicketRepository,
)
from sla.infrastructure.models import (
    ActivityLogModel,
    AgentModel,
    AssignmentGroupModel,
    AutoCloseRuleModel,
    EscalationRuleModel,
    GroupMemberModel,
    NotificationModel,
    SLAPolicyModel,
    TicketModel,
)
from sla.services import SLAEngineRunner
from tests.factories import NOW, make_ticket
from tests.fakes import FixedClock, StaticConfigProvider


def ticket_row(ticket_id: str, age: timedelta = timedelta(hours=1), **kwargs) -> TicketModel:
    created_at = NOW - age
    kwargs.setdefault("priority", "Urgent")
    kwargs.setdefault("status_name", "Open")
    kwargs.setdefault("updated_at", created_at)
    return TicketModel(id=ticket_id, title=f"Ticket {ticket_id}", created_at=created_at, **kwargs)


class TestSQLAlchemyTicketRepository:

    @pytest.mark.asyncio
    async def test_list_active_excludes_terminal_and_orders_oldest_first(self, db_session):
        db_session.add_all([
            ticket_row("young", timedelta(hours=1)),
            ticket_row("old", timedelta(hours=5), priority="p2"),
            ticket_row("done", timedelta(hours=9), status_name="Resolved"),
            ticket_row("paused", timedelta(hours=3), status_name="Pending Vendor"),
        ])
        await db_session.commit()
        repo = SQLAlchemyTicketRepository(db_session)

        tickets = await repo.list_active_tickets()

        assert [t.id for t in tickets] == ["old", "paused", "young"]
        assert tickets[0].priority == Priority.HIGH
        assert tickets[0].created_at.tzinfo is not None

        page = await repo.list_active_tickets(limit=1, offset=1)
        assert [t.id for t in page] == ["paused"]

    @pytest.mark.asyncio
    async def test_list_stale_tickets(self, db_session):
        db_session.add_all([
            ticket_row("old", timedelta(days=3), status_name="Resolved", updated_at=NOW - timedelta(hours=25),
                       requester_id="user-7", first_response_at=NOW - timedelta(days=2)),
            ticket_row("fresh", timedelta(days=3), status_name="Resolved", updated_at=NOW - timedelta(hours=23)),
            ticket_row("pending", timedelta(days=3), status_name="Pending Vendor",
                       updated_at=NOW - timedelta(hours=30)),
            ticket_row("closed", timedelta(days=3), status_name="Closed", updated_at=NOW - timedelta(days=2)),
            ticket_row("canceled", timedelta(days=3), status_name="Canceled", updated_at=NOW - timedelta(days=2)),
        ])
        await db_session.commit()
        repo = SQLAlchemyTicketRepository(db_session)
        cutoff = NOW - timedelta(hours=24)

        resolved = await repo.list_stale_tickets(cutoff, "Resolved")
        stale = await repo.list_stale_tickets(cutoff)

        assert [t.id for t in resolved] == ["old"]
        assert resolved[0].requester_id == "user-7"
        assert resolved[0].first_response_at == NOW - timedelta(days=2)
        assert [t.id for t in stale] == ["pending", "old"]

    @pytest.mark.asyncio
    async def test_updates_and_missing_ticket(self, db_session):
        db_session.add(ticket_row("t-1"))
        await db_session.commit()
        repo = SQLAlchemyTicketRepository(db_session)

        await repo.update_status("t-1", "Closed", updated_at=NOW)
        await repo.update_priority("t-1", Priority.LOW)
        await repo.append_activity_log("t-1", "system note")
        await db_session.commit()

        snapshot = await repo.get_snapshot("t-1")
        assert snapshot.status == "Closed"
        assert snapshot.priority == Priority.LOW
        logs = (await db_session.execute(select(ActivityLogModel))).scalars().all()
        assert [(log.details, log.actor_id) for log in logs] == [("system note", None)]

        with pytest.raises(ResourceNotFoundException):
            await repo.update_status("missing", "Closed", updated_at=NOW)
        assert await repo.get_snapshot("missing") is None

    @pytest.mark.asyncio
    async def test_reassign_picks_least_loaded_member(self, db_session):
        db_session.add_all([
            AssignmentGroupModel(id="g-1", name="Service Desk", supervisor_id="sup-1"),
            GroupMemberModel(group_id="g-1", agent_id="busy"),
            GroupMemberModel(group_id="g-1", agent_id="idle"),
            GroupMemberModel(group_id="g-1", agent_id="away", is_available=False),
            ticket_row("t-1", assigned_to="busy", assignment_group_id="g-1"),
            ticket_row("t-2", assigned_to="busy"),
        ])
        await db_session.commit()
        repo = SQLAlchemyTicketRepository(db_session)

        new_assignee = await repo.reassign("t-1")
        await db_session.commit()

        assert new_assignee == "idle"
        assert (await repo.get_snapshot("t-1")).assigned_to == "idle"
        assert await repo.get_supervisor_id("g-1") == "sup-1"
        assert await repo.list_group_member_ids("g-1") == ["away", "busy", "idle"]

    @pytest.mark.asyncio
    async def test_reassign_without_candidates(self, db_session):
        db_session.add_all([
            GroupMemberModel(group_id="g-1", agent_id="only"),
            ticket_row("t-1", assigned_to="only", assignment_group_id="g-1"),
            ticket_row("t-2"),
        ])
        await db_session.commit()
        repo = SQLAlchemyTicketRepository(db_session)

        with pytest.raises(DomainException):
            await repo.reassign("t-1")
        with pytest.raises(DomainException):
            await repo.reassign("t-2")

    @pytest.mark.asyncio
    async def test_team_pulse_listing(self, db_session):
        db_session.add_all([
            AgentModel(id="a-1", name="Ann"),
            AgentModel(id="a-2", name="Bo", is_active=False),
            ticket_row("open", assigned_to="a-1"),
            ticket_row("today", status_name="Closed", assigned_to="a-1", updated_at=NOW - timedelta(hours=1)),
            ticket_row("last-week", timedelta(days=9), status_name="Closed", assigned_to="a-1",
                       updated_at=NOW - timedelta(days=7)),
            ticket_row("unassigned"),
        ])
        await db_session.commit()
        repo = SQLAlchemyTicketRepository(db_session)

        tickets = await repo.list_for_team_pulse(since=NOW - timedelta(hours=15))

        assert {t.id for t in tickets} == {"open", "today"}
        assert await repo.list_agent_ids() == ["a-1"]


class TestSQLAlchemyFiringRecordRepository:

    @pytest.mark.asyncio
    async def test_claim_is_insert_if_absent(self, db_session):
        repo = SQLAlchemyFiringRecordRepository(db_session)

        first = await repo.record_firing("t-1", "r-80", 80, NOW)
        second = await repo.record_firing("t-1", "r-80", 80.0, NOW + timedelta(minutes=5))
        other_threshold = await repo.record_firing("t-1", "r-80", 100, NOW)
        await db_session.commit()

        assert first == FiringOutcome.RECORDED
        assert second == FiringOutcome.ALREADY_EXISTS
        assert other_threshold == FiringOutcome.RECORDED
        assert await repo.has_fired("t-1", "r-80", 80)
        assert len(await repo.list_for_ticket("t-1")) == 2

    @pytest.mark.asyncio
    async def test_release_allows_new_claim(self, db_session):
        repo = SQLAlchemyFiringRecordRepository(db_session)
        await repo.record_firing("t-1", "r-80", 80, NOW)

        await repo.release_firing("t-1", "r-80", 80)

        assert not await repo.has_fired("t-1", "r-80", 80)
        assert await repo.record_firing("t-1", "r-80", 80, NOW) == FiringOutcome.RECORDED


class TestSQLAlchemyPolicyResolver:

    @pytest.mark.asyncio
    async def test_first_matching_policy_by_priority_order(self, db_session):
        db_session.add_all([
            SLAPolicyModel(id="fallback", name="Everything", conditions={}, priority_order=100),
            SLAPolicyModel(id="it-urgent", name="IT urgent", priority_order=10,
                           conditions={"department_ids": ["it"], "priorities": ["critical", "high"]}),
            SLAPolicyModel(id="off", name="Disabled", conditions={}, priority_order=1, is_active=False),
        ])
        await db_session.commit()
        resolver = SQLAlchemyPolicyResolver(db_session)

        assert await resolver.policy_applies_to(make_ticket(priority="Urgent", department_id="it")) == "it-urgent"
        assert await resolver.policy_applies_to(make_ticket(priority="Low", department_id="it")) == "fallback"
        assert await resolver.policy_applies_to(make_ticket(priority="Urgent", department_id="hr")) == "fallback"

    @pytest.mark.asyncio
    async def test_policy_carries_targets_and_calendar(self, db_session):
        db_session.add(SLAPolicyModel(
            id="vip", name="VIP", conditions={},
            targets={"urgent": {"response": 30, "resolution": 120}, "bogus": {"response": 5}},
            business_hours_id="emea-support",
        ))
        await db_session.commit()
        resolver = SQLAlchemyPolicyResolver(db_session)

        policy = await resolver.resolve_policy(make_ticket())

        assert policy.id == "vip"
        assert policy.business_hours_id == "emea-support"
        assert policy.targets == {"Urgent": {"response": 30.0, "resolution": 120.0}}
        assert policy.target_minutes(Priority.URGENT, SLAType.RESPONSE) == 30
        assert policy.target_minutes(Priority.LOW, SLAType.RESPONSE) is None

    @pytest.mark.asyncio
    async def test_cached_policies_survive_rollback(self, db_session):
        db_session.add(SLAPolicyModel(id="p-1", name="Default", conditions={"ticket_types": ["incident"]}))
        await db_session.commit()
        resolver = SQLAlchemyPolicyResolver(db_session)
        ticket = make_ticket(ticket_type="incident")

        assert (await resolver.resolve_policy(ticket)).id == "p-1"
        await db_session.rollback()

        assert (await resolver.resolve_policy(ticket)).id == "p-1"
        assert await resolver.resolve_policy(make_ticket(ticket_type="request")) is None

    @pytest.mark.asyncio
    async def test_no_policy(self, db_session):
        resolver = SQLAlchemyPolicyResolver(db_session)
        assert await resolver.policy_applies_to(make_ticket()) is None

    def test_condition_matching(self):
        ticket = make_ticket(category_id="network", ticket_type="incident")
        assert SQLAlchemyPolicyResolver.matches({"ticket_types": ["incident"]}, ticket)
        assert not SQLAlchemyPolicyResolver.matches({"category_ids": ["hardware"]}, ticket)
        assert SQLAlchemyPolicyResolver.matches({"category_ids": []}, ticket)
        assert SQLAlchemyPolicyResolver.matches(None, ticket)


class TestSQLAlchemyEscalationRuleRepository:

    @pytest.mark.asyncio
    async def test_active_rules_for_policy_skipping_invalid(self, db_session):
        db_session.add_all([
            EscalationRuleModel(id="r-100", name="Breach", sla_policy_id="p-1", trigger_value=100,
                                actions=[{"type": "notify_supervisor"}]),
            EscalationRuleModel(id="r-80", name="Warn", sla_policy_id="p-1", trigger_value=80,
                                actions=[{"type": "add_note", "note_text": "80% gone"}],
                                notification_channels=["in_app", "email"]),
            EscalationRuleModel(id="r-bad", name="Broken", sla_policy_id="p-1", trigger_value=90,
                                actions=[{"type": "notify_group"}]),
            EscalationRuleModel(id="r-off", name="Off", sla_policy_id="p-1", trigger_value=50, is_active=False),
            EscalationRuleModel(id="r-other", name="Other", sla_policy_id="p-2", trigger_value=80),
        ])
        await db_session.commit()
        repo = SQLAlchemyEscalationRuleRepository(db_session)

        rules = await repo.list_active_rules("p-1")

        assert [r.id for r in rules] == ["r-80", "r-100"]
        assert rules[0].notification_channels == [NotificationChannel.IN_APP, NotificationChannel.EMAIL]
        assert len(await repo.list_active_rules()) == 3


class TestSQLAlchemyAutoCloseRuleRepository:

    @pytest.mark.asyncio
    async def test_active_rules_oldest_first_skipping_invalid(self, db_session):
        db_session.add_all([
            AutoCloseRuleModel(id="pending", name="Pending a week", condition_type="pending",
                               after_days=7, notify_user=True, created_at=NOW - timedelta(days=1)),
            AutoCloseRuleModel(id="resolved", name="Resolved a day", condition_type="status",
                               condition_value="Resolved", after_hours=24, add_note=True,
                               note_text="Closed by rule", created_at=NOW - timedelta(days=2)),
            AutoCloseRuleModel(id="no-grace", name="Broken", condition_type="no_response",
                               created_at=NOW - timedelta(days=3)),
            AutoCloseRuleModel(id="off", name="Off", condition_type="pending", after_days=1,
                               is_active=False, created_at=NOW - timedelta(days=4)),
        ])
        await db_session.commit()
        repo = SQLAlchemyAutoCloseRuleRepository(db_session)

        rules = await repo.list_active_rules()

        assert [r.id for r in rules] == ["resolved", "pending"]
        assert rules[0].condition_type == AutoCloseCondition.STATUS
        assert rules[0].note_text == "Closed by rule"
        assert rules[1].grace == timedelta(days=7)
        assert rules[1].notify_user is True


class TestInAppNotificationSink:

    @pytest.mark.asyncio
    async def test_writes_notification_row(self, db_session):
        sink = InAppNotificationSink(db_session)

        await sink.enqueue(NotificationChannel.IN_APP, "agent-1", "Ticket overdue", reference_id="t-1")
        await db_session.commit()

        [row] = (await db_session.execute(select(NotificationModel))).scalars().all()
        assert (row.recipient_id, row.message, row.reference_id, row.is_read) == (
            "agent-1", "Ticket overdue", "t-1", False
        )

    @pytest.mark.asyncio
    async def test_recipient_required(self, db_session):
        with pytest.raises(RepositoryException):
            await InAppNotificationSink(db_session).enqueue(NotificationChannel.IN_APP, "", "x")


class TestSLAEngineRunner:
    """A full pass against SQLite, wired the way the application wires it."""

    async def seed(self, session_factory):
        async with session_factory() as session:
            session.add_all([
                AssignmentGroupModel(id="g-1", name="Service Desk", supervisor_id="sup-1"),
                SLAPolicyModel(id="p-1", name="Default", conditions={}),
                EscalationRuleModel(
                    id="r-80", name="Warn", sla_policy_id="p-1", trigger_value=80,
                    actions=[{"type": "notify_supervisor"}],
                    notification_message="{ticket_id} is {sla_status}",
                ),
                EscalationRuleModel(
                    id="r-100", name="Breach", sla_policy_id="p-1", trigger_value=100,
                    actions=[
                        {"type": "change_priority", "new_priority": "Urgent"},
                        {"type": "add_note", "note_text": "SLA breached"},
                    ],
                ),
                ticket_row("late", timedelta(hours=9, minutes=12), priority="High", assignment_group_id="g-1",
                           ticket_number="INC-7"),
                ticket_row("fine", timedelta(minutes=30), assignment_group_id="g-1"),
                ticket_row("resolved", timedelta(days=3), status_name="Resolved",
                           updated_at=NOW - timedelta(hours=30)),
            ])
            await session.commit()

    def runner(self, session_factory, sla_config):
        return SLAEngineRunner(
            session_factory,
            StaticConfigProvider(sla_config),
            clock=FixedClock(NOW),
            batch_size=2,
            grace_hours=24,
            timeout_seconds=2,
        )

    @pytest.mark.asyncio
    async def test_pass_fires_once_and_closes(self, session_factory, sla_config):
        await self.seed(session_factory)
        runner = self.runner(session_factory, sla_config)

        first = await runner.run_now()
        second = await runner.run_now()

        assert first.success is True
        assert first.processed_ticket_count == 2
        assert first.triggered_escalation_count == 2
        assert first.closed_ticket_ids == ["resolved"]
        assert second.triggered_escalation_count == 0
        assert second.closed_ticket_count == 0

        async with session_factory() as session:
            late = await session.get(TicketModel, "late")
            assert late.priority == "Urgent"
            resolved = await session.get(TicketModel, "resolved")
            assert resolved.status_name == "Closed"

            notifications = (await session.execute(select(NotificationModel))).scalars().all()
            assert [(n.recipient_id, n.message) for n in notifications] == [
                ("sup-1", "INC-7 is 115% elapsed")
            ]
            notes = (await session.execute(
                select(ActivityLogModel.details).order_by(ActivityLogModel.details)
            )).scalars().all()
            assert notes == [
                "SLA breached",
                "System auto-closed ticket after 24 hours in Resolved status",
            ]

    @pytest.mark.asyncio
    async def test_ticket_failure_does_not_stop_later_tickets(self, session_factory, sla_config, monkeypatch):
        async with session_factory() as session:
            session.add_all([
                SLAPolicyModel(id="p-1", name="Default", conditions={}),
                EscalationRuleModel(
                    id="r-80", name="Warn", sla_policy_id="p-1", trigger_value=80,
                    actions=[{"type": "add_note", "note_text": "80% gone"}],
                ),
                ticket_row("a", timedelta(hours=6)),
                ticket_row("b", timedelta(hours=5)),
            ])
            await session.commit()

        list_for_ticket = SQLAlchemyFiringRecordRepository.list_for_ticket

        async def fail_for_a(self, ticket_id):
            if ticket_id == "a":
                raise RuntimeError("statement failed")
            return await list_for_ticket(self, ticket_id)

        monkeypatch.setattr(SQLAlchemyFiringRecordRepository, "list_for_ticket", fail_for_a)

        summary = await self.runner(session_factory, sla_config).run_now()

        assert summary.success is True
        assert summary.failed_ticket_count == 1
        assert summary.processed_ticket_count == 1
        assert summary.triggered_escalation_count == 1

        async with session_factory() as session:
            notes = (await session.execute(select(ActivityLogModel.ticket_id))).scalars().all()
            assert notes == ["b"]

    @pytest.mark.asyncio
    async def test_run_now_reports_failure(self, session_factory, sla_config):
        class ExplodingProvider(StaticConfigProvider):
            def get_config(self):
                raise RuntimeError("config unreadable")

        runner = SLAEngineRunner(session_factory, ExplodingProvider(), clock=FixedClock(NOW))

        summary = await runner.run_now(now=datetime(2024, 3, 6, tzinfo=timezone.utc))

        assert summary.success is False
        assert "config unreadable" in summary.error
        assert summary.processed_ticket_count == 0


class TestEngineOptions:

    def test_asyncpg_statements_are_bounded(self):
        options = _engine_options("postgresql+asyncpg://sla:secret@db/helpdesk")

        assert options["connect_args"] == {"command_timeout": settings.collaborator_timeout_seconds}
        assert options["pool_pre_ping"] is True

    def test_sqlite_has_no_pool_or_driver_timeout(self):
        options = _engine_options("sqlite+aiosqlite:///:memory:")

        assert "connect_args" not in options
        assert "pool_size" not in options
