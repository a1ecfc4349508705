"""API tests for the SLA routes."""

from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from infrastructure.database import get_session
from main import create_app
from sla.domain import EvaluationSummary
from sla.infrastructure.models import AutoCloseRuleModel, EscalationRuleModel, SLAPolicyModel, TicketModel
from tests.factories import NOW
from tests.fakes import FixedClock, StaticConfigProvider


class StubRunner:
    """Stands in for SLAEngineRunner; returns a canned summary."""

    def __init__(self, summary: EvaluationSummary):
        self.summary = summary
        self.calls = 0

    async def run_now(self, now=None):
        self.calls += 1
        return self.summary


@pytest.fixture
def runner():
    return StubRunner(EvaluationSummary(
        run_id="run-1",
        trigger="manual",
        started_at=NOW,
        processed_ticket_count=12,
        triggered_escalation_count=3,
        closed_ticket_ids=["t-9"],
    ))


@pytest_asyncio.fixture
async def client(session_factory, sla_config, runner):
    app = create_app(use_lifespan=False)
    app.state.clock = FixedClock(NOW)
    app.state.sla_config_manager = StaticConfigProvider(sla_config)
    app.state.sla_runner = runner

    async def override_session():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_session] = override_session

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def seed(session_factory, *rows):
    async with session_factory() as session:
        session.add_all(rows)
        await session.commit()


class TestEngineRun:

    @pytest.mark.asyncio
    async def test_run_now_returns_counts(self, client, runner):
        response = await client.post("/sla/engine/run")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "processed_ticket_count": 12,
            "triggered_escalation_count": 3,
            "closed_ticket_count": 1,
            "error": None,
            "run_id": "run-1",
        }
        assert runner.calls == 1

    @pytest.mark.asyncio
    async def test_failed_pass_reported_not_raised(self, client, runner):
        runner.summary = EvaluationSummary(
            run_id="run-2", trigger="manual", started_at=NOW,
            success=False, error="Ticket store unavailable",
        )

        response = await client.post("/sla/engine/run")

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["error"] == "Ticket store unavailable"


class TestTicketSLA:

    @pytest.mark.asyncio
    async def test_ticket_state(self, client, session_factory):
        await seed(
            session_factory,
            SLAPolicyModel(id="p-1", name="Default", conditions={}),
            TicketModel(id="t-1", ticket_number="INC-1", title="VPN down", priority="critical",
                        status_name="Open", created_at=NOW - timedelta(hours=5),
                        updated_at=NOW - timedelta(hours=5)),
        )

        response = await client.get("/sla/tickets/t-1")

        assert response.status_code == 200
        body = response.json()
        assert body["priority"] == "Urgent"
        assert body["sla_policy_id"] == "p-1"
        resolution = next(e for e in body["evaluations"] if e["sla_type"] == "resolution")
        assert resolution["state"] == "breached"
        assert resolution["overdue_minutes"] == 60
        assert body["firings"] == []

    @pytest.mark.asyncio
    async def test_unknown_ticket_is_404(self, client):
        response = await client.get("/sla/tickets/nope")

        assert response.status_code == 404
        assert "not found" in response.json()["detail"]


class TestTeamPulse:

    @pytest.mark.asyncio
    async def test_team_pulse(self, client, session_factory):
        await seed(
            session_factory,
            *[
                TicketModel(id=f"t-{i}", title="x", priority="Low", status_name="Open",
                            assigned_to="agent-7", created_at=NOW - timedelta(hours=1),
                            updated_at=NOW - timedelta(hours=1))
                for i in range(4)
            ],
        )

        response = await client.get("/sla/team-pulse", params={"include_idle": "false"})

        assert response.status_code == 200
        assert response.json() == [{
            "agent_id": "agent-7",
            "active_count": 4,
            "overdue_count": 0,
            "resolved_today_count": 0,
            "workload_score": 80,
            "status": "Busy",
        }]


class TestAutoClosePreview:

    @pytest.mark.asyncio
    async def test_preview_lists_without_closing(self, client, session_factory):
        await seed(
            session_factory,
            TicketModel(id="t-1", title="x", priority="Low", status_name="Resolved",
                        created_at=NOW - timedelta(days=3), updated_at=NOW - timedelta(hours=30)),
            TicketModel(id="t-2", title="y", priority="Low", status_name="Resolved",
                        created_at=NOW - timedelta(days=3), updated_at=NOW - timedelta(hours=2)),
        )

        response = await client.get("/sla/auto-close/preview")

        assert response.status_code == 200
        body = response.json()
        assert body["total_count"] == 1
        assert body["tickets"][0]["ticket_id"] == "t-1"
        assert body["tickets"][0]["rule_id"] == "default-resolved"
        assert body["tickets"][0]["rule_name"] == "Resolved for 24 hours"
        assert "cutoff" not in body

        async with session_factory() as session:
            assert (await session.get(TicketModel, "t-1")).status_name == "Resolved"

    @pytest.mark.asyncio
    async def test_preview_follows_stored_rules(self, client, session_factory):
        await seed(
            session_factory,
            AutoCloseRuleModel(id="pending-week", name="Pending a week", condition_type="pending",
                               after_days=7),
            TicketModel(id="t-1", title="x", priority="Low", status_name="Resolved",
                        created_at=NOW - timedelta(days=30), updated_at=NOW - timedelta(days=10)),
            TicketModel(id="t-2", title="y", priority="Low", status_name="Pending Vendor",
                        created_at=NOW - timedelta(days=30), updated_at=NOW - timedelta(days=10)),
        )

        response = await client.get("/sla/auto-close/preview")

        body = response.json()
        assert [(t["ticket_id"], t["rule_name"]) for t in body["tickets"]] == [("t-2", "Pending a week")]


class TestRules:

    @pytest.mark.asyncio
    async def test_lists_active_rules(self, client, session_factory):
        await seed(
            session_factory,
            EscalationRuleModel(id="r-80", name="Warn", sla_policy_id="p-1", trigger_value=80,
                                actions=[{"type": "notify_supervisor"}]),
            EscalationRuleModel(id="r-x", name="Other", sla_policy_id="p-2", trigger_value=90),
        )

        response = await client.get("/sla/rules", params={"policy_id": "p-1"})

        assert response.status_code == 200
        [rule] = response.json()
        assert rule["id"] == "r-80"
        assert rule["actions"] == [{
            "type": "notify_supervisor",
            "target_id": None,
            "target_name": None,
            "new_priority": None,
            "note_text": None,
        }]


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["checks"]["sla_config"] == "loaded"
        assert response.json()["checks"]["sla_scheduler"] == "stopped"
