"""
SLA Controllers (API Routes)
=============================

FastAPI routes for the SLA engine.

Controllers are thin - they delegate to application services.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from infrastructure.database import get_session
from sla.application import (
    AutoClosePreviewItem,
    AutoClosePreviewResponse,
    AutoCloseSweeper,
    EngineRunResponse,
    EscalationRuleResponse,
    FiringRecordResponse,
    IClock,
    ISLAConfigProvider,
    SLAEvaluationResponse,
    SLAService,
    TeamPulseEntryResponse,
    TeamPulseService,
    TicketSLAResponse,
)
from sla.infrastructure import (
    SQLAlchemyAutoCloseRuleRepository,
    SQLAlchemyEscalationRuleRepository,
    SQLAlchemyFiringRecordRepository,
    SQLAlchemyPolicyResolver,
    SQLAlchemyTicketRepository,
    SQLAlchemyUnitOfWork,
    SystemClock,
)
from sla.services import SLAEngineRunner

from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Engine"])


# ========== Example payloads for Swagger ==========

ENGINE_RUN_RESPONSE_EXAMPLE = {
    "success": True,
    "processed_ticket_count": 42,
    "triggered_escalation_count": 3,
    "closed_ticket_count": 1,
    "error": None,
    "run_id": "6f1c2a9e0d7b4c55a1f3e2d4c6b8a0f1"
}

TEAM_PULSE_EXAMPLE = [
    {
        "agent_id": "agent-7",
        "active_count": 10,
        "overdue_count": 4,
        "resolved_today_count": 0,
        "workload_score": 50,
        "status": "Overload"
    }
]


# ========== Dependencies ==========

def get_config_provider(request: Request) -> ISLAConfigProvider:
    """SLA configuration manager started in the application lifespan."""
    return request.app.state.sla_config_manager


def get_clock(request: Request) -> IClock:
    return getattr(request.app.state, "clock", None) or SystemClock()


def get_engine_runner(request: Request) -> SLAEngineRunner:
    return request.app.state.sla_runner


async def get_sla_service(
    session: AsyncSession = Depends(get_session),
    config_provider: ISLAConfigProvider = Depends(get_config_provider),
    clock: IClock = Depends(get_clock)
) -> SLAService:
    """Get SLA service instance."""
    return SLAService(
        SQLAlchemyTicketRepository(session),
        SQLAlchemyPolicyResolver(session),
        SQLAlchemyFiringRecordRepository(session),
        config_provider,
        clock
    )


async def get_team_pulse_service(
    session: AsyncSession = Depends(get_session),
    config_provider: ISLAConfigProvider = Depends(get_config_provider),
    clock: IClock = Depends(get_clock)
) -> TeamPulseService:
    return TeamPulseService(
        SQLAlchemyTicketRepository(session),
        config_provider,
        clock,
        policy_resolver=SQLAlchemyPolicyResolver(session)
    )


async def get_auto_close_sweeper(
    session: AsyncSession = Depends(get_session)
) -> AutoCloseSweeper:
    return AutoCloseSweeper(
        SQLAlchemyTicketRepository(session),
        SQLAlchemyUnitOfWork(session),
        rule_repository=SQLAlchemyAutoCloseRuleRepository(session),
        grace_hours=settings.auto_close_grace_hours
    )


async def get_rule_repository(
    session: AsyncSession = Depends(get_session)
) -> SQLAlchemyEscalationRuleRepository:
    return SQLAlchemyEscalationRuleRepository(session)


# ========== Route Handlers ==========

@router.post(
    "/engine/run",
    response_model=EngineRunResponse,
    summary="Run an evaluation pass now",
    description="""
    Run one evaluation pass immediately, outside the schedule.

    The pass evaluates every active ticket, fires escalation rules whose
    thresholds have been crossed (each at most once), and auto-closes
    tickets that have been Resolved for longer than the grace period.

    A fatal error (ticket store unreachable) is reported as
    `success: false` with the error message; it is never raised.
    """,
    responses={
        200: {
            "description": "Pass summary",
            "content": {
                "application/json": {
                    "example": ENGINE_RUN_RESPONSE_EXAMPLE
                }
            }
        }
    }
)
async def run_engine(
    runner: SLAEngineRunner = Depends(get_engine_runner)
):
    summary = await runner.run_now()
    return EngineRunResponse.from_summary(summary)


@router.get(
    "/team-pulse",
    response_model=List[TeamPulseEntryResponse],
    summary="Get per-agent workload",
    description="""
    Workload rollup per agent: open tickets, overdue tickets, tickets
    resolved today, a 0-100 workload score and a status of
    `Overload` (more than 8 open), `Busy` (more than 3) or `Free`.
    """,
    responses={
        200: {
            "description": "Team pulse",
            "content": {
                "application/json": {
                    "example": TEAM_PULSE_EXAMPLE
                }
            }
        }
    }
)
async def get_team_pulse(
    include_idle: bool = Query(True, description="Include agents with no tickets"),
    service: TeamPulseService = Depends(get_team_pulse_service)
):
    entries = await service.get_team_pulse(include_idle_agents=include_idle)
    return [TeamPulseEntryResponse.from_domain(e) for e in entries]


@router.get(
    "/tickets/{ticket_id}",
    response_model=TicketSLAResponse,
    summary="Get ticket SLA status",
    description="""
    Get response and resolution SLA state for a single ticket, plus the
    escalations that have already fired for it.
    """,
    responses={404: {"description": "Ticket not found"}}
)
async def get_ticket_sla(
    ticket_id: str,
    sla_service: SLAService = Depends(get_sla_service)
):
    report = await sla_service.get_ticket_sla(ticket_id)
    ticket = report.ticket

    return TicketSLAResponse(
        ticket_id=ticket.id,
        ticket_number=ticket.ticket_number,
        priority=ticket.priority.value,
        status=ticket.status,
        assigned_to=ticket.assigned_to,
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
        sla_policy_id=report.policy_id,
        evaluations=[SLAEvaluationResponse.from_domain(e) for e in report.evaluations],
        firings=[FiringRecordResponse.from_domain(f) for f in report.firings]
    )


@router.get(
    "/auto-close/preview",
    response_model=AutoClosePreviewResponse,
    summary="Preview auto-close",
    description=(
        "Tickets the next sweep would close and the auto-close rule that "
        "selects each one. Nothing is changed."
    )
)
async def preview_auto_close(
    sweeper: AutoCloseSweeper = Depends(get_auto_close_sweeper),
    clock: IClock = Depends(get_clock)
):
    now = clock.now()
    candidates = await sweeper.preview(now)
    return AutoClosePreviewResponse(
        tickets=[AutoClosePreviewItem.from_domain(c) for c in candidates],
        total_count=len(candidates)
    )


@router.get(
    "/rules",
    response_model=List[EscalationRuleResponse],
    summary="List active escalation rules"
)
async def list_rules(
    policy_id: Optional[str] = Query(None, description="Only rules of this SLA policy"),
    rules: SQLAlchemyEscalationRuleRepository = Depends(get_rule_repository)
):
    return [EscalationRuleResponse.from_domain(r) for r in await rules.list_active_rules(policy_id)]


# Export router for inclusion in main app
sla_router = router
