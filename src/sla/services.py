"""
SLA Services
============

Wiring of one evaluation pass to the database and the notification sinks.

The scheduler and the "run now" endpoint both go through
``SLAEngineRunner``; every pass gets its own session.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import NotificationChannel, settings
from core import ApplicationException
from shared.infrastructure.logging import get_context_logger, log_latency
from sla.application import (
    ActionDispatcher,
    AutoCloseSweeper,
    IClock,
    INotificationSink,
    ISLAConfigProvider,
    SLAEngine,
)
from sla.domain import EvaluationSummary
from sla.infrastructure import (
    InAppNotificationSink,
    NotificationRouter,
    SQLAlchemyAutoCloseRuleRepository,
    SQLAlchemyEscalationRuleRepository,
    SQLAlchemyFiringRecordRepository,
    SQLAlchemyPolicyResolver,
    SQLAlchemyTicketRepository,
    SQLAlchemyUnitOfWork,
    SystemClock,
)


class SLAEngineRunner:
    """
    Runs evaluation passes against the ticket store.

    ``run_scheduled`` is the scheduler job: it logs a failed pass and
    returns. ``run_now`` is the manual trigger: it reports failure in the
    returned summary instead of raising.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config_provider: ISLAConfigProvider,
        email_sink: Optional[INotificationSink] = None,
        clock: Optional[IClock] = None,
        batch_size: Optional[int] = None,
        grace_hours: Optional[int] = None,
        timeout_seconds: Optional[float] = None
    ):
        self._session_factory = session_factory
        self._config_provider = config_provider
        self._email_sink = email_sink
        self._clock = clock or SystemClock()
        self._batch_size = batch_size or settings.sla_batch_size
        self._grace_hours = grace_hours or settings.auto_close_grace_hours
        self._timeout = timeout_seconds or settings.collaborator_timeout_seconds

    def build_engine(self, session: AsyncSession) -> SLAEngine:
        """Wire an engine whose collaborators all share ``session``."""
        tickets = SQLAlchemyTicketRepository(session)
        firings = SQLAlchemyFiringRecordRepository(session)
        unit_of_work = SQLAlchemyUnitOfWork(session)

        sinks = {NotificationChannel.IN_APP: InAppNotificationSink(session)}
        if self._email_sink is not None:
            sinks[NotificationChannel.EMAIL] = self._email_sink

        router = NotificationRouter(sinks, timeout_seconds=self._timeout)

        dispatcher = ActionDispatcher(tickets, firings, router, self._clock)
        sweeper = AutoCloseSweeper(
            tickets,
            unit_of_work,
            rule_repository=SQLAlchemyAutoCloseRuleRepository(session),
            notification_sink=router,
            grace_hours=self._grace_hours,
        )
        return SLAEngine(
            ticket_repository=tickets,
            policy_resolver=SQLAlchemyPolicyResolver(session),
            rule_repository=SQLAlchemyEscalationRuleRepository(session),
            firing_repository=firings,
            dispatcher=dispatcher,
            sweeper=sweeper,
            config_provider=self._config_provider,
            clock=self._clock,
            unit_of_work=unit_of_work,
            batch_size=self._batch_size,
        )

    async def run_pass(
        self,
        trigger: str = "manual",
        now: Optional[datetime] = None,
        run_id: Optional[str] = None
    ) -> EvaluationSummary:
        """Run one pass; fatal errors propagate."""
        run_id = run_id or uuid4().hex
        log = get_context_logger(__name__, run_id)
        with log_latency(log, "evaluation_pass", trigger=trigger):
            async with self._session_factory() as session:
                engine = self.build_engine(session)
                return await engine.run_pass(now=now, trigger=trigger, run_id=run_id)

    async def run_scheduled(self) -> None:
        run_id = uuid4().hex
        log = get_context_logger(__name__, run_id)
        try:
            await self.run_pass(trigger="scheduled", run_id=run_id)
        except ApplicationException as e:
            log.error(f"Scheduled evaluation pass aborted: {e.message}", extra=e.details)
        except Exception:
            log.exception("Scheduled evaluation pass failed")

    async def run_now(self, now: Optional[datetime] = None) -> EvaluationSummary:
        run_id = uuid4().hex
        log = get_context_logger(__name__, run_id)
        try:
            return await self.run_pass(trigger="manual", now=now, run_id=run_id)
        except Exception as e:
            log.error(
                "Manual evaluation pass failed",
                extra={"error": f"{type(e).__name__}: {e}"}
            )
            return EvaluationSummary(
                run_id=run_id,
                trigger="manual",
                started_at=now or datetime.now(timezone.utc),
                finished_at=datetime.now(timezone.utc),
                success=False,
                error=str(e),
            )
