"""
SLA Application Layer
======================

Application layer for the SLA escalation engine.

Contains:
- Interfaces: Collaborator contracts (repositories, clock, notification sink)
- Services: Evaluation pass, ticket SLA lookup, team pulse
- Dispatcher / Sweeper: Escalation actions and auto-close
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from sla.application.dispatcher import ActionDispatcher
from sla.application.dto import (
    AutoClosePreviewItem,
    AutoClosePreviewResponse,
    EngineRunResponse,
    EscalationRuleResponse,
    FiringRecordResponse,
    SLAEvaluationResponse,
    TeamPulseEntryResponse,
    TicketSLAResponse,
)
from sla.application.interfaces import (
    IAutoCloseRuleRepository,
    IClock,
    IEscalationRuleRepository,
    IFiringRecordRepository,
    INotificationSink,
    ISLAConfigProvider,
    ISLAPolicyResolver,
    ITicketRepository,
    IUnitOfWork,
)
from sla.application.services import (
    SLAEngine,
    SLAService,
    TeamPulseService,
    TicketSLAReport,
)
from sla.application.sweeper import (
    AGENT_CLOSED_MESSAGE,
    AUTO_CLOSE_NOTE,
    USER_CLOSED_MESSAGE,
    AutoCloseSweeper,
    default_auto_close_rule,
)

__all__ = [
    # DTOs
    "AutoClosePreviewItem",
    "AutoClosePreviewResponse",
    "EngineRunResponse",
    "EscalationRuleResponse",
    "FiringRecordResponse",
    "SLAEvaluationResponse",
    "TeamPulseEntryResponse",
    "TicketSLAResponse",
    # Services
    "ActionDispatcher",
    "AutoCloseSweeper",
    "AUTO_CLOSE_NOTE",
    "AGENT_CLOSED_MESSAGE",
    "USER_CLOSED_MESSAGE",
    "default_auto_close_rule",
    "SLAEngine",
    "SLAService",
    "TeamPulseService",
    "TicketSLAReport",
    # Interfaces
    "IAutoCloseRuleRepository",
    "IClock",
    "IEscalationRuleRepository",
    "IFiringRecordRepository",
    "INotificationSink",
    "ISLAConfigProvider",
    "ISLAPolicyResolver",
    "ITicketRepository",
    "IUnitOfWork",
]
