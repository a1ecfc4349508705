"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for the SLA engine:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and unit of work
- External: Config watcher, email relay, clock, scheduler
"""

from sla.infrastructure.external import (
    CircuitBreaker,
    CircuitState,
    EmailWebhookClient,
    NotificationRouter,
    SLAConfigManager,
    SLAScheduler,
    SystemClock,
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
from sla.infrastructure.repositories import (
    InAppNotificationSink,
    SQLAlchemyAutoCloseRuleRepository,
    SQLAlchemyEscalationRuleRepository,
    SQLAlchemyFiringRecordRepository,
    SQLAlchemyPolicyResolver,
    SQLAlchemyTicketRepository,
    SQLAlchemyUnitOfWork,
)

__all__ = [
    # Models
    "ActivityLogModel",
    "AgentModel",
    "AssignmentGroupModel",
    "AutoCloseRuleModel",
    "EscalationRuleModel",
    "FiringRecordModel",
    "GroupMemberModel",
    "NotificationModel",
    "SLAPolicyModel",
    "TicketModel",
    # Repositories
    "InAppNotificationSink",
    "SQLAlchemyAutoCloseRuleRepository",
    "SQLAlchemyEscalationRuleRepository",
    "SQLAlchemyFiringRecordRepository",
    "SQLAlchemyPolicyResolver",
    "SQLAlchemyTicketRepository",
    "SQLAlchemyUnitOfWork",
    # External
    "CircuitBreaker",
    "CircuitState",
    "EmailWebhookClient",
    "NotificationRouter",
    "SLAConfigManager",
    "SLAScheduler",
    "SystemClock",
]
