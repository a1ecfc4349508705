"""
SLA Application Interfaces
===========================

Boundary contracts the engine depends on (Dependency Inversion). Concrete
implementations live in ``sla.infrastructure``; tests use in-memory fakes.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from config import NotificationChannel, Priority
from sla.domain import (
    AutoCloseRule,
    EscalationRule,
    FiringOutcome,
    FiringRecord,
    SLAConfig,
    SLAPolicy,
    TicketSnapshot,
)


class IClock(ABC):
    """Source of the current instant."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as an aware UTC datetime."""


class ITicketRepository(ABC):
    """Read and write access to the ticket store."""

    @abstractmethod
    async def list_active_tickets(
        self,
        filters: Optional[Dict] = None,
        limit: int = 500,
        offset: int = 0
    ) -> List[TicketSnapshot]:
        """Tickets not in a terminal status, oldest first."""

    @abstractmethod
    async def list_stale_tickets(
        self,
        cutoff: datetime,
        status_name: Optional[str] = None
    ) -> List[TicketSnapshot]:
        """
        Tickets last updated strictly before cutoff, excluding closed ones.

        With ``status_name`` only tickets in exactly that status are listed.
        """

    @abstractmethod
    async def list_for_team_pulse(self, since: datetime) -> List[TicketSnapshot]:
        """Assigned tickets that are open, or were updated since ``since``."""

    @abstractmethod
    async def list_agent_ids(self) -> List[str]:
        """Every agent that can hold tickets."""

    @abstractmethod
    async def get_snapshot(self, ticket_id: str) -> Optional[TicketSnapshot]:
        """Single ticket by id."""

    @abstractmethod
    async def update_status(self, ticket_id: str, new_status: str, updated_at: datetime) -> None:
        """Set status name and touch updated_at."""

    @abstractmethod
    async def update_priority(self, ticket_id: str, priority: Priority) -> None:
        """Set the ticket priority."""

    @abstractmethod
    async def reassign(self, ticket_id: str, target_group_id: Optional[str] = None) -> Optional[str]:
        """
        Reassign within a group (the ticket's own group when not given).

        The store picks the new assignee; returns its id.
        """

    @abstractmethod
    async def append_activity_log(
        self,
        ticket_id: str,
        text: str,
        actor_id: Optional[str] = None
    ) -> None:
        """Append an activity entry; a null actor means the system."""

    @abstractmethod
    async def get_supervisor_id(self, group_id: str) -> Optional[str]:
        """Supervisor of an assignment group."""

    @abstractmethod
    async def list_group_member_ids(self, group_id: str) -> List[str]:
        """Members of an assignment group."""


class ISLAPolicyResolver(ABC):
    """Matches a ticket against SLA policy conditions."""

    @abstractmethod
    async def resolve_policy(self, ticket: TicketSnapshot) -> Optional[SLAPolicy]:
        """Policy governing the ticket, or None."""

    async def policy_applies_to(self, ticket: TicketSnapshot) -> Optional[str]:
        """Id of the policy governing the ticket, or None."""
        policy = await self.resolve_policy(ticket)
        return policy.id if policy else None


class IEscalationRuleRepository(ABC):
    """Configured escalation rules."""

    @abstractmethod
    async def list_active_rules(self, policy_id: Optional[str] = None) -> List[EscalationRule]:
        """Active rules, optionally limited to one policy."""


class IAutoCloseRuleRepository(ABC):
    """Configured auto-close rules."""

    @abstractmethod
    async def list_active_rules(self) -> List[AutoCloseRule]:
        """Active rules in evaluation order."""


class IFiringRecordRepository(ABC):
    """At-most-once markers. ``record_firing`` must be atomic and unique."""

    @abstractmethod
    async def has_fired(self, ticket_id: str, rule_id: str, threshold: float) -> bool:
        """Whether the (ticket, rule, threshold) marker exists."""

    @abstractmethod
    async def record_firing(
        self,
        ticket_id: str,
        rule_id: str,
        threshold: float,
        fired_at: datetime
    ) -> FiringOutcome:
        """Insert the marker if absent."""

    @abstractmethod
    async def release_firing(self, ticket_id: str, rule_id: str, threshold: float) -> None:
        """Remove a marker so the rule is a candidate again next pass."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[FiringRecord]:
        """All markers for a ticket."""


class INotificationSink(ABC):
    """
    Delivery of escalation notifications.

    Sinks that write through the engine's own database session set
    ``shares_session``; they are never cancelled by a notification timeout.
    """

    shares_session: bool = False

    @abstractmethod
    async def enqueue(
        self,
        channel: NotificationChannel,
        recipient: str,
        message: str,
        reference_id: Optional[str] = None
    ) -> None:
        """Queue one message for one recipient on one channel."""


class IUnitOfWork(ABC):
    """Transaction boundary around one ticket's side effects."""

    @abstractmethod
    async def commit(self) -> None:
        """Make pending writes durable."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard pending writes."""


class ISLAConfigProvider(ABC):
    """Interface for SLA configuration access."""

    @abstractmethod
    def get_config(self) -> SLAConfig:
        """Get current SLA configuration."""
