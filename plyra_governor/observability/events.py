"""
Governance Events
~~~~~~~~~~~~~~~~~

Typed notifications published by every governance component.

Each component publishes a closed set of frozen dataclasses through an
``EventSink``. Consumers subscribe by event class instead of by string
channel, so a typo in a subscription is an import error rather than a
silently dead listener.

Example::

    bus = EventBus()
    bus.subscribe(lambda e: print(e.alert.type), BudgetAlertRaised)
    ledger = BudgetLedger(store, sink=bus)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, Union

from plyra_governor.core.enums import AgentStatus, QueueStatus
from plyra_governor.core.models import utcnow

if TYPE_CHECKING:
    from plyra_governor.agents.models import AgentNode
    from plyra_governor.coordinator.models import (
        CrossProjectAgent,
        SharedSkillConfig,
    )
    from plyra_governor.core.models import (
        ApprovalDecision,
        ApprovalQueueItem,
        BatchResult,
        Budget,
        BudgetAlert,
        PermissionRequest,
    )

__all__ = [
    "GovernanceEvent",
    "EventSink",
    "EventBus",
    "NullSink",
    # Budget
    "BudgetSet",
    "BudgetAlertRaised",
    "BudgetReset",
    # Policy / queue
    "PolicyChanged",
    "PermissionResolved",
    "QueueItemDecided",
    "BatchDecided",
    # Agent tree
    "AgentStarted",
    "AgentStopped",
    "AgentTerminated",
    "AgentBudgetAllocated",
    "AgentBudgetExceeded",
    # Coordinator
    "CrossProjectAgentRegistered",
    "CrossProjectAgentUnregistered",
    "AgentTransitioned",
    "CrossProjectAgentStatusChanged",
    "SkillShared",
    "SkillUnshared",
    "SkillUpdated",
    "SkillToggled",
    "ProjectStateUpdated",
    "ProjectStatesSynced",
    "ProjectEventDelivered",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class _Event:
    timestamp: datetime = field(default_factory=utcnow)


# ── Budget Ledger ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class BudgetSet(_Event):
    """A budget was created or replaced for its scope."""

    budget: Budget


@dataclass(frozen=True)
class BudgetAlertRaised(_Event):
    """A recorded cost crossed the warning threshold or the limit."""

    alert: BudgetAlert


@dataclass(frozen=True)
class BudgetReset(_Event):
    """A budget's spent total was zeroed."""

    budget_id: int


# ── Policy Engine ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PolicyChanged(_Event):
    """A policy was created, updated or deleted."""

    policy_id: int
    change: str


@dataclass(frozen=True)
class PermissionResolved(_Event):
    """A permission request was approved, denied or queued."""

    request: PermissionRequest
    decision: ApprovalDecision


@dataclass(frozen=True)
class QueueItemDecided(_Event):
    """A pending queue item reached a terminal status."""

    item: ApprovalQueueItem


@dataclass(frozen=True)
class BatchDecided(_Event):
    """A batch approve/deny finished."""

    status: QueueStatus
    result: BatchResult


# ── Agent Tree ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AgentStarted(_Event):
    node: AgentNode


@dataclass(frozen=True)
class AgentStopped(_Event):
    session_id: str
    success: bool


@dataclass(frozen=True)
class AgentTerminated(_Event):
    session_id: str
    released_usd: float = 0.0


@dataclass(frozen=True)
class AgentBudgetAllocated(_Event):
    session_id: str
    amount_usd: float


@dataclass(frozen=True)
class AgentBudgetExceeded(_Event):
    session_id: str
    spent_usd: float
    allocated_usd: float


# ── Cross-Project Coordinator ────────────────────────────────────────────────


@dataclass(frozen=True)
class CrossProjectAgentRegistered(_Event):
    agent: CrossProjectAgent


@dataclass(frozen=True)
class CrossProjectAgentUnregistered(_Event):
    agent_id: str
    agent_name: str


@dataclass(frozen=True)
class AgentTransitioned(_Event):
    agent_id: str
    agent_name: str
    from_project_id: str | None
    to_project_id: str


@dataclass(frozen=True)
class CrossProjectAgentStatusChanged(_Event):
    agent_id: str
    status: AgentStatus


@dataclass(frozen=True)
class SkillShared(_Event):
    config: SharedSkillConfig


@dataclass(frozen=True)
class SkillUnshared(_Event):
    skill_id: str
    removed_from: tuple[str, ...]


@dataclass(frozen=True)
class SkillUpdated(_Event):
    config: SharedSkillConfig


@dataclass(frozen=True)
class SkillToggled(_Event):
    skill_id: str
    enabled: bool


@dataclass(frozen=True)
class ProjectStateUpdated(_Event):
    project_id: str
    version: int


@dataclass(frozen=True)
class ProjectStatesSynced(_Event):
    source_project_id: str
    target_project_ids: tuple[str, ...]


@dataclass(frozen=True)
class ProjectEventDelivered(_Event):
    """One fan-out notification of a broadcast to a single target project."""

    event_id: str
    type: str
    project_id: str
    data: dict[str, Any]


GovernanceEvent = Union[
    BudgetSet,
    BudgetAlertRaised,
    BudgetReset,
    PolicyChanged,
    PermissionResolved,
    QueueItemDecided,
    BatchDecided,
    AgentStarted,
    AgentStopped,
    AgentTerminated,
    AgentBudgetAllocated,
    AgentBudgetExceeded,
    CrossProjectAgentRegistered,
    CrossProjectAgentUnregistered,
    AgentTransitioned,
    CrossProjectAgentStatusChanged,
    SkillShared,
    SkillUnshared,
    SkillUpdated,
    SkillToggled,
    ProjectStateUpdated,
    ProjectStatesSynced,
    ProjectEventDelivered,
]


# ── Sinks ────────────────────────────────────────────────────────────────────


class EventSink(Protocol):
    """Anything that accepts governance events."""

    def publish(self, event: GovernanceEvent) -> None: ...


class NullSink:
    """Sink that drops every event."""

    def publish(self, event: GovernanceEvent) -> None:
        return None


Handler = Callable[[Any], None]


class EventBus:
    """
    In-process typed publish/subscribe.

    Handlers run synchronously in subscription order. A failing handler is
    logged and skipped; it never breaks the publisher.
    """

    def __init__(self) -> None:
        self._subscriptions: list[tuple[Handler, tuple[type, ...]]] = []
        self._sync_lock = threading.RLock()

    def subscribe(self, handler: Handler, *event_types: type) -> Callable[[], None]:
        """
        Register ``handler`` for the given event classes (all events if none).

        Returns:
            A callable that removes the subscription.
        """
        entry = (handler, event_types)
        with self._sync_lock:
            self._subscriptions.append(entry)

        def _unsubscribe() -> None:
            with self._sync_lock:
                if entry in self._subscriptions:
                    self._subscriptions.remove(entry)

        return _unsubscribe

    def publish(self, event: GovernanceEvent) -> None:
        with self._sync_lock:
            subscriptions = list(self._subscriptions)

        for handler, event_types in subscriptions:
            if event_types and not isinstance(event, event_types):
                continue
            try:
                handler(event)
            except Exception as exc:
                logger.error(
                    "Event handler %r failed on %s: %s",
                    handler,
                    type(event).__name__,
                    exc,
                )

    def __len__(self) -> int:
        return len(self._subscriptions)
