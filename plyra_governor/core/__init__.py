"""Governor core: enums, data models, hook events and the governor itself."""

from plyra_governor.core.enums import (
    AgentOutcome,
    AgentStatus,
    ApprovalOutcome,
    Decision,
    DecisionSource,
    PolicyAction,
    QueueStatus,
)
from plyra_governor.core.hook_event import HookEvent, HookEventType, HookResponse
from plyra_governor.core.models import (
    ApprovalDecision,
    ApprovalPolicy,
    ApprovalQueueItem,
    Budget,
    BudgetCheckResult,
    CostEstimate,
    PermissionRequest,
)

__all__ = [
    "AgentOutcome",
    "AgentStatus",
    "ApprovalDecision",
    "ApprovalOutcome",
    "ApprovalPolicy",
    "ApprovalQueueItem",
    "Budget",
    "BudgetCheckResult",
    "CostEstimate",
    "Decision",
    "DecisionSource",
    "HookEvent",
    "HookEventType",
    "HookResponse",
    "PermissionRequest",
    "PolicyAction",
    "QueueStatus",
]
