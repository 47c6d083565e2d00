"""
Governor Enums
~~~~~~~~~~~~~~

Closed vocabularies shared by the ledger, the policy engine, the agent
tree and the coordinator. Values are the wire strings used by the store
and the HTTP sidecar.
"""

from enum import StrEnum

__all__ = [
    "Confidence",
    "ResetPeriod",
    "AlertType",
    "PolicyAction",
    "QueueStatus",
    "DecidedBy",
    "ApprovalOutcome",
    "AgentStatus",
    "AgentOutcome",
    "Decision",
    "DecisionSource",
]


class Confidence(StrEnum):
    """How much a cost estimate can be trusted."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ResetPeriod(StrEnum):
    """How often a budget is expected to be reset by its owner."""

    SESSION = "session"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class AlertType(StrEnum):
    """Severity of a budget alert raised after recording a cost."""

    WARNING = "warning"
    LIMIT_REACHED = "limit_reached"


class PolicyAction(StrEnum):
    """
    What a matching approval policy does.

    - AUTO_APPROVE: the action proceeds immediately.
    - AUTO_DENY: the action is refused immediately.
    - QUEUE: a pending queue item is created for a human decision.
    """

    AUTO_APPROVE = "auto-approve"
    AUTO_DENY = "auto-deny"
    QUEUE = "queue"


class QueueStatus(StrEnum):
    """
    Lifecycle of an approval queue item.

    pending -> approved | denied | expired; terminal once it leaves pending.
    """

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"

    def is_terminal(self) -> bool:
        """Return True once the item can no longer change."""
        return self is not QueueStatus.PENDING


class DecidedBy(StrEnum):
    """Who moved a queue item out of pending."""

    USER = "user"
    POLICY = "policy"


class ApprovalOutcome(StrEnum):
    """Result of running a permission request through the policy engine."""

    APPROVED = "approved"
    DENIED = "denied"
    QUEUED = "queued"


class AgentStatus(StrEnum):
    """Status of an agent in the tree or in the cross-project coordinator."""

    IDLE = "idle"
    ACTIVE = "active"
    TRANSITIONING = "transitioning"
    TERMINATED = "terminated"


class AgentOutcome(StrEnum):
    """How a stopped agent session ended."""

    COMPLETED = "completed"
    FAILED = "failed"


class Decision(StrEnum):
    """
    Outbound decision returned to the lifecycle-event caller.

    - ALLOW: the agent may proceed.
    - DENY: refused by policy, or waiting on a queued human decision.
    - BLOCK: refused by a budget hard stop.
    - MODIFY: proceed with the returned ``modified_input``.
    """

    ALLOW = "allow"
    DENY = "deny"
    BLOCK = "block"
    MODIFY = "modify"

    def is_permissive(self) -> bool:
        """Return True if the caller may go ahead with the action."""
        return self in (Decision.ALLOW, Decision.MODIFY)


class DecisionSource(StrEnum):
    """
    Which part of the admission check produced a decision.

    DEFAULT marks the configured no-match fallthrough so it is never
    confused with a decision taken by an actual policy.
    """

    BUDGET = "budget"
    POLICY = "policy"
    DEFAULT = "default"
