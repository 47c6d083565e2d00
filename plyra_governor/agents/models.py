"""
Agent Tree Data Models
~~~~~~~~~~~~~~~~~~~~~~

Nodes of the agent hierarchy, the two read-only projections handed to
presentation consumers, and the aggregates computed over them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from plyra_governor.core.enums import AgentOutcome, AgentStatus
from plyra_governor.core.models import utcnow

__all__ = [
    "AgentNode",
    "TreeVisualizationNode",
    "FlatTreeEntry",
    "AgentMetrics",
    "HierarchySummary",
]


@dataclass
class AgentNode:
    """
    One agent session in the hierarchy.

    Attributes:
        session_id: Identity of the agent.
        agent_name: Type or display name; metrics aggregate by this.
        parent_session_id: Spawning agent, or None for a root.
        root_session_id: Session id of the tree's root.
        depth: 0 for roots, parent depth + 1 otherwise.
        status: Lifecycle status.
        outcome: How the session ended, once stopped.
        allocated_budget_usd: Budget delegated to this agent.
        has_allocation: False until a budget is allocated; an agent without
            one is not constrained and does not constrain its children.
        budget_id: Session-scoped ledger budget backing the allocation.
        spent_budget_usd: Cost recorded against this agent.
    """

    session_id: str
    agent_name: str
    parent_session_id: str | None
    root_session_id: str
    depth: int = 0
    status: AgentStatus = AgentStatus.ACTIVE
    outcome: AgentOutcome | None = None
    allocated_budget_usd: float = 0.0
    spent_budget_usd: float = 0.0
    has_allocation: bool = False
    budget_id: int | None = None
    tool_calls: int = 0
    tokens_used: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    last_activity: datetime = field(default_factory=utcnow)

    @property
    def is_root(self) -> bool:
        return self.parent_session_id is None

    @property
    def remaining_budget_usd(self) -> float:
        return max(0.0, self.allocated_budget_usd - self.spent_budget_usd)

    @property
    def duration_ms(self) -> int:
        end = self.completed_at or utcnow()
        return int((end - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "agent_name": self.agent_name,
            "parent_session_id": self.parent_session_id,
            "root_session_id": self.root_session_id,
            "depth": self.depth,
            "status": self.status.value,
            "outcome": self.outcome.value if self.outcome else None,
            "allocated_budget_usd": self.allocated_budget_usd,
            "spent_budget_usd": self.spent_budget_usd,
            "has_allocation": self.has_allocation,
            "budget_id": self.budget_id,
            "tool_calls": self.tool_calls,
            "tokens_used": self.tokens_used,
            "metadata": dict(self.metadata),
            "started_at": self.started_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "last_activity": self.last_activity.isoformat(),
        }


@dataclass
class TreeVisualizationNode:
    """Nested view of a tree node for rendering."""

    session_id: str
    agent_name: str
    depth: int
    status: AgentStatus
    duration_ms: int
    budget_allocated: float
    budget_spent: float
    budget_remaining: float
    tool_calls: int
    children: list[TreeVisualizationNode] = field(default_factory=list)

    @classmethod
    def from_node(cls, node: AgentNode) -> TreeVisualizationNode:
        return cls(
            session_id=node.session_id,
            agent_name=node.agent_name,
            depth=node.depth,
            status=node.status,
            duration_ms=node.duration_ms,
            budget_allocated=node.allocated_budget_usd,
            budget_spent=node.spent_budget_usd,
            budget_remaining=node.remaining_budget_usd,
            tool_calls=node.tool_calls,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "agent_name": self.agent_name,
            "depth": self.depth,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "budget_allocated": self.budget_allocated,
            "budget_spent": self.budget_spent,
            "budget_remaining": self.budget_remaining,
            "tool_calls": self.tool_calls,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class FlatTreeEntry:
    """Depth-first, indentation-annotated row of a tree."""

    node: TreeVisualizationNode
    indent: int

    def to_dict(self) -> dict[str, Any]:
        data = self.node.to_dict()
        data["children"] = []
        data["indent"] = self.indent
        return data


@dataclass
class AgentMetrics:
    """Aggregates across every finished session sharing an agent name."""

    agent_name: str
    total_sessions: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_duration_ms: int = 0
    total_tool_calls: int = 0
    total_tokens_used: int = 0
    total_cost_usd: float = 0.0

    def _avg(self, total: float) -> float:
        return total / self.total_sessions if self.total_sessions else 0.0

    @property
    def avg_duration_ms(self) -> float:
        return self._avg(self.total_duration_ms)

    @property
    def avg_tool_calls(self) -> float:
        return self._avg(self.total_tool_calls)

    @property
    def avg_tokens_used(self) -> float:
        return self._avg(self.total_tokens_used)

    @property
    def avg_cost_usd(self) -> float:
        return self._avg(self.total_cost_usd)

    @property
    def success_rate(self) -> float:
        return self._avg(self.success_count)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_name": self.agent_name,
            "total_sessions": self.total_sessions,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "avg_duration_ms": self.avg_duration_ms,
            "avg_tool_calls": self.avg_tool_calls,
            "avg_tokens_used": self.avg_tokens_used,
            "avg_cost_usd": self.avg_cost_usd,
            "success_rate": self.success_rate,
        }


@dataclass
class HierarchySummary:
    """Roll-up of one tree."""

    root_session_id: str
    total_agents: int = 0
    max_depth: int = 0
    total_allocated_usd: float = 0.0
    total_spent_usd: float = 0.0
    active: int = 0
    idle: int = 0
    terminated: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "root_session_id": self.root_session_id,
            "total_agents": self.total_agents,
            "max_depth": self.max_depth,
            "total_allocated_usd": self.total_allocated_usd,
            "total_spent_usd": self.total_spent_usd,
            "active": self.active,
            "idle": self.idle,
            "terminated": self.terminated,
            "completed": self.completed,
            "failed": self.failed,
        }
