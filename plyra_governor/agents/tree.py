"""
Agent Tree
~~~~~~~~~~

Parent/child registry of agent sessions with delegated budgets.

Every agent is keyed by its session id. A root agent has no parent; a
sub-agent's parent must already be registered. Budget flows down the
tree: a child can never be allocated more than its parent has left
after its own spend and its other children's allocations.

Termination cascades. Terminating an agent terminates every descendant
first, and each terminated agent's unspent allocation is released back
to its parent's pool.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import defaultdict
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from plyra_governor.agents.models import (
    AgentMetrics,
    AgentNode,
    FlatTreeEntry,
    HierarchySummary,
    TreeVisualizationNode,
)
from plyra_governor.core.enums import AgentOutcome, AgentStatus
from plyra_governor.core.models import utcnow
from plyra_governor.exceptions import (
    AgentNotFoundError,
    BudgetAllocationError,
    GovernanceValidationError,
)
from plyra_governor.observability.events import (
    AgentBudgetAllocated,
    AgentBudgetExceeded,
    AgentStarted,
    AgentStopped,
    AgentTerminated,
    EventSink,
    NullSink,
)

if TYPE_CHECKING:
    from plyra_governor.budget.ledger import BudgetLedger

__all__ = ["AgentTree"]

logger = logging.getLogger(__name__)

# Float slack when comparing a requested allocation against what is left.
_EPSILON = 1e-9


class AgentTree:
    """
    In-memory agent hierarchy.

    Args:
        ledger: When given, every allocation is mirrored as a hard-stop,
            session-scoped budget so the ledger enforces it on admission.
        sink: Receives agent lifecycle and budget events.
        cleanup_max_age_hours: Default age for ``cleanup``.
    """

    def __init__(
        self,
        ledger: BudgetLedger | None = None,
        sink: EventSink | None = None,
        cleanup_max_age_hours: float = 72,
    ) -> None:
        self._ledger = ledger
        self._sink = sink or NullSink()
        self._cleanup_max_age_hours = cleanup_max_age_hours
        self._nodes: dict[str, AgentNode] = {}
        self._children: dict[str, list[str]] = defaultdict(list)
        self._metrics: dict[str, AgentMetrics] = {}
        self._sync_lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._nodes

    # ── Lifecycle ────────────────────────────────────────────────

    def register_agent(
        self,
        session_id: str,
        agent_name: str,
        parent_session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AgentNode:
        """
        Add an agent to the tree.

        Registering a known session id again reactivates it and merges
        ``metadata``; its position in the tree does not change.

        Raises:
            GovernanceValidationError: Empty ids or names, or an agent
                naming itself as parent.
            AgentNotFoundError: ``parent_session_id`` is not registered.
        """
        if not session_id:
            raise GovernanceValidationError(
                "session_id must not be empty", field="session_id"
            )
        if not agent_name:
            raise GovernanceValidationError(
                "agent_name must not be empty", field="agent_name"
            )
        if parent_session_id == session_id:
            raise GovernanceValidationError(
                "An agent cannot be its own parent", field="parent_session_id"
            )

        with self._sync_lock:
            existing = self._nodes.get(session_id)
            if existing is not None:
                if (
                    parent_session_id is not None
                    and existing.parent_session_id != parent_session_id
                ):
                    logger.warning(
                        "Agent %s re-registered under %s; keeping parent %s",
                        session_id,
                        parent_session_id,
                        existing.parent_session_id,
                    )
                if existing.status is not AgentStatus.TERMINATED:
                    existing.status = AgentStatus.ACTIVE
                    existing.outcome = None
                    existing.completed_at = None
                existing.last_activity = utcnow()
                if metadata:
                    existing.metadata.update(metadata)
                return existing

            if parent_session_id is not None:
                parent = self._nodes.get(parent_session_id)
                if parent is None:
                    raise AgentNotFoundError(
                        f"Parent agent {parent_session_id!r} is not registered"
                    )
                depth = parent.depth + 1
                root = parent.root_session_id
            else:
                depth = 0
                root = session_id

            node = AgentNode(
                session_id=session_id,
                agent_name=agent_name,
                parent_session_id=parent_session_id,
                root_session_id=root,
                depth=depth,
                metadata=dict(metadata or {}),
            )
            self._nodes[session_id] = node
            if parent_session_id is not None:
                self._children[parent_session_id].append(session_id)

        logger.info(
            "Agent started: %s (%s, parent=%s, depth=%d)",
            agent_name,
            session_id,
            parent_session_id,
            depth,
        )
        self._sink.publish(AgentStarted(node=node))
        return node

    def stop_agent(self, session_id: str, success: bool = True) -> AgentNode | None:
        """
        Mark an agent as finished and fold its session into the metrics.

        Stopping an already stopped or terminated agent changes nothing.
        """
        with self._sync_lock:
            node = self._nodes.get(session_id)
            if node is None:
                logger.warning("Stop for unknown agent %s ignored", session_id)
                return None
            if node.status is AgentStatus.TERMINATED or node.outcome is not None:
                return node

            now = utcnow()
            node.status = AgentStatus.IDLE
            node.outcome = AgentOutcome.COMPLETED if success else AgentOutcome.FAILED
            node.completed_at = now
            node.last_activity = now
            self._fold_metrics(node, success)

        logger.info("Agent stopped: %s (success=%s)", session_id, success)
        self._sink.publish(AgentStopped(session_id=session_id, success=success))
        return node

    def terminate_agent(self, session_id: str) -> AgentNode:
        """
        Terminate an agent and, first, all of its descendants.

        Already terminated agents are left as they are.

        Raises:
            AgentNotFoundError: Unknown session id.
        """
        with self._sync_lock:
            node = self._nodes.get(session_id)
            if node is None:
                raise AgentNotFoundError(f"Agent {session_id!r} is not registered")
            self._terminate(node)
        return node

    def _terminate(self, node: AgentNode) -> None:
        for child_id in list(self._children.get(node.session_id, ())):
            child = self._nodes.get(child_id)
            if child is not None:
                self._terminate(child)

        if node.status is AgentStatus.TERMINATED:
            return

        now = utcnow()
        if node.outcome is None:
            node.outcome = AgentOutcome.FAILED
            node.completed_at = now
            self._fold_metrics(node, success=False)
        node.status = AgentStatus.TERMINATED
        node.last_activity = now

        released = 0.0
        if node.has_allocation and node.allocated_budget_usd > node.spent_budget_usd:
            released = node.allocated_budget_usd - node.spent_budget_usd
            node.allocated_budget_usd = node.spent_budget_usd
            self._mirror_to_ledger(node)

        logger.info(
            "Agent terminated: %s (released $%.4f)", node.session_id, released
        )
        self._sink.publish(
            AgentTerminated(session_id=node.session_id, released_usd=released)
        )

    # ── Budget ───────────────────────────────────────────────────

    def available_to_delegate(self, session_id: str) -> float:
        """
        What an agent can still hand out: its allocation minus its own
        spend and its children's allocations. Infinite if unbudgeted.
        """
        with self._sync_lock:
            node = self._nodes.get(session_id)
            if node is None:
                raise AgentNotFoundError(f"Agent {session_id!r} is not registered")
            return self._available(node, exclude=None)

    def _available(self, node: AgentNode, exclude: str | None) -> float:
        if not node.has_allocation:
            return math.inf
        delegated = sum(
            self._nodes[c].allocated_budget_usd
            for c in self._children.get(node.session_id, ())
            if c != exclude and c in self._nodes
        )
        return node.allocated_budget_usd - node.spent_budget_usd - delegated

    def allocate_budget(
        self,
        session_id: str,
        amount_usd: float,
        propagate_to_children: bool = False,
    ) -> AgentNode:
        """
        Set an agent's delegated budget.

        With ``propagate_to_children``, the agent's unspent allocation is
        then split evenly across its active direct children, recursively.
        Idle and terminated children keep what they hold. The whole plan is
        checked before any allocation changes, so a rejected call leaves
        the tree and the ledger untouched.

        Raises:
            GovernanceValidationError: Negative or non-finite amount, or a
                terminated agent.
            AgentNotFoundError: Unknown session id.
            BudgetAllocationError: The parent cannot cover the amount, or
                the amount is below what the agent has already spent and
                delegated.
        """
        if (
            isinstance(amount_usd, bool)
            or not isinstance(amount_usd, (int, float))
            or not math.isfinite(amount_usd)
            or amount_usd < 0
        ):
            raise GovernanceValidationError(
                f"amount_usd must be a finite, non-negative amount, got {amount_usd!r}",
                field="amount_usd",
            )
        amount_usd = float(amount_usd)

        with self._sync_lock:
            node = self._nodes.get(session_id)
            if node is None:
                raise AgentNotFoundError(f"Agent {session_id!r} is not registered")
            if node.status is AgentStatus.TERMINATED:
                raise GovernanceValidationError(
                    f"Agent {session_id!r} is terminated", field="session_id"
                )

            if node.parent_session_id is not None:
                parent = self._nodes[node.parent_session_id]
                available = self._available(parent, exclude=session_id)
                if amount_usd > available + _EPSILON:
                    raise BudgetAllocationError(
                        f"Allocation of ${amount_usd:.2f} to {session_id!r} "
                        f"exceeds what its parent can delegate",
                        session_id=session_id,
                        parent_session_id=parent.session_id,
                        requested_usd=amount_usd,
                        available_usd=max(0.0, available),
                    )

            plan: list[tuple[AgentNode, float]] = []
            if propagate_to_children:
                self._plan_propagation(node, amount_usd, plan)
            else:
                self._check_floor(node, amount_usd, self._delegated(node))
                plan.append((node, amount_usd))

            for target, amount in plan:
                target.allocated_budget_usd = amount
                target.has_allocation = True
                self._mirror_to_ledger(target)
                logger.info("Allocated $%.4f to agent %s", amount, target.session_id)
                self._sink.publish(
                    AgentBudgetAllocated(session_id=target.session_id, amount_usd=amount)
                )
        return node

    def _delegated(self, node: AgentNode, active_only: bool | None = None) -> float:
        total = 0.0
        for child_id in self._children.get(node.session_id, ()):
            child = self._nodes.get(child_id)
            if child is None or not child.has_allocation:
                continue
            is_active = child.status is AgentStatus.ACTIVE
            if active_only is None or active_only == is_active:
                total += child.allocated_budget_usd
        return total

    def _check_floor(self, node: AgentNode, amount_usd: float, held: float) -> None:
        # An allocation never drops below spend plus what stays delegated.
        floor = node.spent_budget_usd + held
        if amount_usd < floor - _EPSILON:
            raise BudgetAllocationError(
                f"Allocation of ${amount_usd:.2f} to {node.session_id!r} is below "
                f"its committed ${floor:.2f}",
                session_id=node.session_id,
                parent_session_id=node.parent_session_id or "",
                requested_usd=amount_usd,
                available_usd=floor,
                what_happened=(
                    f'Agent "{node.session_id}" has spent '
                    f"${node.spent_budget_usd:.2f} and delegated ${held:.2f}; "
                    f"${amount_usd:.2f} cannot cover that."
                ),
                how_to_fix=(
                    f"1. Allocate at least ${floor:.2f} to this agent\n"
                    f"2. Reduce or release its children's allocations first"
                ),
            )

    def _plan_propagation(
        self,
        node: AgentNode,
        amount_usd: float,
        plan: list[tuple[AgentNode, float]],
    ) -> None:
        held = self._delegated(node, active_only=False)
        self._check_floor(node, amount_usd, held)
        plan.append((node, amount_usd))

        active = [
            self._nodes[c]
            for c in self._children.get(node.session_id, ())
            if c in self._nodes and self._nodes[c].status is AgentStatus.ACTIVE
        ]
        if not active:
            return
        unspent = max(0.0, amount_usd - node.spent_budget_usd - held)
        share = unspent / len(active)
        for child in active:
            self._plan_propagation(child, share, plan)

    def _mirror_to_ledger(self, node: AgentNode) -> None:
        if self._ledger is None:
            return
        budget = self._ledger.set_budget(
            limit_usd=node.allocated_budget_usd,
            session_id=node.session_id,
            hard_stop_enabled=True,
        )
        node.budget_id = budget.id

    def record_cost(self, session_id: str, cost_usd: float) -> AgentNode | None:
        """Add spend to an agent; flags it once its allocation is used up."""
        if cost_usd < 0:
            raise GovernanceValidationError(
                "cost_usd must not be negative", field="cost_usd"
            )
        with self._sync_lock:
            node = self._nodes.get(session_id)
            if node is None:
                logger.debug("Cost for untracked agent %s ignored", session_id)
                return None
            node.spent_budget_usd += cost_usd
            node.last_activity = utcnow()
            exceeded = (
                node.has_allocation
                and node.allocated_budget_usd > 0
                and node.spent_budget_usd >= node.allocated_budget_usd
            )

        if exceeded:
            logger.warning(
                "Agent %s exhausted its allocation ($%.4f of $%.4f)",
                session_id,
                node.spent_budget_usd,
                node.allocated_budget_usd,
            )
            self._sink.publish(
                AgentBudgetExceeded(
                    session_id=session_id,
                    spent_usd=node.spent_budget_usd,
                    allocated_usd=node.allocated_budget_usd,
                )
            )
        return node

    def record_tool_call(self, session_id: str) -> None:
        with self._sync_lock:
            node = self._nodes.get(session_id)
            if node is not None:
                node.tool_calls += 1
                node.last_activity = utcnow()

    def record_tokens(self, session_id: str, tokens: int) -> None:
        with self._sync_lock:
            node = self._nodes.get(session_id)
            if node is not None:
                node.tokens_used += max(0, tokens)
                node.last_activity = utcnow()

    # ── Queries ──────────────────────────────────────────────────

    def get_agent(self, session_id: str) -> AgentNode | None:
        return self._nodes.get(session_id)

    def get_children(self, session_id: str) -> list[AgentNode]:
        with self._sync_lock:
            return [
                self._nodes[c]
                for c in self._children.get(session_id, ())
                if c in self._nodes
            ]

    def get_tree(self, root_session_id: str) -> list[AgentNode]:
        """The given agent plus every descendant, ordered by depth then start."""
        with self._sync_lock:
            root = self._nodes.get(root_session_id)
            if root is None:
                return []
            found: list[AgentNode] = []
            stack = [root]
            while stack:
                node = stack.pop()
                found.append(node)
                stack.extend(self.get_children(node.session_id))
        return sorted(found, key=lambda n: (n.depth, n.started_at))

    def get_running_agents(self, root_session_id: str | None = None) -> list[AgentNode]:
        nodes = (
            self.get_tree(root_session_id)
            if root_session_id is not None
            else list(self._nodes.values())
        )
        return [n for n in nodes if n.status is AgentStatus.ACTIVE]

    def get_root_sessions(self) -> list[str]:
        return [n.session_id for n in self._nodes.values() if n.is_root]

    def get_visualization_tree(
        self, root_session_id: str
    ) -> TreeVisualizationNode | None:
        with self._sync_lock:
            root = self._nodes.get(root_session_id)
            if root is None:
                return None
            return self._build_view(root)

    def _build_view(self, node: AgentNode) -> TreeVisualizationNode:
        view = TreeVisualizationNode.from_node(node)
        view.children = [self._build_view(c) for c in self.get_children(node.session_id)]
        return view

    def get_flat_tree_list(self, root_session_id: str) -> list[FlatTreeEntry]:
        """Depth-first rows with an indentation level, for list rendering."""
        root = self.get_visualization_tree(root_session_id)
        if root is None:
            return []
        rows: list[FlatTreeEntry] = []

        def _walk(view: TreeVisualizationNode, indent: int) -> None:
            rows.append(FlatTreeEntry(node=view, indent=indent))
            for child in view.children:
                _walk(child, indent + 1)

        _walk(root, 0)
        return rows

    def get_summary(self, root_session_id: str) -> HierarchySummary | None:
        nodes = self.get_tree(root_session_id)
        if not nodes:
            return None
        summary = HierarchySummary(root_session_id=root_session_id)
        base_depth = nodes[0].depth
        for node in nodes:
            summary.total_agents += 1
            summary.max_depth = max(summary.max_depth, node.depth - base_depth)
            summary.total_allocated_usd += node.allocated_budget_usd
            summary.total_spent_usd += node.spent_budget_usd
            if node.status is AgentStatus.ACTIVE:
                summary.active += 1
            elif node.status is AgentStatus.TERMINATED:
                summary.terminated += 1
            else:
                summary.idle += 1
            if node.outcome is AgentOutcome.COMPLETED:
                summary.completed += 1
            elif node.outcome is AgentOutcome.FAILED:
                summary.failed += 1
        return summary

    # ── Metrics ──────────────────────────────────────────────────

    def _fold_metrics(self, node: AgentNode, success: bool) -> None:
        metrics = self._metrics.setdefault(
            node.agent_name, AgentMetrics(agent_name=node.agent_name)
        )
        metrics.total_sessions += 1
        if success:
            metrics.success_count += 1
        else:
            metrics.failure_count += 1
        metrics.total_duration_ms += node.duration_ms
        metrics.total_tool_calls += node.tool_calls
        metrics.total_tokens_used += node.tokens_used
        metrics.total_cost_usd += node.spent_budget_usd

    def get_agent_metrics(self, agent_name: str) -> AgentMetrics | None:
        return self._metrics.get(agent_name)

    def get_all_metrics(self) -> list[AgentMetrics]:
        return sorted(self._metrics.values(), key=lambda m: m.agent_name)

    # ── Maintenance ──────────────────────────────────────────────

    def cleanup(self, max_age_hours: float | None = None) -> int:
        """
        Drop whole trees that have no active agent and whose root started
        more than ``max_age_hours`` ago.

        Returns:
            Number of agents removed.
        """
        hours = self._cleanup_max_age_hours if max_age_hours is None else max_age_hours
        cutoff = utcnow() - timedelta(hours=hours)
        removed = 0
        with self._sync_lock:
            for root_id in self.get_root_sessions():
                root = self._nodes[root_id]
                if root.started_at >= cutoff:
                    continue
                tree = self.get_tree(root_id)
                if any(n.status is AgentStatus.ACTIVE for n in tree):
                    continue
                for node in tree:
                    self._nodes.pop(node.session_id, None)
                    self._children.pop(node.session_id, None)
                removed += len(tree)
        if removed:
            logger.info("Agent tree cleanup removed %d agent(s)", removed)
        return removed
