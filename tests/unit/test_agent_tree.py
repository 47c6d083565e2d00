"""Tests for the agent tree."""

import math
import time

import pytest

from plyra_governor.agents.tree import AgentTree
from plyra_governor.core.enums import AgentOutcome, AgentStatus
from plyra_governor.exceptions import (
    AgentNotFoundError,
    BudgetAllocationError,
    GovernanceValidationError,
)
from plyra_governor.observability.events import (
    AgentBudgetExceeded,
    AgentStarted,
    AgentTerminated,
)


@pytest.fixture
def family(tree):
    tree.register_agent("root", "planner")
    tree.register_agent("a", "coder", parent_session_id="root")
    tree.register_agent("b", "tester", parent_session_id="root")
    tree.register_agent("a1", "coder", parent_session_id="a")
    return tree


class TestRegistration:
    def test_depth_and_root_follow_parent(self, family, recorder):
        node = family.get_agent("a1")
        assert node.depth == 2
        assert node.root_session_id == "root"
        assert len(family) == 4
        assert "a1" in family
        assert len(recorder.of_type(AgentStarted)) == 4

    def test_unknown_parent_rejected(self, tree):
        with pytest.raises(AgentNotFoundError):
            tree.register_agent("x", "coder", parent_session_id="ghost")

    def test_self_parent_rejected(self, tree):
        with pytest.raises(GovernanceValidationError):
            tree.register_agent("x", "coder", parent_session_id="x")

    def test_re_register_keeps_position_and_merges_metadata(self, family):
        family.stop_agent("a")
        node = family.register_agent("a", "coder", parent_session_id="b", metadata={"k": 1})
        assert node.parent_session_id == "root"
        assert node.status is AgentStatus.ACTIVE
        assert node.outcome is None
        assert node.metadata == {"k": 1}

    def test_stop_unknown_agent(self, tree):
        assert tree.stop_agent("ghost") is None

    def test_stop_is_idempotent(self, family):
        family.stop_agent("b", success=False)
        family.stop_agent("b")
        node = family.get_agent("b")
        assert node.outcome is AgentOutcome.FAILED
        assert family.get_agent_metrics("tester").total_sessions == 1


class TestTermination:
    def test_cascades_to_descendants(self, family):
        family.terminate_agent("a")
        assert family.get_agent("a").status is AgentStatus.TERMINATED
        assert family.get_agent("a1").status is AgentStatus.TERMINATED
        assert family.get_agent("b").status is AgentStatus.ACTIVE

    def test_releases_unspent_allocation(self, family, recorder):
        family.allocate_budget("root", 10.0)
        family.allocate_budget("a", 4.0)
        family.allocate_budget("b", 4.0)
        family.record_cost("a", 1.0)

        family.register_agent("c", "docs", parent_session_id="root")
        with pytest.raises(BudgetAllocationError) as exc_info:
            family.allocate_budget("c", 3.0)
        assert exc_info.value.available_usd == pytest.approx(2.0)

        family.terminate_agent("a")
        released = {e.session_id: e.released_usd for e in recorder.of_type(AgentTerminated)}
        assert released["a"] == pytest.approx(3.0)
        assert family.available_to_delegate("root") == pytest.approx(5.0)
        family.allocate_budget("c", 3.0)

    def test_terminate_unknown_agent(self, tree):
        with pytest.raises(AgentNotFoundError):
            tree.terminate_agent("ghost")

    def test_terminated_agent_cannot_be_allocated(self, family):
        family.terminate_agent("b")
        with pytest.raises(GovernanceValidationError):
            family.allocate_budget("b", 1.0)


class TestBudget:
    def test_unbudgeted_parent_delegates_anything(self, family):
        assert math.isinf(family.available_to_delegate("root"))
        family.allocate_budget("a", 1000.0)
        assert family.get_agent("a").allocated_budget_usd == 1000.0

    @pytest.mark.parametrize("amount", [-1.0, math.nan, True])
    def test_invalid_amounts(self, family, amount):
        with pytest.raises(GovernanceValidationError):
            family.allocate_budget("a", amount)

    def test_exact_remainder_fits(self, family):
        family.allocate_budget("root", 1.0)
        family.allocate_budget("a", 0.7)
        family.allocate_budget("b", 0.3)
        assert family.available_to_delegate("root") == pytest.approx(0.0)

    def test_reallocating_a_child_excludes_its_old_amount(self, family):
        family.allocate_budget("root", 5.0)
        family.allocate_budget("a", 5.0)
        family.allocate_budget("a", 4.0)
        assert family.get_agent("a").allocated_budget_usd == 4.0

    def test_propagate_splits_unspent_evenly(self, family):
        family.record_cost("root", 2.0)
        family.allocate_budget("root", 10.0, propagate_to_children=True)
        assert family.get_agent("a").allocated_budget_usd == pytest.approx(4.0)
        assert family.get_agent("b").allocated_budget_usd == pytest.approx(4.0)
        assert family.get_agent("a1").allocated_budget_usd == pytest.approx(4.0)

    def test_cannot_shrink_below_delegated(self, family, ledger):
        family.allocate_budget("root", 10.0)
        family.allocate_budget("a", 8.0)
        with pytest.raises(BudgetAllocationError) as exc_info:
            family.allocate_budget("root", 1.0)
        assert exc_info.value.available_usd == pytest.approx(8.0)

        root = family.get_agent("root")
        assert root.allocated_budget_usd == 10.0
        assert ledger.get_budget_by_id(root.budget_id).limit_usd == 10.0
        assert family.available_to_delegate("root") == pytest.approx(2.0)

    def test_cannot_shrink_below_own_spend(self, family):
        family.allocate_budget("b", 5.0)
        family.record_cost("b", 3.0)
        with pytest.raises(BudgetAllocationError):
            family.allocate_budget("b", 2.0)
        family.allocate_budget("b", 3.0)
        assert family.available_to_delegate("b") == pytest.approx(0.0)

    def test_propagate_leaves_idle_children_holding(self, family, ledger):
        family.allocate_budget("root", 10.0)
        family.allocate_budget("a", 4.0)
        family.allocate_budget("b", 3.0)
        family.stop_agent("a")

        family.allocate_budget("root", 10.0, propagate_to_children=True)
        a, b = family.get_agent("a"), family.get_agent("b")
        assert a.allocated_budget_usd == pytest.approx(4.0)
        assert b.allocated_budget_usd == pytest.approx(6.0)
        assert ledger.get_budget_by_id(b.budget_id).limit_usd == pytest.approx(6.0)
        assert family.available_to_delegate("root") == pytest.approx(0.0)

    def test_rejected_propagation_changes_nothing(self, family, ledger):
        family.allocate_budget("root", 10.0)
        family.allocate_budget("a", 6.0)
        family.allocate_budget("b", 4.0)
        family.record_cost("b", 3.0)

        # 2.0 split across a and b gives b 1.0, under its 3.0 spend.
        with pytest.raises(BudgetAllocationError):
            family.allocate_budget("root", 2.0, propagate_to_children=True)

        for session_id, amount in (("root", 10.0), ("a", 6.0), ("b", 4.0)):
            node = family.get_agent(session_id)
            assert node.allocated_budget_usd == amount
            assert ledger.get_budget_by_id(node.budget_id).limit_usd == amount
        assert family.get_agent("a1").has_allocation is False

    def test_allocation_mirrors_hard_stop_budget(self, family, ledger):
        node = family.allocate_budget("a", 2.0)
        budget = ledger.get_budget_by_id(node.budget_id)
        assert budget.session_id == "a"
        assert budget.hard_stop_enabled is True
        assert budget.limit_usd == 2.0
        assert ledger.check_budget(None, "a", 2.5).allowed is False

    def test_budget_exceeded_event(self, family, recorder):
        family.allocate_budget("b", 1.0)
        family.record_cost("b", 0.5)
        assert recorder.of_type(AgentBudgetExceeded) == []
        family.record_cost("b", 0.5)
        event = recorder.of_type(AgentBudgetExceeded)[0]
        assert event.spent_usd == pytest.approx(1.0)

    def test_cost_for_untracked_agent(self, tree):
        assert tree.record_cost("ghost", 1.0) is None

    def test_tree_without_ledger(self):
        tree = AgentTree()
        tree.register_agent("r", "solo")
        assert tree.allocate_budget("r", 1.0).budget_id is None


class TestQueries:
    def test_visualization_and_flat_list(self, family):
        view = family.get_visualization_tree("root")
        assert [c.session_id for c in view.children] == ["a", "b"]
        rows = family.get_flat_tree_list("root")
        assert [(r.node.session_id, r.indent) for r in rows] == [
            ("root", 0),
            ("a", 1),
            ("a1", 2),
            ("b", 1),
        ]
        assert rows[2].to_dict()["indent"] == 2

    def test_unknown_root_queries(self, tree):
        assert tree.get_visualization_tree("ghost") is None
        assert tree.get_flat_tree_list("ghost") == []
        assert tree.get_summary("ghost") is None
        assert tree.get_tree("ghost") == []

    def test_summary(self, family):
        family.stop_agent("b")
        family.terminate_agent("a1")
        summary = family.get_summary("root")
        assert summary.total_agents == 4
        assert summary.max_depth == 2
        assert (summary.active, summary.idle, summary.terminated) == (2, 1, 1)
        assert (summary.completed, summary.failed) == (1, 1)

    def test_running_agents(self, family):
        family.stop_agent("a1")
        running = {n.session_id for n in family.get_running_agents("root")}
        assert running == {"root", "a", "b"}

    def test_metrics_grouped_by_agent_name(self, family):
        family.record_tool_call("a")
        family.record_tokens("a", 100)
        family.record_cost("a", 0.5)
        family.stop_agent("a")
        family.stop_agent("a1", success=False)
        metrics = family.get_all_metrics()
        assert [m.agent_name for m in metrics] == ["coder"]
        coder = metrics[0]
        assert coder.total_sessions == 2
        assert coder.success_rate == 0.5
        assert coder.avg_tool_calls == 0.5
        assert coder.avg_cost_usd == pytest.approx(0.25)


class TestCleanup:
    def test_removes_only_inactive_old_trees(self, tree):
        tree.register_agent("old", "planner")
        tree.register_agent("busy", "planner")
        tree.stop_agent("old")
        time.sleep(0.01)
        assert tree.cleanup(max_age_hours=0) == 1
        assert "old" not in tree
        assert "busy" in tree

    def test_recent_trees_survive(self, tree):
        tree.register_agent("r", "planner")
        tree.stop_agent("r")
        assert tree.cleanup() == 0
