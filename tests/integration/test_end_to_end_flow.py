"""End-to-end governance scenarios driven through lifecycle events."""

import pytest

from plyra_governor.core.enums import Decision, DecisionSource
from plyra_governor.observability.events import BudgetAlertRaised

PROJECT = "/work/shop"


def _event(name, session, **fields):
    return {"hook_event_name": name, "session_id": session, "project_path": PROJECT, **fields}


class TestQueuedApprovalRoundTrip:
    def test_deny_then_approve_then_retry(self, default_governor):
        g = default_governor
        g.policy_engine.create_policy("release review", "Bash(npm publish*)", "queue", priority=50)

        publish = _event(
            "PreToolUse", "s-1", tool_name="Bash", tool_input={"command": "npm publish"}
        )
        first = g.handle_event(publish)
        assert first.decision is Decision.DENY
        assert "Waiting on approval queue item" in first.message

        g.policy_engine.approve_item(first.queue_item_id)
        g.policy_engine.create_policy(
            "release approved", "Bash(npm publish*)", "auto-approve", priority=60
        )
        assert g.handle_event(publish).decision is Decision.ALLOW


class TestDelegatedBudgets:
    def test_subagent_allocation_is_enforced_on_admission(self, governor):
        g = governor
        g.policy_engine.create_policy("allow all", "*", "auto-approve")
        g.handle_event(_event("SessionStart", "lead", agent_name="planner"))
        g.handle_event(
            _event("SubagentStart", "worker", parent_session_id="lead", agent_type="coder")
        )
        g.agent_tree.allocate_budget("lead", 1.0)
        g.agent_tree.allocate_budget("worker", 0.05)

        cheap = g.handle_event(
            _event("PreToolUse", "worker", tool_name="Glob", tool_input={"pattern": "*"})
        )
        assert cheap.decision is Decision.ALLOW

        expensive = g.handle_event(_event("PreToolUse", "worker", tool_name="Task"))
        assert expensive.decision is Decision.BLOCK
        assert g.get_decisions()[-1].source is DecisionSource.BUDGET

    def test_spend_raises_alerts_and_metrics(self, governor):
        g = governor
        alerts = []
        g.events.subscribe(alerts.append, BudgetAlertRaised)
        g.ledger.set_budget(0.018, project_path=PROJECT)

        for _ in range(2):
            g.handle_event(
                _event(
                    "PostToolUse",
                    "s-1",
                    tool_name="Read",
                    tool_input={"file_path": "a"},
                    tool_response="x" * 4000,
                )
            )
        assert len(alerts) == 2
        assert g.get_metrics().budget_alerts == 2
        assert g.get_metrics().recorded_cost_usd == pytest.approx(0.03)


class TestCrossProjectSession:
    def test_session_follows_project_focus(self, governor):
        g = governor
        g.coordinator.register_project("shop", PROJECT)
        g.coordinator.register_project("docs", "/work/docs")
        g.coordinator.register_cross_project_agent("writer", "docs-writer", ["shop", "docs"])

        g.handle_event(_event("SessionStart", "s-9", project_id="shop"))
        g.coordinator.transition_agent_to_project("writer", "docs")
        g.coordinator.switch_project("docs")

        assert g.coordinator.get_project_state("shop").session_id == "s-9"
        pending = g.coordinator.get_pending_events_for_project("shop")
        assert pending[-1].data == {"new_focus": "docs"}

        g.handle_event(_event("SessionEnd", "s-9"))
        assert g.coordinator.get_project_state("shop").session_id is None
        assert g.agent_tree.get_agent("s-9").outcome is not None
