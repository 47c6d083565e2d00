"""Tests for the approval policy engine and its queue."""

import time

import pytest

from plyra_governor.core.enums import (
    ApprovalOutcome,
    DecidedBy,
    DecisionSource,
    PolicyAction,
    QueueStatus,
)
from plyra_governor.core.models import PermissionRequest
from plyra_governor.exceptions import GovernanceValidationError, PolicyNotFoundError
from plyra_governor.observability.events import (
    BatchDecided,
    PermissionResolved,
    PolicyChanged,
    QueueItemDecided,
)
from plyra_governor.policy.engine import DEFAULT_POLICIES, PolicyEngine


def _bash(command="ls", session_id="s-1"):
    return PermissionRequest(
        session_id=session_id,
        permission_type="tool_use",
        tool_name="Bash",
        command=command,
        details={"command": command},
    )


class TestEvaluation:
    def test_higher_priority_wins(self, engine):
        engine.create_policy("P2 approve all", "*", "auto-approve", priority=1)
        deny = engine.create_policy("P1 no bash", "Bash", "auto-deny", priority=5)

        decision = engine.process_permission_request(_bash())
        assert decision.outcome is ApprovalOutcome.DENIED
        assert decision.policy_id == deny.id
        assert decision.source is DecisionSource.POLICY
        assert decision.reason == "Auto-denied by policy: P1 no bash"

    def test_lower_priority_catch_all_approves_other_tools(self, engine):
        approve = engine.create_policy("P2 approve all", "*", "auto-approve", priority=1)
        engine.create_policy("P1 no bash", "Bash", "auto-deny", priority=5)

        read = PermissionRequest(
            session_id="s-1",
            permission_type="tool_use",
            tool_name="Read",
            file_path="src/app.py",
            details={"file_path": "src/app.py"},
        )
        decision = engine.process_permission_request(read)
        assert decision.outcome is ApprovalOutcome.APPROVED
        assert decision.policy_id == approve.id
        assert decision.reason == "Auto-approved by policy: P2 approve all"

    def test_equal_priority_tie_breaks_on_lower_id(self, engine):
        first = engine.create_policy("first", "*", "auto-approve", priority=3)
        engine.create_policy("second", "*", "auto-deny", priority=3)
        assert engine.find_matching_policy(_bash()).id == first.id

    def test_disabled_policies_are_skipped(self, engine):
        policy = engine.create_policy("deny", "Bash", "auto-deny")
        engine.set_policy_enabled(policy.id, False)
        assert engine.find_matching_policy(_bash()) is None

    def test_failed_conditions_fall_through(self, engine):
        engine.create_policy(
            "npm only",
            "Bash",
            "auto-approve",
            priority=10,
            conditions={"allowedCommands": ["npm *"]},
        )
        fallback = engine.create_policy("deny bash", "Bash", "auto-deny", priority=1)
        assert engine.find_matching_policy(_bash("make")).id == fallback.id
        assert engine.find_matching_policy(_bash("npm test")).name == "npm only"

    def test_no_match_queues_by_default(self, engine, recorder):
        decision = engine.process_permission_request(_bash())
        assert decision.outcome is ApprovalOutcome.QUEUED
        assert decision.source is DecisionSource.DEFAULT
        assert decision.policy_id is None
        assert decision.queue_item.status is QueueStatus.PENDING
        assert decision.queue_item.details["command"] == "ls"
        assert len(recorder.of_type(PermissionResolved)) == 1

    @pytest.mark.parametrize(
        "action, outcome",
        [("auto-approve", ApprovalOutcome.APPROVED), ("auto-deny", ApprovalOutcome.DENIED)],
    )
    def test_configurable_no_match_action(self, store, action, outcome):
        engine = PolicyEngine(store, no_match_action=action)
        decision = engine.process_permission_request(_bash())
        assert decision.outcome is outcome
        assert decision.source is DecisionSource.DEFAULT
        assert decision.reason.startswith("No policy matched")

    def test_queue_policy_links_item(self, engine):
        policy = engine.create_policy("review bash", "Bash", "queue")
        decision = engine.process_permission_request(_bash())
        assert decision.queue_item.policy_id == policy.id
        assert decision.reason == "Queued for manual approval by policy: review bash"


class TestQueue:
    @pytest.fixture
    def queued(self, engine):
        return [engine.process_permission_request(_bash()).queue_item for _ in range(3)]

    def test_approve_pending_item(self, engine, queued, recorder):
        item = engine.approve_item(queued[0].id)
        assert item.status is QueueStatus.APPROVED
        assert item.decided_by is DecidedBy.USER
        assert item.decided_at is not None
        assert recorder.of_type(QueueItemDecided)[0].item.id == item.id

    def test_second_decision_is_a_no_op(self, engine, queued):
        engine.deny_item(queued[0].id)
        again = engine.approve_item(queued[0].id)
        assert again.status is QueueStatus.DENIED

    def test_unknown_item_returns_none(self, engine):
        assert engine.approve_item(404) is None
        assert engine.deny_item(404) is None

    def test_invalid_decided_by(self, engine, queued):
        with pytest.raises(GovernanceValidationError):
            engine.approve_item(queued[0].id, decided_by="robot")

    def test_batch_reports_each_id(self, engine, queued, recorder):
        engine.deny_item(queued[1].id)
        result = engine.batch_approve([queued[0].id, queued[1].id, 999, queued[2].id])
        assert result.succeeded == [queued[0].id, queued[2].id]
        assert result.skipped == [queued[1].id]
        assert result.missing == [999]
        assert recorder.of_type(BatchDecided)[0].status is QueueStatus.APPROVED
        assert engine.get_pending_approvals() == []

    def test_batch_deny(self, engine, queued):
        result = engine.batch_deny([q.id for q in queued])
        assert len(result.succeeded) == 3
        assert all(
            i.status is QueueStatus.DENIED for i in engine.get_queue_items(session_id="s-1")
        )

    def test_expire_stale_items(self, engine, queued):
        engine.approve_item(queued[0].id)
        assert engine.expire_stale_items(3600) == []
        time.sleep(0.01)
        expired = engine.expire_stale_items(0)
        assert sorted(i.id for i in expired) == [queued[1].id, queued[2].id]
        assert all(i.decided_by is DecidedBy.POLICY for i in expired)
        assert engine.get_queue_item(queued[0].id).status is QueueStatus.APPROVED

    def test_expire_rejects_negative_age(self, engine):
        with pytest.raises(GovernanceValidationError):
            engine.expire_stale_items(-1)

    def test_pending_filter_by_session(self, engine, queued):
        engine.process_permission_request(_bash(session_id="other"))
        assert len(engine.get_pending_approvals("s-1")) == 3
        assert len(engine.get_pending_approvals("other")) == 1


class TestPolicyManagement:
    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"name": "", "matcher": "*", "action": "queue"}, "name"),
            ({"name": "x", "matcher": "", "action": "queue"}, "matcher"),
            ({"name": "x", "matcher": "*", "action": "maybe"}, "action"),
            ({"name": "x", "matcher": "*", "action": "queue", "priority": 10**6}, "priority"),
            ({"name": "x", "matcher": "*", "action": "queue", "priority": "1"}, "priority"),
            ({"name": "x", "matcher": "*", "action": "queue", "conditions": {"x": 1}}, "conditions"),
        ],
    )
    def test_create_validation(self, engine, kwargs, field):
        with pytest.raises(GovernanceValidationError) as exc_info:
            engine.create_policy(**kwargs)
        assert exc_info.value.field == field
        assert engine.get_all_policies() == []

    def test_update_changes_only_given_fields(self, engine, recorder):
        policy = engine.create_policy(
            "p", "Bash", "queue", priority=2, conditions={"blocked_tools": ["Bash"]}
        )
        updated = engine.update_policy(policy.id, action=PolicyAction.AUTO_DENY)
        assert updated.action is PolicyAction.AUTO_DENY
        assert updated.priority == 2
        assert updated.conditions is not None
        assert [e.change for e in recorder.of_type(PolicyChanged)] == ["created", "updated"]

    def test_update_can_clear_conditions(self, engine):
        policy = engine.create_policy("p", "*", "queue", conditions={"max_file_size": 1})
        assert engine.update_policy(policy.id, conditions=None).conditions is None

    def test_update_and_delete_unknown_policy(self, engine):
        with pytest.raises(PolicyNotFoundError):
            engine.update_policy(7, name="x")
        with pytest.raises(PolicyNotFoundError):
            engine.delete_policy(7)

    def test_delete_policy(self, engine):
        policy = engine.create_policy("p", "*", "queue")
        engine.delete_policy(policy.id)
        assert engine.get_policy(policy.id) is None

    def test_default_policies_install_once(self, engine):
        assert len(engine.install_default_policies()) == len(DEFAULT_POLICIES)
        assert engine.install_default_policies() == []
        assert len(engine.get_all_policies()) == len(DEFAULT_POLICIES)

    def test_defaults_protect_env_files(self, engine):
        engine.install_default_policies()
        request = PermissionRequest(
            session_id="s-1",
            permission_type="tool_use",
            tool_name="Read",
            file_path="/repo/.env",
        )
        decision = engine.process_permission_request(request)
        assert decision.outcome is ApprovalOutcome.DENIED
        assert decision.policy_name == "Block Env File Changes"
