"""
Approval Policy Engine
~~~~~~~~~~~~~~~~~~~~~~

Evaluates permission requests against prioritized approval policies and
owns the queue of requests waiting on a human decision.

Evaluation order is deterministic: enabled policies by descending
priority, ties broken by lower id. The first policy whose matcher and
conditions both apply decides. When nothing matches, the configured
no-match action applies and the decision is marked as coming from the
default rather than from a policy.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import timedelta
from typing import Any

from plyra_governor.core.enums import (
    ApprovalOutcome,
    DecidedBy,
    DecisionSource,
    PolicyAction,
    QueueStatus,
)
from plyra_governor.core.models import (
    ApprovalDecision,
    ApprovalPolicy,
    ApprovalQueueItem,
    BatchResult,
    PermissionRequest,
    PolicyConditions,
    utcnow,
)
from plyra_governor.exceptions import (
    ConsistencyError,
    GovernanceValidationError,
    PolicyNotFoundError,
)
from plyra_governor.observability.events import (
    BatchDecided,
    EventSink,
    NullSink,
    PermissionResolved,
    PolicyChanged,
    QueueItemDecided,
)
from plyra_governor.policy.conditions import check_conditions
from plyra_governor.policy.matcher import match_pattern, validate_matcher
from plyra_governor.storage.base import GovernanceStore

__all__ = ["PolicyEngine", "DEFAULT_POLICIES"]

logger = logging.getLogger(__name__)

_UNSET: Any = object()

DEFAULT_POLICIES: list[dict[str, Any]] = [
    {
        "name": "Allow Read Operations",
        "matcher": "Read",
        "action": "auto-approve",
        "priority": 100,
    },
    {
        "name": "Allow Glob Operations",
        "matcher": "Glob",
        "action": "auto-approve",
        "priority": 100,
    },
    {
        "name": "Allow Grep Operations",
        "matcher": "Grep",
        "action": "auto-approve",
        "priority": 100,
    },
    {
        "name": "Allow Test Files Edit",
        "matcher": "Edit(**.test.*)",
        "action": "auto-approve",
        "priority": 90,
    },
    {
        "name": "Block Env File Changes",
        "matcher": "file:**.env*",
        "action": "auto-deny",
        "priority": 200,
    },
    {
        "name": "Block Credential Files",
        "matcher": "file:**credential*",
        "action": "auto-deny",
        "priority": 200,
    },
]


class PolicyEngine:
    """
    Prioritized approval policies plus the pending-decision queue.

    Args:
        store: Persistence for policies and queue items.
        sink: Receives policy, permission and queue events.
        no_match_action: What happens when no policy applies.
        min_priority: Lowest accepted policy priority.
        max_priority: Highest accepted policy priority.
        max_name_length: Longest accepted policy name.
        max_matcher_length: Longest accepted matcher.
    """

    def __init__(
        self,
        store: GovernanceStore,
        sink: EventSink | None = None,
        no_match_action: PolicyAction | str = PolicyAction.QUEUE,
        min_priority: int = -10000,
        max_priority: int = 10000,
        max_name_length: int = 200,
        max_matcher_length: int = 1000,
    ) -> None:
        self._store = store
        self._sink = sink or NullSink()
        self._no_match_action = PolicyAction(no_match_action)
        self._min_priority = min_priority
        self._max_priority = max_priority
        self._max_name_length = max_name_length
        self._max_matcher_length = max_matcher_length

    @property
    def no_match_action(self) -> PolicyAction:
        return self._no_match_action

    # ── Evaluation ───────────────────────────────────────────────

    def find_matching_policy(
        self, request: PermissionRequest
    ) -> ApprovalPolicy | None:
        """Return the policy that would decide ``request``, if any."""
        for policy in self._store.list_policies(enabled_only=True):
            if not match_pattern(policy.matcher, request):
                continue
            if policy.conditions is not None:
                passed, reason = check_conditions(policy.conditions, request)
                if not passed:
                    logger.debug(
                        "Policy %r matched but conditions failed: %s",
                        policy.name,
                        reason,
                    )
                    continue
            return policy
        return None

    def process_permission_request(
        self, request: PermissionRequest
    ) -> ApprovalDecision:
        """Decide a permission request: approve, deny, or queue it."""
        logger.debug(
            "Processing permission request: type=%s tool=%s",
            request.permission_type,
            request.tool_name,
        )
        policy = self.find_matching_policy(request)

        if policy is not None:
            logger.info("Policy matched: %s (%s)", policy.name, policy.action.value)
            decision = self._apply_action(
                policy.action,
                request,
                source=DecisionSource.POLICY,
                policy=policy,
            )
        else:
            decision = self._apply_action(
                self._no_match_action, request, source=DecisionSource.DEFAULT
            )

        self._sink.publish(PermissionResolved(request=request, decision=decision))
        return decision

    def _apply_action(
        self,
        action: PolicyAction,
        request: PermissionRequest,
        source: DecisionSource,
        policy: ApprovalPolicy | None = None,
    ) -> ApprovalDecision:
        policy_id = policy.id if policy else None
        policy_name = policy.name if policy else None

        if action is PolicyAction.AUTO_APPROVE:
            reason = (
                f"Auto-approved by policy: {policy.name}"
                if policy
                else "No policy matched; approved by default"
            )
            return ApprovalDecision(
                outcome=ApprovalOutcome.APPROVED,
                reason=reason,
                source=source,
                policy_id=policy_id,
                policy_name=policy_name,
            )

        if action is PolicyAction.AUTO_DENY:
            reason = (
                f"Auto-denied by policy: {policy.name}"
                if policy
                else "No policy matched; denied by default"
            )
            return ApprovalDecision(
                outcome=ApprovalOutcome.DENIED,
                reason=reason,
                source=source,
                policy_id=policy_id,
                policy_name=policy_name,
            )

        item = self._store.insert_queue_item(
            session_id=request.session_id,
            request_type=request.permission_type,
            request_details=request.serialize(),
            policy_id=policy_id,
        )
        logger.info(
            "Queued permission request %d for session %s", item.id, request.session_id
        )
        reason = (
            f"Queued for manual approval by policy: {policy.name}"
            if policy
            else "Queued for manual approval"
        )
        return ApprovalDecision(
            outcome=ApprovalOutcome.QUEUED,
            reason=reason,
            source=source,
            policy_id=policy_id,
            policy_name=policy_name,
            queue_item=item,
        )

    # ── Queue Management ─────────────────────────────────────────

    def _decide(
        self, item_id: int, status: QueueStatus, decided_by: DecidedBy
    ) -> tuple[str, ApprovalQueueItem | None]:
        item = self._store.get_queue_item(item_id)
        if item is None:
            return "missing", None
        if item.status.is_terminal():
            return "skipped", item

        if not self._store.decide_queue_item(item_id, status, decided_by, utcnow()):
            # Decided concurrently between the read and the write.
            return "skipped", self._store.get_queue_item(item_id)

        decided = self._store.get_queue_item(item_id)
        if decided is None:
            raise ConsistencyError(f"Approval queue item {item_id} vanished on update")
        self._sink.publish(QueueItemDecided(item=decided))
        return "succeeded", decided

    def _decide_one(
        self, item_id: int, status: QueueStatus, decided_by: DecidedBy | str
    ) -> ApprovalQueueItem | None:
        try:
            decided_by = DecidedBy(decided_by)
        except ValueError as exc:
            raise GovernanceValidationError(
                f"Unknown decision source: {decided_by!r}", field="decided_by"
            ) from exc
        outcome, item = self._decide(item_id, status, decided_by)
        if outcome == "missing":
            logger.warning("Approval queue item %d not found", item_id)
        elif outcome == "skipped":
            logger.warning(
                "Approval queue item %d already %s; decision ignored",
                item_id,
                item.status.value if item else "decided",
            )
        else:
            logger.info("Approval queue item %d %s", item_id, status.value)
        return item

    def approve_item(
        self, item_id: int, decided_by: DecidedBy | str = DecidedBy.USER
    ) -> ApprovalQueueItem | None:
        """
        Approve a pending item.

        A second decision on an already-decided item is a logged no-op:
        the stored item is returned unchanged.

        Returns:
            The item after the call, or None if the id is unknown.
        """
        return self._decide_one(item_id, QueueStatus.APPROVED, decided_by)

    def deny_item(
        self, item_id: int, decided_by: DecidedBy | str = DecidedBy.USER
    ) -> ApprovalQueueItem | None:
        """Deny a pending item. Same no-op rule as ``approve_item``."""
        return self._decide_one(item_id, QueueStatus.DENIED, decided_by)

    def _batch(self, item_ids: Iterable[int], status: QueueStatus) -> BatchResult:
        result = BatchResult()
        for item_id in item_ids:
            outcome, _ = self._decide(item_id, status, DecidedBy.USER)
            getattr(result, outcome).append(item_id)
        logger.info(
            "Batch %s: %d succeeded, %d skipped, %d missing",
            status.value,
            len(result.succeeded),
            len(result.skipped),
            len(result.missing),
        )
        self._sink.publish(BatchDecided(status=status, result=result))
        return result

    def batch_approve(self, item_ids: Iterable[int]) -> BatchResult:
        """Approve each id independently; decided or unknown ids don't stop the rest."""
        return self._batch(item_ids, QueueStatus.APPROVED)

    def batch_deny(self, item_ids: Iterable[int]) -> BatchResult:
        return self._batch(item_ids, QueueStatus.DENIED)

    def expire_stale_items(self, max_age_seconds: float) -> list[ApprovalQueueItem]:
        """Move pending items older than ``max_age_seconds`` to expired."""
        if max_age_seconds < 0:
            raise GovernanceValidationError(
                "max_age_seconds must not be negative", field="max_age_seconds"
            )
        cutoff = utcnow() - timedelta(seconds=max_age_seconds)
        expired: list[ApprovalQueueItem] = []
        for item in self._store.list_queue_items(status=QueueStatus.PENDING):
            if item.created_at >= cutoff:
                continue
            outcome, decided = self._decide(
                item.id, QueueStatus.EXPIRED, DecidedBy.POLICY
            )
            if outcome == "succeeded" and decided is not None:
                expired.append(decided)
        if expired:
            logger.info("Expired %d stale approval queue item(s)", len(expired))
        return expired

    def get_pending_approvals(
        self, session_id: str | None = None
    ) -> list[ApprovalQueueItem]:
        return self._store.list_queue_items(
            status=QueueStatus.PENDING, session_id=session_id
        )

    def get_queue_items(
        self,
        status: QueueStatus | None = None,
        session_id: str | None = None,
    ) -> list[ApprovalQueueItem]:
        return self._store.list_queue_items(status=status, session_id=session_id)

    def get_queue_item(self, item_id: int) -> ApprovalQueueItem | None:
        return self._store.get_queue_item(item_id)

    # ── Policy Management ────────────────────────────────────────

    def _validate_name(self, name: Any) -> str:
        if not isinstance(name, str) or not name.strip():
            raise GovernanceValidationError("Policy name must not be empty", field="name")
        name = name.strip()
        if len(name) > self._max_name_length:
            raise GovernanceValidationError(
                f"Policy name exceeds {self._max_name_length} characters",
                field="name",
            )
        return name

    def _validate_priority(self, priority: Any) -> int:
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise GovernanceValidationError(
                "Priority must be an integer", field="priority"
            )
        if not self._min_priority <= priority <= self._max_priority:
            raise GovernanceValidationError(
                f"Priority {priority} outside "
                f"[{self._min_priority}, {self._max_priority}]",
                field="priority",
            )
        return priority

    @staticmethod
    def _validate_action(action: Any) -> PolicyAction:
        try:
            return PolicyAction(action)
        except ValueError as exc:
            raise GovernanceValidationError(
                f"Unknown policy action: {action!r}", field="action"
            ) from exc

    @staticmethod
    def _validate_conditions(
        conditions: PolicyConditions | dict[str, Any] | None,
    ) -> PolicyConditions | None:
        if conditions is None or isinstance(conditions, PolicyConditions):
            return conditions
        return PolicyConditions.from_dict(conditions)

    def create_policy(
        self,
        name: str,
        matcher: str,
        action: PolicyAction | str,
        priority: int = 0,
        conditions: PolicyConditions | dict[str, Any] | None = None,
        enabled: bool = True,
    ) -> ApprovalPolicy:
        """
        Create a policy.

        Raises:
            GovernanceValidationError: Any field invalid; nothing is written.
        """
        policy = self._store.insert_policy(
            name=self._validate_name(name),
            matcher=validate_matcher(matcher, self._max_matcher_length),
            action=self._validate_action(action),
            priority=self._validate_priority(priority),
            conditions=self._validate_conditions(conditions),
            enabled=bool(enabled),
        )
        logger.info(
            "Policy created: %s (id=%d, priority=%d)",
            policy.name,
            policy.id,
            policy.priority,
        )
        self._sink.publish(PolicyChanged(policy_id=policy.id, change="created"))
        return policy

    def update_policy(
        self,
        policy_id: int,
        name: str | None = None,
        matcher: str | None = None,
        action: PolicyAction | str | None = None,
        priority: int | None = None,
        conditions: PolicyConditions | dict[str, Any] | None = _UNSET,
        enabled: bool | None = None,
    ) -> ApprovalPolicy:
        """
        Update the given fields; omitted fields keep their values.

        Pass ``conditions=None`` to clear a policy's conditions.

        Raises:
            GovernanceValidationError: Any given field invalid.
            PolicyNotFoundError: No policy with this id.
        """
        fields: dict[str, Any] = {}
        if name is not None:
            fields["name"] = self._validate_name(name)
        if matcher is not None:
            fields["matcher"] = validate_matcher(matcher, self._max_matcher_length)
        if action is not None:
            fields["action"] = self._validate_action(action)
        if priority is not None:
            fields["priority"] = self._validate_priority(priority)
        if conditions is not _UNSET:
            fields["conditions"] = self._validate_conditions(conditions)
        if enabled is not None:
            fields["enabled"] = bool(enabled)

        if self._store.get_policy(policy_id) is None:
            raise PolicyNotFoundError(f"Policy {policy_id} not found")
        if fields:
            self._store.update_policy(policy_id, fields)

        policy = self._store.get_policy(policy_id)
        if policy is None:
            raise ConsistencyError(f"Policy {policy_id} vanished on update")
        logger.info("Policy updated: %s (id=%d)", policy.name, policy.id)
        self._sink.publish(PolicyChanged(policy_id=policy_id, change="updated"))
        return policy

    def set_policy_enabled(self, policy_id: int, enabled: bool) -> ApprovalPolicy:
        """Enable or disable a policy without deleting it."""
        return self.update_policy(policy_id, enabled=enabled)

    def delete_policy(self, policy_id: int) -> None:
        """
        Delete a policy. Queue items it created keep their history.

        Raises:
            PolicyNotFoundError: No policy with this id.
        """
        if not self._store.delete_policy(policy_id):
            raise PolicyNotFoundError(f"Policy {policy_id} not found")
        logger.info("Policy deleted: id=%d", policy_id)
        self._sink.publish(PolicyChanged(policy_id=policy_id, change="deleted"))

    def get_policy(self, policy_id: int) -> ApprovalPolicy | None:
        return self._store.get_policy(policy_id)

    def get_all_policies(self) -> list[ApprovalPolicy]:
        return self._store.list_policies()

    def get_enabled_policies(self) -> list[ApprovalPolicy]:
        return self._store.list_policies(enabled_only=True)

    def load_policies(self, configs: Iterable[Any]) -> list[ApprovalPolicy]:
        """
        Seed policies declared in configuration.

        Each entry is a mapping or a ``PolicyConfig``. Names that already
        exist in the store are left untouched.
        """
        existing = {p.name for p in self._store.list_policies()}
        created: list[ApprovalPolicy] = []
        for config in configs:
            data = config if isinstance(config, dict) else config.model_dump()
            if data["name"] in existing:
                continue
            created.append(
                self.create_policy(
                    name=data["name"],
                    matcher=data["matcher"],
                    action=data.get("action", PolicyAction.QUEUE),
                    priority=data.get("priority", 0),
                    conditions=data.get("conditions"),
                    enabled=data.get("enabled", True),
                )
            )
            existing.add(data["name"])
        return created

    def install_default_policies(self) -> list[ApprovalPolicy]:
        """Install the built-in policies; safe to call repeatedly."""
        created = self.load_policies(DEFAULT_POLICIES)
        logger.info("Default policies installed (%d new)", len(created))
        return created
