"""
Governor Data Models
~~~~~~~~~~~~~~~~~~~~

Dataclasses shared by the budget ledger and the approval policy engine:
budgets and cost estimates, approval policies, queue items, and the
results handed back to callers.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from plyra_governor.core.enums import (
    AlertType,
    ApprovalOutcome,
    Confidence,
    DecidedBy,
    DecisionSource,
    PolicyAction,
    QueueStatus,
    ResetPeriod,
)
from plyra_governor.exceptions import GovernanceValidationError

__all__ = [
    "utcnow",
    "Budget",
    "CostEstimate",
    "BudgetCheckResult",
    "BudgetAlert",
    "TimeWindow",
    "PolicyConditions",
    "ApprovalPolicy",
    "ApprovalQueueItem",
    "PermissionRequest",
    "ApprovalDecision",
    "BatchResult",
]


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


# ── Budgets ──────────────────────────────────────────────────────────────────


@dataclass
class Budget:
    """
    A spend limit attached to a scope.

    Scope is (project_path, session_id); both None means global. At most
    one budget exists per scope, and ``spent_usd`` only goes down through
    an explicit reset.
    """

    id: int
    limit_usd: float
    spent_usd: float = 0.0
    project_path: str | None = None
    session_id: str | None = None
    warning_threshold: float = 0.8
    hard_stop_enabled: bool = False
    reset_period: ResetPeriod = ResetPeriod.SESSION
    last_reset: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def scope(self) -> str:
        """Human-readable scope label: session, project or global."""
        if self.session_id is not None:
            return "session"
        if self.project_path is not None:
            return "project"
        return "global"

    @property
    def remaining_usd(self) -> float:
        return self.limit_usd - self.spent_usd

    @property
    def percent_used(self) -> float:
        if self.limit_usd <= 0:
            return 100.0 if self.spent_usd > 0 else 0.0
        return (self.spent_usd / self.limit_usd) * 100

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dictionary."""
        return {
            "id": self.id,
            "scope": self.scope,
            "project_path": self.project_path,
            "session_id": self.session_id,
            "limit_usd": self.limit_usd,
            "spent_usd": self.spent_usd,
            "warning_threshold": self.warning_threshold,
            "hard_stop_enabled": self.hard_stop_enabled,
            "reset_period": self.reset_period.value,
            "last_reset": self.last_reset.isoformat(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class CostEstimate:
    """Pre-execution cost estimate for one tool call. Never persisted."""

    tool_category: str
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    model: str
    confidence: Confidence

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_category": self.tool_category,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "estimated_cost_usd": self.estimated_cost_usd,
            "model": self.model,
            "confidence": self.confidence.value,
        }


@dataclass
class BudgetCheckResult:
    """
    Outcome of a budget check.

    ``unrestricted`` is True when no budget applies to the scope at all;
    ``remaining_usd`` is then infinite.
    """

    allowed: bool
    budget_id: int | None
    remaining_usd: float
    estimated_cost_usd: float
    warning_message: str | None = None
    block_message: str | None = None

    @property
    def unrestricted(self) -> bool:
        return self.budget_id is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "budget_id": self.budget_id,
            "remaining_usd": (
                None if math.isinf(self.remaining_usd) else self.remaining_usd
            ),
            "estimated_cost_usd": self.estimated_cost_usd,
            "warning_message": self.warning_message,
            "block_message": self.block_message,
            "unrestricted": self.unrestricted,
        }


@dataclass(frozen=True)
class BudgetAlert:
    """Raised after a recorded cost pushes a budget past a threshold."""

    budget_id: int
    type: AlertType
    percent_used: float
    spent_usd: float
    limit_usd: float
    project_path: str | None = None
    session_id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "budget_id": self.budget_id,
            "type": self.type.value,
            "percent_used": self.percent_used,
            "spent_usd": self.spent_usd,
            "limit_usd": self.limit_usd,
            "project_path": self.project_path,
            "session_id": self.session_id,
            "timestamp": self.timestamp.isoformat(),
        }


# ── Policies ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TimeWindow:
    """Hours of the day (local time) during which a policy applies."""

    start_hour: int
    end_hour: int

    def contains(self, hour: int) -> bool:
        """Return True if ``hour`` falls inside the window; wraps past midnight."""
        if self.start_hour <= self.end_hour:
            return self.start_hour <= hour < self.end_hour
        return hour >= self.start_hour or hour < self.end_hour


# Condition keys arrive either in snake_case or in the camelCase used by
# older policy exports.
_CONDITION_ALIASES = {
    "maxFileSize": "max_file_size",
    "allowedPaths": "allowed_paths",
    "blockedPaths": "blocked_paths",
    "allowedCommands": "allowed_commands",
    "blockedCommands": "blocked_commands",
    "allowedTools": "allowed_tools",
    "blockedTools": "blocked_tools",
    "timeWindow": "time_window",
}

_LIST_CONDITIONS = (
    "allowed_paths",
    "blocked_paths",
    "allowed_commands",
    "blocked_commands",
    "allowed_tools",
    "blocked_tools",
)


@dataclass(frozen=True)
class PolicyConditions:
    """
    Extra constraints a matching policy must also satisfy.

    Unset fields impose no constraint.
    """

    max_file_size: int | None = None
    allowed_paths: tuple[str, ...] | None = None
    blocked_paths: tuple[str, ...] | None = None
    allowed_commands: tuple[str, ...] | None = None
    blocked_commands: tuple[str, ...] | None = None
    allowed_tools: tuple[str, ...] | None = None
    blocked_tools: tuple[str, ...] | None = None
    time_window: TimeWindow | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PolicyConditions:
        """
        Build conditions from a mapping, validating every field.

        Raises:
            GovernanceValidationError: On unknown keys or wrongly typed values.
        """
        if not isinstance(data, dict):
            raise GovernanceValidationError(
                "Policy conditions must be a mapping", field="conditions"
            )

        kwargs: dict[str, Any] = {}
        for raw_key, value in data.items():
            key = _CONDITION_ALIASES.get(raw_key, raw_key)
            if value is None:
                continue
            if key in _LIST_CONDITIONS:
                if not isinstance(value, (list, tuple)) or not all(
                    isinstance(v, str) and v for v in value
                ):
                    raise GovernanceValidationError(
                        f"Condition {raw_key!r} must be a list of non-empty strings",
                        field="conditions",
                    )
                kwargs[key] = tuple(value)
            elif key == "max_file_size":
                if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                    raise GovernanceValidationError(
                        "Condition 'max_file_size' must be a non-negative integer",
                        field="conditions",
                    )
                kwargs[key] = value
            elif key == "time_window":
                kwargs[key] = _parse_time_window(value)
            else:
                raise GovernanceValidationError(
                    f"Unknown policy condition: {raw_key!r}", field="conditions"
                )
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Serialize, omitting unset fields."""
        data: dict[str, Any] = {}
        if self.max_file_size is not None:
            data["max_file_size"] = self.max_file_size
        for key in _LIST_CONDITIONS:
            value = getattr(self, key)
            if value is not None:
                data[key] = list(value)
        if self.time_window is not None:
            data["time_window"] = {
                "start_hour": self.time_window.start_hour,
                "end_hour": self.time_window.end_hour,
            }
        return data


def _parse_time_window(value: Any) -> TimeWindow:
    if not isinstance(value, dict):
        raise GovernanceValidationError(
            "Condition 'time_window' must be a mapping", field="conditions"
        )
    start = value.get("start_hour", value.get("startHour"))
    end = value.get("end_hour", value.get("endHour"))
    for hour in (start, end):
        if isinstance(hour, bool) or not isinstance(hour, int) or not 0 <= hour <= 24:
            raise GovernanceValidationError(
                "time_window hours must be integers between 0 and 24",
                field="conditions",
            )
    return TimeWindow(start_hour=start, end_hour=end)


@dataclass
class ApprovalPolicy:
    """
    A prioritized rule evaluated against permission requests.

    Higher ``priority`` is evaluated first; disabled policies stay in the
    store but are skipped during evaluation.
    """

    id: int
    name: str
    matcher: str
    action: PolicyAction
    priority: int = 0
    enabled: bool = True
    conditions: PolicyConditions | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "matcher": self.matcher,
            "action": self.action.value,
            "priority": self.priority,
            "enabled": self.enabled,
            "conditions": self.conditions.to_dict() if self.conditions else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# ── Approval Queue ───────────────────────────────────────────────────────────


@dataclass
class ApprovalQueueItem:
    """A permission request waiting on (or resolved by) a decision."""

    id: int
    session_id: str
    request_type: str
    request_details: str
    status: QueueStatus = QueueStatus.PENDING
    decided_by: DecidedBy | None = None
    policy_id: int | None = None
    created_at: datetime = field(default_factory=utcnow)
    decided_at: datetime | None = None

    @property
    def details(self) -> dict[str, Any]:
        """The serialized request descriptor, decoded."""
        try:
            decoded = json.loads(self.request_details)
        except json.JSONDecodeError:
            return {}
        return decoded if isinstance(decoded, dict) else {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "request_type": self.request_type,
            "request_details": self.details,
            "status": self.status.value,
            "decided_by": self.decided_by.value if self.decided_by else None,
            "policy_id": self.policy_id,
            "created_at": self.created_at.isoformat(),
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
        }


@dataclass
class PermissionRequest:
    """
    Action descriptor evaluated by the policy engine.

    Attributes:
        session_id: Session of the agent asking for permission.
        permission_type: Kind of permission, e.g. "tool_use" or "file_write".
        tool_name: Tool being invoked, when the request comes from a tool call.
        file_path: Target file, for file-oriented tools.
        command: Shell command, for command-running tools.
        details: Raw tool input and any extra context.
    """

    session_id: str
    permission_type: str
    tool_name: str | None = None
    file_path: str | None = None
    command: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def serialize(self) -> str:
        """Opaque JSON descriptor stored on queue items."""
        return json.dumps(
            {
                "tool_name": self.tool_name,
                "file_path": self.file_path,
                "command": self.command,
                "details": self.details,
            },
            default=str,
            sort_keys=True,
        )


@dataclass
class ApprovalDecision:
    """
    Result of running a request through the policy engine.

    Attributes:
        outcome: approved, denied, or queued (waiting on a decision).
        reason: Human-readable explanation.
        source: POLICY when a policy matched, DEFAULT for the no-match default.
        policy_id: Id of the matching policy, if any.
        policy_name: Name of the matching policy, if any.
        queue_item: The pending item created for a queued outcome.
    """

    outcome: ApprovalOutcome
    reason: str
    source: DecisionSource = DecisionSource.POLICY
    policy_id: int | None = None
    policy_name: str | None = None
    queue_item: ApprovalQueueItem | None = None

    @property
    def approved(self) -> bool:
        return self.outcome is ApprovalOutcome.APPROVED


@dataclass
class BatchResult:
    """Per-id outcome of a batch approve/deny."""

    succeeded: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    missing: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[int]]:
        return {
            "succeeded": list(self.succeeded),
            "skipped": list(self.skipped),
            "missing": list(self.missing),
        }
