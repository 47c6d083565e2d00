"""
Governance Store Interface
~~~~~~~~~~~~~~~~~~~~~~~~~~

Keyed CRUD contract for the three durable entities: budgets, approval
policies, and approval queue items. Everything else the governor tracks
lives in memory.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from plyra_governor.core.enums import DecidedBy, PolicyAction, QueueStatus
from plyra_governor.core.models import (
    ApprovalPolicy,
    ApprovalQueueItem,
    Budget,
    PolicyConditions,
)

__all__ = ["GovernanceStore"]


class GovernanceStore(Protocol):
    """
    Persistence boundary for the governance core.

    Lookups return ``None`` (or an empty list) for absent records.
    Implementations raise ``StorageError`` when the backing store is
    unavailable, and nothing else.
    """

    # ── Budgets ──────────────────────────────────────────────────

    def upsert_budget(
        self,
        *,
        limit_usd: float,
        project_path: str | None,
        session_id: str | None,
        warning_threshold: float,
        hard_stop_enabled: bool,
        reset_period: str,
    ) -> Budget: ...

    def get_budget(self, budget_id: int) -> Budget | None: ...

    def find_budget(
        self, project_path: str | None, session_id: str | None
    ) -> Budget | None: ...

    def resolve_budget(
        self, project_path: str | None, session_id: str | None
    ) -> Budget | None: ...

    def list_budgets(self) -> list[Budget]: ...

    def add_budget_spent(self, budget_id: int, amount_usd: float) -> None: ...

    def reset_budget_spent(self, budget_id: int, reset_at: datetime) -> bool: ...

    def delete_budget(self, budget_id: int) -> bool: ...

    # ── Policies ─────────────────────────────────────────────────

    def insert_policy(
        self,
        *,
        name: str,
        matcher: str,
        action: PolicyAction,
        priority: int,
        conditions: PolicyConditions | None,
        enabled: bool,
    ) -> ApprovalPolicy: ...

    def get_policy(self, policy_id: int) -> ApprovalPolicy | None: ...

    def list_policies(self, enabled_only: bool = False) -> list[ApprovalPolicy]: ...

    def update_policy(self, policy_id: int, fields: dict[str, Any]) -> bool: ...

    def delete_policy(self, policy_id: int) -> bool: ...

    # ── Approval Queue ───────────────────────────────────────────

    def insert_queue_item(
        self,
        *,
        session_id: str,
        request_type: str,
        request_details: str,
        policy_id: int | None,
    ) -> ApprovalQueueItem: ...

    def get_queue_item(self, item_id: int) -> ApprovalQueueItem | None: ...

    def list_queue_items(
        self,
        status: QueueStatus | None = None,
        session_id: str | None = None,
    ) -> list[ApprovalQueueItem]: ...

    def decide_queue_item(
        self,
        item_id: int,
        status: QueueStatus,
        decided_by: DecidedBy,
        decided_at: datetime,
    ) -> bool: ...
