"""
Sidecar Pydantic Models
~~~~~~~~~~~~~~~~~~~~~~~

Request/response models for the HTTP sidecar endpoints.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

__all__ = [
    "HookResponseModel",
    "HealthResponse",
    "BudgetCreateRequest",
    "PolicyCreateRequest",
    "PolicyUpdateRequest",
    "DecideRequest",
    "BatchRequest",
    "ExpireRequest",
    "AllocateRequest",
    "ProjectCreateRequest",
    "BroadcastRequest",
    "ErrorResponse",
]


class HookResponseModel(BaseModel):
    """Response for POST /hooks."""

    decision: str
    message: str | None = None
    modified_input: dict[str, Any] | None = None
    queue_item_id: int | None = None


class HealthResponse(BaseModel):
    """Response for GET /health."""

    status: str = "ok"
    version: str = ""
    policies: int = 0
    pending_approvals: int = 0


class BudgetCreateRequest(BaseModel):
    """Request body for POST /budgets."""

    limit_usd: float = Field(ge=0.0)
    project_path: str | None = None
    session_id: str | None = None
    warning_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    hard_stop_enabled: bool = False
    reset_period: str = "session"


class PolicyCreateRequest(BaseModel):
    """Request body for POST /policies."""

    name: str
    matcher: str
    action: str = "queue"
    priority: int = 0
    conditions: dict[str, Any] | None = None
    enabled: bool = True


class PolicyUpdateRequest(BaseModel):
    """
    Request body for PATCH /policies/{id}.

    Omitted fields are left unchanged; an explicit ``"conditions": null``
    clears the conditions.
    """

    name: str | None = None
    matcher: str | None = None
    action: str | None = None
    priority: int | None = None
    conditions: dict[str, Any] | None = None
    enabled: bool | None = None


class DecideRequest(BaseModel):
    """Request body for POST /queue/{id}/approve and /deny."""

    decided_by: str = "user"


class BatchRequest(BaseModel):
    """Request body for POST /queue/batch-approve and /batch-deny."""

    ids: list[int]


class ExpireRequest(BaseModel):
    """Request body for POST /queue/expire."""

    max_age_seconds: float = Field(gt=0.0)


class AllocateRequest(BaseModel):
    """Request body for POST /agents/{session_id}/budget."""

    amount_usd: float
    propagate_to_children: bool = False


class ProjectCreateRequest(BaseModel):
    """Request body for POST /projects."""

    project_id: str
    path: str
    name: str = ""


class BroadcastRequest(BaseModel):
    """Request body for POST /projects/{id}/broadcast."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    target_project_ids: list[str] | None = None


class ErrorResponse(BaseModel):
    """Body of every 4xx/5xx response raised from a governor error."""

    error: str
    detail: str
    field: str | None = None
