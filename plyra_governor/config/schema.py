"""
Configuration Schema
~~~~~~~~~~~~~~~~~~~~

Pydantic models for validating plyra-governor configuration.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

__all__ = [
    "GovernorConfig",
    "BudgetConfig",
    "PolicyEngineConfig",
    "PolicyConfig",
    "QueueConfig",
    "AgentTreeConfig",
    "CoordinatorConfig",
    "MaintenanceConfig",
    "StorageConfig",
    "ObservabilityConfig",
    "SidecarConfig",
]

_POLICY_ACTIONS = ("auto-approve", "auto-deny", "queue")


class BudgetConfig(BaseModel):
    """Cost estimation and budget projection settings."""

    default_model: str = "claude-sonnet-4"
    chars_per_token: int = Field(default=4, ge=1)
    ops_per_minute: float = Field(default=2.0, gt=0.0)
    default_warning_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    projection_minutes: int = Field(default=30, ge=0)


class PolicyEngineConfig(BaseModel):
    """Approval policy engine settings."""

    no_match_action: str = "queue"
    install_defaults: bool = True
    min_priority: int = -10000
    max_priority: int = 10000
    max_name_length: int = Field(default=200, ge=1)
    max_matcher_length: int = Field(default=1000, ge=1)

    @field_validator("no_match_action")
    @classmethod
    def validate_no_match_action(cls, v: str) -> str:
        """Only the three policy actions are valid defaults."""
        if v not in _POLICY_ACTIONS:
            raise ValueError(
                f"no_match_action must be one of {_POLICY_ACTIONS}, got {v!r}"
            )
        return v

    @model_validator(mode="after")
    def validate_priority_bounds(self) -> PolicyEngineConfig:
        """Reject an empty priority range."""
        if self.min_priority > self.max_priority:
            raise ValueError(
                f"min_priority ({self.min_priority}) exceeds "
                f"max_priority ({self.max_priority})"
            )
        return self


class PolicyConfig(BaseModel):
    """A policy declared in the config file, seeded into the store by name."""

    name: str
    matcher: str
    action: str = "queue"
    priority: int = 0
    conditions: dict[str, Any] | None = None
    enabled: bool = True

    @field_validator("action")
    @classmethod
    def validate_action(cls, v: str) -> str:
        """Validate the policy action."""
        if v not in _POLICY_ACTIONS:
            raise ValueError(f"Invalid policy action: {v!r}")
        return v


class QueueConfig(BaseModel):
    """Approval queue settings."""

    pending_ttl_seconds: float | None = Field(default=None, gt=0.0)


class AgentTreeConfig(BaseModel):
    """Agent tree retention settings."""

    cleanup_max_age_hours: float = Field(default=72, gt=0.0)


class CoordinatorConfig(BaseModel):
    """Cross-project coordinator retention settings."""

    event_max_age_seconds: float = Field(default=3600, gt=0.0)
    stale_agent_max_idle_seconds: float = Field(default=86400, gt=0.0)


class MaintenanceConfig(BaseModel):
    """Periodic maintenance loop settings."""

    interval_seconds: float = Field(default=300, gt=0.0)


class StorageConfig(BaseModel):
    """Persistence settings."""

    db_path: str | None = None


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    exporters: list[str] = Field(default_factory=lambda: ["stdout"])
    decision_log_max_entries: int = Field(default=10000, ge=100)


class SidecarConfig(BaseModel):
    """HTTP sidecar server configuration."""

    host: str = "127.0.0.1"
    port: int = Field(default=23847, ge=1, le=65535)


class GovernorConfig(BaseModel):
    """
    Root configuration model for plyra-governor.

    Validated on load with clear error messages for invalid values.
    """

    version: str = "1.0"
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    policy_engine: PolicyEngineConfig = Field(default_factory=PolicyEngineConfig)
    policies: list[PolicyConfig] = Field(default_factory=list)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    agent_tree: AgentTreeConfig = Field(default_factory=AgentTreeConfig)
    coordinator: CoordinatorConfig = Field(default_factory=CoordinatorConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    sidecar: SidecarConfig = Field(default_factory=SidecarConfig)

    model_config = {"populate_by_name": True}
