"""
Coordinator Data Models
~~~~~~~~~~~~~~~~~~~~~~~

In-memory records kept by the cross-project coordinator. None of these
survive a restart.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from plyra_governor.core.enums import AgentStatus
from plyra_governor.core.models import utcnow

__all__ = [
    "Project",
    "CrossProjectAgent",
    "SharedSkillConfig",
    "ProjectState",
    "ProjectEvent",
    "CoordinationStatus",
]


@dataclass(frozen=True)
class Project:
    """A project known to the registry."""

    project_id: str
    path: str
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"project_id": self.project_id, "path": self.path, "name": self.name}


@dataclass
class CrossProjectAgent:
    """An agent allowed to work in several projects, focused on at most one."""

    agent_id: str
    agent_name: str
    project_ids: list[str] = field(default_factory=list)
    current_project_id: str | None = None
    status: AgentStatus = AgentStatus.IDLE
    last_activity: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "project_ids": list(self.project_ids),
            "current_project_id": self.current_project_id,
            "status": self.status.value,
            "last_activity": self.last_activity.isoformat(),
            "metadata": dict(self.metadata),
        }


@dataclass
class SharedSkillConfig:
    """A skill shared by a set of projects, with shallow-merged settings."""

    skill_id: str
    skill_name: str
    shared_across: list[str] = field(default_factory=list)
    settings: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    last_modified: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "skill_id": self.skill_id,
            "skill_name": self.skill_name,
            "shared_across": list(self.shared_across),
            "settings": dict(self.settings),
            "enabled": self.enabled,
            "last_modified": self.last_modified.isoformat(),
        }


@dataclass
class ProjectState:
    """
    Synchronization state of one project.

    ``version`` increases on every change and is what pollers compare.
    """

    project_id: str
    project_path: str
    active_agents: list[str] = field(default_factory=list)
    pending_skills: list[str] = field(default_factory=list)
    session_id: str | None = None
    version: int = 0
    last_sync: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "project_path": self.project_path,
            "active_agents": list(self.active_agents),
            "pending_skills": list(self.pending_skills),
            "session_id": self.session_id,
            "version": self.version,
            "last_sync": self.last_sync.isoformat(),
        }


def _event_id() -> str:
    return f"evt_{uuid.uuid4().hex[:12]}"


@dataclass
class ProjectEvent:
    """A broadcast queued for one or more target projects."""

    type: str
    target_project_ids: list[str]
    data: dict[str, Any] = field(default_factory=dict)
    source_project_id: str | None = None
    id: str = field(default_factory=_event_id)
    handled: bool = False
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source_project_id": self.source_project_id,
            "target_project_ids": list(self.target_project_ids),
            "data": dict(self.data),
            "handled": self.handled,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class CoordinationStatus:
    """Snapshot of coordinator bookkeeping."""

    cross_project_agent_count: int
    shared_skill_count: int
    pending_event_count: int
    active_projects: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "cross_project_agent_count": self.cross_project_agent_count,
            "shared_skill_count": self.shared_skill_count,
            "pending_event_count": self.pending_event_count,
            "active_projects": list(self.active_projects),
        }
