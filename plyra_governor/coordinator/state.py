"""
Coordinator State
~~~~~~~~~~~~~~~~~

The in-memory maps shared by the coordinator's agent, skill, sync and
event components, plus reverse indexes from project id to the agents
and skills that reference it, so removing a project never needs a scan.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field

from plyra_governor.coordinator.models import (
    CrossProjectAgent,
    ProjectEvent,
    ProjectState,
    SharedSkillConfig,
)

__all__ = ["CoordinatorState"]


@dataclass
class CoordinatorState:
    agents: dict[str, CrossProjectAgent] = field(default_factory=dict)
    skills: dict[str, SharedSkillConfig] = field(default_factory=dict)
    project_states: dict[str, ProjectState] = field(default_factory=dict)
    events: list[ProjectEvent] = field(default_factory=list)
    agents_by_project: dict[str, set[str]] = field(
        default_factory=lambda: defaultdict(set)
    )
    skills_by_project: dict[str, set[str]] = field(
        default_factory=lambda: defaultdict(set)
    )
    lock: threading.RLock = field(default_factory=threading.RLock)

    # ── Reverse index maintenance ────────────────────────────────

    def index_agent(self, agent_id: str, project_ids: list[str]) -> None:
        for project_id in project_ids:
            self.agents_by_project[project_id].add(agent_id)

    def unindex_agent(self, agent_id: str, project_ids: list[str]) -> None:
        for project_id in project_ids:
            refs = self.agents_by_project.get(project_id)
            if refs is not None:
                refs.discard(agent_id)
                if not refs:
                    del self.agents_by_project[project_id]

    def index_skill(self, skill_id: str, project_ids: list[str]) -> None:
        for project_id in project_ids:
            self.skills_by_project[project_id].add(skill_id)

    def unindex_skill(self, skill_id: str, project_ids: list[str]) -> None:
        for project_id in project_ids:
            refs = self.skills_by_project.get(project_id)
            if refs is not None:
                refs.discard(skill_id)
                if not refs:
                    del self.skills_by_project[project_id]

    def pending_event_count(self) -> int:
        return sum(1 for e in self.events if not e.handled)
