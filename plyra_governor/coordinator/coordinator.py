"""
Project Coordinator
~~~~~~~~~~~~~~~~~~~

Cross-project coordination: agents working in several projects, skill
configurations shared between projects, per-project sync state and
project-to-project broadcasts.

The coordinator keeps no state for projects the ``ProjectRegistry``
does not know about. Registry changes reach it through the
``handle_*`` methods; the ``register_project`` / ``remove_project`` /
``switch_project`` helpers update the registry and notify in one call.
"""

from __future__ import annotations

import logging

from plyra_governor.coordinator.agents import CrossProjectAgentsMixin
from plyra_governor.coordinator.events import ProjectEventsMixin
from plyra_governor.coordinator.models import CoordinationStatus, Project
from plyra_governor.coordinator.registry import ProjectRegistry
from plyra_governor.coordinator.skills import SharedSkillsMixin
from plyra_governor.coordinator.state import CoordinatorState
from plyra_governor.coordinator.sync import ProjectSyncMixin
from plyra_governor.observability.events import EventSink, NullSink

__all__ = ["ProjectCoordinator", "FOCUS_CHANGED_EVENT"]

logger = logging.getLogger(__name__)

FOCUS_CHANGED_EVENT = "project:focus-changed"


class ProjectCoordinator(
    CrossProjectAgentsMixin,
    SharedSkillsMixin,
    ProjectSyncMixin,
    ProjectEventsMixin,
):
    """
    In-memory coordinator for a single governance process.

    Args:
        registry: Known projects. A new empty registry if omitted.
        sink: Where coordinator events are published.
        event_max_age_seconds: Age after which handled broadcasts are
            swept.
        stale_agent_max_idle_seconds: Idle time after which ``cleanup``
            drops a cross-project agent.
    """

    def __init__(
        self,
        registry: ProjectRegistry | None = None,
        sink: EventSink | None = None,
        event_max_age_seconds: float = 3600,
        stale_agent_max_idle_seconds: float = 86400,
    ) -> None:
        self._registry = registry if registry is not None else ProjectRegistry()
        self._sink: EventSink = sink if sink is not None else NullSink()
        self._state = CoordinatorState()
        self._event_max_age_seconds = event_max_age_seconds
        self._stale_agent_max_idle_seconds = stale_agent_max_idle_seconds

    @property
    def registry(self) -> ProjectRegistry:
        return self._registry

    # ── Registry convenience ─────────────────────────────────────

    def register_project(self, project_id: str, path: str, name: str = "") -> Project:
        project = self._registry.register_project(project_id, path, name)
        self.handle_project_registered(project_id)
        return project

    def remove_project(self, project_id: str) -> Project:
        project = self._registry.remove_project(project_id)
        self.handle_project_removed(project_id)
        return project

    def switch_project(self, project_id: str) -> Project:
        project = self._registry.set_active_project(project_id)
        self.handle_project_switched(project_id)
        return project

    # ── Registry event handlers ──────────────────────────────────

    def handle_project_registered(self, project_id: str) -> None:
        self.get_project_state(project_id)

    def handle_project_removed(self, project_id: str) -> None:
        """Forget everything the coordinator holds about a project."""
        with self._state.lock:
            self._remove_project_state(project_id)
            self._remove_project_from_agents(project_id)
            self._remove_project_from_skills(project_id)
        logger.info("Coordinator state pruned for removed project %s", project_id)

    def handle_project_switched(self, project_id: str) -> None:
        self.broadcast_to_all_projects(
            FOCUS_CHANGED_EVENT, {"new_focus": project_id}, project_id
        )

    def handle_session_started(self, project_id: str, session_id: str) -> None:
        self.update_project_session_id(project_id, session_id)

    def handle_session_completed(self, session_id: str) -> None:
        self.clear_session_from_states(session_id)

    # ── Status and maintenance ───────────────────────────────────

    def get_status(self) -> CoordinationStatus:
        with self._state.lock:
            return CoordinationStatus(
                cross_project_agent_count=len(self._state.agents),
                shared_skill_count=len(self._state.skills),
                pending_event_count=self._state.pending_event_count(),
                active_projects=list(self._state.project_states),
            )

    def cleanup(self) -> dict[str, int]:
        """Sweep old handled events and stale idle agents."""
        events = self.cleanup_old_events()
        agents = self.cleanup_stale_agents(self._stale_agent_max_idle_seconds)
        logger.debug(
            "Coordinator cleanup removed %d event(s) and %d agent(s)", events, agents
        )
        return {"events_removed": events, "agents_removed": agents}
