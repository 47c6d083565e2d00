"""
Project State Sync
~~~~~~~~~~~~~~~~~~

Per-project synchronization state. Every change bumps ``version``,
which is what pollers compare to notice updates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from plyra_governor.coordinator.models import ProjectState
from plyra_governor.coordinator.registry import ProjectRegistry
from plyra_governor.coordinator.state import CoordinatorState
from plyra_governor.core.models import utcnow
from plyra_governor.observability.events import (
    EventSink,
    ProjectStatesSynced,
    ProjectStateUpdated,
)

__all__ = ["ProjectSyncMixin"]

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class ProjectSyncMixin:
    """Project-state half of ``ProjectCoordinator``."""

    _state: CoordinatorState
    _sink: EventSink
    _registry: ProjectRegistry

    def get_project_state(self, project_id: str) -> ProjectState | None:
        """Return the project's state, creating it if the project is registered."""
        with self._state.lock:
            state = self._state.project_states.get(project_id)
            if state is None:
                project = self._registry.get_project(project_id)
                if project is None:
                    return None
                state = ProjectState(project_id=project_id, project_path=project.path)
                self._state.project_states[project_id] = state
            return state

    def _touch(self, state: ProjectState) -> None:
        state.version += 1
        state.last_sync = utcnow()

    def update_project_state(
        self,
        project_id: str,
        active_agents: list[str] | None = _UNSET,
        pending_skills: list[str] | None = _UNSET,
        session_id: str | None = _UNSET,
    ) -> ProjectState | None:
        """Replace only the given fields, then bump the version."""
        with self._state.lock:
            state = self.get_project_state(project_id)
            if state is None:
                return None
            if active_agents is not _UNSET:
                state.active_agents = list(active_agents or [])
            if pending_skills is not _UNSET:
                state.pending_skills = list(pending_skills or [])
            if session_id is not _UNSET:
                state.session_id = session_id
            self._touch(state)
            version = state.version

        self._sink.publish(ProjectStateUpdated(project_id=project_id, version=version))
        return state

    def get_all_project_states(self) -> list[ProjectState]:
        return list(self._state.project_states.values())

    def sync_project_states(
        self, source_project_id: str, target_project_ids: Iterable[str]
    ) -> list[ProjectState]:
        """
        Add the skills ``source`` shares with each target to that
        target's pending skills. Existing entries are never removed.

        Returns:
            The target states that were updated.
        """
        target_project_ids = list(target_project_ids)
        with self._state.lock:
            if self.get_project_state(source_project_id) is None:
                logger.warning(
                    "Cannot sync from unknown project: %s", source_project_id
                )
                return []

            source_skills = self.get_shared_skills_for_project(source_project_id)
            updated: list[ProjectState] = []
            for target_id in target_project_ids:
                target = self.get_project_state(target_id)
                if target is None:
                    continue
                shared = [
                    s.skill_id for s in source_skills if target_id in s.shared_across
                ]
                target.pending_skills = list(
                    dict.fromkeys([*target.pending_skills, *shared])
                )
                self._touch(target)
                updated.append(target)

        logger.debug(
            "Synced state from project %s to %d project(s)",
            source_project_id,
            len(updated),
        )
        self._sink.publish(
            ProjectStatesSynced(
                source_project_id=source_project_id,
                target_project_ids=tuple(s.project_id for s in updated),
            )
        )
        return updated

    def update_project_session_id(
        self, project_id: str, session_id: str | None
    ) -> ProjectState | None:
        with self._state.lock:
            state = self.get_project_state(project_id)
            if state is None:
                return None
            state.session_id = session_id
            self._touch(state)
        return state

    def clear_session_from_states(self, session_id: str) -> int:
        """Detach a finished session from every project state that holds it."""
        cleared = 0
        with self._state.lock:
            for state in self._state.project_states.values():
                if state.session_id == session_id:
                    state.session_id = None
                    self._touch(state)
                    cleared += 1
        return cleared

    def _remove_project_state(self, project_id: str) -> None:
        with self._state.lock:
            self._state.project_states.pop(project_id, None)
