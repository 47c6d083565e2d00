"""
Shared Skills
~~~~~~~~~~~~~

Skill configurations shared by several projects.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from plyra_governor.coordinator.models import SharedSkillConfig
from plyra_governor.coordinator.state import CoordinatorState
from plyra_governor.core.models import utcnow
from plyra_governor.exceptions import GovernanceValidationError
from plyra_governor.observability.events import (
    EventSink,
    SkillShared,
    SkillToggled,
    SkillUnshared,
    SkillUpdated,
)

__all__ = ["SharedSkillsMixin"]

logger = logging.getLogger(__name__)


class SharedSkillsMixin:
    """Skill half of ``ProjectCoordinator``."""

    _state: CoordinatorState
    _sink: EventSink

    def share_skill_across_projects(
        self,
        skill_id: str,
        skill_name: str,
        project_ids: Iterable[str],
        settings: dict[str, Any] | None = None,
    ) -> SharedSkillConfig:
        """
        Share a skill with more projects.

        Settings merge shallowly, the newest value per key winning.
        """
        if not skill_id:
            raise GovernanceValidationError(
                "skill_id must not be empty", field="skill_id"
            )
        project_ids = list(dict.fromkeys(project_ids))

        with self._state.lock:
            config = self._state.skills.get(skill_id)
            if config is None:
                config = SharedSkillConfig(
                    skill_id=skill_id,
                    skill_name=skill_name,
                    shared_across=project_ids,
                    settings=dict(settings or {}),
                )
                self._state.skills[skill_id] = config
            else:
                config.skill_name = skill_name
                config.shared_across = list(
                    dict.fromkeys([*config.shared_across, *project_ids])
                )
                config.settings = {**config.settings, **(settings or {})}
                config.last_modified = utcnow()
            self._state.index_skill(skill_id, config.shared_across)

        logger.info(
            "Shared skill %s across %d project(s)",
            skill_name,
            len(config.shared_across),
        )
        self._sink.publish(SkillShared(config=config))
        return config

    def unshare_skill_from_projects(
        self, skill_id: str, project_ids: Iterable[str]
    ) -> SharedSkillConfig | None:
        """
        Stop sharing a skill with some projects.

        Returns:
            The remaining config, or None if the skill is unknown or is
            no longer shared with any project (its config is removed).
        """
        removed = tuple(dict.fromkeys(project_ids))
        with self._state.lock:
            config = self._state.skills.get(skill_id)
            if config is None:
                return None
            config.shared_across = [p for p in config.shared_across if p not in removed]
            config.last_modified = utcnow()
            self._state.unindex_skill(skill_id, list(removed))
            if not config.shared_across:
                del self._state.skills[skill_id]
                config = None

        self._sink.publish(SkillUnshared(skill_id=skill_id, removed_from=removed))
        return config

    def get_shared_skill_config(self, skill_id: str) -> SharedSkillConfig | None:
        return self._state.skills.get(skill_id)

    def get_all_shared_skill_configs(self) -> list[SharedSkillConfig]:
        return list(self._state.skills.values())

    def get_shared_skills_for_project(self, project_id: str) -> list[SharedSkillConfig]:
        with self._state.lock:
            ids = self._state.skills_by_project.get(project_id, set())
            return [s for s in self._state.skills.values() if s.skill_id in ids]

    def update_shared_skill_settings(
        self, skill_id: str, settings: dict[str, Any]
    ) -> SharedSkillConfig | None:
        with self._state.lock:
            config = self._state.skills.get(skill_id)
            if config is None:
                return None
            config.settings = {**config.settings, **settings}
            config.last_modified = utcnow()
        self._sink.publish(SkillUpdated(config=config))
        return config

    def set_shared_skill_enabled(
        self, skill_id: str, enabled: bool
    ) -> SharedSkillConfig | None:
        with self._state.lock:
            config = self._state.skills.get(skill_id)
            if config is None:
                return None
            config.enabled = enabled
            config.last_modified = utcnow()
        self._sink.publish(SkillToggled(skill_id=skill_id, enabled=enabled))
        return config

    def _remove_project_from_skills(self, project_id: str) -> None:
        with self._state.lock:
            skill_ids = self._state.skills_by_project.pop(project_id, set())
            for skill_id in skill_ids:
                config = self._state.skills.get(skill_id)
                if config is None:
                    continue
                config.shared_across = [
                    p for p in config.shared_across if p != project_id
                ]
                if not config.shared_across:
                    del self._state.skills[skill_id]
