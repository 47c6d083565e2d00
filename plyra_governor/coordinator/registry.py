"""
Project Registry
~~~~~~~~~~~~~~~~

The set of projects the coordinator is allowed to create state for.
"""

from __future__ import annotations

import logging
import threading

from plyra_governor.coordinator.models import Project
from plyra_governor.exceptions import GovernanceValidationError, ProjectNotFoundError

__all__ = ["ProjectRegistry"]

logger = logging.getLogger(__name__)


class ProjectRegistry:
    """
    Known projects, keyed by id, in registration order.

    Also remembers which project currently has focus.
    """

    def __init__(self) -> None:
        self._projects: dict[str, Project] = {}
        self._active_project_id: str | None = None
        self._sync_lock = threading.RLock()

    def __contains__(self, project_id: object) -> bool:
        return project_id in self._projects

    def __len__(self) -> int:
        return len(self._projects)

    @property
    def active_project_id(self) -> str | None:
        return self._active_project_id

    def register_project(self, project_id: str, path: str, name: str = "") -> Project:
        """
        Register (or re-register) a project.

        Raises:
            GovernanceValidationError: Empty id or path.
        """
        if not project_id:
            raise GovernanceValidationError(
                "project_id must not be empty", field="project_id"
            )
        if not path:
            raise GovernanceValidationError("path must not be empty", field="path")

        project = Project(project_id=project_id, path=path, name=name or project_id)
        with self._sync_lock:
            self._projects[project_id] = project
        logger.info("Project registered: %s (%s)", project_id, path)
        return project

    def remove_project(self, project_id: str) -> Project:
        """
        Raises:
            ProjectNotFoundError: Unknown project id.
        """
        with self._sync_lock:
            project = self._projects.pop(project_id, None)
            if project is None:
                raise ProjectNotFoundError(f"Project {project_id!r} is not registered")
            if self._active_project_id == project_id:
                self._active_project_id = None
        logger.info("Project removed: %s", project_id)
        return project

    def set_active_project(self, project_id: str) -> Project:
        """
        Raises:
            ProjectNotFoundError: Unknown project id.
        """
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project {project_id!r} is not registered")
        self._active_project_id = project_id
        return project

    def get_project(self, project_id: str) -> Project | None:
        return self._projects.get(project_id)

    def find_by_path(self, path: str) -> Project | None:
        for project in self._projects.values():
            if project.path == path:
                return project
        return None

    def list_projects(self) -> list[Project]:
        return list(self._projects.values())

    def project_ids(self) -> list[str]:
        return list(self._projects)
