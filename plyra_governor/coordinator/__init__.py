"""Cross-project coordination."""

from plyra_governor.coordinator.coordinator import FOCUS_CHANGED_EVENT, ProjectCoordinator
from plyra_governor.coordinator.models import (
    CoordinationStatus,
    CrossProjectAgent,
    Project,
    ProjectEvent,
    ProjectState,
    SharedSkillConfig,
)
from plyra_governor.coordinator.registry import ProjectRegistry

__all__ = [
    "FOCUS_CHANGED_EVENT",
    "CoordinationStatus",
    "CrossProjectAgent",
    "Project",
    "ProjectCoordinator",
    "ProjectEvent",
    "ProjectRegistry",
    "ProjectState",
    "SharedSkillConfig",
]
