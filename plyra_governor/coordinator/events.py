"""
Project Events
~~~~~~~~~~~~~~

Broadcasts between projects. Each broadcast is stored once and fanned
out as one delivery per target project. Events stay queued until a
target marks them handled; handled events are swept once they age out.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import timedelta
from typing import Any

from plyra_governor.coordinator.models import ProjectEvent
from plyra_governor.coordinator.registry import ProjectRegistry
from plyra_governor.coordinator.state import CoordinatorState
from plyra_governor.core.models import utcnow
from plyra_governor.exceptions import GovernanceValidationError
from plyra_governor.observability.events import EventSink, ProjectEventDelivered

__all__ = ["ProjectEventsMixin"]

logger = logging.getLogger(__name__)


class ProjectEventsMixin:
    """Broadcast half of ``ProjectCoordinator``."""

    _state: CoordinatorState
    _sink: EventSink
    _registry: ProjectRegistry
    _event_max_age_seconds: float

    def broadcast_to_projects(
        self,
        event_type: str,
        data: dict[str, Any] | None,
        target_project_ids: Iterable[str],
        source_project_id: str | None = None,
    ) -> ProjectEvent:
        """Queue one event and deliver it once to each distinct target."""
        if not event_type:
            raise GovernanceValidationError(
                "event type must not be empty", field="type"
            )
        event = ProjectEvent(
            type=event_type,
            target_project_ids=list(dict.fromkeys(target_project_ids)),
            data=dict(data or {}),
            source_project_id=source_project_id,
        )
        with self._state.lock:
            self._state.events.append(event)

        for project_id in event.target_project_ids:
            self._sink.publish(
                ProjectEventDelivered(
                    event_id=event.id,
                    type=event.type,
                    project_id=project_id,
                    data=event.data,
                )
            )
        logger.debug(
            "Broadcast %s to %d project(s)", event_type, len(event.target_project_ids)
        )
        self.cleanup_old_events()
        return event

    def broadcast_to_all_projects(
        self,
        event_type: str,
        data: dict[str, Any] | None,
        source_project_id: str | None = None,
    ) -> ProjectEvent:
        return self.broadcast_to_projects(
            event_type, data, self._registry.project_ids(), source_project_id
        )

    def get_pending_events_for_project(self, project_id: str) -> list[ProjectEvent]:
        with self._state.lock:
            return [
                e
                for e in self._state.events
                if not e.handled and project_id in e.target_project_ids
            ]

    def get_event(self, event_id: str) -> ProjectEvent | None:
        with self._state.lock:
            for event in self._state.events:
                if event.id == event_id:
                    return event
        return None

    def mark_event_handled(self, event_id: str) -> bool:
        event = self.get_event(event_id)
        if event is None:
            return False
        event.handled = True
        return True

    def cleanup_old_events(self, max_age_seconds: float | None = None) -> int:
        """Remove handled events older than ``max_age_seconds``."""
        if max_age_seconds is None:
            max_age_seconds = self._event_max_age_seconds
        cutoff = utcnow() - timedelta(seconds=max_age_seconds)
        with self._state.lock:
            before = len(self._state.events)
            self._state.events = [
                e for e in self._state.events if not e.handled or e.timestamp > cutoff
            ]
            return before - len(self._state.events)
