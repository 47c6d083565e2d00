"""
Cross-Project Agents
~~~~~~~~~~~~~~~~~~~~

Registration, focus transitions and status of agents that work in more
than one project.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import timedelta

from plyra_governor.coordinator.models import CrossProjectAgent
from plyra_governor.coordinator.state import CoordinatorState
from plyra_governor.core.enums import AgentStatus
from plyra_governor.core.models import utcnow
from plyra_governor.exceptions import GovernanceValidationError
from plyra_governor.observability.events import (
    AgentTransitioned,
    CrossProjectAgentRegistered,
    CrossProjectAgentStatusChanged,
    CrossProjectAgentUnregistered,
    EventSink,
)

__all__ = ["CrossProjectAgentsMixin"]

logger = logging.getLogger(__name__)


def _dedupe(ids: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(ids))


class CrossProjectAgentsMixin:
    """Agent half of ``ProjectCoordinator``."""

    _state: CoordinatorState
    _sink: EventSink

    def register_cross_project_agent(
        self,
        agent_id: str,
        agent_name: str,
        project_ids: Iterable[str],
    ) -> CrossProjectAgent:
        """
        Register an agent for a set of projects.

        Re-registering unions the project sets and keeps the agent's
        current project, status and metadata.
        """
        if not agent_id:
            raise GovernanceValidationError(
                "agent_id must not be empty", field="agent_id"
            )
        project_ids = _dedupe(project_ids)
        if not all(isinstance(p, str) and p for p in project_ids):
            raise GovernanceValidationError(
                "project_ids must be non-empty strings", field="project_ids"
            )

        with self._state.lock:
            agent = self._state.agents.get(agent_id)
            if agent is None:
                agent = CrossProjectAgent(
                    agent_id=agent_id,
                    agent_name=agent_name,
                    project_ids=project_ids,
                )
                self._state.agents[agent_id] = agent
            else:
                agent.agent_name = agent_name
                agent.project_ids = _dedupe([*agent.project_ids, *project_ids])
                agent.last_activity = utcnow()
            self._state.index_agent(agent_id, agent.project_ids)

        logger.info(
            "Registered cross-project agent %s for %d project(s)",
            agent_name,
            len(agent.project_ids),
        )
        self._sink.publish(CrossProjectAgentRegistered(agent=agent))
        return agent

    def unregister_cross_project_agent(self, agent_id: str) -> bool:
        with self._state.lock:
            agent = self._state.agents.pop(agent_id, None)
            if agent is None:
                return False
            self._state.unindex_agent(agent_id, agent.project_ids)
        logger.info("Unregistered cross-project agent %s", agent.agent_name)
        self._sink.publish(
            CrossProjectAgentUnregistered(agent_id=agent_id, agent_name=agent.agent_name)
        )
        return True

    def get_cross_project_agent(self, agent_id: str) -> CrossProjectAgent | None:
        return self._state.agents.get(agent_id)

    def get_all_cross_project_agents(self) -> list[CrossProjectAgent]:
        return list(self._state.agents.values())

    def get_agents_for_project(self, project_id: str) -> list[CrossProjectAgent]:
        with self._state.lock:
            ids = self._state.agents_by_project.get(project_id, set())
            return [a for a in self._state.agents.values() if a.agent_id in ids]

    def transition_agent_to_project(
        self, agent_id: str, target_project_id: str
    ) -> CrossProjectAgent | None:
        """
        Move an agent's focus to one of its tracked projects.

        A snapshot marker for the project it leaves is stored in its
        metadata. Unknown agents and untracked targets are logged and
        leave everything unchanged.
        """
        with self._state.lock:
            agent = self._state.agents.get(agent_id)
            if agent is None:
                logger.warning("Cannot transition unknown agent: %s", agent_id)
                return None
            if target_project_id not in agent.project_ids:
                logger.warning(
                    "Agent %s is not registered for project %s",
                    agent_id,
                    target_project_id,
                )
                return None

            previous = agent.current_project_id
            now = utcnow()
            agent.status = AgentStatus.TRANSITIONING
            agent.last_activity = now
            if previous is not None:
                agent.metadata[f"project_{previous}_state"] = {
                    "timestamp": now.isoformat(),
                }
            agent.current_project_id = target_project_id
            agent.status = AgentStatus.ACTIVE

        logger.info(
            "Transitioned agent %s to project %s", agent.agent_name, target_project_id
        )
        self._sink.publish(
            AgentTransitioned(
                agent_id=agent_id,
                agent_name=agent.agent_name,
                from_project_id=previous,
                to_project_id=target_project_id,
            )
        )
        return agent

    def update_agent_status(
        self, agent_id: str, status: AgentStatus | str
    ) -> CrossProjectAgent | None:
        try:
            status = AgentStatus(status)
        except ValueError as exc:
            raise GovernanceValidationError(
                f"Unknown agent status: {status!r}", field="status"
            ) from exc
        with self._state.lock:
            agent = self._state.agents.get(agent_id)
            if agent is None:
                return None
            agent.status = status
            agent.last_activity = utcnow()
        self._sink.publish(CrossProjectAgentStatusChanged(agent_id=agent_id, status=status))
        return agent

    def _remove_project_from_agents(self, project_id: str) -> None:
        with self._state.lock:
            agent_ids = self._state.agents_by_project.pop(project_id, set())
            for agent_id in agent_ids:
                agent = self._state.agents.get(agent_id)
                if agent is None:
                    continue
                agent.project_ids = [p for p in agent.project_ids if p != project_id]
                if agent.current_project_id == project_id:
                    agent.current_project_id = None
                    agent.status = AgentStatus.IDLE

    def cleanup_stale_agents(self, max_idle_seconds: float = 86400) -> int:
        """Drop idle agents with no activity for ``max_idle_seconds``."""
        cutoff = utcnow() - timedelta(seconds=max_idle_seconds)
        removed = 0
        with self._state.lock:
            for agent in list(self._state.agents.values()):
                if agent.status is AgentStatus.IDLE and agent.last_activity < cutoff:
                    del self._state.agents[agent.agent_id]
                    self._state.unindex_agent(agent.agent_id, agent.project_ids)
                    removed += 1
                    logger.debug(
                        "Cleaned up stale cross-project agent %s", agent.agent_name
                    )
        return removed
