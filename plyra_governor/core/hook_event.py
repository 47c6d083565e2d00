"""
Hook Events
~~~~~~~~~~~

Inbound lifecycle events and the outbound decision returned for them.

Event sources send field names either in snake_case or camelCase;
``HookEvent.from_payload`` reconciles both, snake_case winning when a
payload carries the same field twice.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from plyra_governor.core.enums import Decision
from plyra_governor.core.models import utcnow
from plyra_governor.exceptions import GovernanceValidationError

__all__ = ["HookEvent", "HookResponse", "HookEventType"]


class HookEventType:
    """Lifecycle event names the governor reacts to."""

    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    PERMISSION_REQUEST = "PermissionRequest"
    SUBAGENT_START = "SubagentStart"
    SUBAGENT_STOP = "SubagentStop"
    SESSION_START = "SessionStart"
    SESSION_END = "SessionEnd"
    STOP = "Stop"


# (attribute, snake_case key, camelCase key)
_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("event_type", "hook_event_name", "eventType"),
    ("session_id", "session_id", "sessionId"),
    ("project_path", "project_path", "projectPath"),
    ("tool_name", "tool_name", "toolName"),
    ("tool_input", "tool_input", "toolInput"),
    ("tool_response", "tool_response", "toolResponse"),
    ("parent_session_id", "parent_session_id", "parentSessionId"),
    ("agent_name", "agent_name", "agentName"),
    ("agent_type", "agent_type", "agentType"),
    ("permission_type", "permission_type", "permissionType"),
    ("permission_details", "permission_details", "permissionDetails"),
    ("project_id", "project_id", "projectId"),
    ("model", "model", "model"),
    ("timestamp", "timestamp", "timestamp"),
)

# Older forwarders use these spellings.
_FALLBACKS: dict[str, tuple[str, ...]] = {
    "event_type": ("event_type",),
    "project_path": ("working_directory", "workingDirectory", "cwd"),
}


def _pick(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off"})


def _parse_bool(value: Any, field_name: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise GovernanceValidationError(
        f"{field_name} must be a boolean, got {value!r}", field=field_name
    )


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Milliseconds since the epoch, or seconds for small values.
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=UTC)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise GovernanceValidationError(
                f"Unparseable timestamp: {value!r}", field="timestamp"
            ) from exc
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return utcnow()


@dataclass
class HookEvent:
    """
    A normalized lifecycle event.

    Attributes:
        event_type: e.g. "PreToolUse", "SubagentStart".
        session_id: Session of the agent the event is about.
        project_path: Working directory of that session.
        tool_name: Tool being invoked, for tool events.
        tool_input: Arguments to the tool.
        tool_response: Tool output, for PostToolUse.
        parent_session_id: Spawning session, for SubagentStart.
        agent_name: Agent type or name, for subagent events.
        permission_type: Kind of permission, for PermissionRequest.
        permission_details: Decoded permission details.
        project_id: Coordinator project id, when the forwarder knows it.
        model: Model serving the session, used for pricing.
        success: Outcome reported on SubagentStop.
        timestamp: When the event happened.
    """

    event_type: str
    session_id: str = "unknown"
    project_path: str | None = None
    tool_name: str | None = None
    tool_input: dict[str, Any] = field(default_factory=dict)
    tool_response: Any = None
    parent_session_id: str | None = None
    agent_name: str | None = None
    agent_type: str | None = None
    permission_type: str | None = None
    permission_details: dict[str, Any] = field(default_factory=dict)
    project_id: str | None = None
    model: str | None = None
    success: bool = True
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> HookEvent:
        """
        Build an event from a raw payload.

        Raises:
            GovernanceValidationError: Not a mapping, no event type, or a
                field of the wrong shape.
        """
        if not isinstance(payload, dict):
            raise GovernanceValidationError(
                "Hook payload must be a JSON object", field="payload"
            )

        values: dict[str, Any] = {}
        for attr, snake, camel in _FIELDS:
            values[attr] = _pick(payload, snake, camel, *_FALLBACKS.get(attr, ()))

        if not values["event_type"]:
            raise GovernanceValidationError(
                "Hook payload has no event type", field="hook_event_name"
            )

        tool_input = values["tool_input"]
        if tool_input is None:
            tool_input = {}
        elif not isinstance(tool_input, dict):
            raise GovernanceValidationError(
                "tool_input must be an object", field="tool_input"
            )

        details = values["permission_details"]
        if isinstance(details, str):
            try:
                decoded = json.loads(details)
            except json.JSONDecodeError:
                decoded = None
            details = decoded if isinstance(decoded, dict) else {"raw": details}
        elif details is None:
            details = {}
        elif not isinstance(details, dict):
            details = {"raw": details}

        success = _parse_bool(payload.get("success"), "success", default=True)

        return cls(
            event_type=str(values["event_type"]),
            session_id=str(values["session_id"] or "unknown"),
            project_path=values["project_path"],
            tool_name=values["tool_name"],
            tool_input=tool_input,
            tool_response=values["tool_response"],
            parent_session_id=values["parent_session_id"],
            agent_name=values["agent_name"] or values["agent_type"],
            agent_type=values["agent_type"],
            permission_type=values["permission_type"],
            permission_details=details,
            project_id=(
                str(values["project_id"]) if values["project_id"] is not None else None
            ),
            model=values["model"],
            success=success,
            timestamp=_parse_timestamp(values["timestamp"]),
        )

    @property
    def file_path(self) -> str | None:
        """Target file of a file-oriented tool call."""
        for source in (self.tool_input, self.permission_details):
            value = _pick(source, "file_path", "filePath", "notebook_path", "path")
            if isinstance(value, str):
                return value
        return None

    @property
    def command(self) -> str | None:
        """Shell command of a command-running tool call."""
        for source in (self.tool_input, self.permission_details):
            value = source.get("command")
            if isinstance(value, str):
                return value
        return None


@dataclass
class HookResponse:
    """Decision handed back to the event source."""

    decision: Decision
    message: str | None = None
    modified_input: dict[str, Any] | None = None
    queue_item_id: int | None = None

    @classmethod
    def allow(cls, message: str | None = None) -> HookResponse:
        return cls(decision=Decision.ALLOW, message=message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize, omitting unset optional fields."""
        data: dict[str, Any] = {"decision": self.decision.value}
        if self.message is not None:
            data["message"] = self.message
        if self.modified_input is not None:
            data["modified_input"] = self.modified_input
        if self.queue_item_id is not None:
            data["queue_item_id"] = self.queue_item_id
        return data
