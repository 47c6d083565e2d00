"""
Policy Conditions
~~~~~~~~~~~~~~~~~

Narrows a matching policy with path, command, tool, size and
time-of-day constraints. A request that fails a condition is treated as
not matching the policy, so evaluation moves on to the next one.
"""

from __future__ import annotations

from datetime import datetime

from plyra_governor.core.models import PermissionRequest, PolicyConditions
from plyra_governor.policy.matcher import match_glob

__all__ = ["check_conditions"]


def _content_size(request: PermissionRequest) -> int | None:
    content = request.details.get("content")
    if content is None:
        return None
    return len(str(content).encode("utf-8"))


def check_conditions(
    conditions: PolicyConditions,
    request: PermissionRequest,
    now: datetime | None = None,
) -> tuple[bool, str]:
    """
    Evaluate every condition in order.

    Path and command constraints only apply to requests that carry a
    path or a command. The time window uses local wall-clock hours.

    Returns:
        (passed, reason). ``reason`` names the first failing condition.
    """
    path = request.file_path
    command = request.command
    tool = request.tool_name

    if conditions.allowed_paths is not None and path:
        if not any(match_glob(p, path) for p in conditions.allowed_paths):
            return False, "Path not in allowed list"

    if conditions.blocked_paths is not None and path:
        if any(match_glob(p, path) for p in conditions.blocked_paths):
            return False, "Path is blocked"

    if conditions.allowed_commands is not None and command:
        if not any(match_glob(c, command) for c in conditions.allowed_commands):
            return False, "Command not in allowed list"

    if conditions.blocked_commands is not None and command:
        if any(match_glob(c, command) for c in conditions.blocked_commands):
            return False, "Command is blocked"

    if conditions.allowed_tools is not None and tool:
        if tool not in conditions.allowed_tools:
            return False, "Tool not in allowed list"

    if conditions.blocked_tools is not None and tool:
        if tool in conditions.blocked_tools:
            return False, "Tool is blocked"

    if conditions.max_file_size is not None:
        size = _content_size(request)
        if size is not None and size > conditions.max_file_size:
            return False, f"Content exceeds {conditions.max_file_size} bytes"

    if conditions.time_window is not None:
        hour = (now or datetime.now()).hour
        if not conditions.time_window.contains(hour):
            return False, "Outside allowed time window"

    return True, "All conditions passed"
