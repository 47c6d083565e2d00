"""
Policy Matchers
~~~~~~~~~~~~~~~

Pattern language for deciding whether a policy applies to a request.

Supported forms::

    *                 every request
    Edit              the Edit tool
    Edit(src/**)      Edit on a path matching the glob
    Bash(npm *)       Bash running a command matching the glob
    file:.env*        any request on a matching file path
    permission:write  requests of that permission type
    write             shorthand for permission:write, for requests
                      that carry no tool name

Globs are anchored: ``*`` stops at ``/`` and ``**`` crosses it.
"""

from __future__ import annotations

import functools
import re

from plyra_governor.core.models import PermissionRequest
from plyra_governor.exceptions import GovernanceValidationError

__all__ = ["match_pattern", "glob_to_regex", "match_glob", "validate_matcher"]

_TOOL_PATTERN = re.compile(r"^(\w+)(?:\((.+)\))?$")
_FILE_PREFIX = "file:"
_PERMISSION_PREFIX = "permission:"


@functools.lru_cache(maxsize=512)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a ``*``/``**`` glob into an anchored regex."""
    parts = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(parts) + "$")


def match_glob(pattern: str, value: str) -> bool:
    return glob_to_regex(pattern).match(value) is not None


def _match_sub_pattern(pattern: str, request: PermissionRequest) -> bool:
    if request.file_path:
        return match_glob(pattern, request.file_path)
    if request.command:
        return match_glob(pattern, request.command)
    return False


def match_pattern(pattern: str, request: PermissionRequest) -> bool:
    """Return True if ``pattern`` applies to ``request``."""
    if pattern == "*":
        return True

    tool_match = _TOOL_PATTERN.match(pattern)
    if tool_match:
        tool_name, sub_pattern = tool_match.groups()
        if request.tool_name is None and not sub_pattern:
            return request.permission_type == tool_name
        if request.tool_name and request.tool_name != tool_name:
            return False
        if sub_pattern:
            return _match_sub_pattern(sub_pattern, request)
        return request.tool_name == tool_name

    if pattern.startswith(_FILE_PREFIX):
        return match_glob(pattern[len(_FILE_PREFIX) :], request.file_path or "")

    if pattern.startswith(_PERMISSION_PREFIX):
        return request.permission_type == pattern[len(_PERMISSION_PREFIX) :]

    return request.permission_type == pattern


def validate_matcher(pattern: str, max_length: int = 1000) -> str:
    """
    Check that a matcher is well formed and return it stripped.

    Raises:
        GovernanceValidationError: Empty, too long, unbalanced
            ``Tool(...)`` form, or a prefix with nothing after it.
    """
    if not isinstance(pattern, str) or not pattern.strip():
        raise GovernanceValidationError("Matcher must not be empty", field="matcher")
    pattern = pattern.strip()
    if len(pattern) > max_length:
        raise GovernanceValidationError(
            f"Matcher exceeds {max_length} characters", field="matcher"
        )

    for prefix in (_FILE_PREFIX, _PERMISSION_PREFIX):
        if pattern.startswith(prefix) and not pattern[len(prefix) :].strip():
            raise GovernanceValidationError(
                f"Matcher {pattern!r} has no target after {prefix!r}",
                field="matcher",
            )

    if "(" in pattern or ")" in pattern:
        if not pattern.startswith((_FILE_PREFIX, _PERMISSION_PREFIX)):
            if not _TOOL_PATTERN.match(pattern):
                raise GovernanceValidationError(
                    f"Malformed tool matcher {pattern!r}; expected Tool(pattern)",
                    field="matcher",
                )
    return pattern
