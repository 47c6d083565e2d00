"""
Governor Custom Exceptions
~~~~~~~~~~~~~~~~~~~~~~~~~~

All custom exception classes for plyra-governor, organized by domain.

Business outcomes (a denied action, a queued request, a budget hard stop)
are never exceptions: they are returned as values. Exceptions are reserved
for caller mistakes that must be rejected before any state changes
(validation), addressing records that do not exist in administrative
calls (not found), and persistence outages.

**Structured Error Messages**

Budget allocation failures provide three structured fields:
- ``what_happened``: Clear plain-English description
- ``policy_triggered``: Name of the rule that was enforced
- ``how_to_fix``: Concrete, actionable steps
"""

__all__ = [
    # Base
    "GovernorError",
    # Config
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigValidationError",
    # Validation
    "GovernanceValidationError",
    # Not found
    "NotFoundError",
    "BudgetNotFoundError",
    "PolicyNotFoundError",
    "QueueItemNotFoundError",
    "AgentNotFoundError",
    "ProjectNotFoundError",
    # Budget
    "BudgetAllocationError",
    # Storage
    "StorageError",
    "ConsistencyError",
    # Sidecar
    "SidecarError",
]


# ── Formatting Helper ────────────────────────────────────────────────────────

_SEPARATOR = "─" * 52


def _format_structured_error(
    title: str,
    what_happened: str,
    policy_triggered: str,
    how_to_fix: str,
) -> str:
    """Build a rich, structured error message."""
    lines = [
        f"  {title}",
        f"  {_SEPARATOR}",
        "  What happened:",
        *[f"    {line}" for line in what_happened.strip().splitlines()],
        "",
        "  Policy triggered:",
        f"    {policy_triggered}",
        "",
        "  How to fix:",
        *[f"    {line}" for line in how_to_fix.strip().splitlines()],
    ]
    return "\n".join(lines)


# ── Base Exception ───────────────────────────────────────────────────────────


class GovernorError(Exception):
    """Base exception for all plyra-governor errors."""

    def __init__(self, message: str = "", details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── Config Exceptions ────────────────────────────────────────────────────────


class ConfigError(GovernorError):
    """Base exception for configuration-related errors."""


class ConfigFileNotFoundError(ConfigError):
    """Raised when a configuration file cannot be found at the specified path."""


class ConfigValidationError(ConfigError):
    """Raised when configuration values fail validation."""


# ── Validation Exceptions ────────────────────────────────────────────────────


class GovernanceValidationError(GovernorError):
    """
    Raised when an administrative call carries malformed input.

    Examples: an empty policy name, a matcher that cannot be parsed,
    a priority outside the configured bounds, a negative amount.
    Always raised before any state is touched.
    """

    def __init__(
        self,
        message: str = "Invalid input",
        field: str = "",
        details: dict | None = None,
    ) -> None:
        self.field = field
        super().__init__(message, details)


# ── Not Found Exceptions ─────────────────────────────────────────────────────


class NotFoundError(GovernorError):
    """Base exception for administrative calls addressing a missing record."""


class BudgetNotFoundError(NotFoundError):
    """Raised when a budget id does not exist."""


class PolicyNotFoundError(NotFoundError):
    """Raised when a policy id does not exist."""


class QueueItemNotFoundError(NotFoundError):
    """Raised when an approval queue item id does not exist."""


class AgentNotFoundError(NotFoundError):
    """Raised when an agent session id is not registered."""


class ProjectNotFoundError(NotFoundError):
    """Raised when a project id is not known to the project registry."""


# ── Budget Exceptions ────────────────────────────────────────────────────────


class BudgetAllocationError(GovernorError):
    """
    Raised when an agent is given more budget than its parent can delegate.

    Structured fields:
    - ``what_happened``: requested amount vs. what the parent has left
    - ``policy_triggered``: the delegation rule
    - ``how_to_fix``: actionable remediation steps
    """

    def __init__(
        self,
        message: str = "Budget allocation rejected",
        session_id: str = "",
        parent_session_id: str = "",
        requested_usd: float = 0.0,
        available_usd: float = 0.0,
        details: dict | None = None,
        what_happened: str = "",
        policy_triggered: str = "delegated_budget",
        how_to_fix: str = "",
    ) -> None:
        self.session_id = session_id
        self.parent_session_id = parent_session_id
        self.requested_usd = requested_usd
        self.available_usd = available_usd
        self.what_happened = what_happened or (
            f'Agent "{session_id}" requested ${requested_usd:.2f}, but parent '
            f'"{parent_session_id}" only has ${available_usd:.2f} left to delegate.'
        )
        self.policy_triggered = policy_triggered
        self.how_to_fix = how_to_fix or (
            f"1. Allocate at most ${available_usd:.2f} to this agent\n"
            f'2. Raise the allocation of "{parent_session_id}" first\n'
            f"3. Terminate idle siblings to release their unspent budget"
        )
        super().__init__(message, details)

    def __str__(self) -> str:
        return _format_structured_error(
            title=f"BudgetAllocationError: {self.args[0]}",
            what_happened=self.what_happened,
            policy_triggered=self.policy_triggered,
            how_to_fix=self.how_to_fix,
        )


# ── Storage Exceptions ───────────────────────────────────────────────────────


class StorageError(GovernorError):
    """
    Raised when the persistence layer is unavailable or a query fails.

    This is the only failure the governance loop treats as fatal.
    """


class ConsistencyError(StorageError):
    """Raised when a record cannot be read back immediately after writing it."""


# ── Sidecar Exceptions ───────────────────────────────────────────────────────


class SidecarError(GovernorError):
    """Raised when the HTTP sidecar cannot be started."""
