"""
plyra-governor: budget and approval governance for coding agents.

Part of the Plyra infrastructure suite.

plyra-governor sits between a coding agent's lifecycle hooks and the
tools it wants to run, providing:

- Scoped spend budgets with warnings and hard stops
- Glob-matched approval policies with a human approval queue
- A parent/child agent tree with delegated budgets
- Cross-project coordination of agents, skills and events
- A decision log, Prometheus metrics and a live dashboard

Quick Start::

    from plyra_governor import Governor

    governor = Governor.default()
    governor.ledger.set_budget(10.0, project_path="/work/app", hard_stop_enabled=True)

    response = governor.handle_event({
        "hook_event_name": "PreToolUse",
        "session_id": "s-1",
        "cwd": "/work/app",
        "tool_name": "Bash",
        "tool_input": {"command": "npm test"},
    })
    print(response.decision)

:license: Apache-2.0
"""

from plyra_governor.config.loader import load_config, load_config_from_dict
from plyra_governor.config.schema import GovernorConfig
from plyra_governor.core.enums import (
    AgentStatus,
    Decision,
    DecisionSource,
    PolicyAction,
    QueueStatus,
)
from plyra_governor.core.governor import Governor
from plyra_governor.core.hook_event import HookEvent, HookEventType, HookResponse
from plyra_governor.core.models import (
    ApprovalPolicy,
    ApprovalQueueItem,
    Budget,
    BudgetCheckResult,
    CostEstimate,
    PermissionRequest,
)
from plyra_governor.observability.audit_log import DecisionFilter, DecisionRecord
from plyra_governor.observability.exporters.stdout_exporter import StdoutExporter
from plyra_governor.observability.metrics import GovernorMetrics

__version__ = "0.1.0"
__author__ = "Plyra"
__license__ = "Apache-2.0"

__all__ = [
    # Main class
    "Governor",
    # Config
    "GovernorConfig",
    "load_config",
    "load_config_from_dict",
    # Enums
    "AgentStatus",
    "Decision",
    "DecisionSource",
    "PolicyAction",
    "QueueStatus",
    # Data models
    "ApprovalPolicy",
    "ApprovalQueueItem",
    "Budget",
    "BudgetCheckResult",
    "CostEstimate",
    "DecisionFilter",
    "DecisionRecord",
    "GovernorMetrics",
    "HookEvent",
    "HookEventType",
    "HookResponse",
    "PermissionRequest",
    # Exporters
    "StdoutExporter",
    # Version
    "__version__",
]
