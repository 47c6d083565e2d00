"""
Governor
~~~~~~~~

The entry point that wires the budget ledger, the policy engine, the
agent tree and the project coordinator together and turns inbound
lifecycle events into decisions.

Admission runs estimate -> budget -> policy. A hard-stop budget that
cannot cover the estimate blocks before any policy is consulted.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from plyra_governor.agents.tree import AgentTree
from plyra_governor.budget.cost_estimator import CostEstimator
from plyra_governor.budget.ledger import BudgetLedger
from plyra_governor.config.defaults import DEFAULT_CONFIG
from plyra_governor.config.loader import load_config, load_config_from_dict
from plyra_governor.config.schema import GovernorConfig
from plyra_governor.coordinator.coordinator import ProjectCoordinator
from plyra_governor.coordinator.registry import ProjectRegistry
from plyra_governor.core.enums import ApprovalOutcome, Decision, DecisionSource
from plyra_governor.core.hook_event import HookEvent, HookEventType, HookResponse
from plyra_governor.core.models import PermissionRequest
from plyra_governor.exceptions import SidecarError
from plyra_governor.observability.audit_log import (
    DecisionFilter,
    DecisionLog,
    DecisionRecord,
)
from plyra_governor.observability.events import (
    AgentBudgetExceeded,
    BudgetAlertRaised,
    EventBus,
)
from plyra_governor.observability.exporters.stdout_exporter import StdoutExporter
from plyra_governor.observability.metrics import GovernorMetrics, MetricsCollector
from plyra_governor.policy.engine import PolicyEngine
from plyra_governor.storage.base import GovernanceStore
from plyra_governor.storage.sqlite_store import SQLiteStore

__all__ = ["Governor", "TOOL_USE_PERMISSION"]

logger = logging.getLogger(__name__)

TOOL_USE_PERMISSION = "tool_use"
_DEFAULT_AGENT_NAME = "main"


class Governor:
    """
    Governance core for a fleet of coding agents.

    Args:
        config: Validated configuration. Defaults when omitted.
        store: Persistence for budgets, policies and the approval queue.
            A ``SQLiteStore`` at ``config.storage.db_path`` when omitted.
    """

    def __init__(
        self,
        config: GovernorConfig | None = None,
        store: GovernanceStore | None = None,
    ) -> None:
        self._config = config or GovernorConfig()
        cfg = self._config

        # ── Subsystems ────────────────────────────────────────────
        self._events = EventBus()
        self._store = store if store is not None else SQLiteStore(cfg.storage.db_path)
        self._estimator = CostEstimator(
            default_model=cfg.budget.default_model,
            chars_per_token=cfg.budget.chars_per_token,
        )
        self._ledger = BudgetLedger(
            self._store,
            sink=self._events,
            ops_per_minute=cfg.budget.ops_per_minute,
            default_warning_threshold=cfg.budget.default_warning_threshold,
        )
        self._policy_engine = PolicyEngine(
            self._store,
            sink=self._events,
            no_match_action=cfg.policy_engine.no_match_action,
            min_priority=cfg.policy_engine.min_priority,
            max_priority=cfg.policy_engine.max_priority,
            max_name_length=cfg.policy_engine.max_name_length,
            max_matcher_length=cfg.policy_engine.max_matcher_length,
        )
        self._agent_tree = AgentTree(
            ledger=self._ledger,
            sink=self._events,
            cleanup_max_age_hours=cfg.agent_tree.cleanup_max_age_hours,
        )
        self._coordinator = ProjectCoordinator(
            registry=ProjectRegistry(),
            sink=self._events,
            event_max_age_seconds=cfg.coordinator.event_max_age_seconds,
            stale_agent_max_idle_seconds=cfg.coordinator.stale_agent_max_idle_seconds,
        )
        self._decision_log = DecisionLog(
            max_entries=cfg.observability.decision_log_max_entries
        )
        self._metrics = MetricsCollector()

        self._handlers: dict[str, Callable[[HookEvent], HookResponse]] = {
            HookEventType.PRE_TOOL_USE: self._on_pre_tool_use,
            HookEventType.PERMISSION_REQUEST: self.check_admission,
            HookEventType.POST_TOOL_USE: self._on_post_tool_use,
            HookEventType.SUBAGENT_START: self._on_subagent_start,
            HookEventType.SUBAGENT_STOP: self._on_subagent_stop,
            HookEventType.SESSION_START: self._on_session_start,
            HookEventType.SESSION_END: self._on_session_end,
        }

        # ── Initialize ────────────────────────────────────────────
        self._events.subscribe(
            lambda _e: self._metrics.increment("budget_alerts"), BudgetAlertRaised
        )
        self._events.subscribe(
            lambda _e: self._metrics.increment("agent_budget_exceeded"),
            AgentBudgetExceeded,
        )
        self._setup_exporters()
        self._load_policies_from_config()

    # ── Class Methods (constructors) ──────────────────────────────

    @classmethod
    def from_config(cls, path: str, store: GovernanceStore | None = None) -> Governor:
        """Create a governor from a YAML config file."""
        return cls(config=load_config(path), store=store)

    @classmethod
    def default(cls, store: GovernanceStore | None = None) -> Governor:
        """Create a governor with the built-in defaults."""
        return cls(config=load_config_from_dict(DEFAULT_CONFIG), store=store)

    # ── Setup ─────────────────────────────────────────────────────

    def _setup_exporters(self) -> None:
        for exporter_name in self._config.observability.exporters:
            if exporter_name == "stdout":
                self._decision_log.add_exporter(StdoutExporter())
            else:
                logger.warning("Unknown exporter %r ignored", exporter_name)

    def _load_policies_from_config(self) -> None:
        if self._config.policy_engine.install_defaults:
            self._policy_engine.install_default_policies()
        if self._config.policies:
            self._policy_engine.load_policies(self._config.policies)

    # ── Properties ────────────────────────────────────────────────

    @property
    def version(self) -> str:
        from plyra_governor import __version__

        return __version__

    @property
    def config(self) -> GovernorConfig:
        return self._config

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def store(self) -> GovernanceStore:
        return self._store

    @property
    def estimator(self) -> CostEstimator:
        return self._estimator

    @property
    def ledger(self) -> BudgetLedger:
        return self._ledger

    @property
    def policy_engine(self) -> PolicyEngine:
        return self._policy_engine

    @property
    def agent_tree(self) -> AgentTree:
        return self._agent_tree

    @property
    def coordinator(self) -> ProjectCoordinator:
        return self._coordinator

    @property
    def decision_log(self) -> DecisionLog:
        return self._decision_log

    # ── Admission ─────────────────────────────────────────────────

    def check_admission(self, event: HookEvent) -> HookResponse:
        """
        Decide whether the action described by ``event`` may proceed.

        Returns:
            ALLOW (possibly with a budget warning as message), BLOCK when
            a hard-stop budget refuses, or DENY when a policy refuses or
            queues the action. A queued denial carries ``queue_item_id``;
            the caller retries once the item is approved.
        """
        start = time.perf_counter()
        tool_category = event.tool_name or event.permission_type or "default"
        estimate = self._estimator.estimate_cost(
            tool_category, event.tool_input, event.model
        )
        budget = self._ledger.check_budget(
            event.project_path, event.session_id, estimate.estimated_cost_usd
        )

        record = DecisionRecord(
            event_type=event.event_type,
            session_id=event.session_id,
            project_path=event.project_path,
            tool_name=event.tool_name,
            decision=Decision.ALLOW,
            source=DecisionSource.BUDGET,
            estimated_cost_usd=estimate.estimated_cost_usd,
            budget_id=budget.budget_id,
            budget_unrestricted=budget.unrestricted,
            remaining_usd=budget.remaining_usd,
            warning_message=budget.warning_message,
        )

        if not budget.allowed:
            record.decision = Decision.BLOCK
            record.reason = budget.block_message
            response = HookResponse(decision=Decision.BLOCK, message=budget.block_message)
        else:
            decision = self._policy_engine.process_permission_request(
                self._to_permission_request(event)
            )
            record.source = decision.source
            record.policy_id = decision.policy_id
            record.policy_name = decision.policy_name
            record.reason = decision.reason

            if decision.outcome is ApprovalOutcome.APPROVED:
                response = HookResponse.allow(budget.warning_message)
            elif decision.outcome is ApprovalOutcome.QUEUED:
                item_id = decision.queue_item.id if decision.queue_item else None
                record.decision = Decision.DENY
                record.queue_item_id = item_id
                response = HookResponse(
                    decision=Decision.DENY,
                    message=(
                        f"{decision.reason}. Waiting on approval queue item "
                        f"{item_id}; retry once it is approved."
                    ),
                    queue_item_id=item_id,
                )
            else:
                record.decision = Decision.DENY
                response = HookResponse(decision=Decision.DENY, message=decision.reason)

        record.duration_ms = (time.perf_counter() - start) * 1000
        self._decision_log.write(record)
        self._metrics.record_decision(record)
        logger.debug(
            "Admission %s for %s/%s via %s",
            record.decision.value,
            event.session_id,
            tool_category,
            record.source.value,
        )
        return response

    @staticmethod
    def _to_permission_request(event: HookEvent) -> PermissionRequest:
        details = dict(event.tool_input)
        details.update(event.permission_details)
        tool_name = event.tool_name
        if tool_name is None:
            raw = event.permission_details.get(
                "tool_name", event.permission_details.get("toolName")
            )
            tool_name = raw if isinstance(raw, str) else None
        return PermissionRequest(
            session_id=event.session_id,
            permission_type=event.permission_type or TOOL_USE_PERMISSION,
            tool_name=tool_name,
            file_path=event.file_path,
            command=event.command,
            details=details,
        )

    # ── Event Dispatch ────────────────────────────────────────────

    def handle_event(self, payload: dict[str, Any] | HookEvent) -> HookResponse:
        """
        Handle one inbound lifecycle event.

        Raises:
            GovernanceValidationError: Malformed payload.
        """
        event = payload if isinstance(payload, HookEvent) else HookEvent.from_payload(
            payload
        )
        handler = self._handlers.get(event.event_type)
        if handler is None:
            return HookResponse.allow()
        return handler(event)

    def _on_pre_tool_use(self, event: HookEvent) -> HookResponse:
        self._agent_tree.record_tool_call(event.session_id)
        return self.check_admission(event)

    def _on_post_tool_use(self, event: HookEvent) -> HookResponse:
        cost = self._estimator.calculate_actual_cost(
            event.tool_name or "default",
            event.tool_input,
            event.tool_response,
            event.model,
        )
        self._ledger.record_cost(cost, event.project_path, event.session_id)
        self._agent_tree.record_cost(event.session_id, cost)
        self._metrics.add_cost(cost)
        return HookResponse.allow()

    def _on_subagent_start(self, event: HookEvent) -> HookResponse:
        parent = event.parent_session_id
        if parent is not None and parent not in self._agent_tree:
            logger.warning(
                "Sub-agent %s names unknown parent %s; registering as a root",
                event.session_id,
                parent,
            )
            parent = None
        self._agent_tree.register_agent(
            event.session_id,
            event.agent_name or _DEFAULT_AGENT_NAME,
            parent_session_id=parent,
        )
        return HookResponse.allow()

    def _on_subagent_stop(self, event: HookEvent) -> HookResponse:
        self._agent_tree.stop_agent(event.session_id, success=event.success)
        return HookResponse.allow()

    def _resolve_project_id(self, event: HookEvent) -> str | None:
        if event.project_id is not None:
            return event.project_id
        if event.project_path:
            project = self._coordinator.registry.find_by_path(event.project_path)
            if project is not None:
                return project.project_id
        return None

    def _on_session_start(self, event: HookEvent) -> HookResponse:
        if event.session_id not in self._agent_tree:
            self._agent_tree.register_agent(
                event.session_id, event.agent_name or _DEFAULT_AGENT_NAME
            )
        project_id = self._resolve_project_id(event)
        if project_id is not None:
            self._coordinator.handle_session_started(project_id, event.session_id)
        return HookResponse.allow()

    def _on_session_end(self, event: HookEvent) -> HookResponse:
        if event.session_id in self._agent_tree:
            self._agent_tree.stop_agent(event.session_id, success=event.success)
        self._coordinator.handle_session_completed(event.session_id)
        self._ledger.clear_session_history(event.session_id)
        return HookResponse.allow()

    # ── Maintenance ───────────────────────────────────────────────

    def run_maintenance(self) -> dict[str, int]:
        """
        Expire stale queue items (when a TTL is configured), sweep handled
        project events, drop stale cross-project agents and old agent trees.
        """
        expired = 0
        ttl = self._config.queue.pending_ttl_seconds
        if ttl is not None:
            expired = len(self._policy_engine.expire_stale_items(ttl))
        cleaned = self._coordinator.cleanup()
        trees = self._agent_tree.cleanup()
        summary = {
            "queue_items_expired": expired,
            "events_removed": cleaned["events_removed"],
            "agents_removed": cleaned["agents_removed"],
            "agent_nodes_removed": trees,
        }
        logger.debug("Maintenance completed: %s", summary)
        return summary

    # ── Observability ─────────────────────────────────────────────

    def add_exporter(self, exporter: Any) -> None:
        """Add a decision exporter implementing ``export(DecisionRecord)``."""
        self._decision_log.add_exporter(exporter)

    def get_decisions(self, filters: DecisionFilter | None = None) -> list[DecisionRecord]:
        return self._decision_log.query(filters)

    def get_metrics(self) -> GovernorMetrics:
        return self._metrics.snapshot()

    # ── Sidecar ───────────────────────────────────────────────────

    def serve(self, host: str = "127.0.0.1", port: int = 23847) -> None:
        """
        Run the HTTP sidecar in the foreground.

        Raises:
            SidecarError: The port is outside 1..65535.
        """
        if not 0 < port < 65536:
            raise SidecarError(f"Invalid sidecar port: {port}", {"port": port})
        logger.info("Starting sidecar on %s:%d", host, port)

        import uvicorn

        from plyra_governor.sidecar.server import create_app

        uvicorn.run(create_app(self), host=host, port=port)

    def close(self) -> None:
        close = getattr(self._store, "close", None)
        if close is not None:
            close()

    def __repr__(self) -> str:
        return (
            f"Governor(policies={len(self._policy_engine.get_all_policies())}, "
            f"agents={len(self._agent_tree)}, "
            f"projects={len(self._coordinator.registry)})"
        )
