"""
Sidecar Routes
~~~~~~~~~~~~~~

FastAPI route handlers for the HTTP sidecar server.

Governor errors are not caught here; ``create_app`` maps them to HTTP
status codes in one place.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from plyra_governor.core.enums import Decision, DecisionSource, QueueStatus
from plyra_governor.exceptions import (
    AgentNotFoundError,
    GovernanceValidationError,
    ProjectNotFoundError,
    QueueItemNotFoundError,
)
from plyra_governor.observability.audit_log import DecisionFilter
from plyra_governor.sidecar.models import (
    AllocateRequest,
    BatchRequest,
    BroadcastRequest,
    BudgetCreateRequest,
    DecideRequest,
    ExpireRequest,
    HealthResponse,
    HookResponseModel,
    PolicyCreateRequest,
    PolicyUpdateRequest,
    ProjectCreateRequest,
)

if TYPE_CHECKING:
    from fastapi import FastAPI

    from plyra_governor.core.governor import Governor

__all__ = ["register_routes"]


def _enum_or_422(enum_cls: type, value: str | None, field: str) -> Any:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise GovernanceValidationError(
            f"Invalid {field}: {value!r}", field=field
        ) from exc


def _time_or_422(value: str | None, field: str) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise GovernanceValidationError(
            f"Invalid {field}: {value!r}", field=field
        ) from exc


def register_routes(app: FastAPI, governor: Governor) -> None:
    """Register all sidecar routes on the FastAPI app."""
    from fastapi import Body, Query
    from fastapi.responses import PlainTextResponse

    ledger = governor.ledger
    engine = governor.policy_engine
    tree = governor.agent_tree
    coordinator = governor.coordinator

    # ── Hooks ─────────────────────────────────────────────────────

    @app.post("/hooks", response_model=HookResponseModel, response_model_exclude_none=True)
    def handle_hook(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        """Inbound lifecycle event -> outbound decision."""
        return governor.handle_event(payload).to_dict()

    # ── Health / Metrics / Decisions ──────────────────────────────

    @app.get("/health", response_model=HealthResponse)
    def health_check() -> HealthResponse:
        return HealthResponse(
            status="ok",
            version=governor.version,
            policies=len(engine.get_all_policies()),
            pending_approvals=len(engine.get_pending_approvals()),
        )

    @app.get("/metrics", response_class=PlainTextResponse)
    def get_metrics() -> str:
        """Prometheus-format metrics."""
        return governor.get_metrics().to_prometheus()

    @app.get("/decisions")
    def get_decisions(
        session_id: str | None = Query(None),
        project_path: str | None = Query(None),
        tool_name: str | None = Query(None),
        decision: str | None = Query(None),
        source: str | None = Query(None),
        from_time: str | None = Query(None),
        to_time: str | None = Query(None),
        limit: int = Query(100, ge=1, le=10000),
    ) -> dict[str, list[dict[str, Any]]]:
        filters = DecisionFilter(
            session_id=session_id,
            project_path=project_path,
            tool_name=tool_name,
            decision=_enum_or_422(Decision, decision, "decision"),
            source=_enum_or_422(DecisionSource, source, "source"),
            from_time=_time_or_422(from_time, "from_time"),
            to_time=_time_or_422(to_time, "to_time"),
            limit=limit,
        )
        return {"decisions": [r.to_dict() for r in governor.get_decisions(filters)]}

    # ── Budgets ───────────────────────────────────────────────────

    @app.get("/budgets")
    def list_budgets() -> dict[str, list[dict[str, Any]]]:
        return {"budgets": [b.to_dict() for b in ledger.get_all_budgets()]}

    @app.post("/budgets", status_code=201)
    def set_budget(req: BudgetCreateRequest) -> dict[str, Any]:
        budget = ledger.set_budget(
            limit_usd=req.limit_usd,
            project_path=req.project_path,
            session_id=req.session_id,
            warning_threshold=req.warning_threshold,
            hard_stop_enabled=req.hard_stop_enabled,
            reset_period=req.reset_period,
        )
        return budget.to_dict()

    @app.get("/budgets/check")
    def check_budget(
        project_path: str | None = Query(None),
        session_id: str | None = Query(None),
        estimated_cost_usd: float = Query(0.0, ge=0.0),
    ) -> dict[str, Any]:
        return ledger.check_budget(project_path, session_id, estimated_cost_usd).to_dict()

    @app.get("/budgets/projection")
    def project_session_cost(
        session_id: str = Query(...),
        minutes: float | None = Query(None, ge=0.0),
    ) -> dict[str, Any]:
        """Extrapolated spend for a session over the next ``minutes``."""
        if minutes is None:
            minutes = governor.config.budget.projection_minutes
        return {
            "session_id": session_id,
            "minutes": minutes,
            "projected_cost_usd": ledger.project_session_cost(session_id, minutes),
        }

    @app.post("/budgets/{budget_id}/reset")
    def reset_budget(budget_id: int) -> dict[str, Any]:
        return ledger.reset_budget(budget_id).to_dict()

    @app.delete("/budgets/{budget_id}", status_code=204)
    def delete_budget(budget_id: int) -> None:
        ledger.delete_budget(budget_id)

    # ── Policies ──────────────────────────────────────────────────

    @app.get("/policies")
    def list_policies() -> dict[str, list[dict[str, Any]]]:
        return {"policies": [p.to_dict() for p in engine.get_all_policies()]}

    @app.post("/policies", status_code=201)
    def create_policy(req: PolicyCreateRequest) -> dict[str, Any]:
        return engine.create_policy(**req.model_dump()).to_dict()

    @app.patch("/policies/{policy_id}")
    def update_policy(policy_id: int, req: PolicyUpdateRequest) -> dict[str, Any]:
        fields = {k: getattr(req, k) for k in req.model_fields_set}
        return engine.update_policy(policy_id, **fields).to_dict()

    @app.delete("/policies/{policy_id}", status_code=204)
    def delete_policy(policy_id: int) -> None:
        engine.delete_policy(policy_id)

    # ── Approval Queue ────────────────────────────────────────────

    @app.get("/queue")
    def list_queue(
        status: str | None = Query(None),
        session_id: str | None = Query(None),
    ) -> dict[str, list[dict[str, Any]]]:
        items = engine.get_queue_items(
            status=_enum_or_422(QueueStatus, status, "status"),
            session_id=session_id,
        )
        return {"items": [i.to_dict() for i in items]}

    @app.post("/queue/batch-approve")
    def batch_approve(req: BatchRequest) -> dict[str, list[int]]:
        return engine.batch_approve(req.ids).to_dict()

    @app.post("/queue/batch-deny")
    def batch_deny(req: BatchRequest) -> dict[str, list[int]]:
        return engine.batch_deny(req.ids).to_dict()

    @app.post("/queue/expire")
    def expire_queue(req: ExpireRequest) -> dict[str, list[int]]:
        return {"expired": [i.id for i in engine.expire_stale_items(req.max_age_seconds)]}

    @app.get("/queue/{item_id}")
    def get_queue_item(item_id: int) -> dict[str, Any]:
        item = engine.get_queue_item(item_id)
        if item is None:
            raise QueueItemNotFoundError(f"Approval queue item {item_id} not found")
        return item.to_dict()

    @app.post("/queue/{item_id}/approve")
    def approve_item(
        item_id: int, req: DecideRequest | None = None
    ) -> dict[str, Any]:
        decided_by = req.decided_by if req is not None else "user"
        item = engine.approve_item(item_id, decided_by)
        if item is None:
            raise QueueItemNotFoundError(f"Approval queue item {item_id} not found")
        return item.to_dict()

    @app.post("/queue/{item_id}/deny")
    def deny_item(
        item_id: int, req: DecideRequest | None = None
    ) -> dict[str, Any]:
        decided_by = req.decided_by if req is not None else "user"
        item = engine.deny_item(item_id, decided_by)
        if item is None:
            raise QueueItemNotFoundError(f"Approval queue item {item_id} not found")
        return item.to_dict()

    # ── Agents ────────────────────────────────────────────────────

    @app.get("/agents/metrics")
    def agent_metrics() -> dict[str, list[dict[str, Any]]]:
        return {"metrics": [m.to_dict() for m in tree.get_all_metrics()]}

    @app.get("/agents/{session_id}/tree")
    def agent_tree(session_id: str) -> dict[str, Any]:
        view = tree.get_visualization_tree(session_id)
        if view is None:
            raise AgentNotFoundError(f"Agent {session_id!r} is not registered")
        return view.to_dict()

    @app.get("/agents/{session_id}/flat")
    def agent_flat(session_id: str) -> dict[str, list[dict[str, Any]]]:
        if session_id not in tree:
            raise AgentNotFoundError(f"Agent {session_id!r} is not registered")
        return {"rows": [r.to_dict() for r in tree.get_flat_tree_list(session_id)]}

    @app.get("/agents/{session_id}/summary")
    def agent_summary(session_id: str) -> dict[str, Any]:
        summary = tree.get_summary(session_id)
        if summary is None:
            raise AgentNotFoundError(f"Agent {session_id!r} is not registered")
        return summary.to_dict()

    @app.post("/agents/{session_id}/budget")
    def allocate_agent_budget(session_id: str, req: AllocateRequest) -> dict[str, Any]:
        node = tree.allocate_budget(
            session_id, req.amount_usd, propagate_to_children=req.propagate_to_children
        )
        return node.to_dict()

    @app.post("/agents/{session_id}/terminate")
    def terminate_agent(session_id: str) -> dict[str, Any]:
        return tree.terminate_agent(session_id).to_dict()

    # ── Coordinator ───────────────────────────────────────────────

    @app.get("/projects")
    def list_projects() -> dict[str, Any]:
        return {
            "projects": [p.to_dict() for p in coordinator.registry.list_projects()],
            "active_project_id": coordinator.registry.active_project_id,
        }

    @app.post("/projects", status_code=201)
    def register_project(req: ProjectCreateRequest) -> dict[str, Any]:
        return coordinator.register_project(req.project_id, req.path, req.name).to_dict()

    @app.delete("/projects/{project_id}", status_code=204)
    def remove_project(project_id: str) -> None:
        coordinator.remove_project(project_id)

    @app.post("/projects/{project_id}/switch")
    def switch_project(project_id: str) -> dict[str, Any]:
        return coordinator.switch_project(project_id).to_dict()

    @app.get("/projects/{project_id}/state")
    def project_state(project_id: str) -> dict[str, Any]:
        state = coordinator.get_project_state(project_id)
        if state is None:
            raise ProjectNotFoundError(f"Project {project_id!r} is not registered")
        return state.to_dict()

    @app.get("/projects/{project_id}/events")
    def project_events(project_id: str) -> dict[str, list[dict[str, Any]]]:
        events = coordinator.get_pending_events_for_project(project_id)
        return {"events": [e.to_dict() for e in events]}

    @app.post("/projects/{project_id}/broadcast", status_code=201)
    def broadcast(project_id: str, req: BroadcastRequest) -> dict[str, Any]:
        if project_id not in coordinator.registry:
            raise ProjectNotFoundError(f"Project {project_id!r} is not registered")
        if req.target_project_ids is None:
            event = coordinator.broadcast_to_all_projects(req.type, req.data, project_id)
        else:
            event = coordinator.broadcast_to_projects(
                req.type, req.data, req.target_project_ids, project_id
            )
        return event.to_dict()

    @app.post("/events/{event_id}/handled")
    def mark_handled(event_id: str) -> dict[str, bool]:
        return {"handled": coordinator.mark_event_handled(event_id)}

    @app.get("/coordinator/status")
    def coordinator_status() -> dict[str, Any]:
        return coordinator.get_status().to_dict()
