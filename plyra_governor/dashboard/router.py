"""
Dashboard Router
~~~~~~~~~~~~~~~~

FastAPI routes for the plyra-governor dashboard.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

import jinja2
from fastapi import APIRouter
from fastapi.responses import HTMLResponse, JSONResponse
from sse_starlette.sse import EventSourceResponse

from plyra_governor.dashboard.sse import sse_event_generator

if TYPE_CHECKING:
    from plyra_governor.core.governor import Governor

__all__ = ["build_router"]

_TEMPLATE_DIR = Path(__file__).parent / "templates"
_START_TIME = time.monotonic()
_RECENT_DECISIONS = 50


def _snapshot(governor: Governor) -> dict[str, Any]:
    return {
        "budgets": [b.to_dict() for b in governor.ledger.get_all_budgets()],
        "pending": [i.to_dict() for i in governor.policy_engine.get_pending_approvals()],
        "decisions": [
            r.to_dict() for r in governor.decision_log.recent(_RECENT_DECISIONS)
        ],
        "metrics": governor.get_metrics().to_dict(),
        "coordinator": governor.coordinator.get_status().to_dict(),
    }


def build_router(governor: Governor) -> APIRouter:
    """Build the dashboard ``APIRouter``."""
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(_TEMPLATE_DIR)),
        autoescape=True,
    )
    router = APIRouter(tags=["dashboard"])

    # ── GET /dashboard ───────────────────────────────────

    @router.get("/dashboard", response_class=HTMLResponse, include_in_schema=False)
    async def dashboard_home() -> HTMLResponse:
        """Render the full dashboard page."""
        tmpl = env.get_template("index.html")
        return HTMLResponse(content=tmpl.render(**_snapshot(governor)))

    # ── GET /dashboard/summary ───────────────────────────

    @router.get("/dashboard/summary", include_in_schema=False)
    async def dashboard_summary() -> JSONResponse:
        """The same data the page renders, as JSON."""
        return JSONResponse(content=_snapshot(governor))

    # ── GET /dashboard/stream ────────────────────────────

    @router.get("/dashboard/stream", include_in_schema=False)
    async def dashboard_stream() -> EventSourceResponse:
        """SSE stream of new decision records."""
        return EventSourceResponse(
            sse_event_generator(governor.decision_log),
            headers={"retry": "3000"},
        )

    # ── GET /dashboard/health ────────────────────────────

    @router.get("/dashboard/health", include_in_schema=False)
    async def dashboard_health() -> JSONResponse:
        return JSONResponse(
            content={
                "status": "ok",
                "version": governor.version,
                "decisions_total": len(governor.decision_log),
                "uptime_s": round(time.monotonic() - _START_TIME, 2),
            }
        )

    return router
