"""
plyra-governor Dashboard
~~~~~~~~~~~~~~~~~~~~~~~~

Read-only view of budgets, the pending approval queue and recent
admission decisions, with a live stream of new decisions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import APIRouter

    from plyra_governor.core.governor import Governor

__all__ = ["create_dashboard_router"]


def create_dashboard_router(governor: Governor) -> APIRouter:
    """Create the dashboard router, mounted under ``/dashboard``."""
    from plyra_governor.dashboard.router import build_router

    return build_router(governor)
