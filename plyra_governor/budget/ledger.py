"""
Budget Ledger
~~~~~~~~~~~~~

Per-scope spend limits and running totals.

A budget applies to a scope: a session, a project, or everything
(global). Checks resolve the most specific budget first, so a session
budget shadows its project's budget, which shadows the global one.
No budget at any level means the scope is unrestricted.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import defaultdict

from plyra_governor.core.enums import AlertType, ResetPeriod
from plyra_governor.core.models import (
    Budget,
    BudgetAlert,
    BudgetCheckResult,
    utcnow,
)
from plyra_governor.exceptions import (
    BudgetNotFoundError,
    ConsistencyError,
    GovernanceValidationError,
)
from plyra_governor.observability.events import (
    BudgetAlertRaised,
    BudgetReset,
    BudgetSet,
    EventSink,
    NullSink,
)
from plyra_governor.storage.base import GovernanceStore

__all__ = ["BudgetLedger"]

logger = logging.getLogger(__name__)

# Float slack for limit comparisons.
_EPSILON = 1e-9


def _validate_amount(value: float, field: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise GovernanceValidationError(f"{field} must be a number", field=field)
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise GovernanceValidationError(
            f"{field} must be a finite, non-negative amount, got {value}",
            field=field,
        )


class BudgetLedger:
    """
    Owns budgets and records spend against them.

    Budgets live in the injected ``GovernanceStore``; the per-session cost
    history used for projections is kept in memory only.

    Args:
        store: Persistence for budget records.
        sink: Receives ``BudgetSet``, ``BudgetAlertRaised`` and
            ``BudgetReset`` events.
        ops_per_minute: Assumed operation rate for cost projections.
        default_warning_threshold: Threshold used when ``set_budget`` is
            not given one.
    """

    def __init__(
        self,
        store: GovernanceStore,
        sink: EventSink | None = None,
        ops_per_minute: float = 2.0,
        default_warning_threshold: float = 0.8,
    ) -> None:
        self._store = store
        self._sink = sink or NullSink()
        self._ops_per_minute = ops_per_minute
        self._default_warning_threshold = default_warning_threshold
        self._cost_history: dict[str, list[float]] = defaultdict(list)
        self._sync_lock = threading.RLock()

    # ── Budget Management ────────────────────────────────────────

    def set_budget(
        self,
        limit_usd: float,
        project_path: str | None = None,
        session_id: str | None = None,
        warning_threshold: float | None = None,
        hard_stop_enabled: bool = False,
        reset_period: ResetPeriod | str = ResetPeriod.SESSION,
    ) -> Budget:
        """
        Create the budget for a scope, or update the existing one.

        Updating keeps what has already been spent against the scope.

        Raises:
            GovernanceValidationError: Negative limit, threshold outside
                0..1, or an unknown reset period.
        """
        _validate_amount(limit_usd, "limit_usd")
        if warning_threshold is None:
            warning_threshold = self._default_warning_threshold
        if not 0.0 <= warning_threshold <= 1.0:
            raise GovernanceValidationError(
                f"warning_threshold must be between 0 and 1, got {warning_threshold}",
                field="warning_threshold",
            )
        try:
            period = ResetPeriod(reset_period)
        except ValueError as exc:
            raise GovernanceValidationError(
                f"Unknown reset period: {reset_period!r}", field="reset_period"
            ) from exc

        budget = self._store.upsert_budget(
            limit_usd=float(limit_usd),
            project_path=project_path or None,
            session_id=session_id or None,
            warning_threshold=warning_threshold,
            hard_stop_enabled=hard_stop_enabled,
            reset_period=period.value,
        )
        logger.info(
            "Budget %d set: %s scope, limit $%.2f (hard_stop=%s)",
            budget.id,
            budget.scope,
            budget.limit_usd,
            budget.hard_stop_enabled,
        )
        self._sink.publish(BudgetSet(budget=budget))
        return budget

    def get_budget(
        self,
        project_path: str | None = None,
        session_id: str | None = None,
    ) -> Budget | None:
        """Resolve the budget for a scope: session, then project, then global."""
        return self._store.resolve_budget(project_path or None, session_id or None)

    def get_budget_by_id(self, budget_id: int) -> Budget | None:
        return self._store.get_budget(budget_id)

    def get_all_budgets(self) -> list[Budget]:
        return self._store.list_budgets()

    def delete_budget(self, budget_id: int) -> None:
        """
        Remove a budget.

        Raises:
            BudgetNotFoundError: If no budget has this id.
        """
        if not self._store.delete_budget(budget_id):
            raise BudgetNotFoundError(f"Budget {budget_id} not found")
        logger.info("Budget %d deleted", budget_id)

    # ── Budget Checking ──────────────────────────────────────────

    def check_budget(
        self,
        project_path: str | None = None,
        session_id: str | None = None,
        estimated_cost_usd: float = 0.0,
    ) -> BudgetCheckResult:
        """
        Decide whether an operation of the given estimated cost may proceed.

        A hard-stop budget refuses once it is spent, or when the operation
        would take it past the limit. Landing exactly on the limit is
        allowed. Soft budgets always allow and only warn.
        """
        if estimated_cost_usd is not None:
            _validate_amount(estimated_cost_usd, "estimated_cost_usd")
        cost = float(estimated_cost_usd or 0.0)
        budget = self.get_budget(project_path, session_id)
        if budget is None:
            return BudgetCheckResult(
                allowed=True,
                budget_id=None,
                remaining_usd=math.inf,
                estimated_cost_usd=cost,
            )

        limit = budget.limit_usd
        spent = budget.spent_usd
        remaining = budget.remaining_usd

        if budget.hard_stop_enabled:
            if spent + _EPSILON >= limit:
                return BudgetCheckResult(
                    allowed=False,
                    budget_id=budget.id,
                    remaining_usd=0.0,
                    estimated_cost_usd=cost,
                    block_message=(
                        f"Budget limit of ${limit:.2f} reached. Spent: ${spent:.2f}"
                    ),
                )
            if spent + cost > limit + _EPSILON:
                return BudgetCheckResult(
                    allowed=False,
                    budget_id=budget.id,
                    remaining_usd=remaining,
                    estimated_cost_usd=cost,
                    block_message=(
                        f"This operation (estimated ${cost:.4f}) would exceed "
                        f"budget limit of ${limit:.2f}. "
                        f"Remaining: ${remaining:.2f}"
                    ),
                )

        warning = None
        percent = budget.percent_used
        if percent >= budget.warning_threshold * 100:
            warning = (
                f"Budget warning: {percent:.1f}% used "
                f"(${spent:.2f} of ${limit:.2f})"
            )

        return BudgetCheckResult(
            allowed=True,
            budget_id=budget.id,
            remaining_usd=remaining,
            estimated_cost_usd=cost,
            warning_message=warning,
        )

    # ── Recording ────────────────────────────────────────────────

    def record_cost(
        self,
        cost_usd: float,
        project_path: str | None = None,
        session_id: str | None = None,
    ) -> Budget | None:
        """
        Add a finished operation's cost to the resolved budget.

        The session's cost history is updated even when no budget applies.

        Returns:
            The updated budget, or None if the scope is unrestricted.

        Raises:
            GovernanceValidationError: Negative or non-finite cost.
            ConsistencyError: The budget vanished between write and read.
        """
        _validate_amount(cost_usd, "cost_usd")

        if session_id:
            with self._sync_lock:
                self._cost_history[session_id].append(float(cost_usd))

        budget = self.get_budget(project_path, session_id)
        if budget is None:
            return None

        self._store.add_budget_spent(budget.id, float(cost_usd))
        updated = self._store.get_budget(budget.id)
        if updated is None:
            raise ConsistencyError(
                f"Budget {budget.id} could not be read back after recording cost"
            )
        self._raise_alerts(updated)
        return updated

    def _raise_alerts(self, budget: Budget) -> None:
        if budget.spent_usd + _EPSILON >= budget.limit_usd:
            alert_type = AlertType.LIMIT_REACHED
        elif budget.percent_used >= budget.warning_threshold * 100:
            alert_type = AlertType.WARNING
        else:
            return

        alert = BudgetAlert(
            budget_id=budget.id,
            type=alert_type,
            percent_used=budget.percent_used,
            spent_usd=budget.spent_usd,
            limit_usd=budget.limit_usd,
            project_path=budget.project_path,
            session_id=budget.session_id,
        )
        logger.warning(
            "Budget %d %s: %.1f%% used ($%.2f of $%.2f)",
            budget.id,
            alert_type.value,
            alert.percent_used,
            budget.spent_usd,
            budget.limit_usd,
        )
        self._sink.publish(BudgetAlertRaised(alert=alert))

    def project_session_cost(
        self, session_id: str, remaining_minutes: float = 30
    ) -> float:
        """Extrapolate a session's spend over the next ``remaining_minutes``."""
        with self._sync_lock:
            history = list(self._cost_history.get(session_id, ()))
        if not history:
            return 0.0
        average = sum(history) / len(history)
        return round(average * self._ops_per_minute * remaining_minutes, 4)

    def reset_budget(self, budget_id: int) -> Budget:
        """
        Zero a budget's spent total and stamp the reset time.

        Raises:
            BudgetNotFoundError: If no budget has this id.
        """
        if not self._store.reset_budget_spent(budget_id, utcnow()):
            raise BudgetNotFoundError(f"Budget {budget_id} not found")
        budget = self._store.get_budget(budget_id)
        if budget is None:
            raise BudgetNotFoundError(f"Budget {budget_id} not found")
        logger.info("Budget %d reset", budget_id)
        self._sink.publish(BudgetReset(budget_id=budget_id))
        return budget

    def clear_session_history(self, session_id: str) -> None:
        with self._sync_lock:
            self._cost_history.pop(session_id, None)
