"""Tests for the budget ledger."""

import math

import pytest

from plyra_governor.core.enums import AlertType, ResetPeriod
from plyra_governor.exceptions import (
    BudgetNotFoundError,
    ConsistencyError,
    GovernanceValidationError,
)
from plyra_governor.observability.events import BudgetAlertRaised, BudgetReset, BudgetSet

PROJECT = "/work/app"


class TestBudgetManagement:
    def test_set_budget_creates_project_scope(self, ledger, recorder):
        budget = ledger.set_budget(25.0, project_path=PROJECT, hard_stop_enabled=True)
        assert budget.id > 0
        assert budget.scope == "project"
        assert budget.spent_usd == 0.0
        assert budget.warning_threshold == 0.8
        assert budget.hard_stop_enabled is True
        assert recorder.of_type(BudgetSet)[0].budget.id == budget.id

    def test_one_budget_per_scope_and_update_keeps_spent(self, ledger):
        first = ledger.set_budget(10.0, project_path=PROJECT)
        ledger.record_cost(3.0, project_path=PROJECT)
        second = ledger.set_budget(20.0, project_path=PROJECT, warning_threshold=0.5)
        assert second.id == first.id
        assert second.limit_usd == 20.0
        assert second.spent_usd == pytest.approx(3.0)
        assert len(ledger.get_all_budgets()) == 1

    @pytest.mark.parametrize("limit", [-1.0, math.nan, math.inf, "10"])
    def test_rejects_invalid_limit(self, ledger, limit):
        with pytest.raises(GovernanceValidationError):
            ledger.set_budget(limit, project_path=PROJECT)
        assert ledger.get_all_budgets() == []

    def test_rejects_threshold_outside_unit_range(self, ledger):
        with pytest.raises(GovernanceValidationError) as exc_info:
            ledger.set_budget(10.0, warning_threshold=1.5)
        assert exc_info.value.field == "warning_threshold"

    def test_rejects_unknown_reset_period(self, ledger):
        with pytest.raises(GovernanceValidationError):
            ledger.set_budget(10.0, reset_period="hourly")

    def test_reset_period_accepts_strings(self, ledger):
        budget = ledger.set_budget(10.0, reset_period="daily")
        assert budget.reset_period is ResetPeriod.DAILY

    def test_delete_budget(self, ledger):
        budget = ledger.set_budget(10.0)
        ledger.delete_budget(budget.id)
        assert ledger.get_budget_by_id(budget.id) is None
        with pytest.raises(BudgetNotFoundError):
            ledger.delete_budget(budget.id)


class TestResolution:
    def test_session_shadows_project_shadows_global(self, ledger):
        glob = ledger.set_budget(100.0)
        proj = ledger.set_budget(50.0, project_path=PROJECT)
        sess = ledger.set_budget(5.0, project_path=PROJECT, session_id="s-1")

        assert ledger.get_budget(PROJECT, "s-1").id == sess.id
        assert ledger.get_budget(PROJECT, "s-2").id == proj.id
        assert ledger.get_budget("/elsewhere", None).id == glob.id

    def test_no_budget_is_unrestricted(self, ledger):
        result = ledger.check_budget(PROJECT, "s-1", 1000.0)
        assert result.allowed is True
        assert result.unrestricted is True
        assert math.isinf(result.remaining_usd)
        assert result.to_dict()["remaining_usd"] is None


class TestCheckBudget:
    @pytest.fixture
    def nearly_spent(self, ledger):
        ledger.set_budget(
            10.0, project_path=PROJECT, warning_threshold=0.8, hard_stop_enabled=True
        )
        ledger.record_cost(9.5, project_path=PROJECT)
        return ledger

    def test_hard_stop_refuses_overrun(self, nearly_spent):
        result = nearly_spent.check_budget(PROJECT, None, 0.6)
        assert result.allowed is False
        assert "exceed budget limit of $10.00" in result.block_message
        assert result.unrestricted is False

    def test_fitting_operation_allowed_with_warning(self, nearly_spent):
        result = nearly_spent.check_budget(PROJECT, None, 0.4)
        assert result.allowed is True
        assert result.warning_message is not None
        assert "95.0%" in result.warning_message

    def test_landing_exactly_on_limit_is_allowed(self, nearly_spent):
        assert nearly_spent.check_budget(PROJECT, None, 0.5).allowed is True

    def test_spent_budget_refuses_everything(self, ledger):
        ledger.set_budget(1.0, project_path=PROJECT, hard_stop_enabled=True)
        ledger.record_cost(1.0, project_path=PROJECT)
        result = ledger.check_budget(PROJECT, None, 0.0)
        assert result.allowed is False
        assert "reached" in result.block_message

    def test_soft_budget_only_warns(self, ledger):
        ledger.set_budget(1.0, project_path=PROJECT)
        ledger.record_cost(2.0, project_path=PROJECT)
        result = ledger.check_budget(PROJECT, None, 5.0)
        assert result.allowed is True
        assert result.warning_message is not None

    def test_below_threshold_has_no_warning(self, ledger):
        ledger.set_budget(10.0, project_path=PROJECT)
        ledger.record_cost(1.0, project_path=PROJECT)
        assert ledger.check_budget(PROJECT, None, 0.1).warning_message is None

    def test_float_sum_landing_on_limit_is_allowed(self, ledger):
        ledger.set_budget(0.3, project_path=PROJECT, hard_stop_enabled=True)
        ledger.record_cost(0.1, project_path=PROJECT)
        assert ledger.check_budget(PROJECT, None, 0.2).allowed is True

        ledger.record_cost(0.2, project_path=PROJECT)
        result = ledger.check_budget(PROJECT, None, 0.0)
        assert result.allowed is False
        assert "reached" in result.block_message

    @pytest.mark.parametrize("estimate", [-5.0, math.nan, math.inf])
    def test_invalid_estimate_rejected(self, ledger, estimate):
        with pytest.raises(GovernanceValidationError) as exc_info:
            ledger.check_budget(None, "s", estimate)
        assert exc_info.value.field == "estimated_cost_usd"

    def test_missing_estimate_counts_as_zero(self, ledger):
        ledger.set_budget(1.0, session_id="s", hard_stop_enabled=True)
        assert ledger.check_budget(None, "s", None).allowed is True


class TestRecording:
    def test_record_cost_without_budget_returns_none(self, ledger):
        assert ledger.record_cost(1.0, project_path=PROJECT) is None

    def test_negative_cost_rejected(self, ledger):
        with pytest.raises(GovernanceValidationError):
            ledger.record_cost(-0.1, project_path=PROJECT)

    def test_budget_lost_after_write_is_fatal(self, ledger, store, monkeypatch):
        ledger.set_budget(10.0, project_path=PROJECT)
        monkeypatch.setattr(store, "get_budget", lambda budget_id: None)
        with pytest.raises(ConsistencyError):
            ledger.record_cost(1.0, project_path=PROJECT)

    def test_alerts_at_threshold_and_limit(self, ledger, recorder):
        ledger.set_budget(10.0, project_path=PROJECT)
        ledger.record_cost(5.0, project_path=PROJECT)
        assert recorder.of_type(BudgetAlertRaised) == []

        ledger.record_cost(3.5, project_path=PROJECT)
        ledger.record_cost(2.0, project_path=PROJECT)
        alerts = [e.alert for e in recorder.of_type(BudgetAlertRaised)]
        assert [a.type for a in alerts] == [AlertType.WARNING, AlertType.LIMIT_REACHED]
        assert alerts[-1].spent_usd == pytest.approx(10.5)

    def test_reset_zeroes_spent(self, ledger, recorder):
        budget = ledger.set_budget(10.0, project_path=PROJECT)
        ledger.record_cost(4.0, project_path=PROJECT)
        reset = ledger.reset_budget(budget.id)
        assert reset.spent_usd == 0.0
        assert reset.last_reset >= budget.last_reset
        assert recorder.of_type(BudgetReset)[0].budget_id == budget.id

    def test_reset_unknown_budget(self, ledger):
        with pytest.raises(BudgetNotFoundError):
            ledger.reset_budget(999)


class TestProjection:
    def test_projection_extrapolates_average(self, ledger):
        for cost in (0.1, 0.2, 0.3):
            ledger.record_cost(cost, session_id="s-1")
        # avg 0.2 * 2 ops/min * 30 min
        assert ledger.project_session_cost("s-1", 30) == pytest.approx(12.0)

    def test_unknown_session_projects_zero(self, ledger):
        assert ledger.project_session_cost("nobody") == 0.0

    def test_clear_session_history(self, ledger):
        ledger.record_cost(1.0, session_id="s-1")
        ledger.clear_session_history("s-1")
        assert ledger.project_session_cost("s-1") == 0.0
