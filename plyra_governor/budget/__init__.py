"""Budget ledger, cost estimation and model pricing."""

from plyra_governor.budget.cost_estimator import TOOL_TOKEN_ESTIMATES, CostEstimator
from plyra_governor.budget.ledger import BudgetLedger
from plyra_governor.budget.pricing import (
    MODEL_PRICING,
    calculate_token_cost,
    get_model_pricing,
    normalize_model_name,
)

__all__ = [
    "BudgetLedger",
    "CostEstimator",
    "TOOL_TOKEN_ESTIMATES",
    "MODEL_PRICING",
    "calculate_token_cost",
    "get_model_pricing",
    "normalize_model_name",
]
