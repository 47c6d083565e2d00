"""
Cost Estimator
~~~~~~~~~~~~~~

Pre-execution cost estimates per tool category, and post-execution
cost from the actual input and response sizes.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any

from plyra_governor.budget.pricing import calculate_token_cost
from plyra_governor.core.enums import Confidence
from plyra_governor.core.models import CostEstimate

__all__ = ["CostEstimator", "TOOL_TOKEN_ESTIMATES"]

logger = logging.getLogger(__name__)

# Baseline (input, output) tokens per tool call.
TOOL_TOKEN_ESTIMATES: dict[str, tuple[int, int]] = {
    "Read": (100, 2000),
    "Write": (2000, 100),
    "Edit": (1000, 500),
    "Bash": (200, 1000),
    "Glob": (50, 500),
    "Grep": (100, 1000),
    "LSP": (100, 500),
    "WebFetch": (100, 3000),
    "WebSearch": (100, 2000),
    "Task": (500, 2000),
    "TodoWrite": (200, 100),
    "NotebookEdit": (500, 500),
    "default": (500, 1000),
}

_PACKAGE_MANAGERS = ("npm", "yarn", "pnpm")


class CostEstimator:
    """
    Turns tool calls into dollar figures.

    Estimates are heuristics and never fail: an unknown tool falls back
    to the ``default`` baseline and an unknown model to Sonnet pricing.
    """

    def __init__(
        self,
        default_model: str = "claude-sonnet-4",
        chars_per_token: int = 4,
    ) -> None:
        self._default_model = default_model
        self._chars_per_token = chars_per_token

    @property
    def default_model(self) -> str:
        return self._default_model

    def _tokens(self, text: str) -> int:
        return math.ceil(len(text) / self._chars_per_token)

    def estimate_cost(
        self,
        tool_category: str,
        tool_input: dict[str, Any] | None = None,
        model: str | None = None,
    ) -> CostEstimate:
        """Estimate the cost of a tool call before it runs."""
        tool_input = tool_input or {}
        model = model or self._default_model
        input_tokens, output_tokens = TOOL_TOKEN_ESTIMATES.get(
            tool_category, TOOL_TOKEN_ESTIMATES["default"]
        )
        confidence = Confidence.MEDIUM

        content = tool_input.get("content")
        if tool_category == "Write" and content:
            input_tokens = self._tokens(str(content))
            confidence = Confidence.HIGH
        elif tool_category in ("Read", "Grep"):
            output_tokens *= 2
            confidence = Confidence.LOW
        elif tool_category == "Bash":
            command = str(tool_input.get("command") or "")
            if any(pm in command for pm in _PACKAGE_MANAGERS):
                output_tokens = 3000
            confidence = Confidence.LOW
        elif tool_category == "Task":
            # Sub-agents run whole conversations of their own.
            input_tokens, output_tokens = 2000, 5000
            confidence = Confidence.LOW

        cost = calculate_token_cost(model, input_tokens, output_tokens)
        return CostEstimate(
            tool_category=tool_category,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=round(cost, 4),
            model=model,
            confidence=confidence,
        )

    def calculate_actual_cost(
        self,
        tool_category: str,
        tool_input: dict[str, Any] | None,
        tool_response: Any,
        model: str | None = None,
        cache_write_tokens: int = 0,
        cache_read_tokens: int = 0,
    ) -> float:
        """
        Price a finished tool call from the size of what went in and out.

        ``tool_response`` may be a string, or a mapping whose ``content``
        (or, failing that, the whole mapping) is measured.
        """
        input_text = json.dumps(tool_input or {}, default=str)
        if isinstance(tool_response, str):
            output_text = tool_response
        elif isinstance(tool_response, dict) and "content" in tool_response:
            content = tool_response["content"]
            output_text = content if isinstance(content, str) else json.dumps(
                content, default=str
            )
        elif tool_response is None:
            output_text = ""
        else:
            output_text = json.dumps(tool_response, default=str)

        cost = calculate_token_cost(
            model or self._default_model,
            self._tokens(input_text),
            self._tokens(output_text),
            cache_write_tokens,
            cache_read_tokens,
        )
        logger.debug("Actual cost for %s: $%.4f", tool_category, cost)
        return round(cost, 4)
