"""
Model Pricing
~~~~~~~~~~~~~

Per-million-token prices for Claude models and the helpers that turn
token counts into dollars.
"""

from __future__ import annotations

import re

__all__ = [
    "MODEL_PRICING",
    "DEFAULT_PRICING",
    "CACHE_WRITE_MULTIPLIER",
    "CACHE_READ_MULTIPLIER",
    "normalize_model_name",
    "get_model_pricing",
    "calculate_token_cost",
]

# USD per million tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    # Opus
    "claude-opus-4-5": (5.0, 25.0),
    "claude-opus-4-1": (15.0, 75.0),
    "claude-opus-4": (15.0, 75.0),
    "claude-opus-3": (15.0, 75.0),
    # Sonnet
    "claude-sonnet-4-5": (3.0, 15.0),
    "claude-sonnet-4": (3.0, 15.0),
    "claude-sonnet-3-7": (3.0, 15.0),
    "claude-sonnet-3-5": (3.0, 15.0),
    # Haiku
    "claude-haiku-4-5": (1.0, 5.0),
    "claude-haiku-3-5": (0.8, 4.0),
    "claude-haiku-3": (0.25, 1.25),
}

DEFAULT_PRICING: tuple[float, float] = (3.0, 15.0)

CACHE_WRITE_MULTIPLIER = 1.25
CACHE_READ_MULTIPLIER = 0.10

_DATE_SUFFIX = re.compile(r"-\d{8}$")
# claude-3-5-sonnet -> claude-sonnet-3-5
_LEGACY_NAME = re.compile(r"^claude-(\d+(?:-\d+)?)-(opus|sonnet|haiku)$")


def normalize_model_name(model: str) -> str:
    """
    Map a model identifier onto a ``MODEL_PRICING`` key.

    ``claude-opus-4-5-20251101`` becomes ``claude-opus-4-5`` and the
    legacy ``claude-3-5-sonnet`` ordering becomes ``claude-sonnet-3-5``.
    """
    name = model.strip().lower().replace("_", "-")
    name = _DATE_SUFFIX.sub("", name)
    legacy = _LEGACY_NAME.match(name)
    if legacy:
        version, family = legacy.groups()
        name = f"claude-{family}-{version}"
    return name


def get_model_pricing(model: str | None) -> tuple[float, float]:
    """Return (input, output) USD per million tokens, falling back to Sonnet."""
    if not model:
        return DEFAULT_PRICING
    return MODEL_PRICING.get(normalize_model_name(model), DEFAULT_PRICING)


def calculate_token_cost(
    model: str | None,
    input_tokens: int,
    output_tokens: int,
    cache_write_tokens: int = 0,
    cache_read_tokens: int = 0,
) -> float:
    """Price a token usage in USD (unrounded)."""
    input_price, output_price = get_model_pricing(model)
    return (
        input_tokens * input_price
        + output_tokens * output_price
        + cache_write_tokens * input_price * CACHE_WRITE_MULTIPLIER
        + cache_read_tokens * input_price * CACHE_READ_MULTIPLIER
    ) / 1_000_000
