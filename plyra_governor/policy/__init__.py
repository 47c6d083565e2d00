"""Approval policy engine, matchers and conditions."""

from plyra_governor.policy.conditions import check_conditions
from plyra_governor.policy.engine import DEFAULT_POLICIES, PolicyEngine
from plyra_governor.policy.matcher import (
    glob_to_regex,
    match_glob,
    match_pattern,
    validate_matcher,
)

__all__ = [
    "PolicyEngine",
    "DEFAULT_POLICIES",
    "check_conditions",
    "glob_to_regex",
    "match_glob",
    "match_pattern",
    "validate_matcher",
]
