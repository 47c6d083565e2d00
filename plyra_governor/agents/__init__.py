"""Agent hierarchy: registration, delegated budgets, metrics."""

from plyra_governor.agents.models import (
    AgentMetrics,
    AgentNode,
    FlatTreeEntry,
    HierarchySummary,
    TreeVisualizationNode,
)
from plyra_governor.agents.tree import AgentTree

__all__ = [
    "AgentTree",
    "AgentNode",
    "AgentMetrics",
    "FlatTreeEntry",
    "HierarchySummary",
    "TreeVisualizationNode",
]
