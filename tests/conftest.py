"""Shared fixtures for plyra-governor tests."""

from __future__ import annotations

import pytest

from plyra_governor.agents.tree import AgentTree
from plyra_governor.budget.ledger import BudgetLedger
from plyra_governor.config.loader import load_config_from_dict
from plyra_governor.coordinator.coordinator import ProjectCoordinator
from plyra_governor.coordinator.registry import ProjectRegistry
from plyra_governor.core.governor import Governor
from plyra_governor.observability.events import EventBus
from plyra_governor.policy.engine import PolicyEngine
from plyra_governor.storage.sqlite_store import SQLiteStore


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list = []
        bus.subscribe(self.events.append)

    def of_type(self, event_type: type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def store():
    """In-memory governance store."""
    s = SQLiteStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture
def ledger(store, bus) -> BudgetLedger:
    return BudgetLedger(store, sink=bus)


@pytest.fixture
def engine(store, bus) -> PolicyEngine:
    return PolicyEngine(store, sink=bus)


@pytest.fixture
def tree(ledger, bus) -> AgentTree:
    return AgentTree(ledger=ledger, sink=bus)


@pytest.fixture
def coordinator(bus) -> ProjectCoordinator:
    c = ProjectCoordinator(registry=ProjectRegistry(), sink=bus)
    c.register_project("alpha", "/work/alpha")
    c.register_project("beta", "/work/beta")
    c.register_project("gamma", "/work/gamma")
    return c


@pytest.fixture
def governor():
    """Governor on an in-memory store, without exporters or default policies."""
    config = load_config_from_dict(
        {
            "observability": {"exporters": []},
            "policy_engine": {"install_defaults": False},
        }
    )
    g = Governor(config=config, store=SQLiteStore(":memory:"))
    yield g
    g.close()


@pytest.fixture
def default_governor():
    """Governor with the built-in policies installed."""
    config = load_config_from_dict({"observability": {"exporters": []}})
    g = Governor(config=config, store=SQLiteStore(":memory:"))
    yield g
    g.close()
