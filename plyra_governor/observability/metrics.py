"""
Metrics
~~~~~~~

Prometheus-style counters for admission decisions, recorded costs and
budget alerts.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from plyra_governor.core.enums import Decision
from plyra_governor.observability.audit_log import DecisionRecord

__all__ = ["GovernorMetrics", "MetricsCollector"]


@dataclass
class GovernorMetrics:
    """Metrics snapshot."""

    total_decisions: int = 0
    allowed_decisions: int = 0
    denied_decisions: int = 0
    blocked_decisions: int = 0
    modified_decisions: int = 0
    queued_decisions: int = 0
    budget_alerts: int = 0
    agent_budget_exceeded: int = 0
    recorded_cost_usd: float = 0.0
    avg_duration_ms: float = 0.0
    decisions_by_source: dict[str, int] = field(default_factory=dict)
    decisions_by_tool: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "total_decisions": self.total_decisions,
            "allowed_decisions": self.allowed_decisions,
            "denied_decisions": self.denied_decisions,
            "blocked_decisions": self.blocked_decisions,
            "modified_decisions": self.modified_decisions,
            "queued_decisions": self.queued_decisions,
            "budget_alerts": self.budget_alerts,
            "agent_budget_exceeded": self.agent_budget_exceeded,
            "recorded_cost_usd": self.recorded_cost_usd,
            "avg_duration_ms": self.avg_duration_ms,
            "decisions_by_source": dict(self.decisions_by_source),
            "decisions_by_tool": dict(self.decisions_by_tool),
        }

    def to_prometheus(self) -> str:
        """Render as Prometheus text exposition format."""
        lines: list[str] = [
            f"plyra_governor_total_decisions {self.total_decisions}",
            f"plyra_governor_allowed_decisions {self.allowed_decisions}",
            f"plyra_governor_denied_decisions {self.denied_decisions}",
            f"plyra_governor_blocked_decisions {self.blocked_decisions}",
            f"plyra_governor_modified_decisions {self.modified_decisions}",
            f"plyra_governor_queued_decisions {self.queued_decisions}",
            f"plyra_governor_budget_alerts {self.budget_alerts}",
            f"plyra_governor_agent_budget_exceeded {self.agent_budget_exceeded}",
            f"plyra_governor_recorded_cost_usd {self.recorded_cost_usd}",
            f"plyra_governor_avg_duration_ms {self.avg_duration_ms}",
        ]
        for source, count in self.decisions_by_source.items():
            lines.append(
                f'plyra_governor_decisions_by_source{{source="{source}"}} {count}'
            )
        for tool, count in self.decisions_by_tool.items():
            lines.append(f'plyra_governor_decisions_by_tool{{tool="{tool}"}} {count}')
        return "\n".join(lines) + "\n"


_DECISION_COUNTERS = {
    Decision.ALLOW: "allowed_decisions",
    Decision.DENY: "denied_decisions",
    Decision.BLOCK: "blocked_decisions",
    Decision.MODIFY: "modified_decisions",
}


class MetricsCollector:
    """Thread-safe counters fed by the governor."""

    def __init__(self) -> None:
        self._counters: dict[str, int] = {
            "total_decisions": 0,
            "allowed_decisions": 0,
            "denied_decisions": 0,
            "blocked_decisions": 0,
            "modified_decisions": 0,
            "queued_decisions": 0,
            "budget_alerts": 0,
            "agent_budget_exceeded": 0,
        }
        self._recorded_cost = 0.0
        self._duration_sum = 0.0
        self._by_source: dict[str, int] = {}
        self._by_tool: dict[str, int] = {}
        self._sync_lock = threading.RLock()

    def increment(self, name: str, amount: int = 1) -> None:
        """Increment a counter. Unknown names are ignored."""
        with self._sync_lock:
            if name in self._counters:
                self._counters[name] += amount

    def record_decision(self, record: DecisionRecord) -> None:
        with self._sync_lock:
            self._counters["total_decisions"] += 1
            self._counters[_DECISION_COUNTERS[record.decision]] += 1
            if record.queue_item_id is not None:
                self._counters["queued_decisions"] += 1
            self._duration_sum += record.duration_ms
            source = record.source.value
            self._by_source[source] = self._by_source.get(source, 0) + 1
            if record.tool_name:
                self._by_tool[record.tool_name] = (
                    self._by_tool.get(record.tool_name, 0) + 1
                )

    def add_cost(self, cost_usd: float) -> None:
        with self._sync_lock:
            self._recorded_cost += cost_usd

    def snapshot(self) -> GovernorMetrics:
        with self._sync_lock:
            total = self._counters["total_decisions"]
            return GovernorMetrics(
                **self._counters,
                recorded_cost_usd=round(self._recorded_cost, 6),
                avg_duration_ms=self._duration_sum / total if total else 0.0,
                decisions_by_source=dict(self._by_source),
                decisions_by_tool=dict(self._by_tool),
            )

    def reset(self) -> None:
        with self._sync_lock:
            for key in self._counters:
                self._counters[key] = 0
            self._recorded_cost = 0.0
            self._duration_sum = 0.0
            self._by_source.clear()
            self._by_tool.clear()

