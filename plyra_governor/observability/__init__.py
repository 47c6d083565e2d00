"""Governance observability: typed events, decision log, metrics and exporters."""

from plyra_governor.observability.audit_log import (
    DecisionFilter,
    DecisionLog,
    DecisionRecord,
)
from plyra_governor.observability.events import EventBus, EventSink, NullSink
from plyra_governor.observability.exporters import StdoutExporter
from plyra_governor.observability.metrics import GovernorMetrics, MetricsCollector

__all__ = [
    "DecisionFilter",
    "DecisionLog",
    "DecisionRecord",
    "EventBus",
    "EventSink",
    "GovernorMetrics",
    "MetricsCollector",
    "NullSink",
    "StdoutExporter",
]
