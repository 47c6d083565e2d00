"""Tests for the decision log, metrics and the stdout exporter."""

import io
import json
import math
from datetime import timedelta

from plyra_governor.core.enums import Decision, DecisionSource
from plyra_governor.core.models import utcnow
from plyra_governor.observability.audit_log import DecisionFilter, DecisionLog, DecisionRecord
from plyra_governor.observability.exporters.stdout_exporter import StdoutExporter
from plyra_governor.observability.metrics import MetricsCollector


def _record(session="s-1", decision=Decision.ALLOW, source=DecisionSource.POLICY, **kw):
    return DecisionRecord(
        event_type="PreToolUse",
        session_id=session,
        decision=decision,
        source=source,
        **kw,
    )


class _Boom:
    def export(self, record):
        raise RuntimeError("down")


class TestDecisionLog:
    def test_evicts_oldest(self):
        log = DecisionLog(max_entries=2)
        records = [_record(session=str(i)) for i in range(3)]
        for r in records:
            log.write(r)
        assert [r.session_id for r in log.query()] == ["1", "2"]

    def test_query_filters_and_limits(self):
        log = DecisionLog()
        log.write(_record(tool_name="Bash"))
        log.write(_record(decision=Decision.DENY, tool_name="Bash"))
        log.write(_record(session="s-2", tool_name="Read"))
        log.write(_record(decision=Decision.DENY, tool_name="Edit"))

        denied = log.query(DecisionFilter(decision=Decision.DENY))
        assert [r.tool_name for r in denied] == ["Bash", "Edit"]
        assert len(log.query(DecisionFilter(session_id="s-2"))) == 1
        latest = log.query(DecisionFilter(limit=2))
        assert [r.tool_name for r in latest] == ["Read", "Edit"]

    def test_time_window_filter(self):
        log = DecisionLog()
        log.write(_record())
        future = utcnow() + timedelta(hours=1)
        assert log.query(DecisionFilter(from_time=future)) == []
        assert len(log.query(DecisionFilter(to_time=future))) == 1

    def test_recent_is_newest_first(self):
        log = DecisionLog()
        for i in range(3):
            log.write(_record(session=str(i)))
        assert [r.session_id for r in log.recent(2)] == ["2", "1"]
        assert log.recent(0) == []

    def test_failing_exporter_does_not_reach_caller(self):
        log = DecisionLog()
        log.add_exporter(_Boom())
        log.write(_record())
        assert len(log) == 1

    def test_listener_unsubscribe(self):
        log = DecisionLog()
        seen = []
        remove = log.add_listener(seen.append)
        log.write(_record())
        remove()
        log.write(_record())
        assert len(seen) == 1

    def test_infinite_remaining_serializes_as_none(self):
        data = _record(remaining_usd=math.inf).to_dict()
        assert data["remaining_usd"] is None
        assert data["source"] == "policy"


class TestStdoutExporter:
    def test_writes_json_lines(self):
        stream = io.StringIO()
        exporter = StdoutExporter(stream=stream)
        exporter.export(_record(tool_name="Bash"))
        exporter.export(_record(decision=Decision.BLOCK, source=DecisionSource.BUDGET))
        lines = stream.getvalue().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[1])["decision"] == "block"


class TestMetrics:
    def test_counts_by_decision_source_and_tool(self):
        collector = MetricsCollector()
        collector.record_decision(_record(tool_name="Bash"))
        collector.record_decision(_record(decision=Decision.DENY, queue_item_id=4))
        collector.record_decision(
            _record(decision=Decision.BLOCK, source=DecisionSource.BUDGET, tool_name="Bash")
        )
        collector.increment("budget_alerts")
        collector.increment("not_a_counter")
        collector.add_cost(0.25)

        snapshot = collector.snapshot()
        assert snapshot.total_decisions == 3
        assert (snapshot.allowed_decisions, snapshot.denied_decisions) == (1, 1)
        assert snapshot.blocked_decisions == 1
        assert snapshot.queued_decisions == 1
        assert snapshot.budget_alerts == 1
        assert snapshot.recorded_cost_usd == 0.25
        assert snapshot.decisions_by_source == {"policy": 2, "budget": 1}
        assert snapshot.decisions_by_tool == {"Bash": 2}

    def test_prometheus_rendering(self):
        collector = MetricsCollector()
        collector.record_decision(_record(tool_name="Read"))
        text = collector.snapshot().to_prometheus()
        assert "plyra_governor_total_decisions 1\n" in text
        assert 'plyra_governor_decisions_by_tool{tool="Read"} 1' in text
        assert text.endswith("\n")

    def test_reset(self):
        collector = MetricsCollector()
        collector.record_decision(_record())
        collector.reset()
        assert collector.snapshot().total_decisions == 0
