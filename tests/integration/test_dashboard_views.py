"""Integration tests for the dashboard routes and its decision stream."""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from plyra_governor.core.enums import Decision, DecisionSource
from plyra_governor.dashboard.sse import sse_event_generator
from plyra_governor.observability.audit_log import DecisionLog, DecisionRecord
from plyra_governor.sidecar.server import create_app


@pytest.fixture
def client(governor):
    governor.ledger.set_budget(5.0, project_path="/work/app")
    governor.handle_event(
        {
            "hook_event_name": "PreToolUse",
            "session_id": "s-1",
            "project_path": "/work/app",
            "tool_name": "Bash",
            "tool_input": {"command": "make"},
        }
    )
    return TestClient(create_app(governor))


def _record(session="s-1"):
    return DecisionRecord(
        event_type="PreToolUse",
        session_id=session,
        decision=Decision.ALLOW,
        source=DecisionSource.POLICY,
    )


class TestDashboardRoutes:
    def test_page_renders_state(self, client):
        resp = client.get("/dashboard")
        assert resp.status_code == 200
        assert "PLYRA GOVERNOR" in resp.text
        assert "/work/app" in resp.text
        assert "Bash" in resp.text

    def test_summary(self, client):
        body = client.get("/dashboard/summary").json()
        assert set(body) == {"budgets", "pending", "decisions", "metrics", "coordinator"}
        assert len(body["pending"]) == 1
        assert body["decisions"][0]["decision"] == "deny"
        assert body["metrics"]["queued_decisions"] == 1

    def test_health(self, client):
        body = client.get("/dashboard/health").json()
        assert body["status"] == "ok"
        assert body["decisions_total"] == 1


class TestDecisionStream:
    def test_streams_only_new_records(self):
        async def scenario():
            log = DecisionLog()
            log.write(_record("old"))
            stream = sse_event_generator(log, poll_interval=0.01, keepalive_interval=0.01)
            first = await anext(stream)
            log.write(_record("new"))
            second = await anext(stream)
            await stream.aclose()
            return first, second

        first, second = asyncio.run(scenario())
        assert first == {"comment": "ping"}
        assert second["event"] == "decision"
        assert json.loads(second["data"])["session_id"] == "new"
