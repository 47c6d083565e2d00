"""Integration tests for the HTTP sidecar."""

import asyncio
import threading

import pytest
from fastapi.testclient import TestClient

from plyra_governor.sidecar.server import _maintenance_loop, create_app


@pytest.fixture
def client(governor):
    return TestClient(create_app(governor))


def _pre(tool="Bash", session="s-1", **tool_input):
    return {
        "hook_event_name": "PreToolUse",
        "session_id": session,
        "project_path": "/work/app",
        "tool_name": tool,
        "tool_input": tool_input,
    }


class TestHooks:
    def test_queued_hook_returns_item_id(self, client):
        resp = client.post("/hooks", json=_pre(command="make"))
        assert resp.status_code == 200
        body = resp.json()
        assert body["decision"] == "deny"
        assert isinstance(body["queue_item_id"], int)
        assert "modified_input" not in body

    def test_malformed_hook_is_422(self, client):
        resp = client.post("/hooks", json={"session_id": "s-1"})
        assert resp.status_code == 422
        assert resp.json()["error"] == "GovernanceValidationError"

    def test_health_and_metrics(self, client):
        client.post("/hooks", json=_pre())
        health = client.get("/health").json()
        assert health["status"] == "ok"
        assert health["pending_approvals"] == 1
        metrics = client.get("/metrics")
        assert metrics.headers["content-type"].startswith("text/plain")
        assert "plyra_governor_total_decisions 1" in metrics.text

    def test_decision_filters(self, client):
        client.post("/hooks", json=_pre(session="a"))
        client.post("/hooks", json=_pre(session="b"))
        decisions = client.get("/decisions", params={"session_id": "b"}).json()["decisions"]
        assert [d["session_id"] for d in decisions] == ["b"]
        assert client.get("/decisions", params={"decision": "nope"}).status_code == 422
        assert client.get("/decisions", params={"from_time": "later"}).status_code == 422


class TestBudgets:
    def test_budget_lifecycle(self, client):
        resp = client.post(
            "/budgets",
            json={"limit_usd": 10.0, "project_path": "/work/app", "hard_stop_enabled": True},
        )
        assert resp.status_code == 201
        budget_id = resp.json()["id"]

        check = client.get(
            "/budgets/check",
            params={"project_path": "/work/app", "estimated_cost_usd": 11.0},
        ).json()
        assert check["allowed"] is False
        assert check["budget_id"] == budget_id

        assert client.post(f"/budgets/{budget_id}/reset").json()["spent_usd"] == 0.0
        assert len(client.get("/budgets").json()["budgets"]) == 1
        assert client.delete(f"/budgets/{budget_id}").status_code == 204
        assert client.delete(f"/budgets/{budget_id}").status_code == 404

    def test_invalid_reset_period(self, client):
        resp = client.post("/budgets", json={"limit_usd": 1.0, "reset_period": "hourly"})
        assert resp.status_code == 422
        assert resp.json()["field"] == "reset_period"

    def test_projection_uses_configured_minutes(self, client, governor):
        governor.ledger.record_cost(0.5, session_id="s-1")
        body = client.get("/budgets/projection", params={"session_id": "s-1"}).json()
        assert body["minutes"] == 30
        assert body["projected_cost_usd"] == pytest.approx(30.0)


class TestPoliciesAndQueue:
    def test_policy_crud(self, client):
        resp = client.post(
            "/policies",
            json={"name": "no bash", "matcher": "Bash", "action": "auto-deny", "priority": 5},
        )
        assert resp.status_code == 201
        policy_id = resp.json()["id"]

        patched = client.patch(f"/policies/{policy_id}", json={"priority": 9}).json()
        assert patched["priority"] == 9
        assert patched["action"] == "auto-deny"

        assert client.post("/hooks", json=_pre()).json()["decision"] == "deny"
        assert client.delete(f"/policies/{policy_id}").status_code == 204
        assert client.patch(f"/policies/{policy_id}", json={"priority": 1}).status_code == 404

    def test_policy_validation(self, client):
        resp = client.post("/policies", json={"name": "x", "matcher": "", "action": "queue"})
        assert resp.status_code == 422

    def test_approve_then_retry(self, client):
        item_id = client.post("/hooks", json=_pre()).json()["queue_item_id"]
        assert client.get(f"/queue/{item_id}").json()["status"] == "pending"

        approved = client.post(f"/queue/{item_id}/approve")
        assert approved.json()["status"] == "approved"
        again = client.post(f"/queue/{item_id}/deny", json={"decided_by": "user"})
        assert again.json()["status"] == "approved"

        assert client.get("/queue", params={"status": "pending"}).json()["items"] == []
        assert client.post("/queue/999/approve").status_code == 404
        assert client.get("/queue/999").status_code == 404

    def test_batch_and_expire(self, client):
        ids = [client.post("/hooks", json=_pre()).json()["queue_item_id"] for _ in range(2)]
        result = client.post("/queue/batch-deny", json={"ids": [ids[0], 404]}).json()
        assert result == {"succeeded": [ids[0]], "skipped": [], "missing": [404]}
        assert client.post("/queue/expire", json={"max_age_seconds": 3600}).json() == {
            "expired": []
        }
        assert client.get("/queue", params={"status": "bogus"}).status_code == 422


class TestAgents:
    @pytest.fixture
    def tree(self, client):
        for payload in (
            {"hook_event_name": "SessionStart", "session_id": "root"},
            {"hook_event_name": "SubagentStart", "session_id": "kid", "parent_session_id": "root"},
        ):
            client.post("/hooks", json=payload)
        return client

    def test_tree_views(self, tree):
        view = tree.get("/agents/root/tree").json()
        assert view["children"][0]["session_id"] == "kid"
        rows = tree.get("/agents/root/flat").json()["rows"]
        assert [r["indent"] for r in rows] == [0, 1]
        assert tree.get("/agents/root/summary").json()["total_agents"] == 2
        assert tree.get("/agents/ghost/tree").status_code == 404

    def test_allocation_conflict_is_409(self, tree):
        assert tree.post("/agents/root/budget", json={"amount_usd": 1.0}).status_code == 200
        resp = tree.post("/agents/kid/budget", json={"amount_usd": 5.0})
        assert resp.status_code == 409
        assert resp.json()["error"] == "BudgetAllocationError"

    def test_terminate_and_metrics(self, tree):
        assert tree.post("/agents/root/terminate").json()["status"] == "terminated"
        metrics = tree.get("/agents/metrics").json()["metrics"]
        assert metrics[0]["failure_count"] == 2


class TestProjects:
    def test_project_flow(self, client):
        for pid in ("web", "api"):
            assert client.post(
                "/projects", json={"project_id": pid, "path": f"/work/{pid}"}
            ).status_code == 201

        listing = client.get("/projects").json()
        assert [p["project_id"] for p in listing["projects"]] == ["web", "api"]
        assert listing["active_project_id"] is None

        client.post("/projects/api/switch")
        events = client.get("/projects/web/events").json()["events"]
        assert events[0]["data"] == {"new_focus": "api"}
        assert client.post(f"/events/{events[0]['id']}/handled").json() == {"handled": True}

        sent = client.post(
            "/projects/web/broadcast",
            json={"type": "build:done", "target_project_ids": ["api"]},
        )
        assert sent.status_code == 201
        assert sent.json()["target_project_ids"] == ["api"]
        assert client.get("/projects/api/state").json()["project_path"] == "/work/api"
        assert client.get("/coordinator/status").json()["active_projects"] == ["web", "api"]

        assert client.delete("/projects/web").status_code == 204
        assert client.get("/projects/web/state").status_code == 404
        assert client.post("/projects/web/broadcast", json={"type": "x"}).status_code == 404
        assert client.post("/projects/web/switch").status_code == 404


class TestMaintenanceLoop:
    def test_runs_maintenance_off_the_event_loop(self):
        class Recorder:
            def __init__(self):
                self.threads = []

            def run_maintenance(self):
                self.threads.append(threading.get_ident())
                return {"queue_items_expired": 0}

        recorder = Recorder()

        async def scenario():
            task = asyncio.create_task(_maintenance_loop(recorder, 0.01))
            while not recorder.threads:
                await asyncio.sleep(0.01)
            task.cancel()
            loop_thread = threading.get_ident()
            try:
                await task
            except asyncio.CancelledError:
                pass
            return loop_thread

        loop_thread = asyncio.run(asyncio.wait_for(scenario(), timeout=5))
        assert recorder.threads
        assert loop_thread not in recorder.threads
