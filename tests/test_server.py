"""
Server API tests using FastAPI's TestClient.
"""

import asyncio
import threading
import time

import pytest
from fastapi.testclient import TestClient

import server
from ocedeclare.evaluation.client import BaseEvaluatorClient, EvaluationTransportError
from ocedeclare.evaluation.results import EvaluationResponse


class EchoEvaluator(BaseEvaluatorClient):
    """Answers every planned node with one satisfied situation."""

    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    async def check_constraints(self, request):
        self.calls.append(request)
        if self.fail:
            raise EvaluationTransportError("evaluator unreachable")
        return EvaluationResponse.model_validate({
            "evaluationResults": [
                {"situationCount": 1, "situationViolatedCount": 0, "situations": []}
                for _ in request["nodesOrder"]
            ],
            "eventIds": [],
            "objectIds": [],
        })



class GatedEvaluator(EchoEvaluator):
    """Holds each call until the test opens the gate (or a few seconds pass)."""

    def __init__(self):
        super().__init__()
        self.gate = threading.Event()

    async def check_constraints(self, request):
        for _ in range(500):
            if self.gate.is_set():
                break
            await asyncio.sleep(0.01)
        return await super().check_constraints(request)


def _wait_until_idle(timeout: float = 5.0):
    deadline = time.monotonic() + timeout
    while server.orchestrator.in_progress and time.monotonic() < deadline:
        time.sleep(0.01)

@pytest.fixture
def evaluator() -> EchoEvaluator:
    return EchoEvaluator()


@pytest.fixture
def client(evaluator) -> TestClient:
    server.reset_session(client=evaluator)
    return TestClient(server.app)


@pytest.fixture
def populated(client) -> TestClient:
    """A (ob_0) -> B (ob_1), plus an unconnected OR gate."""
    commands = [
        {"type": "add_node", "node": {
            "kind": "event_type", "id": "A", "event_type": "place order",
            "new_object_vars": {"0": ["orders"]},
        }},
        {"type": "add_node", "node": {
            "kind": "event_type", "id": "B", "event_type": "pay order",
            "new_object_vars": {"1": ["items"]},
        }},
        {"type": "add_node", "node": {"kind": "gate", "id": "GATE", "gate_type": "or"}},
        {"type": "add_edge", "source": "A", "target": "B"},
    ]
    for command in commands:
        response = client.post("/api/commands", json=command)
        assert response.status_code == 200
    return client


class TestGraphRoutes:
    """Tests for graph editing routes."""

    def test_commands_build_graph(self, populated):
        graph = populated.get("/api/graph").json()
        assert [n["id"] for n in graph["nodes"]] == ["A", "B", "GATE"]
        assert graph["edges"][0]["id"] == "A-source|||B-target"

    def test_unbounded_count_is_sentinel_on_the_wire(self, populated):
        graph = populated.get("/api/graph").json()
        assert graph["nodes"][0]["count_constraint"]["max"] == 2**53 - 1

    def test_loop_is_rejected_with_warning(self, populated):
        response = populated.post("/api/commands", json={"type": "add_edge", "source": "B", "target": "A"})
        body = response.json()
        assert response.status_code == 200
        assert body["applied"] is False
        assert body["warning"] == "Invalid connection: Loops are forbidden!"

    def test_unknown_node_is_404(self, populated):
        response = populated.post("/api/commands", json={"type": "delete_node", "node_id": "Z"})
        assert response.status_code == 404

    def test_invalid_command_is_400(self, client):
        assert client.post("/api/commands", json={"type": "nope"}).status_code == 400

    def test_put_graph(self, client):
        response = client.put("/api/graph", json={
            "nodes": [{"kind": "event_type", "id": "X", "event_type": "x"}],
            "edges": [],
        })
        assert response.status_code == 200
        assert client.get("/api/status").json()["node_count"] == 1

    def test_scope(self, populated):
        body = populated.get("/api/scope/B", params={"kind": "object"}).json()
        assert body["indices"] == [0, 1]
        assert populated.get("/api/scope/Z").status_code == 404
        assert populated.get("/api/scope/B", params={"kind": "thing"}).status_code == 400


class TestEvaluationRoutes:
    """Tests for compile / evaluate / clear routes."""

    def test_compile(self, populated):
        body = populated.post("/api/compile").json()
        assert body["ok"] is True
        assert body["order"] == ["GATE", "A", "B"]
        assert body["plan"] == ["A", "B"]
        assert body["diagnostics"] == []
        assert len(body["request"]["nodesOrder"]) == 2

    def test_evaluate_and_read_results(self, populated, evaluator):
        response = populated.post("/api/evaluate")
        assert response.status_code == 200
        assert response.json()["status"] == "finished"
        assert len(evaluator.calls) == 1

        results = populated.get("/api/results").json()
        assert set(results["evalRes"]) == {"A", "B"}

        listing = populated.get("/api/evaluations").json()["evaluations"]
        assert listing[0]["plan_id"] == results["plan_id"]
        latest = populated.get("/api/evaluations/latest").json()
        assert latest["request"]["nodesOrder"][0]["id"] == "A"

    def test_cycle_is_422_and_nothing_sent(self, client, evaluator):
        client.put("/api/graph", json={
            "nodes": [
                {"kind": "event_type", "id": "A", "event_type": "a", "new_event_vars": {"0": ["a"]}},
                {"kind": "event_type", "id": "B", "event_type": "b"},
            ],
            "edges": [{"source": "A", "target": "B"}, {"source": "B", "target": "A"}],
        })
        response = client.post("/api/evaluate")

        assert response.status_code == 422
        kinds = [d["kind"] for d in response.json()["detail"]["diagnostics"]]
        assert kinds == ["cycle_detected", "unreachable_nodes"]
        assert evaluator.calls == []

    def test_transport_failure_is_502(self, populated):
        server.orchestrator._client = EchoEvaluator(fail=True)
        assert populated.post("/api/evaluate").status_code == 502
        assert populated.get("/api/results").status_code == 404

    def test_clear(self, populated):
        populated.post("/api/evaluate")
        body = populated.post("/api/clear").json()

        assert body["generation"] == 1
        assert populated.get("/api/results").status_code == 404

    def test_unknown_evaluation_is_404(self, client):
        assert client.get("/api/evaluations/plan_missing").status_code == 404
        assert client.get("/api/evaluations/latest").status_code == 404


class TestWebSocket:
    """Tests for the notification socket."""

    def test_connect_and_receive_notifications(self, populated):
        with populated.websocket_connect("/ws") as ws:
            hello = ws.receive_json()
            assert hello["type"] == "connected"
            assert hello["event"]["schema_version"] == "1.0"

            ws.send_json({"action": "clear"})
            cleared = ws.receive_json()
            assert cleared["type"] == "evaluation_cleared"

    def test_non_object_message_is_ignored(self, populated):
        with populated.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("[1, 2]")
            ws.send_text("42")

            ws.send_json({"action": "clear"})
            assert ws.receive_json()["type"] == "evaluation_cleared"

    def test_clear_is_read_while_evaluating(self, populated):
        gated = GatedEvaluator()
        server.orchestrator._client = gated

        with populated.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"action": "evaluate"})
            assert ws.receive_json()["type"] == "evaluation_started"

            ws.send_json({"action": "clear"})
            assert ws.receive_json()["type"] == "evaluation_cleared"

            gated.gate.set()
            _wait_until_idle()
            ws.send_json({"action": "clear"})
            # the cleared evaluation never reports back
            assert ws.receive_json()["type"] == "evaluation_cleared"

        assert len(gated.calls) == 1
        assert populated.get("/api/results").status_code == 404

    def test_second_evaluate_is_rejected_to_sender(self, populated):
        gated = GatedEvaluator()
        server.orchestrator._client = gated

        with populated.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"action": "evaluate"})
            assert ws.receive_json()["type"] == "evaluation_started"

            ws.send_json({"action": "evaluate"})
            rejected = ws.receive_json()
            assert rejected["type"] == "evaluation_rejected"
            assert "in progress" in rejected["message"]

            gated.gate.set()
            assert ws.receive_json()["type"] == "evaluation_finished"

        assert len(gated.calls) == 1
        assert populated.get("/api/results").status_code == 200
