"""
Tests for Evaluation
====================

Tests the evaluator client, response models and the evaluate/clear
lifecycle of EvaluationOrchestrator.
"""

import asyncio
import json
from typing import Any, Optional

import httpx
import pytest

from ocedeclare.core.compiler import GraphCompileError
from ocedeclare.core.graph import ConstraintGraph
from ocedeclare.core.schema import Edge, EventTypeNode
from ocedeclare.editor.commands import DeleteNode
from ocedeclare.editor.state import AppState
from ocedeclare.evaluation.client import (
    BaseEvaluatorClient,
    EvaluationTransportError,
    HttpEvaluatorClient,
)
from ocedeclare.evaluation.orchestrator import EvaluationInProgressError, EvaluationOrchestrator
from ocedeclare.evaluation.results import (
    Binding,
    EvaluationResponse,
    EvaluationResult,
    NodeResults,
    describe_violation,
)
from ocedeclare.platform.cache import ResultCache


# =============================================================================
# Fixtures
# =============================================================================

def _response_for(request: dict[str, Any], violated: int = 0) -> dict[str, Any]:
    """Evaluator response with one entry per planned node."""
    return {
        "evaluationResults": [
            {
                "situationCount": 2,
                "situationViolatedCount": violated,
                "situations": [
                    [{"eventMap": {"0": 0}, "objectMap": {"0": 0}}, None],
                    [{"eventMap": {"0": 1}, "objectMap": {"0": 0}},
                     "NoChildrenOfORSatisfied" if violated else None],
                ],
            }
            for _ in request["nodesOrder"]
        ],
        "eventIds": ["e1", "e2"],
        "objectIds": ["o1"],
    }


class StubEvaluator(BaseEvaluatorClient):
    """In-process evaluator; optionally blocks until released."""

    def __init__(self, block: bool = False, fail: Optional[Exception] = None, drop_last: bool = False):
        self.calls: list[dict[str, Any]] = []
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        if not block:
            self.release.set()
        self.fail = fail
        self.drop_last = drop_last

    async def check_constraints(self, request):
        self.calls.append(request)
        self.started.set()
        await self.release.wait()
        if self.fail is not None:
            raise self.fail
        data = _response_for(request)
        if self.drop_last:
            data["evaluationResults"] = data["evaluationResults"][:-1]
        return EvaluationResponse.model_validate(data)


@pytest.fixture
def valid_graph() -> ConstraintGraph:
    return ConstraintGraph(
        nodes=[
            EventTypeNode(id="A", event_type="place order", new_object_vars={0: {"orders"}}),
            EventTypeNode(id="B", event_type="pay order", new_event_vars={0: {"pay order"}}),
        ],
        edges=[Edge(source="A", target="B")],
    )


@pytest.fixture
def cyclic_graph() -> ConstraintGraph:
    return ConstraintGraph(
        nodes=[
            EventTypeNode(id="A", event_type="a", new_event_vars={0: {"a"}}),
            EventTypeNode(id="B", event_type="b"),
        ],
        edges=[Edge(source="A", target="B"), Edge(source="B", target="A")],
    )


@pytest.fixture
def notifications() -> list[dict[str, Any]]:
    return []


def _orchestrator(graph, client, notifications, cache=None) -> EvaluationOrchestrator:
    return EvaluationOrchestrator(
        AppState(graph=graph),
        client,
        cache=cache,
        notify=notifications.append,
    )


# =============================================================================
# Result Model Tests
# =============================================================================

class TestResultModels:
    """Tests for response parsing and re-association by node id."""

    def test_parse_response(self):
        response = EvaluationResponse.model_validate(_response_for({"nodesOrder": [{}]}, violated=1))
        result = response.evaluation_results[0]

        assert result.situation_count == 2
        assert result.violation_percentage == 50.0
        assert len(result.violations()) == 1
        binding = result.situations[0][0]
        assert binding.resolve(response.event_ids, response.object_ids) == {"ev_0": "e1", "ob_0": "o1"}

    def test_violated_exceeds_total_rejected(self):
        with pytest.raises(ValueError):
            EvaluationResult(situation_count=1, situation_violated_count=2)

    def test_tagged_violation_reason(self):
        result = EvaluationResult.model_validate({
            "situationCount": 1,
            "situationViolatedCount": 1,
            "situations": [[{"eventMap": {}, "objectMap": {"0": 0}}, {"TooFewMatchingEvents": 0}]],
        })
        reason = result.situations[0][1]
        assert reason == {"TooFewMatchingEvents": 0}
        assert describe_violation(reason) == "Too few matching events (0)"

    def test_describe_violation(self):
        assert describe_violation(None) == "Satisfied"
        assert describe_violation("ChildNotSatisfied") == "Child not satisfied"
        assert describe_violation("SomethingNew") == "SomethingNew"

    def test_zip_by_position(self):
        response = EvaluationResponse.model_validate(_response_for({"nodesOrder": [{}, {}]}))
        results = NodeResults.from_response(["A", "B"], response, plan_id="plan_x")

        assert list(results.evaluations) == ["A", "B"]
        assert results.get("B").situation_count == 2
        assert results.summary() == {"situations": [2, 2], "violations": [0, 0]}
        assert results.to_dict()["plan_id"] == "plan_x"

    def test_short_response_rejected(self):
        response = EvaluationResponse.model_validate(_response_for({"nodesOrder": [{}]}))
        with pytest.raises(ValueError):
            NodeResults.from_response(["A", "B"], response)

    def test_binding_outside_id_table_rejected(self):
        data = _response_for({"nodesOrder": [{}]})
        data["objectIds"] = []
        response = EvaluationResponse.model_validate(data)
        with pytest.raises(ValueError):
            NodeResults.from_response(["A"], response)

    def test_binding_aliases(self):
        binding = Binding.model_validate({"eventMap": {"1": 3}})
        assert binding.event_map == {1: 3}
        assert binding.object_map == {}


# =============================================================================
# HTTP Client Tests
# =============================================================================

class TestHttpEvaluatorClient:
    """Tests for the httpx-based evaluator client."""

    @pytest.mark.asyncio
    async def test_posts_plan_and_parses_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_response_for(seen["body"]))

        client = HttpEvaluatorClient("http://evaluator:3000/", transport=httpx.MockTransport(handler))
        response = await client.check_constraints({"variables": [], "nodesOrder": [{"id": "A"}]})

        assert seen["url"] == "http://evaluator:3000/ocel/check-constraints"
        assert seen["body"]["nodesOrder"] == [{"id": "A"}]
        assert len(response.evaluation_results) == 1

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        client = HttpEvaluatorClient("http://evaluator", transport=transport)
        with pytest.raises(EvaluationTransportError):
            await client.check_constraints({"variables": [], "nodesOrder": []})

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = HttpEvaluatorClient("http://evaluator", transport=httpx.MockTransport(handler))
        with pytest.raises(EvaluationTransportError):
            await client.check_constraints({"variables": [], "nodesOrder": []})

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="not json"))
        client = HttpEvaluatorClient("http://evaluator", transport=transport)
        with pytest.raises(EvaluationTransportError):
            await client.check_constraints({"variables": [], "nodesOrder": []})

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"unexpected": True}))
        client = HttpEvaluatorClient("http://evaluator", transport=transport)
        with pytest.raises(EvaluationTransportError):
            await client.check_constraints({"variables": [], "nodesOrder": []})


# =============================================================================
# Orchestrator Tests
# =============================================================================

class TestEvaluationOrchestrator:
    """Tests for the evaluate / clear lifecycle."""

    @pytest.mark.asyncio
    async def test_evaluate_applies_results(self, valid_graph, notifications):
        cache = ResultCache()
        orch = _orchestrator(valid_graph, StubEvaluator(), notifications, cache=cache)

        results = await orch.evaluate()

        assert results is not None
        assert list(results.evaluations) == ["A", "B"]
        assert orch.state.results is results
        assert not orch.in_progress
        assert cache.latest_plan_id() == results.plan_id
        assert notifications[-1]["type"] == "evaluation_finished"

    @pytest.mark.asyncio
    async def test_second_evaluate_rejected_while_in_flight(self, valid_graph, notifications):
        client = StubEvaluator(block=True)
        orch = _orchestrator(valid_graph, client, notifications)

        first = asyncio.create_task(orch.evaluate())
        await client.started.wait()
        assert orch.in_progress

        with pytest.raises(EvaluationInProgressError):
            await orch.evaluate()

        client.release.set()
        await first
        assert len(client.calls) == 1
        assert not orch.in_progress

    @pytest.mark.asyncio
    async def test_clear_drops_late_response(self, valid_graph, notifications):
        client = StubEvaluator(block=True)
        orch = _orchestrator(valid_graph, client, notifications)

        task = asyncio.create_task(orch.evaluate())
        await client.started.wait()
        await orch.clear()
        client.release.set()

        assert await task is None
        assert orch.state.results is None
        assert orch.state.generation == 1
        assert not orch.in_progress
        assert [n["type"] for n in notifications] == ["evaluation_started", "evaluation_cleared"]

    @pytest.mark.asyncio
    async def test_compile_error_sends_nothing(self, cyclic_graph, notifications):
        client = StubEvaluator()
        orch = _orchestrator(cyclic_graph, client, notifications)

        with pytest.raises(GraphCompileError):
            await orch.evaluate()

        assert client.calls == []
        assert not orch.in_progress
        types = [n["type"] for n in notifications]
        assert "cycle_detected" in types
        assert "unreachable_nodes" in types

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_results(self, valid_graph, notifications):
        orch = _orchestrator(valid_graph, StubEvaluator(), notifications)
        previous = await orch.evaluate()

        orch._client = StubEvaluator(fail=EvaluationTransportError("connection refused"))
        with pytest.raises(EvaluationTransportError):
            await orch.evaluate()

        assert orch.state.results is previous
        assert not orch.in_progress
        assert notifications[-1]["type"] == "evaluation_failed"
        assert notifications[-1]["severity"] == "error"

    @pytest.mark.asyncio
    async def test_short_response_is_a_transport_failure(self, valid_graph, notifications):
        orch = _orchestrator(valid_graph, StubEvaluator(drop_last=True), notifications)

        with pytest.raises(EvaluationTransportError):
            await orch.evaluate()

        assert orch.state.results is None
        assert notifications[-1]["type"] == "evaluation_failed"

    @pytest.mark.asyncio
    async def test_async_notify_callback(self, valid_graph):
        received = []

        async def notify(message):
            received.append(message["type"])

        orch = EvaluationOrchestrator(AppState(graph=valid_graph), StubEvaluator(), notify=notify)
        await orch.evaluate()
        await orch.clear()

        assert received == ["evaluation_started", "evaluation_finished", "evaluation_cleared"]

    @pytest.mark.asyncio
    async def test_node_deleted_in_flight_gets_no_result(self, valid_graph, notifications):
        client = StubEvaluator(block=True)
        orch = _orchestrator(valid_graph, client, notifications)

        task = asyncio.create_task(orch.evaluate())
        await client.started.wait()
        orch.state.dispatch(DeleteNode(node_id="B"))
        client.release.set()
        results = await task

        assert orch.state.graph.node_ids() == ["A"]
        assert list(results.evaluations) == ["A"]
        assert "B" not in orch.state.results.evaluations
        assert notifications[-1]["node_ids"] == ["A"]
        assert notifications[-1]["situations"] == [2]

    @pytest.mark.asyncio
    async def test_started_notification_precedes_call(self, valid_graph, notifications):
        client = StubEvaluator(block=True)
        orch = _orchestrator(valid_graph, client, notifications)

        task = asyncio.create_task(orch.evaluate())
        await client.started.wait()
        assert [n["type"] for n in notifications] == ["evaluation_started"]
        assert notifications[0]["node_ids"] == ["A", "B"]

        client.release.set()
        await task
        assert notifications[-1]["type"] == "evaluation_finished"
