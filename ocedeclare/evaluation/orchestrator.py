"""
Evaluation Orchestrator
=======================

Runs one evaluation round trip for the current graph.

The orchestrator:
1. Compiles the graph (refusing to send anything on structural errors)
2. Sends the assembled plan to the evaluator, one call at a time
3. Zips the response back to node ids by position
4. Drops responses that arrive after a clear(), and results for nodes
   deleted while the call was in flight
5. Publishes user-facing notifications for each outcome
"""

import inspect
from typing import Any, Callable, Optional

from ocedeclare.core.compiler import CompileResult, GraphCompileError, compile_graph
from ocedeclare.editor.state import AppState
from ocedeclare.evaluation.client import BaseEvaluatorClient, EvaluationTransportError
from ocedeclare.evaluation.results import NodeResults
from ocedeclare.platform.cache import ResultCache, deterministic_plan_id
from ocedeclare.platform.events import (
    NotificationKind,
    build_notification,
    diagnostic_notifications,
)


class EvaluationInProgressError(RuntimeError):
    """An evaluation was requested while another is still outstanding."""


class EvaluationOrchestrator:
    """
    Owns the evaluate / clear lifecycle for one AppState.

    Example
    -------
    >>> orchestrator = EvaluationOrchestrator(state, HttpEvaluatorClient(url))
    >>> results = await orchestrator.evaluate()
    >>> results.get("A").situation_violated_count
    0
    """

    def __init__(
        self,
        state: AppState,
        client: BaseEvaluatorClient,
        cache: Optional[ResultCache] = None,
        notify: Optional[Callable[[dict[str, Any]], Any]] = None,
    ):
        """
        Parameters
        ----------
        state : AppState
            Shared editor state (graph, results, in-progress flag)
        client : BaseEvaluatorClient
            Transport to the evaluator
        cache : ResultCache, optional
            Where successful evaluations are stored verbatim
        notify : callable, optional
            Receives notification dicts; may be sync or async
        """
        self._state = state
        self._client = client
        self._cache = cache
        self._notify = notify

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def in_progress(self) -> bool:
        return self._state.evaluation_in_progress

    def compile(self) -> CompileResult:
        """Compile the current graph without sending anything."""
        return compile_graph(self._state.graph)

    async def evaluate(self) -> Optional[NodeResults]:
        """
        Compile, send and apply one evaluation.

        Returns
        -------
        NodeResults or None
            The applied results, or None when the response was stale
            (clear() was called while the call was in flight)

        Raises
        ------
        EvaluationInProgressError
            If another evaluation is outstanding
        GraphCompileError
            If the graph has structural errors; nothing is sent
        EvaluationTransportError
            If the call failed or the response was malformed; previous
            results are left in place
        """
        if self._state.evaluation_in_progress:
            raise EvaluationInProgressError("An evaluation is already in progress")

        compiled = self.compile()
        if not compiled.ok:
            for message in diagnostic_notifications(compiled.diagnostics):
                await self._publish(message)
            raise GraphCompileError(compiled.diagnostics)

        request = compiled.to_request()
        plan_id = deterministic_plan_id(request)
        generation = self._state.generation

        # Claimed before the first await so a concurrent call sees it
        self._state.evaluation_in_progress = True
        try:
            await self._publish(build_notification(
                NotificationKind.EVALUATION_STARTED,
                "Evaluation started",
                plan_id=plan_id,
                node_ids=compiled.plan_ids,
            ))
            try:
                response = await self._client.check_constraints(request)
                results = NodeResults.from_response(compiled.plan_ids, response, plan_id=plan_id)
            except (EvaluationTransportError, ValueError) as exc:
                if generation != self._state.generation:
                    print(f"[Orchestrator] Ignoring failure of cleared evaluation {plan_id}")
                    return None
                print(f"[Orchestrator] Evaluation failed: {exc}")
                await self._publish(build_notification(
                    NotificationKind.EVALUATION_FAILED,
                    "Evaluation failed",
                    detail=str(exc),
                    plan_id=plan_id,
                ))
                if isinstance(exc, EvaluationTransportError):
                    raise
                raise EvaluationTransportError(str(exc)) from exc
        finally:
            self._state.evaluation_in_progress = False

        if generation != self._state.generation:
            print(f"[Orchestrator] Dropping stale response for {plan_id}")
            return None

        # Nodes deleted while the call was in flight get no result
        live = set(self._state.graph.node_ids())
        results.evaluations = {
            node_id: result for node_id, result in results.evaluations.items() if node_id in live
        }
        self._state.results = results
        if self._cache is not None:
            self._cache.store(
                plan_id,
                request=request,
                response=response.model_dump(mode="json", by_alias=True),
                node_ids=compiled.plan_ids,
            )

        summary = results.summary()
        print(f"[Orchestrator] Evaluation finished: situations per step {summary['situations']}, "
              f"violations per step {summary['violations']}")
        await self._publish(build_notification(
            NotificationKind.EVALUATION_FINISHED,
            "Evaluation finished",
            plan_id=plan_id,
            node_ids=list(results.evaluations),
            **summary,
        ))
        return results

    async def clear(self) -> None:
        """
        Discard displayed results immediately.

        An in-flight call is not aborted; its response will be dropped.
        """
        self._state.results = None
        self._state.generation += 1
        await self._publish(build_notification(
            NotificationKind.EVALUATION_CLEARED,
            "Evaluation cleared",
            generation=self._state.generation,
        ))

    async def _publish(self, message: dict[str, Any]) -> None:
        if self._notify is None:
            return
        result = self._notify(message)
        if inspect.isawaitable(result):
            await result

    def __repr__(self) -> str:
        return f"EvaluationOrchestrator(client={self._client!r}, in_progress={self.in_progress})"
