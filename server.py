"""
OCEDeclare Editor Server
========================
FastAPI server with WebSocket support for the constraint-graph editor.

Endpoints:
- GET / - Health page
- WS /ws - WebSocket for notifications (diagnostics, evaluation results)
- GET/PUT /api/graph - Read or replace the authored graph
- POST /api/commands - Apply one editor command
- GET /api/scope/{node_id} - Variables visible at a node
- POST /api/compile - Validate and order the graph without evaluating
- POST /api/evaluate - Compile and send the plan to the evaluator
- POST /api/clear - Discard the displayed results
- GET /api/results - Results of the last evaluation
- GET /api/status - Session status
- GET /api/evaluations[/latest|/{plan_id}] - Cached evaluator round trips
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from pydantic import ValidationError

from ocedeclare import __version__
from ocedeclare.config import Settings
from ocedeclare.core.compiler import GraphCompileError
from ocedeclare.core.graph import ConstraintGraph
from ocedeclare.core.schema import VariableKind
from ocedeclare.core.scope import resolve_scope
from ocedeclare.editor.commands import (
    AddEdge,
    Command,
    CommandError,
    ReplaceGraph,
    UnknownTargetError,
    parse_command,
)
from ocedeclare.editor.state import AppState
from ocedeclare.evaluation.client import (
    BaseEvaluatorClient,
    EvaluationTransportError,
    HttpEvaluatorClient,
)
from ocedeclare.evaluation.orchestrator import EvaluationInProgressError, EvaluationOrchestrator
from ocedeclare.platform.cache import ResultCache
from ocedeclare.platform.events import NotificationKind, attach_event_envelope, build_notification


settings = Settings.from_env()


# ============================================================================
# WebSocket Connection Manager
# ============================================================================

class ConnectionManager:
    """Manages WebSocket connections for broadcasting updates."""

    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        print(f"[WS] Client connected. Total: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        print(f"[WS] Client disconnected. Total: {len(self.active_connections)}")

    async def broadcast(self, message: Dict[str, Any]):
        """Send message to all connected clients."""
        outbound = attach_event_envelope(
            message,
            session_id=f"gen_{app_state.generation}",
            default_source="server",
        )

        disconnected = []
        for connection in self.active_connections:
            try:
                await connection.send_json(outbound)
            except (WebSocketDisconnect, RuntimeError):
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn)


manager = ConnectionManager()
result_cache = ResultCache(max_entries=settings.cache_size)

# Evaluations started from a socket run beside its receive loop
evaluation_tasks: set = set()


# ============================================================================
# Session State
# ============================================================================

app_state = AppState()
orchestrator = EvaluationOrchestrator(
    app_state,
    HttpEvaluatorClient(settings.evaluator_url, timeout=settings.evaluator_timeout),
    cache=result_cache,
    notify=manager.broadcast,
)


def reset_session(client: Optional[BaseEvaluatorClient] = None) -> AppState:
    """
    Start a fresh editing session (empty graph, no results).

    Parameters
    ----------
    client : BaseEvaluatorClient, optional
        Evaluator transport for the new session; defaults to HTTP using
        the current settings
    """
    global app_state, orchestrator
    app_state = AppState()
    orchestrator = EvaluationOrchestrator(
        app_state,
        client or HttpEvaluatorClient(settings.evaluator_url, timeout=settings.evaluator_timeout),
        cache=result_cache,
        notify=manager.broadcast,
    )
    result_cache.clear()
    return app_state


async def apply_command(command: Command) -> Dict[str, Any]:
    """Apply one editor command, broadcasting the outcome."""
    outcome = app_state.dispatch(command)

    if outcome.rejected:
        details: Dict[str, Any] = {}
        if isinstance(command, AddEdge):
            details = {"source_node": command.source, "target_node": command.target}
        await manager.broadcast(build_notification(
            NotificationKind.CONNECTION_REJECTED, outcome.warning, **details,
        ))
    else:
        await manager.broadcast(build_notification(
            NotificationKind.GRAPH_UPDATED,
            f"Applied {command.type}",
            node_count=app_state.graph.node_count,
            edge_count=app_state.graph.edge_count,
        ))

    return {
        "applied": not outcome.rejected,
        "warning": outcome.warning,
        "graph": app_state.graph.model_dump(mode="json"),
    }


# ============================================================================
# App Lifecycle
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """App startup and shutdown."""
    print(f"🚀 OCEDeclare editor server starting (evaluator: {settings.evaluator_url})...")
    yield
    print("🛑 OCEDeclare server shutting down...")


app = FastAPI(title="OCEDeclare Editor", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Routes
# ============================================================================

@app.get("/")
async def root():
    return HTMLResponse(
        f"<h1>OCEDeclare Server Running</h1><p>Evaluator: {settings.evaluator_url}</p>"
    )


@app.get("/api/graph")
async def get_graph():
    """Get the current authored graph (infinite bounds as sentinels)."""
    return app_state.graph.model_dump(mode="json")


@app.put("/api/graph")
async def put_graph(payload: Dict[str, Any]):
    """Replace the whole graph, e.g. after loading a saved file."""
    try:
        graph = ConstraintGraph.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors(include_url=False, include_context=False))
    return await apply_command(ReplaceGraph(graph=graph))


@app.post("/api/commands")
async def post_command(payload: Dict[str, Any]):
    """Apply one editor command."""
    try:
        return await apply_command(parse_command(payload))
    except UnknownTargetError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except CommandError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.get("/api/scope/{node_id}")
async def get_scope(node_id: str, kind: str = "event"):
    """Get the variable indices of one kind visible at a node."""
    if not app_state.graph.has_node(node_id):
        raise HTTPException(status_code=404, detail=f"Unknown node: {node_id}")
    try:
        variable_kind = VariableKind(kind)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown variable kind: {kind}")
    return {
        "node_id": node_id,
        "kind": variable_kind.value,
        "indices": resolve_scope(app_state.graph, node_id, variable_kind),
    }


@app.post("/api/compile")
async def compile_current_graph():
    """Validate and order the graph; returns the request body when valid."""
    compiled = orchestrator.compile()
    response = compiled.to_dict()
    if compiled.ok:
        response["request"] = compiled.to_request()
    return response


@app.post("/api/evaluate")
async def evaluate():
    """Compile the graph and run one evaluation."""
    try:
        results = await orchestrator.evaluate()
    except EvaluationInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except GraphCompileError as exc:
        raise HTTPException(
            status_code=422,
            detail={
                "message": str(exc),
                "diagnostics": [d.to_dict() for d in exc.diagnostics],
            },
        )
    except EvaluationTransportError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    if results is None:
        return {"status": "discarded", "message": "Evaluation was cleared before it finished"}
    return {"status": "finished", **results.to_dict()}


@app.post("/api/clear")
async def clear_results():
    """Discard displayed results; an in-flight response will be dropped."""
    await orchestrator.clear()
    return {"status": "cleared", "generation": app_state.generation}


@app.get("/api/results")
async def get_results():
    """Get the results of the last applied evaluation."""
    if app_state.results is None:
        raise HTTPException(status_code=404, detail="No evaluation results")
    return app_state.results.to_dict()


@app.get("/api/status")
async def get_status():
    """Get current session status."""
    return {**app_state.to_dict(), "settings": settings.to_dict()}


@app.get("/api/evaluations")
async def list_evaluations(limit: int = 20):
    """List recently cached evaluations."""
    return {"evaluations": result_cache.list_entries(limit=limit)}


@app.get("/api/evaluations/latest")
async def get_latest_evaluation():
    """Get the request and response of the latest evaluation."""
    latest_plan_id = result_cache.latest_plan_id()
    if latest_plan_id is None:
        raise HTTPException(status_code=404, detail="No evaluations found")

    entry = result_cache.get(latest_plan_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Evaluation not found: {latest_plan_id}")
    return entry


@app.get("/api/evaluations/{plan_id}")
async def get_evaluation(plan_id: str):
    """Get the request and response of a specific evaluation."""
    entry = result_cache.get(plan_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Evaluation not found: {plan_id}")
    return entry


async def evaluate_for_socket(websocket: WebSocket):
    """Run one evaluation requested over a socket, replying if it is refused."""
    try:
        await orchestrator.evaluate()
    except EvaluationInProgressError as exc:
        print(f"[WS] Evaluate request rejected: {exc}")
        try:
            await websocket.send_json(attach_event_envelope(
                {"type": "evaluation_rejected", "message": str(exc)},
                default_source="evaluator",
            ))
        except (WebSocketDisconnect, RuntimeError):
            manager.disconnect(websocket)
    except (GraphCompileError, EvaluationTransportError) as exc:
        # Diagnostics and failures are broadcast by the orchestrator
        print(f"[WS] Evaluate request failed: {exc}")


def _collect_evaluation_task(task: asyncio.Task):
    evaluation_tasks.discard(task)
    if not task.cancelled() and task.exception() is not None:
        print(f"[WS] Evaluation task crashed: {task.exception()!r}")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for notifications and editor commands."""
    await manager.connect(websocket)

    try:
        await websocket.send_json(attach_event_envelope({
            "type": "connected",
            "message": "Connected to OCEDeclare server",
            "status": app_state.to_dict(),
        }, session_id=f"gen_{app_state.generation}", default_source="server"))

        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                print("[WS] Ignoring non-JSON message")
                continue

            if not isinstance(message, dict):
                print("[WS] Ignoring non-object message")
                continue

            action = message.get("action")
            if action == "command":
                try:
                    await apply_command(parse_command(message.get("command", {})))
                except CommandError as exc:
                    await websocket.send_json(attach_event_envelope(
                        {"type": "command_error", "message": str(exc)},
                        default_source="editor",
                    ))
            elif action == "evaluate":
                task = asyncio.create_task(evaluate_for_socket(websocket))
                evaluation_tasks.add(task)
                task.add_done_callback(_collect_evaluation_task)
            elif action == "clear":
                await orchestrator.clear()

    except WebSocketDisconnect:
        manager.disconnect(websocket)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
