"""
Editor State
============

The explicitly owned application state and the single reducer that
applies commands to the graph.

Key Design Principles:
1. reduce() never mutates its input graph; it works on a deep copy and
   returns the new graph, so no half-applied state is ever observable
2. Deleting a node removes the node and all touching edges in one step
3. Invalid connections are refused with a user-facing warning rather
   than an exception; unknown ids and bad fields raise CommandError
4. Same command sequence from the same graph => same resulting graph
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Optional

from pydantic import ValidationError

from ocedeclare.core.graph import ConstraintGraph
from ocedeclare.core.schema import Edge, GateNode, GateType
from ocedeclare.editor.commands import (
    AddEdge,
    AddNode,
    Command,
    CommandError,
    DeleteEdge,
    DeleteNode,
    ReplaceGraph,
    UnknownTargetError,
    UpdateEdge,
    UpdateNode,
)

if TYPE_CHECKING:
    from ocedeclare.evaluation.results import NodeResults


LOOP_WARNING = "Invalid connection: Loops are forbidden!"

_IMMUTABLE_NODE_FIELDS = {"id", "kind"}
_MUTABLE_EDGE_FIELDS = {"constraint_type", "time_constraint", "color"}


@dataclass
class ReduceOutcome:
    """Result of applying one command."""

    graph: ConstraintGraph
    warning: Optional[str] = None

    @property
    def rejected(self) -> bool:
        return self.warning is not None


def reduce(graph: ConstraintGraph, command: Command) -> ReduceOutcome:
    """
    Apply ``command`` to ``graph``.

    Parameters
    ----------
    graph : ConstraintGraph
        Current graph (left untouched)
    command : Command
        The mutation to apply

    Returns
    -------
    ReduceOutcome
        The new graph, or the unchanged graph plus a warning when the
        command was refused

    Raises
    ------
    CommandError
        If the command targets an unknown node/edge or sets an invalid value
    """
    if isinstance(command, ReplaceGraph):
        return ReduceOutcome(graph=command.graph.model_copy(deep=True))
    if isinstance(command, AddNode):
        return _add_node(graph, command)
    if isinstance(command, DeleteNode):
        return _delete_node(graph, command)
    if isinstance(command, UpdateNode):
        return _update_node(graph, command)
    if isinstance(command, AddEdge):
        return _add_edge(graph, command)
    if isinstance(command, DeleteEdge):
        return _delete_edge(graph, command)
    if isinstance(command, UpdateEdge):
        return _update_edge(graph, command)
    raise CommandError(f"Unsupported command: {type(command).__name__}")


def replay(graph: ConstraintGraph, commands: Iterable[Command]) -> ConstraintGraph:
    """Apply a command sequence and return the final graph."""
    for command in commands:
        graph = reduce(graph, command).graph
    return graph


def _add_node(graph: ConstraintGraph, command: AddNode) -> ReduceOutcome:
    if graph.has_node(command.node.id):
        raise CommandError(f"Node '{command.node.id}' already exists")
    new_graph = graph.model_copy(deep=True)
    new_graph.nodes.append(command.node.model_copy(deep=True))
    return ReduceOutcome(graph=new_graph)


def _delete_node(graph: ConstraintGraph, command: DeleteNode) -> ReduceOutcome:
    if not graph.has_node(command.node_id):
        raise UnknownTargetError(f"Unknown node: {command.node_id}")
    new_graph = graph.model_copy(deep=True)
    new_graph.nodes = [n for n in new_graph.nodes if n.id != command.node_id]
    new_graph.edges = [
        e for e in new_graph.edges
        if e.source != command.node_id and e.target != command.node_id
    ]
    return ReduceOutcome(graph=new_graph)


def _update_node(graph: ConstraintGraph, command: UpdateNode) -> ReduceOutcome:
    node = graph.get_node(command.node_id)
    if node is None:
        raise UnknownTargetError(f"Unknown node: {command.node_id}")

    node_cls = type(node)
    if command.field in _IMMUTABLE_NODE_FIELDS or command.field not in node_cls.model_fields:
        raise CommandError(f"Field '{command.field}' cannot be set on {node_cls.__name__}")

    if isinstance(node, GateNode) and command.field == "gate_type":
        try:
            new_type = GateType(command.value)
        except ValueError as exc:
            raise CommandError(f"Unknown gate type: {command.value!r}") from exc
        if (new_type is GateType.NOT) != (node.gate_type is GateType.NOT):
            raise CommandError(
                f"Cannot change gate {node.id} from {node.gate_type.value} to {new_type.value}"
            )

    data = node.model_dump()
    data[command.field] = command.value
    try:
        updated = node_cls.model_validate(data)
    except ValidationError as exc:
        raise CommandError(
            f"Invalid value for {command.field}: {exc.errors(include_url=False)}"
        ) from exc

    new_graph = graph.model_copy(deep=True)
    new_graph.nodes = [updated if n.id == node.id else n for n in new_graph.nodes]
    return ReduceOutcome(graph=new_graph)


def _add_edge(graph: ConstraintGraph, command: AddEdge) -> ReduceOutcome:
    source = graph.get_node(command.source)
    target = graph.get_node(command.target)
    if source is None:
        raise UnknownTargetError(f"Unknown node: {command.source}")
    if target is None:
        raise UnknownTargetError(f"Unknown node: {command.target}")

    if graph.would_create_cycle(command.source, command.target):
        print(f"[Editor] Loop connection attempted: {command.source} → {command.target}")
        return ReduceOutcome(graph=graph, warning=LOOP_WARNING)

    source_handle = command.source_handle
    if isinstance(source, GateNode):
        slots = source.source_handles()
        used = {e.source_handle for e in graph.outgoing(source.id)}
        if source_handle is None:
            free = [slot for slot in slots if slot not in used]
            if not free:
                return ReduceOutcome(
                    graph=graph,
                    warning=f"Invalid connection: all slots of gate {source.id} are in use",
                )
            source_handle = free[0]
        elif source_handle not in slots:
            return ReduceOutcome(
                graph=graph,
                warning=f"Invalid connection: {source_handle} is not a slot of gate {source.id}",
            )
        elif source_handle in used:
            return ReduceOutcome(
                graph=graph,
                warning=f"Invalid connection: slot {source_handle} is already connected",
            )

    target_handle = command.target_handle
    if isinstance(target, GateNode):
        if target_handle is None:
            target_handle = target.target_handle
        elif target_handle != target.target_handle:
            return ReduceOutcome(
                graph=graph,
                warning=f"Invalid connection: {target_handle} is not a slot of gate {target.id}",
            )

    edge_data: dict[str, Any] = {
        "source": command.source,
        "target": command.target,
        "source_handle": source_handle or "",
        "target_handle": target_handle or "",
        "id": command.edge_id or "",
        "constraint_type": command.constraint_type,
    }
    if command.time_constraint is not None:
        edge_data["time_constraint"] = command.time_constraint
    if command.color is not None:
        edge_data["color"] = command.color
    edge = Edge(**edge_data)

    if graph.get_edge(edge.id) is not None:
        return ReduceOutcome(graph=graph, warning=f"Invalid connection: {edge.id} already exists")

    new_graph = graph.model_copy(deep=True)
    new_graph.edges.append(edge)
    return ReduceOutcome(graph=new_graph)


def _delete_edge(graph: ConstraintGraph, command: DeleteEdge) -> ReduceOutcome:
    if graph.get_edge(command.edge_id) is None:
        raise UnknownTargetError(f"Unknown edge: {command.edge_id}")
    new_graph = graph.model_copy(deep=True)
    new_graph.edges = [e for e in new_graph.edges if e.id != command.edge_id]
    return ReduceOutcome(graph=new_graph)


def _update_edge(graph: ConstraintGraph, command: UpdateEdge) -> ReduceOutcome:
    edge = graph.get_edge(command.edge_id)
    if edge is None:
        raise UnknownTargetError(f"Unknown edge: {command.edge_id}")
    if command.field not in _MUTABLE_EDGE_FIELDS:
        raise CommandError(f"Field '{command.field}' cannot be set on Edge")

    data = edge.model_dump()
    data[command.field] = command.value
    try:
        updated = Edge.model_validate(data)
    except ValidationError as exc:
        raise CommandError(
            f"Invalid value for {command.field}: {exc.errors(include_url=False)}"
        ) from exc

    new_graph = graph.model_copy(deep=True)
    new_graph.edges = [updated if e.id == edge.id else e for e in new_graph.edges]
    return ReduceOutcome(graph=new_graph)


@dataclass
class AppState:
    """
    Shared state of one editing session.

    Owned explicitly and passed to whoever needs it (orchestrator,
    server handlers); there is no module-level global.

    Attributes
    ----------
    graph : ConstraintGraph
        The current authored graph
    results : NodeResults, optional
        Results of the last applied evaluation, keyed by node id
    evaluation_in_progress : bool
        True while an evaluator call is outstanding
    generation : int
        Bumped by every clear; responses for older generations are dropped
    """

    graph: ConstraintGraph = field(default_factory=ConstraintGraph)
    results: Optional["NodeResults"] = None
    evaluation_in_progress: bool = False
    generation: int = 0

    def dispatch(self, command: Command) -> ReduceOutcome:
        """Apply a command and swap in the resulting graph."""
        outcome = reduce(self.graph, command)
        self.graph = outcome.graph

        if self.results is not None:
            if isinstance(command, ReplaceGraph):
                self.results = None
            elif isinstance(command, DeleteNode):
                self.results.evaluations.pop(command.node_id, None)

        return outcome

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_count": self.graph.node_count,
            "edge_count": self.graph.edge_count,
            "evaluation_in_progress": self.evaluation_in_progress,
            "generation": self.generation,
            "has_results": self.results is not None,
        }
