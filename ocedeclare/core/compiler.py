"""
Graph Validator / Topological Compiler
======================================

Turns the authored constraint graph into an ordered, assembled evaluation
plan.

Algorithm:
1. Build parent/child connection lists for every node from the edges
2. Partition nodes into disconnected, roots and connected non-roots
3. Priority topological sort seeded with the roots: repeatedly take the
   first queued node whose parents are all reachable; the queue is kept
   sorted by parent count (most parents first)
4. A stuck queue means a cycle; connected nodes never reached are
   reported as unreachable. Both checks always run.
5. Order = disconnected nodes (insertion order) + reachable list; the plan
   drops nodes with no variables in scope.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import networkx as nx

from ocedeclare.core.assembler import assemble_connection, assemble_node
from ocedeclare.core.graph import ConstraintGraph
from ocedeclare.core.schema import EventTypeNode, GateNode, Node, Variable
from ocedeclare.core.scope import resolve_variables


class Severity(str, Enum):
    """How a diagnostic affects the compile."""

    ERROR = "error"
    """Fatal: the plan is not produced and nothing is sent."""

    WARNING = "warning"
    """Informational: the plan is still produced."""


class DiagnosticKind(str, Enum):
    """Kinds of problems the compiler reports."""

    CYCLE_DETECTED = "cycle_detected"
    UNREACHABLE_NODES = "unreachable_nodes"
    OUT_OF_SCOPE_VARIABLES = "out_of_scope_variables"
    GATE_ARITY = "gate_arity"


DIAGNOSTIC_SEVERITY: dict[DiagnosticKind, Severity] = {
    DiagnosticKind.CYCLE_DETECTED: Severity.ERROR,
    DiagnosticKind.UNREACHABLE_NODES: Severity.ERROR,
    DiagnosticKind.OUT_OF_SCOPE_VARIABLES: Severity.WARNING,
    DiagnosticKind.GATE_ARITY: Severity.WARNING,
}


@dataclass
class Diagnostic:
    """One user-facing compile problem."""

    kind: DiagnosticKind
    message: str
    node_ids: list[str] = field(default_factory=list)

    @property
    def severity(self) -> Severity:
        return DIAGNOSTIC_SEVERITY[self.kind]

    @property
    def is_fatal(self) -> bool:
        return self.severity is Severity.ERROR

    def to_dict(self) -> dict[str, Any]:
        """Convert the diagnostic to a JSON-serializable dictionary."""
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
            "node_ids": list(self.node_ids),
        }


class GraphCompileError(RuntimeError):
    """Raised when a compile produced fatal diagnostics."""

    def __init__(self, diagnostics: list[Diagnostic]):
        self.diagnostics = diagnostics
        fatal = [d.message for d in diagnostics if d.is_fatal]
        super().__init__("; ".join(fatal) or "Invalid requirements detected")


@dataclass
class TreeNodeConnection:
    """One end of a compiled edge: (connection data, neighbour id, neighbour event type)."""

    connection: dict[str, Any]
    id: str
    event_type: Optional[str]

    def to_wire(self) -> dict[str, Any]:
        return {
            "connection": self.connection,
            "id": self.id,
            "eventType": self.event_type,
        }


@dataclass
class TreeNode:
    """Compiled, transmission-ready form of a node."""

    id: str
    event_type: Optional[str]
    gate_type: Optional[str]
    parents: list[TreeNodeConnection] = field(default_factory=list)
    children: list[TreeNodeConnection] = field(default_factory=list)
    variables: list[Variable] = field(default_factory=list)
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def parent_ids(self) -> list[str]:
        return [p.id for p in self.parents]

    @property
    def child_ids(self) -> list[str]:
        return [c.id for c in self.children]

    def to_wire(self) -> dict[str, Any]:
        """camelCase record in the evaluator's ``nodesOrder`` format."""
        return {
            "id": self.id,
            "eventType": self.event_type,
            "parents": [p.to_wire() for p in self.parents],
            "children": [c.to_wire() for c in self.children],
            "variables": [v.model_dump() for v in self.variables],
            **self.payload,
        }


@dataclass
class CompileResult:
    """
    Output of compile_graph().

    ``ordered_nodes`` holds every node that passed ordering (disconnected
    first, then reachable nodes with parents before children). ``plan`` is
    the subset that is transmitted and is empty when a fatal diagnostic fired.
    """

    ordered_nodes: list[TreeNode]
    plan: list[TreeNode]
    diagnostics: list[Diagnostic]
    declarations: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(d.is_fatal for d in self.diagnostics)

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.is_fatal]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if not d.is_fatal]

    @property
    def order(self) -> list[str]:
        return [n.id for n in self.ordered_nodes]

    @property
    def plan_ids(self) -> list[str]:
        return [n.id for n in self.plan]

    def variable_declarations(self) -> list[dict[str, Any]]:
        """Global variable declarations sent alongside the plan."""
        return list(self.declarations)

    def to_request(self) -> dict[str, Any]:
        """
        Build the evaluator request body.

        Raises
        ------
        GraphCompileError
            If the compile is not ok
        """
        if not self.ok:
            raise GraphCompileError(self.diagnostics)
        return {
            "variables": self.variable_declarations(),
            "nodesOrder": [n.to_wire() for n in self.plan],
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "order": self.order,
            "plan": self.plan_ids,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


def compile_graph(graph: ConstraintGraph) -> CompileResult:
    """
    Validate the graph and compute its evaluation plan.

    Parameters
    ----------
    graph : ConstraintGraph
        The authored graph (never modified)

    Returns
    -------
    CompileResult
        Ordered nodes, plan and every diagnostic found. Structural checks
        are exhaustive: cycle and unreachable diagnostics both fire when
        both apply.
    """
    tree = _build_tree_nodes(graph)
    diagnostics: list[Diagnostic] = []

    disconnected: list[TreeNode] = []
    roots: list[TreeNode] = []
    connected: list[TreeNode] = []
    for node in tree.values():
        if not node.parents and not node.children:
            disconnected.append(node)
            continue
        if not node.parents:
            roots.append(node)
        connected.append(node)

    reachable, stuck = _priority_order(roots, tree)
    reachable_set = set(reachable)

    unreachable_ids = [n.id for n in connected if n.id not in reachable_set]

    # Any unreached connected node implies a cycle among its ancestors,
    # even when no root leads into it.
    if stuck or unreachable_ids:
        cycle_ids = _find_cycle(graph, unreachable_ids)
        if stuck or cycle_ids:
            described = " → ".join(cycle_ids + cycle_ids[:1]) if cycle_ids else ""
            message = "Invalid requirements: Cycle detected!"
            if described:
                message = f"{message} ({described})"
            diagnostics.append(Diagnostic(
                kind=DiagnosticKind.CYCLE_DETECTED,
                message=message,
                node_ids=cycle_ids or [n.id for n in stuck],
            ))

    if unreachable_ids:
        diagnostics.append(Diagnostic(
            kind=DiagnosticKind.UNREACHABLE_NODES,
            message="Nodes not reachable from root: " + ", ".join(unreachable_ids),
            node_ids=unreachable_ids,
        ))

    ordered = disconnected + [tree[node_id] for node_id in reachable]
    diagnostics.extend(_check_gate_arity(graph, tree))
    diagnostics.extend(_check_filter_scope(graph, tree))

    result = CompileResult(ordered_nodes=ordered, plan=[], diagnostics=diagnostics)
    if result.ok:
        result.plan = [n for n in ordered if n.variables]
        result.declarations = _declarations(graph, result.plan)
        print(f"[Compiler] Constructed tree with {len(roots)} root nodes, "
              f"{len(result.plan)} of {len(ordered)} nodes in plan")
    else:
        for d in result.errors:
            print(f"[Compiler] {d.message}")

    return result


def _build_tree_nodes(graph: ConstraintGraph) -> dict[str, TreeNode]:
    """Create a TreeNode per graph node and wire up parent/child connections."""
    tree: dict[str, TreeNode] = {}
    for node in graph.nodes:
        tree[node.id] = TreeNode(
            id=node.id,
            event_type=_event_type(node),
            gate_type=node.gate_type.value if isinstance(node, GateNode) else None,
            variables=resolve_variables(graph, node.id),
            payload=assemble_node(node),
        )

    for edge in graph.linked_edges():
        connection = assemble_connection(edge)
        tree[edge.target].parents.append(TreeNodeConnection(
            connection=connection,
            id=edge.source,
            event_type=tree[edge.source].event_type,
        ))
        tree[edge.source].children.append(TreeNodeConnection(
            connection=connection,
            id=edge.target,
            event_type=tree[edge.target].event_type,
        ))

    return tree


def _priority_order(
    roots: list[TreeNode],
    tree: dict[str, TreeNode],
) -> tuple[list[str], list[TreeNode]]:
    """
    Priority topological sort.

    Returns
    -------
    tuple[list[str], list[TreeNode]]
        Reachable ids in the order they were accepted, and the queue left
        over when no entry could be accepted (empty unless a cycle blocks
        progress).
    """
    reachable: list[str] = []
    reachable_set: set[str] = set()
    queue: list[TreeNode] = list(roots)

    while queue:
        index = _first_ready(queue, reachable_set)
        if index is None:
            return reachable, queue

        node = queue.pop(index)
        if node.id not in reachable_set:
            reachable.append(node.id)
            reachable_set.add(node.id)
            queue.extend(tree[c.id] for c in node.children)

        # Most parents first; stable, so ties keep queue order
        queue.sort(key=lambda n: -len(n.parents))

    return reachable, []


def _first_ready(queue: list[TreeNode], reachable: set[str]) -> Optional[int]:
    for i, node in enumerate(queue):
        if all(p.id in reachable for p in node.parents):
            return i
    return None


def _find_cycle(graph: ConstraintGraph, candidate_ids: list[str]) -> list[str]:
    """Node ids of one cycle among ``candidate_ids``, or [] if there is none."""
    if not candidate_ids:
        return []
    subgraph = graph.to_networkx().subgraph(candidate_ids)
    try:
        cycle = nx.find_cycle(subgraph)
    except nx.NetworkXNoCycle:
        return []
    return [u for u, _v, *_ in cycle]


def _check_gate_arity(graph: ConstraintGraph, tree: dict[str, TreeNode]) -> list[Diagnostic]:
    diagnostics = []
    for gate in graph.gate_nodes():
        child_count = len(tree[gate.id].children)
        if child_count > gate.gate_type.slot_count:
            diagnostics.append(Diagnostic(
                kind=DiagnosticKind.GATE_ARITY,
                message=(
                    f"Gate {gate.id} ({gate.gate_type.value}) has {child_count} "
                    f"children but only {gate.gate_type.slot_count} slot(s)"
                ),
                node_ids=[gate.id],
            ))
    return diagnostics


def _check_filter_scope(graph: ConstraintGraph, tree: dict[str, TreeNode]) -> list[Diagnostic]:
    diagnostics = []
    for node in graph.event_nodes():
        in_scope = set(tree[node.id].variables)
        missing: set[Variable] = set()
        for f in node.filters:
            missing.update(f.involved_variables() - in_scope)
        if missing:
            names = ", ".join(str(v) for v in sorted(missing, key=Variable.sort_key))
            diagnostics.append(Diagnostic(
                kind=DiagnosticKind.OUT_OF_SCOPE_VARIABLES,
                message=f"Filters of node {node.id} use variables not in scope: {names}",
                node_ids=[node.id],
            ))
    return diagnostics


def _declarations(graph: ConstraintGraph, plan: list[TreeNode]) -> list[dict[str, Any]]:
    """One declaration per variable introduced by a planned event node."""
    declarations = []
    for tree_node in plan:
        node = graph.get_node(tree_node.id)
        if not isinstance(node, EventTypeNode):
            continue
        for index, types in sorted(node.new_event_vars.items()):
            declarations.append({
                "variable": Variable.event(index).model_dump(),
                "types": sorted(types),
                "introducedBy": node.id,
            })
        for index, types in sorted(node.new_object_vars.items()):
            declarations.append({
                "variable": Variable.object(index).model_dump(),
                "types": sorted(types),
                "introducedBy": node.id,
            })
    return declarations


def _event_type(node: Node) -> Optional[str]:
    return node.event_type if isinstance(node, EventTypeNode) else None
