"""
Scope Resolver
==============

Computes which event/object variables are visible at a node: the ones it
introduces itself plus everything introduced along its parent chain.
Gates introduce nothing and simply pass their parent's scope through.
"""

from typing import Union

from ocedeclare.core.graph import ConstraintGraph
from ocedeclare.core.schema import EventTypeNode, Variable, VariableKind


def resolve_scope(
    graph: ConstraintGraph,
    node_id: str,
    kind: Union[VariableKind, str],
) -> list[int]:
    """
    Resolve the variable indices of ``kind`` in scope at ``node_id``.

    Parameters
    ----------
    graph : ConstraintGraph
        The graph to walk (never modified)
    node_id : str
        Node whose scope to compute
    kind : VariableKind or str
        "event" or "object"

    Returns
    -------
    list[int]
        Distinct indices, ascending. Empty for unknown nodes and for nodes
        without variables along their parent chain.
    """
    kind = VariableKind(kind)
    indices: set[int] = set()

    # A cyclic parent chain can exist before compile rejects the graph
    visited: set[str] = set()
    current = node_id
    while current is not None and current not in visited:
        visited.add(current)
        node = graph.get_node(current)
        if node is None:
            break
        if isinstance(node, EventTypeNode):
            indices.update(node.introduced(kind))
        current = graph.parent_id(current)

    return sorted(indices)


def resolve_variables(graph: ConstraintGraph, node_id: str) -> list[Variable]:
    """All variables in scope at ``node_id``: event variables first, then object variables."""
    return [
        Variable(kind=kind, index=index)
        for kind in (VariableKind.EVENT, VariableKind.OBJECT)
        for index in resolve_scope(graph, node_id, kind)
    ]
