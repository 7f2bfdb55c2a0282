"""
Constraint Graph
================

Container for the nodes and edges the user authors, plus the structural
lookups every other component needs (parents, children, ancestors).

Key Design Principles:
1. Node ids are unique; insertion order is preserved and meaningful
2. Lookups never mutate - editing goes through ocedeclare.editor.reduce()
3. Edges whose endpoints are missing are ignored by every lookup
4. Ancestry queries run on a networkx projection of the graph
"""

from typing import Optional

import networkx as nx
from pydantic import BaseModel, Field, model_validator

from ocedeclare.core.schema import Edge, EventTypeNode, GateNode, Node


class ConstraintGraph(BaseModel):
    """
    The authored constraint graph.

    Example
    -------
    >>> graph = ConstraintGraph(
    ...     nodes=[EventTypeNode(id="A", event_type="place order"),
    ...            EventTypeNode(id="B", event_type="pay order")],
    ...     edges=[Edge(source="A", target="B")],
    ... )
    >>> graph.parent_ids("B")
    ['A']
    >>> graph.would_create_cycle("B", "A")
    True
    """

    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_identity(self) -> "ConstraintGraph":
        """Node ids and edge ids must each be unique."""
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"duplicate node id: {node.id}")
            seen.add(node.id)

        seen_edges: set[str] = set()
        for edge in self.edges:
            if edge.id in seen_edges:
                raise ValueError(f"duplicate edge id: {edge.id}")
            seen_edges.add(edge.id)
        return self

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    def node_ids(self) -> list[str]:
        """Node ids in insertion order."""
        return [node.id for node in self.nodes]

    def has_node(self, node_id: str) -> bool:
        return any(node.id == node_id for node in self.nodes)

    def get_node(self, node_id: str) -> Optional[Node]:
        """Get a node by id, or None."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_edge(self, edge_id: str) -> Optional[Edge]:
        """Get an edge by id, or None."""
        for edge in self.edges:
            if edge.id == edge_id:
                return edge
        return None

    def event_nodes(self) -> list[EventTypeNode]:
        return [node for node in self.nodes if isinstance(node, EventTypeNode)]

    def gate_nodes(self) -> list[GateNode]:
        return [node for node in self.nodes if isinstance(node, GateNode)]

    def linked_edges(self) -> list[Edge]:
        """Edges whose source and target both exist, in insertion order."""
        ids = set(self.node_ids())
        return [e for e in self.edges if e.source in ids and e.target in ids]

    def incoming(self, node_id: str) -> list[Edge]:
        return [e for e in self.linked_edges() if e.target == node_id]

    def outgoing(self, node_id: str) -> list[Edge]:
        return [e for e in self.linked_edges() if e.source == node_id]

    def touching(self, node_id: str) -> list[Edge]:
        """Every edge with ``node_id`` as an endpoint, dangling or not."""
        return [e for e in self.edges if e.source == node_id or e.target == node_id]

    def parent_ids(self, node_id: str) -> list[str]:
        return [e.source for e in self.incoming(node_id)]

    def child_ids(self, node_id: str) -> list[str]:
        return [e.target for e in self.outgoing(node_id)]

    def parent_id(self, node_id: str) -> Optional[str]:
        """
        The structural parent used for variable scope.

        This is the source of the first edge (in insertion order) that
        targets ``node_id``.
        """
        for edge in self.incoming(node_id):
            return edge.source
        return None

    def to_networkx(self) -> nx.MultiDiGraph:
        """
        Project the graph onto a networkx MultiDiGraph.

        Nodes carry ``kind`` and ``label`` attributes; edges are keyed by
        edge id and carry ``constraint_type``.
        """
        G = nx.MultiDiGraph()
        for node in self.nodes:
            label = node.event_type if isinstance(node, EventTypeNode) else node.gate_type.value
            G.add_node(node.id, kind=node.kind, label=label)
        for edge in self.linked_edges():
            G.add_edge(
                edge.source,
                edge.target,
                key=edge.id,
                constraint_type=edge.constraint_type,
            )
        return G

    def ancestor_ids(self, node_id: str) -> set[str]:
        """All nodes with a path to ``node_id`` (transitive parents)."""
        if not self.has_node(node_id):
            return set()
        return nx.ancestors(self.to_networkx(), node_id)

    def would_create_cycle(self, source: str, target: str) -> bool:
        """
        Edge-insertion pre-check.

        Adding ``source -> target`` closes a loop exactly when ``target``
        is ``source`` itself or one of its ancestors.
        """
        if source == target:
            return True
        return target in self.ancestor_ids(source)

    def __repr__(self) -> str:
        return f"ConstraintGraph(nodes={self.node_count}, edges={self.edge_count})"
