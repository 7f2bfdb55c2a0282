"""
OCEDeclare Core: Constraint-Graph Compiler
==========================================

Validates the authored constraint graph, orders it for evaluation,
resolves variable scope, and assembles infinity-safe wire records.

Public API:
- ConstraintGraph: Nodes + edges container
- EventTypeNode, GateNode, Edge, Variable: Graph model
- resolve_scope: Variables visible at a node
- compile_graph: Validation + priority topological order
- assemble_node: Wire payload for one node
"""

from ocedeclare.core.schema import (
    MAX_SAFE_INTEGER,
    MIN_SAFE_INTEGER,
    CountConstraint,
    Edge,
    EventTypeNode,
    Filter,
    GateNode,
    GateType,
    Node,
    TimeConstraint,
    Variable,
    VariableKind,
    replace_infinity,
    restore_infinity,
)
from ocedeclare.core.graph import ConstraintGraph
from ocedeclare.core.scope import resolve_scope, resolve_variables
from ocedeclare.core.assembler import assemble_node, assemble_connection
from ocedeclare.core.compiler import (
    CompileResult,
    Diagnostic,
    DiagnosticKind,
    GraphCompileError,
    Severity,
    TreeNode,
    TreeNodeConnection,
    compile_graph,
)

__all__ = [
    "MAX_SAFE_INTEGER",
    "MIN_SAFE_INTEGER",
    "CountConstraint",
    "TimeConstraint",
    "Edge",
    "EventTypeNode",
    "GateNode",
    "GateType",
    "Node",
    "Filter",
    "Variable",
    "VariableKind",
    "replace_infinity",
    "restore_infinity",
    "ConstraintGraph",
    "resolve_scope",
    "resolve_variables",
    "assemble_node",
    "assemble_connection",
    "CompileResult",
    "Diagnostic",
    "DiagnosticKind",
    "GraphCompileError",
    "Severity",
    "TreeNode",
    "TreeNodeConnection",
    "compile_graph",
]
