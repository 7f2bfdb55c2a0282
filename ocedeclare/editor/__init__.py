"""
Editor: command objects and the graph reducer.
"""

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
    parse_command,
)
from ocedeclare.editor.state import LOOP_WARNING, AppState, ReduceOutcome, reduce, replay

__all__ = [
    "AddEdge",
    "AddNode",
    "Command",
    "CommandError",
    "DeleteEdge",
    "DeleteNode",
    "ReplaceGraph",
    "UnknownTargetError",
    "UpdateEdge",
    "UpdateNode",
    "parse_command",
    "LOOP_WARNING",
    "AppState",
    "ReduceOutcome",
    "reduce",
    "replay",
]
