"""
Editor Commands
===============

Explicit command objects for every graph mutation the canvas can request.
Commands are plain data; ocedeclare.editor.state.reduce() applies them.

Command Types:
- add_node / delete_node / update_node
- add_edge / delete_edge / update_edge
- replace_graph: whole-graph replacement from the canvas
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ocedeclare.core.graph import ConstraintGraph
from ocedeclare.core.schema import Node, TimeConstraint


class CommandError(ValueError):
    """A command could not be applied to the current graph."""


class UnknownTargetError(CommandError):
    """The command names a node or edge that does not exist."""


class AddNode(BaseModel):
    type: Literal["add_node"] = "add_node"
    node: Node


class DeleteNode(BaseModel):
    """Remove a node and, in the same step, every edge touching it."""

    type: Literal["delete_node"] = "delete_node"
    node_id: str


class UpdateNode(BaseModel):
    """Set one field of a node's authored data."""

    type: Literal["update_node"] = "update_node"
    node_id: str
    field: str
    value: Any = None


class AddEdge(BaseModel):
    """
    Connect ``source`` (parent) to ``target`` (child).

    Handles default to the node's natural slots; for AND/OR gates the first
    free slot is used.
    """

    type: Literal["add_edge"] = "add_edge"
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    edge_id: Optional[str] = None
    constraint_type: str = "response"
    time_constraint: Optional[TimeConstraint] = None
    color: Optional[str] = None


class DeleteEdge(BaseModel):
    type: Literal["delete_edge"] = "delete_edge"
    edge_id: str


class UpdateEdge(BaseModel):
    type: Literal["update_edge"] = "update_edge"
    edge_id: str
    field: str
    value: Any = None


class ReplaceGraph(BaseModel):
    type: Literal["replace_graph"] = "replace_graph"
    graph: ConstraintGraph


Command = Annotated[
    Union[AddNode, DeleteNode, UpdateNode, AddEdge, DeleteEdge, UpdateEdge, ReplaceGraph],
    Field(discriminator="type"),
]

_COMMAND_ADAPTER: TypeAdapter = TypeAdapter(Command)


def parse_command(payload: Any) -> Command:
    """
    Validate a raw payload (e.g. decoded JSON) into a command.

    Raises
    ------
    CommandError
        If the payload is not a valid command
    """
    try:
        return _COMMAND_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise CommandError(f"Invalid command: {exc.errors(include_url=False)}") from exc
