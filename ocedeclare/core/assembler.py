"""
Constraint Assembler
====================

Normalizes a node's authored constraint data into the payload sent to the
evaluator. The wire format only carries finite numbers, so every unbounded
bound (``math.inf``) becomes MAX_SAFE_INTEGER / MIN_SAFE_INTEGER on the
way out. The same sentinels read back as infinite (see schema.restore_infinity).

All functions here are pure and total: they never raise for a
well-formed node, whatever values were authored.
"""

from typing import Any

from pydantic_core import to_jsonable_python

from ocedeclare.core.schema import (
    MAX_SAFE_INTEGER,
    MIN_SAFE_INTEGER,
    CountConstraint,
    Edge,
    EventTypeNode,
    GateNode,
    Node,
    TimeConstraint,
    replace_infinity,
    restore_infinity,
)


__all__ = [
    "MAX_SAFE_INTEGER",
    "MIN_SAFE_INTEGER",
    "replace_infinity",
    "restore_infinity",
    "replace_infinity_nested",
    "assemble_count",
    "assemble_time",
    "assemble_connection",
    "assemble_node",
]


def replace_infinity_nested(value: Any) -> Any:
    """Apply replace_infinity to every number inside nested dicts/lists."""
    if isinstance(value, dict):
        return {key: replace_infinity_nested(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [replace_infinity_nested(item) for item in value]
    return replace_infinity(value)


def assemble_count(constraint: CountConstraint) -> dict[str, Any]:
    return {
        "min": replace_infinity(constraint.min),
        "max": replace_infinity(constraint.max),
    }


def assemble_time(constraint: TimeConstraint) -> dict[str, Any]:
    return {
        "minSeconds": replace_infinity(constraint.min_seconds),
        "maxSeconds": replace_infinity(constraint.max_seconds),
    }


def assemble_connection(edge: Edge) -> dict[str, Any]:
    """Connection data carried on both ends of a compiled edge."""
    return {
        "type": edge.constraint_type,
        "timeConstraint": assemble_time(edge.time_constraint),
    }


def assemble_node(node: Node) -> dict[str, Any]:
    """
    Build the transmission payload for one node.

    Parameters
    ----------
    node : EventTypeNode or GateNode
        The authored node

    Returns
    -------
    dict
        camelCase payload with all infinite bounds replaced by sentinels
    """
    if isinstance(node, GateNode):
        return {"gateType": node.gate_type.value}

    if isinstance(node, EventTypeNode):
        return {
            "newEventVars": _assemble_new_vars(node.new_event_vars),
            "newObjectVars": _assemble_new_vars(node.new_object_vars),
            "countConstraint": assemble_count(node.count_constraint),
            "firstOrLastEventOfType": node.first_or_last,
            "waitingTimeConstraint": (
                assemble_time(node.waiting_time_constraint)
                if node.waiting_time_constraint is not None
                else None
            ),
            "numQualifiedObjectsConstraint": (
                {
                    qualifier: assemble_count(bound)
                    for qualifier, bound in node.num_qualified_objects_constraint.items()
                }
                if node.num_qualified_objects_constraint is not None
                else None
            ),
            "filters": [
                to_jsonable_python(replace_infinity_nested(f.model_dump(by_alias=True)))
                for f in node.filters
            ],
        }

    raise TypeError(f"Unsupported node type: {type(node).__name__}")


def _assemble_new_vars(new_vars: dict[int, set[str]]) -> dict[str, list[str]]:
    return {str(index): sorted(types) for index, types in sorted(new_vars.items())}
