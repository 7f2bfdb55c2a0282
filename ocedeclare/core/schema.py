"""
Constraint Graph Schema
=======================

Data models for the nodes, edges and variables a user authors on the
constraint canvas.

Node Kinds:
- EVENT_TYPE: "events of type X occur between m and n times", with new
  event/object variables, optional waiting-time and per-qualifier bounds,
  and an ordered list of filters
- GATE: AND / OR / NOT combinator over the node's children

Unbounded numeric bounds are ``math.inf`` in Python. On the wire they are
written as MAX_SAFE_INTEGER / MIN_SAFE_INTEGER and read back as infinite.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    field_serializer,
    field_validator,
    model_serializer,
    model_validator,
)


MAX_SAFE_INTEGER: int = 2**53 - 1
"""Largest integer the evaluator's numeric contract represents exactly."""

MIN_SAFE_INTEGER: int = -(2**53 - 1)


def replace_infinity(value: Any) -> Any:
    """
    Rewrite an unbounded value to its finite wire sentinel.

    ``+inf`` becomes MAX_SAFE_INTEGER and ``-inf`` becomes MIN_SAFE_INTEGER.
    Integral floats are emitted as ``int`` so count bounds deserialize as
    integers on the evaluator side. Anything else is returned unchanged.
    """
    if isinstance(value, bool) or not isinstance(value, float):
        return value
    if value == math.inf:
        return MAX_SAFE_INTEGER
    if value == -math.inf:
        return MIN_SAFE_INTEGER
    if value.is_integer():
        return int(value)
    return value


def restore_infinity(value: Any) -> Any:
    """Inverse of replace_infinity: sentinels (or beyond) read as infinite."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value
    if value >= MAX_SAFE_INTEGER:
        return math.inf
    if value <= MIN_SAFE_INTEGER:
        return -math.inf
    return value


# =============================================================================
# Bounds
# =============================================================================


class CountConstraint(BaseModel):
    """Inclusive {min, max} bound on a number of occurrences."""

    model_config = ConfigDict(frozen=False)

    min: float = 1
    max: float = math.inf

    @field_validator("min", mode="before")
    @classmethod
    def _read_min(cls, value: Any) -> Any:
        return -math.inf if value is None else restore_infinity(value)

    @field_validator("max", mode="before")
    @classmethod
    def _read_max(cls, value: Any) -> Any:
        return math.inf if value is None else restore_infinity(value)

    @field_serializer("min", "max", when_used="json")
    def _write_bound(self, value: float) -> Any:
        return replace_infinity(value)

    @model_validator(mode="after")
    def _validate_bounds(self) -> "CountConstraint":
        if self.max < self.min:
            raise ValueError("max must be greater than or equal to min")
        return self

    def is_unbounded(self) -> bool:
        """True when the upper bound is infinite."""
        return math.isinf(self.max)


class TimeConstraint(BaseModel):
    """Inclusive {min_seconds, max_seconds} window."""

    model_config = ConfigDict(populate_by_name=True)

    min_seconds: float = Field(
        default=0,
        validation_alias=AliasChoices("min_seconds", "minSeconds"),
    )
    max_seconds: float = Field(
        default=math.inf,
        validation_alias=AliasChoices("max_seconds", "maxSeconds"),
    )

    @field_validator("min_seconds", mode="before")
    @classmethod
    def _read_min(cls, value: Any) -> Any:
        return -math.inf if value is None else restore_infinity(value)

    @field_validator("max_seconds", mode="before")
    @classmethod
    def _read_max(cls, value: Any) -> Any:
        return math.inf if value is None else restore_infinity(value)

    @field_serializer("min_seconds", "max_seconds", when_used="json")
    def _write_bound(self, value: float) -> Any:
        return replace_infinity(value)

    @model_validator(mode="after")
    def _validate_bounds(self) -> "TimeConstraint":
        if self.max_seconds < self.min_seconds:
            raise ValueError("max_seconds must be greater than or equal to min_seconds")
        return self

    def __repr__(self) -> str:
        return f"TimeConstraint({self.min_seconds}s → {self.max_seconds}s)"


# =============================================================================
# Variables
# =============================================================================


class VariableKind(str, Enum):
    """The two kinds of variables a node can introduce."""

    EVENT = "event"
    OBJECT = "object"

    @property
    def wire_tag(self) -> str:
        """Tag used in the evaluator's externally tagged encoding."""
        return "Event" if self is VariableKind.EVENT else "Object"

    @property
    def short_name(self) -> str:
        return "ev" if self is VariableKind.EVENT else "ob"


class Variable(BaseModel):
    """
    An event or object variable, identified by a small integer.

    Indices are unique only within the node that introduces them. On the
    wire a variable is ``{"Event": 0}`` or ``{"Object": 3}``.
    """

    model_config = ConfigDict(frozen=True)

    kind: VariableKind
    index: NonNegativeInt

    @classmethod
    def event(cls, index: int) -> "Variable":
        return cls(kind=VariableKind.EVENT, index=index)

    @classmethod
    def object(cls, index: int) -> "Variable":
        return cls(kind=VariableKind.OBJECT, index=index)

    @model_validator(mode="before")
    @classmethod
    def _accept_tagged(cls, data: Any) -> Any:
        if isinstance(data, dict) and len(data) == 1:
            tag, index = next(iter(data.items()))
            if tag in ("Event", "Object"):
                return {"kind": tag.lower(), "index": index}
        return data

    @model_serializer
    def _serialize(self) -> dict[str, int]:
        return {self.kind.wire_tag: self.index}

    def sort_key(self) -> tuple[int, int]:
        return (0 if self.kind is VariableKind.EVENT else 1, self.index)

    def __str__(self) -> str:
        return f"{self.kind.short_name}_{self.index}"


# =============================================================================
# Filters
# =============================================================================


class FloatValueFilter(BaseModel):
    type: Literal["Float"] = "Float"
    min: Optional[float] = None
    max: Optional[float] = None


class IntegerValueFilter(BaseModel):
    type: Literal["Integer"] = "Integer"
    min: Optional[int] = None
    max: Optional[int] = None


class BooleanValueFilter(BaseModel):
    type: Literal["Boolean"] = "Boolean"
    is_true: bool


class StringValueFilter(BaseModel):
    type: Literal["String"] = "String"
    is_in: list[str] = Field(default_factory=list)


class TimeValueFilter(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["Time"] = "Time"
    from_: Optional[datetime] = Field(default=None, alias="from")
    to: Optional[datetime] = None


ValueFilter = Annotated[
    Union[
        FloatValueFilter,
        IntegerValueFilter,
        BooleanValueFilter,
        StringValueFilter,
        TimeValueFilter,
    ],
    Field(discriminator="type"),
]


class AlwaysTimepoint(BaseModel):
    type: Literal["Always"] = "Always"


class SometimeTimepoint(BaseModel):
    type: Literal["Sometime"] = "Sometime"


class AtEventTimepoint(BaseModel):
    type: Literal["AtEvent"] = "AtEvent"
    event: NonNegativeInt


ObjectValueFilterTimepoint = Annotated[
    Union[AlwaysTimepoint, SometimeTimepoint, AtEventTimepoint],
    Field(discriminator="type"),
]


class O2EFilter(BaseModel):
    """Object is associated with event, optionally through a qualifier."""

    type: Literal["O2E"] = "O2E"
    object: NonNegativeInt
    event: NonNegativeInt
    qualifier: Optional[str] = None

    def involved_variables(self) -> set[Variable]:
        return {Variable.object(self.object), Variable.event(self.event)}


class O2OFilter(BaseModel):
    """Object is associated with another object, optionally through a qualifier."""

    type: Literal["O2O"] = "O2O"
    object: NonNegativeInt
    other_object: NonNegativeInt
    qualifier: Optional[str] = None

    def involved_variables(self) -> set[Variable]:
        return {Variable.object(self.object), Variable.object(self.other_object)}


class TimeBetweenEventsFilter(BaseModel):
    """Duration between two events lies in [min_seconds, max_seconds]; None means no bound."""

    type: Literal["TimeBetweenEvents"] = "TimeBetweenEvents"
    from_event: NonNegativeInt
    to_event: NonNegativeInt
    min_seconds: Optional[float] = None
    max_seconds: Optional[float] = None

    def involved_variables(self) -> set[Variable]:
        return {Variable.event(self.from_event), Variable.event(self.to_event)}


class NotEqualFilter(BaseModel):
    type: Literal["NotEqual"] = "NotEqual"
    var_1: Variable
    var_2: Variable

    def involved_variables(self) -> set[Variable]:
        return {self.var_1, self.var_2}


class EventAttributeValueFilter(BaseModel):
    type: Literal["EventAttributeValueFilter"] = "EventAttributeValueFilter"
    event: NonNegativeInt
    attribute_name: str
    value_filter: ValueFilter

    def involved_variables(self) -> set[Variable]:
        return {Variable.event(self.event)}


class ObjectAttributeValueFilter(BaseModel):
    type: Literal["ObjectAttributeValueFilter"] = "ObjectAttributeValueFilter"
    object: NonNegativeInt
    attribute_name: str
    at_time: ObjectValueFilterTimepoint = Field(default_factory=AlwaysTimepoint)
    value_filter: ValueFilter

    def involved_variables(self) -> set[Variable]:
        involved = {Variable.object(self.object)}
        if isinstance(self.at_time, AtEventTimepoint):
            involved.add(Variable.event(self.at_time.event))
        return involved


class BasicFilterCEL(BaseModel):
    """Free-form CEL expression. Its variables are not analysed."""

    type: Literal["BasicFilterCEL"] = "BasicFilterCEL"
    cel: str

    def involved_variables(self) -> set[Variable]:
        return set()


Filter = Annotated[
    Union[
        O2EFilter,
        O2OFilter,
        TimeBetweenEventsFilter,
        NotEqualFilter,
        EventAttributeValueFilter,
        ObjectAttributeValueFilter,
        BasicFilterCEL,
    ],
    Field(discriminator="type"),
]


# =============================================================================
# Nodes
# =============================================================================


class GateType(str, Enum):
    """Logical combinators available as gate nodes."""

    AND = "and"
    OR = "or"
    NOT = "not"

    @property
    def slot_count(self) -> int:
        """Number of outgoing slots: NOT has one, AND/OR have two."""
        return 1 if self is GateType.NOT else 2


def _new_node_id() -> str:
    return uuid4().hex


class EventTypeNode(BaseModel):
    """
    A node constraining occurrences of one event type.

    Examples
    --------
    "place order" happens exactly once per order object:
        EventTypeNode(
            id="A",
            event_type="place order",
            new_object_vars={0: {"orders"}},
            new_event_vars={0: {"place order"}},
            count_constraint=CountConstraint(min=1, max=1),
        )
    """

    kind: Literal["event_type"] = "event_type"

    id: str = Field(default_factory=_new_node_id)
    """Opaque identifier, unique within a graph."""

    event_type: str
    """The event type label this node counts."""

    new_event_vars: dict[NonNegativeInt, set[str]] = Field(default_factory=dict)
    """Event variables introduced here, mapped to the event types they may bind."""

    new_object_vars: dict[NonNegativeInt, set[str]] = Field(default_factory=dict)
    """Object variables introduced here, mapped to the object types they may bind."""

    count_constraint: CountConstraint = Field(default_factory=CountConstraint)

    first_or_last: Optional[Literal["first", "last"]] = None

    waiting_time_constraint: Optional[TimeConstraint] = None

    num_qualified_objects_constraint: Optional[dict[str, CountConstraint]] = None
    """Per-qualifier bounds on the number of related objects."""

    filters: list[Filter] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_contract(self) -> "EventTypeNode":
        if not self.id or not self.id.strip():
            raise ValueError("id must be a non-empty string")
        if not self.event_type or not self.event_type.strip():
            raise ValueError("event_type must be a non-empty string")
        return self

    def introduced(self, kind: VariableKind) -> list[int]:
        """Indices of the variables of ``kind`` this node introduces."""
        source = self.new_event_vars if kind is VariableKind.EVENT else self.new_object_vars
        return sorted(source.keys())

    def __repr__(self) -> str:
        return f"EventTypeNode(id={self.id}, event_type={self.event_type})"


class GateNode(BaseModel):
    """A logical gate. Handles are derived from the node id."""

    kind: Literal["gate"] = "gate"

    id: str = Field(default_factory=lambda: "gate" + uuid4().hex)

    gate_type: GateType = GateType.NOT

    @model_validator(mode="after")
    def _validate_contract(self) -> "GateNode":
        if not self.id or not self.id.strip():
            raise ValueError("id must be a non-empty string")
        return self

    @property
    def target_handle(self) -> str:
        return f"{self.id}-target"

    def source_handles(self) -> list[str]:
        """Outgoing slot handles, in child order."""
        if self.gate_type is GateType.NOT:
            return [f"{self.id}-source"]
        return [f"{self.id}-left-source", f"{self.id}-right-source"]

    def __repr__(self) -> str:
        return f"GateNode(id={self.id}, gate_type={self.gate_type.value})"


Node = Annotated[Union[EventTypeNode, GateNode], Field(discriminator="kind")]


# =============================================================================
# Edges
# =============================================================================


class Edge(BaseModel):
    """
    A directed dependency from ``source`` (parent) to ``target`` (child).

    Handles are the anchor points on the canvas. When omitted they default
    to ``<source>-source`` and ``<target>-target``, and the id defaults to
    ``<source_handle>|||<target_handle>``.
    """

    id: str = ""
    source: str
    target: str
    source_handle: str = ""
    target_handle: str = ""

    constraint_type: str = "response"
    """Tag describing how the child relates to its parent."""

    time_constraint: TimeConstraint = Field(default_factory=TimeConstraint)
    """Allowed delay between the parent's and the child's events."""

    color: str = "#969696"

    @model_validator(mode="after")
    def _fill_defaults(self) -> "Edge":
        if not self.source or not self.target:
            raise ValueError("source and target must be non-empty")
        if not self.source_handle:
            self.source_handle = f"{self.source}-source"
        if not self.target_handle:
            self.target_handle = f"{self.target}-target"
        if not self.id:
            self.id = f"{self.source_handle}|||{self.target_handle}"
        return self

    def __repr__(self) -> str:
        return f"Edge({self.source} → {self.target}, type={self.constraint_type})"
