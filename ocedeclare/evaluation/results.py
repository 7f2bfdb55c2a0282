"""
Evaluation Results
==================

Models for the evaluator's response and for results re-keyed by node id.

Wire format (one entry per plan node, in plan order):
    {
      "evaluationResults": [
        {"situationCount": 10, "situationViolatedCount": 2,
         "situations": [[{"eventMap": {"0": 4}, "objectMap": {"0": 1}}, null], ...]},
        ...
      ],
      "eventIds": ["e1", ...],
      "objectIds": ["o1", ...]
    }
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, model_validator


ViolationReason = Union[str, dict[str, Any]]
"""Externally tagged reason, e.g. "NoChildrenOfORSatisfied" or {"TooFewMatchingEvents": 3}."""


VIOLATION_DESCRIPTIONS: dict[str, str] = {
    "TooFewMatchingEvents": "Too few matching events ({})",
    "TooManyMatchingEvents": "Too many matching events ({})",
    "NoChildrenOfORSatisfied": "No child of OR satisfied",
    "LeftChildOfANDUnsatisfied": "Left child of AND unsatisfied",
    "RightChildOfANDUnsatisfied": "Right child of AND unsatisfied",
    "BothChildrenOfANDUnsatisfied": "Both children of AND unsatisfied",
    "ChildrenOfNOTSatisfied": "Child of NOT satisfied",
    "ChildNotSatisfied": "Child not satisfied",
    "ConstraintNotSatisfied": "Constraint #{} not satisfied",
    "UnknownChildSet": "Unknown child set",
}


def describe_violation(reason: Optional[ViolationReason]) -> str:
    """Render a violation reason as display text."""
    if reason is None:
        return "Satisfied"
    if isinstance(reason, str):
        return VIOLATION_DESCRIPTIONS.get(reason, reason)
    if isinstance(reason, dict) and len(reason) == 1:
        tag, value = next(iter(reason.items()))
        template = VIOLATION_DESCRIPTIONS.get(tag)
        if template is not None:
            return template.format(value)
        return f"{tag} ({value})"
    return str(reason)


class Binding(BaseModel):
    """Assignment of variable indices to indices in the shared id tables."""

    model_config = ConfigDict(populate_by_name=True)

    event_map: dict[NonNegativeInt, NonNegativeInt] = Field(default_factory=dict, alias="eventMap")
    object_map: dict[NonNegativeInt, NonNegativeInt] = Field(default_factory=dict, alias="objectMap")

    def resolve(self, event_ids: list[str], object_ids: list[str]) -> dict[str, str]:
        """Map ``ev_i`` / ``ob_i`` names to concrete event/object ids."""
        resolved = {f"ev_{var}": event_ids[index] for var, index in sorted(self.event_map.items())}
        resolved.update(
            {f"ob_{var}": object_ids[index] for var, index in sorted(self.object_map.items())}
        )
        return resolved


class EvaluationResult(BaseModel):
    """Per-node evaluation statistics."""

    model_config = ConfigDict(populate_by_name=True)

    situation_count: NonNegativeInt = Field(alias="situationCount")
    situation_violated_count: NonNegativeInt = Field(alias="situationViolatedCount")
    situations: list[tuple[Binding, Optional[ViolationReason]]] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_counts(self) -> "EvaluationResult":
        if self.situation_violated_count > self.situation_count:
            raise ValueError("situationViolatedCount exceeds situationCount")
        return self

    @property
    def violation_percentage(self) -> float:
        """Share of violated situations in percent, two decimals."""
        if self.situation_count == 0:
            return 0.0
        return round(100 * self.situation_violated_count / self.situation_count, 2)

    def violations(self) -> list[tuple[Binding, ViolationReason]]:
        return [(b, reason) for b, reason in self.situations if reason is not None]


class EvaluationResponse(BaseModel):
    """The evaluator's full response for one plan."""

    model_config = ConfigDict(populate_by_name=True)

    evaluation_results: list[EvaluationResult] = Field(alias="evaluationResults")
    event_ids: list[str] = Field(default_factory=list, alias="eventIds")
    object_ids: list[str] = Field(default_factory=list, alias="objectIds")


@dataclass
class NodeResults:
    """Evaluation results re-associated with the node ids of the plan."""

    evaluations: dict[str, EvaluationResult] = field(default_factory=dict)
    event_ids: list[str] = field(default_factory=list)
    object_ids: list[str] = field(default_factory=list)
    plan_id: Optional[str] = None

    @classmethod
    def from_response(
        cls,
        plan_ids: list[str],
        response: EvaluationResponse,
        plan_id: Optional[str] = None,
    ) -> "NodeResults":
        """
        Zip response entries to plan node ids by position.

        Raises
        ------
        ValueError
            If the response has a different number of entries than the
            plan, or a binding points outside the shared id tables
        """
        if len(response.evaluation_results) != len(plan_ids):
            raise ValueError(
                f"Evaluator returned {len(response.evaluation_results)} results "
                f"for a plan of {len(plan_ids)} nodes"
            )

        for result in response.evaluation_results:
            for binding, _reason in result.situations:
                if any(i >= len(response.event_ids) for i in binding.event_map.values()):
                    raise ValueError("Binding references an unknown event index")
                if any(i >= len(response.object_ids) for i in binding.object_map.values()):
                    raise ValueError("Binding references an unknown object index")

        return cls(
            evaluations=dict(zip(plan_ids, response.evaluation_results)),
            event_ids=list(response.event_ids),
            object_ids=list(response.object_ids),
            plan_id=plan_id,
        )

    def get(self, node_id: str) -> Optional[EvaluationResult]:
        return self.evaluations.get(node_id)

    def summary(self) -> dict[str, list[int]]:
        """Situations and violations per step, in plan order."""
        return {
            "situations": [r.situation_count for r in self.evaluations.values()],
            "violations": [r.situation_violated_count for r in self.evaluations.values()],
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "plan_id": self.plan_id,
            "evalRes": {
                node_id: result.model_dump(mode="json", by_alias=True)
                for node_id, result in self.evaluations.items()
            },
            "eventIds": self.event_ids,
            "objectIds": self.object_ids,
        }
