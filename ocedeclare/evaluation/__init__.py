"""
Evaluation: evaluator transport, response models and the evaluate/clear
lifecycle.
"""

from ocedeclare.evaluation.results import (
    Binding,
    EvaluationResponse,
    EvaluationResult,
    NodeResults,
    describe_violation,
)
from ocedeclare.evaluation.client import (
    BaseEvaluatorClient,
    EvaluationTransportError,
    HttpEvaluatorClient,
)
from ocedeclare.evaluation.orchestrator import EvaluationInProgressError, EvaluationOrchestrator

__all__ = [
    "Binding",
    "EvaluationResponse",
    "EvaluationResult",
    "NodeResults",
    "describe_violation",
    "BaseEvaluatorClient",
    "EvaluationTransportError",
    "HttpEvaluatorClient",
    "EvaluationInProgressError",
    "EvaluationOrchestrator",
]
