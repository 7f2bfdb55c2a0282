"""
Evaluator Client
================

Transport to the external evaluation engine. The engine receives the
ordered plan and returns one result per plan entry, in the same order.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from ocedeclare.evaluation.results import EvaluationResponse


CHECK_CONSTRAINTS_PATH = "/ocel/check-constraints"


class EvaluationTransportError(RuntimeError):
    """The evaluator could not be reached or answered with a malformed response."""


class BaseEvaluatorClient(ABC):
    """
    Abstract transport to the evaluation engine.

    Subclass this to plug in another transport (in-process engine, test
    double). Implementations must raise EvaluationTransportError for any
    network or decoding failure.
    """

    @abstractmethod
    async def check_constraints(self, request: dict[str, Any]) -> EvaluationResponse:
        """
        Send one compiled plan and return the parsed response.

        Parameters
        ----------
        request : dict
            ``{"variables": [...], "nodesOrder": [...]}`` as built by
            CompileResult.to_request()
        """
        ...


class HttpEvaluatorClient(BaseEvaluatorClient):
    """
    Evaluator reached over HTTP.

    Example
    -------
    >>> client = HttpEvaluatorClient("http://localhost:3000")
    >>> response = await client.check_constraints(compiled.to_request())
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        path: str = CHECK_CONSTRAINTS_PATH,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Parameters
        ----------
        base_url : str
            Evaluator root URL
        timeout : float
            Request timeout in seconds
        path : str
            Endpoint path for constraint checking
        transport : httpx.AsyncBaseTransport, optional
            Custom transport (e.g. httpx.MockTransport in tests)
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._path = path
        self._transport = transport

    @property
    def url(self) -> str:
        return f"{self._base_url}{self._path}"

    async def check_constraints(self, request: dict[str, Any]) -> EvaluationResponse:
        print(f"[Evaluator] POST {self.url} ({len(request.get('nodesOrder', []))} nodes)")
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=request)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EvaluationTransportError(f"Evaluator request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise EvaluationTransportError("Evaluator returned invalid JSON") from exc

        try:
            return EvaluationResponse.model_validate(data)
        except ValidationError as exc:
            raise EvaluationTransportError(
                f"Evaluator returned a malformed response: {exc.error_count()} error(s)"
            ) from exc

    def __repr__(self) -> str:
        return f"HttpEvaluatorClient(url={self.url})"
