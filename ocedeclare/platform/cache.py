"""
Deterministic plan IDs and in-memory storage of evaluation results.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any


VOLATILE_KEYS = {
    "event_id",
    "timestamp",
    "created_at",
}


def deterministic_plan_id(
    payload: Any,
    *,
    namespace: str = "ocedeclare.plan.v1",
    prefix: str = "plan",
    drop_keys: set[str] | None = None,
) -> str:
    """
    Generate a deterministic plan id from a canonical payload hash.

    Two identical evaluator requests always map to the same id.
    """
    normalized = _normalize_for_hash(payload, drop_keys=drop_keys or VOLATILE_KEYS)
    blob = json.dumps(normalized, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    digest = hashlib.sha256(f"{namespace}|{blob}".encode("utf-8")).hexdigest()[:16]
    return f"{prefix}_{digest}"


def _normalize_for_hash(value: Any, *, drop_keys: set[str]) -> Any:
    """Normalize nested values into stable, JSON-safe form."""
    if isinstance(value, dict):
        return {
            str(k): _normalize_for_hash(v, drop_keys=drop_keys)
            for k, v in sorted(value.items(), key=lambda item: str(item[0]))
            if str(k) not in drop_keys
        }

    if isinstance(value, (list, tuple)):
        return [_normalize_for_hash(item, drop_keys=drop_keys) for item in value]

    if isinstance(value, (set, frozenset)):
        return sorted(_normalize_for_hash(item, drop_keys=drop_keys) for item in value)

    if isinstance(value, Enum):
        return value.value

    if hasattr(value, "model_dump"):
        return _normalize_for_hash(value.model_dump(mode="json"), drop_keys=drop_keys)

    return value


@dataclass
class CachedEvaluation:
    """One stored evaluator round trip, kept verbatim."""

    plan_id: str
    request: dict[str, Any]
    response: dict[str, Any]
    node_ids: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    hits: int = 0

    def summary(self) -> dict[str, Any]:
        """Compact listing representation."""
        results = self.response.get("evaluationResults", [])
        return {
            "plan_id": self.plan_id,
            "created_at": self.created_at,
            "node_count": len(self.node_ids),
            "violations": sum(r.get("situationViolatedCount", 0) for r in results),
            "hits": self.hits,
        }

    def to_dict(self) -> dict[str, Any]:
        """Full serialization."""
        return {
            "plan_id": self.plan_id,
            "created_at": self.created_at,
            "node_ids": self.node_ids,
            "request": self.request,
            "response": self.response,
            "hits": self.hits,
        }


class ResultCache:
    """Simple in-memory evaluation store keyed by plan id."""

    def __init__(self, max_entries: int = 50):
        self.max_entries = max_entries
        self._entries: dict[str, CachedEvaluation] = {}
        self._order: list[str] = []
        self._lock = Lock()

    def store(
        self,
        plan_id: str,
        *,
        request: dict[str, Any],
        response: dict[str, Any],
        node_ids: list[str] | None = None,
    ) -> CachedEvaluation:
        """
        Store (or overwrite) the evaluation for ``plan_id``.

        Re-storing an existing id moves it to the newest position.
        """
        with self._lock:
            entry = CachedEvaluation(
                plan_id=plan_id,
                request=request,
                response=response,
                node_ids=list(node_ids or []),
            )
            previous = self._entries.get(plan_id)
            if previous is not None:
                entry.hits = previous.hits
                self._order.remove(plan_id)
            self._entries[plan_id] = entry
            self._order.append(plan_id)
            self._trim()
            return entry

    def get(self, plan_id: str) -> dict[str, Any] | None:
        """Get a stored evaluation by plan id."""
        with self._lock:
            entry = self._entries.get(plan_id)
            if entry is None:
                return None
            entry.hits += 1
            return entry.to_dict()

    def __contains__(self, plan_id: str) -> bool:
        with self._lock:
            return plan_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def list_entries(self, limit: int = 20) -> list[dict[str, Any]]:
        """List evaluation summaries, newest first."""
        with self._lock:
            selected = list(reversed(self._order))[: max(limit, 0)]
            return [self._entries[plan_id].summary() for plan_id in selected if plan_id in self._entries]

    def latest_plan_id(self) -> str | None:
        """Return the most recently stored plan id."""
        with self._lock:
            if not self._order:
                return None
            return self._order[-1]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._order.clear()

    def _trim(self) -> None:
        """Drop oldest entries when exceeding retention."""
        while len(self._order) > self.max_entries:
            oldest = self._order.pop(0)
            self._entries.pop(oldest, None)
