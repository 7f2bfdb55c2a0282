"""
Normalized notification and streaming event utilities.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable
from uuid import uuid4


EVENT_SCHEMA_VERSION = "1.0"


class NotificationKind(str, Enum):
    """User-facing notifications published to connected clients."""

    CYCLE_DETECTED = "cycle_detected"
    """The graph contains a cycle; nothing was sent."""

    UNREACHABLE_NODES = "unreachable_nodes"
    """Some connected nodes cannot be reached from a root; nothing was sent."""

    CONNECTION_REJECTED = "connection_rejected"
    """An edge request was refused (loop, occupied gate slot, ...)."""

    EVALUATION_STARTED = "evaluation_started"
    """A plan was sent; the evaluate control stays disabled until it settles."""

    EVALUATION_FAILED = "evaluation_failed"
    EVALUATION_FINISHED = "evaluation_finished"
    EVALUATION_CLEARED = "evaluation_cleared"
    GRAPH_UPDATED = "graph_updated"


_SEVERITY_BY_KIND = {
    NotificationKind.CYCLE_DETECTED: "error",
    NotificationKind.UNREACHABLE_NODES: "error",
    NotificationKind.EVALUATION_FAILED: "error",
    NotificationKind.CONNECTION_REJECTED: "warning",
}


def build_notification(kind: NotificationKind, message: str, **details: Any) -> dict[str, Any]:
    """
    Build a notification message in the flat form.

    Wrap it with attach_event_envelope() before broadcasting.
    """
    return {
        "type": kind.value,
        "severity": _SEVERITY_BY_KIND.get(kind, "info"),
        "message": message,
        "source": _source_for(kind),
        **details,
    }


def _source_for(kind: NotificationKind) -> str:
    if kind.value.startswith("evaluation"):
        return "evaluator"
    if kind in (NotificationKind.CONNECTION_REJECTED, NotificationKind.GRAPH_UPDATED):
        return "editor"
    return "compiler"


def diagnostic_notifications(diagnostics: Iterable[Any]) -> list[dict[str, Any]]:
    """
    One notification per fatal compile diagnostic.

    Warnings (gate arity, out-of-scope filters) are returned by the
    compiler but never pushed as notifications.
    """
    messages = []
    for diagnostic in diagnostics:
        if not diagnostic.is_fatal:
            continue
        kind = NotificationKind(diagnostic.kind.value)
        messages.append(build_notification(kind, diagnostic.message, node_ids=list(diagnostic.node_ids)))
    return messages


def normalize_stream_event(
    message: dict[str, Any],
    *,
    session_id: str | None = None,
    default_source: str = "server",
) -> dict[str, Any]:
    """
    Convert a flat message payload into a normalized event envelope.
    """
    if not isinstance(message, dict):
        raise TypeError("message must be a dictionary")

    existing = message.get("event")
    if isinstance(existing, dict) and existing.get("schema_version"):
        return existing

    source = message.get("source") or default_source
    source_type = message.get("source_type") or _infer_source_type(str(source))
    event_type = str(message.get("type", "unknown"))
    event_payload = {
        key: value
        for key, value in message.items()
        if key not in {"event", "schema_version", "type", "source", "source_type"}
    }

    return {
        "schema_version": EVENT_SCHEMA_VERSION,
        "event_id": uuid4().hex,
        "session_id": session_id or message.get("session_id") or "unbound",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": source,
        "source_type": source_type,
        "event_type": event_type,
        "payload": event_payload,
    }


def attach_event_envelope(
    message: dict[str, Any],
    *,
    session_id: str | None = None,
    default_source: str = "server",
) -> dict[str, Any]:
    """
    Attach a normalized event envelope to an outbound message.
    """
    envelope = normalize_stream_event(
        message,
        session_id=session_id,
        default_source=default_source,
    )
    outbound = dict(message)
    outbound["schema_version"] = EVENT_SCHEMA_VERSION
    outbound["event"] = envelope
    return outbound


def _infer_source_type(source: str) -> str:
    """Infer source type from the message source name."""
    if source.lower() in {"compiler", "editor"}:
        return "graph"

    if "evaluat" in source.lower():
        return "evaluator"

    if source.lower() in {"server", "system"}:
        return "server"

    return "component"
