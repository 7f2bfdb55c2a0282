"""
Platform primitives for plan identity, result caching, and streaming events.
"""

from ocedeclare.platform.events import (
    EVENT_SCHEMA_VERSION,
    NotificationKind,
    attach_event_envelope,
    build_notification,
    diagnostic_notifications,
    normalize_stream_event,
)
from ocedeclare.platform.cache import CachedEvaluation, ResultCache, deterministic_plan_id

__all__ = [
    "EVENT_SCHEMA_VERSION",
    "NotificationKind",
    "attach_event_envelope",
    "build_notification",
    "diagnostic_notifications",
    "normalize_stream_event",
    "CachedEvaluation",
    "ResultCache",
    "deterministic_plan_id",
]
