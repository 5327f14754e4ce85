"""Structured event logging for calcblocks.

Provides a unified event schema, filesystem NDJSON sink, and safe
emit helpers that never raise uncaught exceptions.
"""

from calcblocks.logging.events import (
    CalcEvent,
    EventLevel,
    EventType,
    emit,
    emit_error,
    emit_info,
    emit_warning,
    get_sink,
    set_project_dir,
    set_sink,
    truncate_context,
)
from calcblocks.logging.sink import EventSink

__all__ = [
    "CalcEvent",
    "EventLevel",
    "EventSink",
    "EventType",
    "emit",
    "emit_error",
    "emit_info",
    "emit_warning",
    "get_sink",
    "set_project_dir",
    "set_sink",
    "truncate_context",
]
