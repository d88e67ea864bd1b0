"""Structured event logging for sheetops.

Provides a unified event schema, filesystem NDJSON sink, and safe
emit helpers that never raise uncaught exceptions.
"""

from sheetops.logging.events import (
    EventLevel,
    EventType,
    SheetOpsEvent,
    clear_project_dir,
    emit,
    emit_error,
    emit_info,
    emit_warning,
    get_sink,
    make_op_event,
    redact_context,
    set_project_dir,
)
from sheetops.logging.sink import EventSink

__all__ = [
    "EventLevel",
    "EventSink",
    "EventType",
    "SheetOpsEvent",
    "clear_project_dir",
    "emit",
    "emit_error",
    "emit_info",
    "emit_warning",
    "get_sink",
    "make_op_event",
    "redact_context",
    "set_project_dir",
]
