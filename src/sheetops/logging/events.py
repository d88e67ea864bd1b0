"""Unified event schema and module-level emit helpers.

All timestamps use UTC ISO-8601 with ``Z`` suffix.  The ``emit()``
family of functions is safe to call from any context -- failures are
swallowed and printed to stderr.
"""

from __future__ import annotations

import re
import sys
import time
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventLevel(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class EventType(str, Enum):
    # Duplication
    copy_started = "copy_started"
    copy_completed = "copy_completed"
    copy_failed = "copy_failed"

    # Reordering
    reorder_applied = "reorder_applied"
    reorder_noop = "reorder_noop"

    # Commit lifecycle
    commit_succeeded = "commit_succeeded"
    commit_failed = "commit_failed"
    rollback_applied = "rollback_applied"

    # Deletion
    delete_applied = "delete_applied"

    # Data integrity
    integrity_violation = "integrity_violation"
    verify_pass = "verify_pass"
    verify_fail = "verify_fail"


# ---------------------------------------------------------------------------
# Secret redaction
# ---------------------------------------------------------------------------

_SENSITIVE_KEY_RE = re.compile(
    r"(password|passwd|secret|token|api_key|apikey|authorization|cookie"
    r"|session|bearer|credential)",
    re.IGNORECASE,
)

_MAX_VALUE_LEN = 256


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *context* with sensitive values redacted.

    Rules:
    - Keys matching sensitive patterns have their values replaced with
      ``"[REDACTED]"``.
    - String values longer than 256 chars are truncated.
    """
    return _redact_dict(context)


def _redact_dict(d: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in d.items():
        if _SENSITIVE_KEY_RE.search(str(k)):
            out[k] = "[REDACTED]"
        elif isinstance(v, dict):
            out[k] = _redact_dict(v)
        elif isinstance(v, list):
            out[k] = [_redact_value(item) for item in v]
        else:
            out[k] = _redact_value(v)
    return out


def _redact_value(v: Any) -> Any:
    if isinstance(v, dict):
        return _redact_dict(v)
    if isinstance(v, str) and len(v) > _MAX_VALUE_LEN:
        return v[:_MAX_VALUE_LEN] + "...[truncated]"
    return v


# ---------------------------------------------------------------------------
# Attribution invariants
# ---------------------------------------------------------------------------

_OP_EVENT_REQUIRED = {"op_id"}

_EVENT_REQUIRED_KEYS: dict[str, set[str]] = {
    EventType.copy_started.value: {"kind"},
    EventType.copy_completed.value: _OP_EVENT_REQUIRED,
    EventType.copy_failed.value: set(),
    EventType.reorder_applied.value: _OP_EVENT_REQUIRED,
    EventType.reorder_noop.value: set(),
    EventType.commit_succeeded.value: _OP_EVENT_REQUIRED,
    EventType.commit_failed.value: _OP_EVENT_REQUIRED,
    EventType.rollback_applied.value: set(),
    EventType.delete_applied.value: _OP_EVENT_REQUIRED,
    EventType.integrity_violation.value: set(),
    EventType.verify_pass.value: set(),
    EventType.verify_fail.value: set(),
}


def _validate_attribution(event: SheetOpsEvent) -> SheetOpsEvent:
    """Check required context keys; downgrade to warning if missing."""
    key = event.event_type.value if isinstance(event.event_type, EventType) else event.event_type
    required = _EVENT_REQUIRED_KEYS.get(key, set())
    if not required:
        return event
    missing = required - set(event.context.keys())
    if missing:
        ctx = dict(event.context)
        ctx["_missing_attribution"] = sorted(missing)
        return event.model_copy(update={"level": EventLevel.warning, "context": ctx})
    return event


def make_op_event(
    event_type: EventType,
    level: EventLevel,
    message: str,
    *,
    op_id: str | None = None,
    kind: str | None = None,
    error_code: str | None = None,
    extra: dict[str, Any] | None = None,
) -> SheetOpsEvent:
    """Build an event with guaranteed operation attribution context."""
    ctx: dict[str, Any] = {}
    if op_id is not None:
        ctx["op_id"] = op_id
    if kind is not None:
        ctx["kind"] = kind
    if extra:
        ctx.update(extra)
    return SheetOpsEvent(
        level=level,
        event_type=event_type,
        message=message,
        context=ctx,
        error_code=error_code,
    )


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    """Return current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class SheetOpsEvent(BaseModel):
    """A single structured log event."""

    schema_version: int = 1
    ts: str = Field(default_factory=_utc_now)
    level: EventLevel
    event_type: EventType
    context: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    error_code: str | None = None


# ---------------------------------------------------------------------------
# Module-level sink reference
# ---------------------------------------------------------------------------

# Lazily initialised when ``set_project_dir`` is called.
_sink: Any = None  # EventSink | None
_project_dir: Any = None


def set_project_dir(project_dir: Any) -> None:
    """Configure the module-level event sink for a project directory.

    This should be called early in a CLI command.  If it is never
    called, ``emit()`` silently discards events.

    Reads ``logging_fsync`` and ``logging_tail_bytes`` from the project
    config (``sheetops.yaml``) to configure the sink.
    """
    global _sink, _project_dir
    from pathlib import Path

    from sheetops.logging.sink import EventSink

    _project_dir = Path(project_dir)

    fsync = False
    tail_bytes = None
    try:
        from sheetops.project import load_project_config

        cfg = load_project_config(_project_dir)
        fsync = bool(cfg.get("logging_fsync", False))
        tb = cfg.get("logging_tail_bytes")
        if tb is not None:
            tail_bytes = int(tb)
    except Exception:
        pass

    _sink = EventSink(_project_dir, fsync=fsync, tail_bytes=tail_bytes)


def clear_project_dir() -> None:
    """Detach the module-level sink; subsequent emits are discarded."""
    global _sink, _project_dir
    _sink = None
    _project_dir = None


def get_sink() -> Any:
    """Return the module-level sink, or None."""
    return _sink


# ---------------------------------------------------------------------------
# Rate-limited stderr warnings
# ---------------------------------------------------------------------------

_last_stderr_ts: float = 0.0
_STDERR_INTERVAL_SECS = 60.0


def _stderr_warning(msg: str) -> None:
    """Print a warning to stderr, rate-limited to one per 60 seconds."""
    global _last_stderr_ts
    now = time.monotonic()
    if now - _last_stderr_ts < _STDERR_INTERVAL_SECS:
        return
    _last_stderr_ts = now
    try:
        print(f"[sheetops] {msg}", file=sys.stderr)
    except Exception:
        pass


# ---------------------------------------------------------------------------
# Safe emit helpers
# ---------------------------------------------------------------------------


def emit(event: SheetOpsEvent, *, op_id: str | None = None) -> None:
    """Write an event to the global log and optionally to a per-operation log.

    **Never raises.**  On failure, prints a rate-limited warning to stderr.

    Applies secret redaction and attribution validation before writing.
    """
    try:
        sink = get_sink()
        if sink is None:
            return
        event = event.model_copy(update={"context": redact_context(event.context)})
        event = _validate_attribution(event)
        sink.write(event, op_id=op_id)
    except Exception:
        _stderr_warning(f"logging failed: {traceback.format_exc()}")


def emit_info(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    op_id: str | None = None,
) -> None:
    """Convenience: emit an info-level event."""
    emit(
        SheetOpsEvent(
            level=EventLevel.info,
            event_type=event_type,
            message=message,
            context=context or {},
        ),
        op_id=op_id,
    )


def emit_warning(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
    op_id: str | None = None,
) -> None:
    """Convenience: emit a warning-level event."""
    emit(
        SheetOpsEvent(
            level=EventLevel.warning,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        ),
        op_id=op_id,
    )


def emit_error(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
    op_id: str | None = None,
) -> None:
    """Convenience: emit an error-level event."""
    emit(
        SheetOpsEvent(
            level=EventLevel.error,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        ),
        op_id=op_id,
    )
