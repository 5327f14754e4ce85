"""Unified event schema and module-level emit helpers.

All timestamps use UTC ISO-8601 with ``Z`` suffix.  The ``emit()``
family of functions is safe to call from any context -- failures are
swallowed and printed to stderr, so a broken log directory can never
break formula evaluation.
"""

from __future__ import annotations

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
    # Formula evaluation
    formula_unknown_variable = "formula_unknown_variable"
    formula_non_finite_variable = "formula_non_finite_variable"
    formula_rejected = "formula_rejected"
    formula_non_finite_result = "formula_non_finite_result"

    # Variable store
    variable_set = "variable_set"
    variable_deleted = "variable_deleted"
    variable_renamed = "variable_renamed"
    variable_listener_error = "variable_listener_error"

    # Session
    session_rendered = "session_rendered"
    view_listener_error = "view_listener_error"

    # Calculator config
    calculator_invalid = "calculator_invalid"


# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

UNKNOWN_VARIABLE = "unknown_variable"
NON_FINITE_VARIABLE = "non_finite_variable"
UNSAFE_EXPRESSION = "unsafe_expression"
NON_FINITE_RESULT = "non_finite_result"
LISTENER_FAILED = "listener_failed"
INVALID_CALCULATOR = "invalid_calculator"


# ---------------------------------------------------------------------------
# Context truncation
# ---------------------------------------------------------------------------

_MAX_VALUE_LEN = 256


def truncate_context(context: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *context* with long strings truncated.

    Formulas are user-authored and unbounded, so every string value is
    capped at 256 characters.  Nested dicts and lists are handled.
    """
    return {k: _truncate_value(v) for k, v in context.items()}


def _truncate_value(v: Any) -> Any:
    if isinstance(v, dict):
        return truncate_context(v)
    if isinstance(v, list):
        return [_truncate_value(item) for item in v]
    if isinstance(v, str) and len(v) > _MAX_VALUE_LEN:
        return v[:_MAX_VALUE_LEN] + "...[truncated]"
    return v


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    """Return current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class CalcEvent(BaseModel):
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

# Set by ``set_project_dir`` or ``set_sink``.
_sink: Any = None  # EventSink | None


def set_project_dir(project_dir: Any) -> None:
    """Configure the module-level event sink for a project directory.

    This should be called early in a CLI command or host startup.  If
    it is never called, ``emit()`` silently discards events.

    Reads the ``logging_*`` keys of the project config (``calcblocks.yaml``).
    When ``logging_max_bytes`` is set the global log is trimmed to that size.
    """
    from pathlib import Path

    from calcblocks.logging.sink import EventSink
    from calcblocks.project import load_project_config

    cfg = load_project_config(Path(project_dir))
    if not cfg.get("logging_enabled", True):
        set_sink(None)
        return
    tail_bytes = cfg.get("logging_tail_bytes")
    sink = EventSink(
        Path(project_dir),
        fsync=bool(cfg.get("logging_fsync", False)),
        tail_bytes=int(tail_bytes) if tail_bytes is not None else None,
    )
    max_bytes = cfg.get("logging_max_bytes")
    if max_bytes is not None:
        sink.trim_global_log(int(max_bytes))
    set_sink(sink)


def set_sink(sink: Any) -> None:
    """Install *sink* (an ``EventSink`` or ``None``) as the module sink."""
    global _sink
    _sink = sink


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
        print(f"[calcblocks] {msg}", file=sys.stderr)
    except Exception:
        pass


# ---------------------------------------------------------------------------
# Safe emit helpers
# ---------------------------------------------------------------------------


def emit(event: CalcEvent) -> None:
    """Write an event to the configured sink.

    **Never raises.**  On failure, prints a rate-limited warning to stderr.
    """
    try:
        sink = get_sink()
        if sink is None:
            return
        sink.write(event.model_copy(update={"context": truncate_context(event.context)}))
    except Exception:
        _stderr_warning(f"logging failed: {traceback.format_exc()}")


def emit_info(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
) -> None:
    """Convenience: emit an info-level event."""
    emit(
        CalcEvent(
            level=EventLevel.info,
            event_type=event_type,
            message=message,
            context=context or {},
        )
    )


def emit_warning(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    """Convenience: emit a warning-level event."""
    emit(
        CalcEvent(
            level=EventLevel.warning,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        )
    )


def emit_error(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    """Convenience: emit an error-level event."""
    emit(
        CalcEvent(
            level=EventLevel.error,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        )
    )
