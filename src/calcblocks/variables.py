"""Versioned, observable variable store.

Input and slider blocks own variables; result, chart and comparison
blocks read them.  Every mutation bumps a single version counter and
notifies subscribers, which recompute everything they display
(coarse-grained invalidation, no per-formula dependency tracking).

All mutations run under one ``threading.RLock`` so a value update and
its version bump are observed together.  Subscribers are called after
the lock is released, in registration order.
"""

from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Any, Callable, Mapping

from calcblocks.formulas.parser import VARIABLE_NAME_RE
from calcblocks.logging.events import (
    LISTENER_FAILED,
    EventType,
    emit_info,
    emit_warning,
)

# (version, changed_names)
Listener = Callable[[int, frozenset[str]], None]


class VariableNameError(ValueError):
    """A variable name is not a valid identifier."""

    def __init__(self, name: Any) -> None:
        self.name = name
        super().__init__(
            f"Invalid variable name: {name!r} "
            "(must match [A-Za-z_][A-Za-z0-9_]*)"
        )


def check_variable_name(name: Any) -> str:
    """Return *name* unchanged if it is a valid identifier.

    Raises:
        VariableNameError: Otherwise.
    """
    if not isinstance(name, str) or not VARIABLE_NAME_RE.match(name):
        raise VariableNameError(name)
    return name


class VariableStore:
    """Mutable name→float mapping with a version counter and subscribers.

    Usage::

        store = VariableStore({"price": 100})
        unsubscribe = store.subscribe(lambda version, changed: ...)
        store.set("price", 120)
        store.rename("price", "unit_price")
        snapshot = store.snapshot()   # read-only, never changes
    """

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._lock = threading.RLock()
        self._values: dict[str, float] = {}
        self._version = 0
        self._listeners: list[Listener] = []
        for name, value in (initial or {}).items():
            self._values[check_variable_name(name)] = _to_float(name, value)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def version(self) -> int:
        """Monotonic counter, bumped once per mutation."""
        with self._lock:
            return self._version

    def get(self, name: str, default: float = 0.0) -> float:
        with self._lock:
            return self._values.get(name, default)

    def snapshot(self) -> Mapping[str, float]:
        """Immutable copy of the current values."""
        with self._lock:
            return MappingProxyType(dict(self._values))

    def versioned_snapshot(self) -> tuple[int, Mapping[str, float]]:
        """``(version, snapshot)`` taken atomically."""
        with self._lock:
            return self._version, MappingProxyType(dict(self._values))

    def names(self) -> list[str]:
        with self._lock:
            return list(self._values)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def __repr__(self) -> str:
        return f"VariableStore(version={self.version}, values={dict(self.snapshot())!r})"

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set(self, name: str, value: float) -> int:
        """Set one variable.  Returns the new version."""
        return self.set_many({name: value})

    def set_many(self, values: Mapping[str, Any]) -> int:
        """Set several variables as a single mutation (one version bump).

        Raises:
            VariableNameError: If any name is invalid; nothing is applied.
            ValueError: If any value is not a number; nothing is applied.
        """
        coerced = {check_variable_name(n): _to_float(n, v) for n, v in values.items()}
        with self._lock:
            self._values.update(coerced)
            version = self._bump()
        emit_info(
            EventType.variable_set,
            f"Set {len(coerced)} variable(s)",
            {"names": sorted(coerced), "version": version},
        )
        self._notify(version, frozenset(coerced))
        return version

    def delete(self, name: str) -> int | None:
        """Remove *name*.  Returns the new version, or None if absent."""
        with self._lock:
            if name not in self._values:
                return None
            del self._values[name]
            version = self._bump()
        emit_info(
            EventType.variable_deleted,
            f"Deleted variable {name!r}",
            {"variable": name, "version": version},
        )
        self._notify(version, frozenset({name}))
        return version

    def rename(self, old: str, new: str) -> int:
        """Atomically move *old*'s value to *new* (one version bump).

        No reader can observe a state where both or neither name holds
        the value.  An existing *new* is overwritten.

        Raises:
            KeyError: If *old* is not defined.
            VariableNameError: If *new* is not a valid identifier.
        """
        check_variable_name(new)
        with self._lock:
            if old not in self._values:
                raise KeyError(f"Unknown variable: {old!r}")
            if old == new:
                return self._version
            value = self._values.pop(old)
            self._values[new] = value
            version = self._bump()
        emit_info(
            EventType.variable_renamed,
            f"Renamed variable {old!r} to {new!r}",
            {"old": old, "new": new, "version": version},
        )
        self._notify(version, frozenset({old, new}))
        return version

    def replace_all(self, values: Mapping[str, Any]) -> int:
        """Replace the whole mapping (e.g. when loading a calculator)."""
        coerced = {check_variable_name(n): _to_float(n, v) for n, v in values.items()}
        with self._lock:
            changed = frozenset(self._values) | frozenset(coerced)
            self._values = coerced
            version = self._bump()
        self._notify(version, changed)
        return version

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _bump(self) -> int:
        self._version += 1
        return self._version

    def _notify(self, version: int, changed: frozenset[str]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(version, changed)
            except Exception as exc:
                emit_warning(
                    EventType.variable_listener_error,
                    f"Variable listener failed: {exc}",
                    {"version": version, "changed": sorted(changed)},
                    error_code=LISTENER_FAILED,
                )


def _to_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Variable {name!r}: expected a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValueError(f"Variable {name!r}: expected a number, got {value!r}") from exc

