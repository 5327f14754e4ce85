"""Central registry for the allow-listed formula functions and constants."""

from __future__ import annotations

from typing import Any, Callable

from pydantic import BaseModel, ConfigDict


class FunctionSpec(BaseModel):
    """A registered function with its accepted arity.

    ``max_args`` of ``None`` means variadic.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    fn: Callable[..., float]
    min_args: int
    max_args: int | None
    uses_rng: bool = False

    def accepts(self, argc: int) -> bool:
        if argc < self.min_args:
            return False
        return self.max_args is None or argc <= self.max_args

    def describe_arity(self) -> str:
        if self.max_args is None:
            return f"at least {self.min_args}"
        if self.min_args == self.max_args:
            return f"exactly {self.min_args}"
        return f"{self.min_args}-{self.max_args}"


_FUNCTIONS: dict[str, FunctionSpec] = {}
_CONSTANTS: dict[str, float] = {}


def register_function(
    name: str,
    min_args: int,
    max_args: int | None = -1,
    *,
    uses_rng: bool = False,
) -> Callable:
    """Decorator that registers a formula function by name.

    Args:
        name: The case-sensitive name used in formulas.
        min_args: Minimum number of arguments.
        max_args: Maximum number of arguments. ``-1`` (default) means the
            same as *min_args*; ``None`` means variadic.
        uses_rng: The function receives the evaluator's random source
            as an ``rng`` keyword argument.

    Returns:
        The original function, unmodified.
    """
    upper = min_args if max_args == -1 else max_args

    def decorator(fn: Callable) -> Callable:
        _FUNCTIONS[name] = FunctionSpec(
            name=name, fn=fn, min_args=min_args, max_args=upper, uses_rng=uses_rng
        )
        return fn

    return decorator


def register_constant(name: str, value: float) -> None:
    """Register a named constant usable bare (``PI``) or as a call (``PI()``)."""
    _CONSTANTS[name] = value
    _FUNCTIONS[name] = FunctionSpec(
        name=name, fn=lambda: value, min_args=0, max_args=0
    )


def get_function(name: str) -> FunctionSpec:
    """Look up a registered function.

    Raises:
        KeyError: If no function is registered under *name*.
    """
    if name not in _FUNCTIONS:
        raise KeyError(f"Unknown function: {name!r}")
    return _FUNCTIONS[name]


def get_constant(name: str) -> float:
    """Look up a registered constant.

    Raises:
        KeyError: If no constant is registered under *name*.
    """
    if name not in _CONSTANTS:
        raise KeyError(f"Unknown constant: {name!r}")
    return _CONSTANTS[name]


def is_function(name: str) -> bool:
    return name in _FUNCTIONS


def is_constant(name: str) -> bool:
    return name in _CONSTANTS


def function_names() -> list[str]:
    """Return every allow-listed name (functions and constants), sorted."""
    return sorted(_FUNCTIONS)


def registry_snapshot() -> dict[str, Any]:
    """Describe the registry for diagnostics (``calcblocks functions``)."""
    return {
        name: {"arity": spec.describe_arity(), "constant": name in _CONSTANTS}
        for name, spec in sorted(_FUNCTIONS.items())
    }
