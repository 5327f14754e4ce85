"""Tree-walking evaluator for sanitized formula expressions.

The public entry points never raise: every failure (unsafe formula,
unknown variable, division by zero, overflow) degrades to ``0`` so one
malformed block cannot break the rest of a calculator.
"""

from __future__ import annotations

import functools
import math
import random
from typing import Any, Mapping

from lark import Token, Tree
from pydantic import BaseModel

from calcblocks.formulas.errors import FormulaError, FormulaFunctionError
from calcblocks.formulas.parser import extract_variables, variable_name
from calcblocks.formulas.sanitizer import SafeExpression, Sanitizer
from calcblocks.functions import get_constant, get_function
from calcblocks.logging.events import (
    NON_FINITE_RESULT,
    NON_FINITE_VARIABLE,
    UNKNOWN_VARIABLE,
    UNSAFE_EXPRESSION,
    EventType,
    emit_warning,
)

_NAN = float("nan")
_INF = float("inf")


class EvaluationResult(BaseModel):
    """Numeric outcome plus a validity signal for rendering.

    ``value`` is always finite; it is ``0`` whenever ``valid`` is false.
    """

    value: float
    valid: bool


class ValidationResult(BaseModel):
    """Authoring-time diagnostic for a formula."""

    valid: bool
    error: str | None = None
    position: int | None = None


class Evaluator:
    """Evaluate formulas against a variable snapshot.

    Holds a :class:`Sanitizer` and a random source; no per-call state is
    kept, so one instance may be shared by any number of callers.

    Usage::

        ev = Evaluator()
        ev.evaluate("{a} + {b} * 2", {"a": 3, "b": 4})   # 11.0
        ev.validate("window.location")                  # valid=False
    """

    def __init__(
        self,
        sanitizer: Sanitizer | None = None,
        *,
        rng: random.Random | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """
        Args:
            sanitizer: Sanitizer to use; a default one is built when omitted.
            rng: Random source for ``random()``; the module RNG when omitted.
            context: Extra context attached to every emitted event
                (e.g. ``{"calculator_id": ...}``).
        """
        self.sanitizer = sanitizer or Sanitizer()
        self._rng = rng
        self._event_context = dict(context or {})

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def evaluate(self, formula: str, variables: Mapping[str, Any]) -> float:
        """Evaluate *formula* to a finite float.  Never raises."""
        return self.evaluate_result(formula, variables).value

    def evaluate_result(
        self, formula: str, variables: Mapping[str, Any]
    ) -> EvaluationResult:
        """Evaluate *formula* and report whether the value is meaningful.

        Empty formulas are defined as ``0`` and count as valid.
        """
        if formula is None or (isinstance(formula, str) and not formula.strip()):
            return EvaluationResult(value=0.0, valid=True)

        try:
            safe = self.sanitizer.check(formula)
        except FormulaError as exc:
            self._warn(
                EventType.formula_rejected,
                f"Formula rejected: {exc}",
                {"formula": formula},
                UNSAFE_EXPRESSION,
            )
            return EvaluationResult(value=0.0, valid=False)

        values = self._resolve_variables(formula, variables)
        try:
            value = self.evaluate_safe(safe, values)
        except (FormulaError, ArithmeticError, ValueError, TypeError, RecursionError) as exc:
            self._warn(
                EventType.formula_rejected,
                f"Formula evaluation failed: {exc}",
                {"formula": formula},
                UNSAFE_EXPRESSION,
            )
            return EvaluationResult(value=0.0, valid=False)

        if not math.isfinite(value):
            self._warn(
                EventType.formula_non_finite_result,
                "Formula produced a non-finite result, using 0",
                {"formula": formula, "result": repr(value)},
                NON_FINITE_RESULT,
            )
            return EvaluationResult(value=0.0, valid=False)
        # Normalise -0.0 so displays never show "-0"
        return EvaluationResult(value=value + 0.0, valid=True)

    def evaluate_safe(self, safe: SafeExpression, values: Mapping[str, float]) -> float:
        """Evaluate a sanitized expression; may return NaN or infinity.

        Args:
            safe: Output of :meth:`Sanitizer.check`.
            values: Fully resolved variable values.  Names missing here
                evaluate to ``0``.
        """
        return self._eval(safe.tree, values)

    def validate(self, formula: str) -> ValidationResult:
        """Authoring-time check of *formula* (no variables needed).

        An empty formula is valid, matching its runtime value of ``0``.
        """
        if not isinstance(formula, str):
            return ValidationResult(valid=False, error="Formula must be a string")
        if not formula.strip():
            return ValidationResult(valid=True)
        try:
            self.sanitizer.check(formula)
        except FormulaError as exc:
            return ValidationResult(
                valid=False,
                error=str(exc),
                position=getattr(exc, "position", None),
            )
        return ValidationResult(valid=True)

    # ------------------------------------------------------------------
    # Variable resolution
    # ------------------------------------------------------------------

    def _resolve_variables(
        self, formula: str, variables: Mapping[str, Any]
    ) -> dict[str, float]:
        """Look up every ``{name}`` in *formula*, substituting 0 on failure."""
        resolved: dict[str, float] = {}
        for name in extract_variables(formula):
            if name not in variables:
                self._warn(
                    EventType.formula_unknown_variable,
                    f"Variable {name!r} not found, using 0",
                    {"formula": formula, "variable": name},
                    UNKNOWN_VARIABLE,
                )
                resolved[name] = 0.0
                continue
            raw = variables[name]
            try:
                value = float(raw)
            except (TypeError, ValueError, OverflowError):
                value = _NAN
            if isinstance(raw, bool) or not math.isfinite(value):
                self._warn(
                    EventType.formula_non_finite_variable,
                    f"Variable {name!r} is not a finite number, using 0",
                    {"formula": formula, "variable": name, "value": repr(raw)},
                    NON_FINITE_VARIABLE,
                )
                value = 0.0
            resolved[name] = value
        return resolved

    def _warn(
        self,
        event_type: EventType,
        message: str,
        context: dict[str, Any],
        error_code: str,
    ) -> None:
        emit_warning(
            event_type,
            message,
            {**self._event_context, **context},
            error_code=error_code,
        )

    # ------------------------------------------------------------------
    # Tree walking
    # ------------------------------------------------------------------

    def _eval(self, node: Tree | Token, values: Mapping[str, float]) -> float:
        """Recursively evaluate a tree node."""
        if isinstance(node, Token):
            raise FormulaError(f"Unexpected token: {node.type}")

        rule = node.data

        if rule == "start":
            return self._eval(node.children[0], values)

        # Arithmetic
        if rule == "add":
            return self._eval(node.children[0], values) + self._eval(node.children[1], values)
        if rule == "sub":
            return self._eval(node.children[0], values) - self._eval(node.children[1], values)
        if rule == "mul":
            return self._eval(node.children[0], values) * self._eval(node.children[1], values)
        if rule == "div":
            return _divide(self._eval(node.children[0], values), self._eval(node.children[1], values))
        if rule == "mod":
            return _remainder(self._eval(node.children[0], values), self._eval(node.children[1], values))
        if rule == "neg":
            return -self._eval(node.children[0], values)

        # Leaves
        if rule == "number":
            return float(node.children[0])
        if rule == "variable":
            return values.get(variable_name(node.children[0]), 0.0)
        if rule == "constant":
            return get_constant(str(node.children[0]))

        if rule == "func_call":
            return self._eval_func(node, values)

        raise FormulaError(f"Unknown node type: {rule}")

    def _eval_func(self, node: Tree, values: Mapping[str, float]) -> float:
        """Evaluate a function call node."""
        func_name = str(node.children[0])
        try:
            spec = get_function(func_name)
        except KeyError as exc:
            raise FormulaFunctionError(func_name) from exc

        args = [self._eval(arg, values) for arg in node.children[1].children]
        if spec.uses_rng:
            return spec.fn(*args, rng=self._rng)
        return spec.fn(*args)


def _divide(left: float, right: float) -> float:
    """IEEE division: ``x / 0`` is a signed infinity, ``0 / 0`` is NaN."""
    if right == 0:
        if left == 0 or math.isnan(left):
            return _NAN
        return math.copysign(_INF, left) * math.copysign(1.0, right)
    return left / right


def _remainder(left: float, right: float) -> float:
    """Remainder with the sign of the dividend (``-7 % 3 == -1``)."""
    if right == 0 or math.isinf(left) or math.isnan(left) or math.isnan(right):
        return _NAN
    return math.fmod(left, right)


# ---------------------------------------------------------------------------
# Module-level convenience API
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=1)
def default_evaluator() -> Evaluator:
    """Shared :class:`Evaluator` with default limits (stateless, safe to share)."""
    return Evaluator()


def evaluate(formula: str, variables: Mapping[str, Any]) -> float:
    """Evaluate *formula* against *variables*.  Never raises."""
    return default_evaluator().evaluate(formula, variables)


def validate(formula: str) -> ValidationResult:
    """Authoring-time diagnostic for *formula*."""
    return default_evaluator().validate(formula)
