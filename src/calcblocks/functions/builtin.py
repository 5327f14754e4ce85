"""Built-in math functions available to formulas.

Results follow IEEE-754 conventions instead of raising: a domain error
(``sqrt(-1)``) yields NaN and an overflow (``exp(1000)``) yields an
infinity.  The evaluator normalises non-finite results to ``0``.
"""

from __future__ import annotations

import functools
import math
import random as _random
from typing import Callable

from calcblocks.functions.registry import register_constant, register_function

_NAN = float("nan")
_INF = float("inf")


def _ieee(fn: Callable[..., float]) -> Callable[..., float]:
    """Map Python math exceptions onto NaN/infinity results."""

    @functools.wraps(fn)
    def wrapper(*args: float) -> float:
        try:
            return float(fn(*args))
        except OverflowError:
            return _INF
        except (ValueError, ZeroDivisionError):
            return _NAN

    return wrapper


def _unary(name: str, impl: Callable[[float], float]) -> None:
    register_function(name, 1)(_ieee(impl))


@register_function("abs", 1)
@_ieee
def fn_abs(x: float) -> float:
    return abs(x)


@register_function("ceil", 1)
@_ieee
def fn_ceil(x: float) -> float:
    if not math.isfinite(x):
        return x
    return math.ceil(x)


@register_function("floor", 1)
@_ieee
def fn_floor(x: float) -> float:
    if not math.isfinite(x):
        return x
    return math.floor(x)


@register_function("round", 1)
@_ieee
def fn_round(x: float) -> float:
    """Round half up, so ``round(2.5) == 3`` and ``round(-2.5) == -2``."""
    if not math.isfinite(x):
        return x
    # floor(x + 0.5) misrounds 0.49999999999999994 and odd values above 2**52
    r = math.floor(x)
    return float(r + 1 if x - r >= 0.5 else r)


@register_function("trunc", 1)
@_ieee
def fn_trunc(x: float) -> float:
    if not math.isfinite(x):
        return x
    return math.trunc(x)


@register_function("max", 0, None)
def fn_max(*args: float) -> float:
    """Largest argument; ``-inf`` with no arguments, NaN if any is NaN."""
    if any(math.isnan(a) for a in args):
        return _NAN
    return max(args, default=-_INF)


@register_function("min", 0, None)
def fn_min(*args: float) -> float:
    if any(math.isnan(a) for a in args):
        return _NAN
    return min(args, default=_INF)


@register_function("pow", 2)
@_ieee
def fn_pow(base: float, exponent: float) -> float:
    return math.pow(base, exponent)


@register_function("cbrt", 1)
@_ieee
def fn_cbrt(x: float) -> float:
    if x == 0 or not math.isfinite(x):
        return x
    return math.copysign(abs(x) ** (1.0 / 3.0), x)


@register_function("log", 1)
@_ieee
def fn_log(x: float) -> float:
    """Natural logarithm; ``log(0)`` is ``-inf``."""
    if x == 0:
        return -_INF
    return math.log(x)


@register_function("log10", 1)
@_ieee
def fn_log10(x: float) -> float:
    if x == 0:
        return -_INF
    return math.log10(x)


@register_function("log2", 1)
@_ieee
def fn_log2(x: float) -> float:
    if x == 0:
        return -_INF
    return math.log2(x)


@register_function("atan2", 2)
@_ieee
def fn_atan2(y: float, x: float) -> float:
    return math.atan2(y, x)


@register_function("sign", 1)
def fn_sign(x: float) -> float:
    if math.isnan(x):
        return _NAN
    if x > 0:
        return 1.0
    if x < 0:
        return -1.0
    return x


@register_function("random", 0, uses_rng=True)
def fn_random(rng: _random.Random | None = None) -> float:
    """Uniform float in ``[0, 1)`` from *rng* (or the module RNG)."""
    return (rng or _random).random()


for _name, _impl in (
    ("sqrt", math.sqrt),
    ("exp", math.exp),
    ("sin", math.sin),
    ("cos", math.cos),
    ("tan", math.tan),
    ("asin", math.asin),
    ("acos", math.acos),
    ("atan", math.atan),
    ("sinh", math.sinh),
    ("cosh", math.cosh),
    ("tanh", math.tanh),
):
    _unary(_name, _impl)

register_constant("PI", math.pi)
register_constant("E", math.e)
