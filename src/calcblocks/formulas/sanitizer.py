"""Safety boundary between user-authored formulas and the evaluator.

A formula is accepted only if it parses under the allow-list grammar in
:mod:`calcblocks.formulas.parser` and every identifier it uses is a
registered function or constant with a matching argument count.  The
grammar has no member access, indexing, strings or assignment, so an
accepted tree contains nothing but arithmetic.

A denylist pre-scan runs first.  It does not decide safety on its own;
it gives the editor a precise reason ("member access") where the parser
would only report an unexpected character.
"""

from __future__ import annotations

import re

from lark import Lark, Tree
from pydantic import BaseModel, ConfigDict

from calcblocks.formulas.errors import (
    FormulaError,
    FormulaFunctionError,
    FormulaUnsafeError,
)
from calcblocks.formulas.parser import (
    VARIABLE_TOKEN_RE,
    build_parser,
    collect_names,
    parse_formula,
    tree_depth,
)
from calcblocks.functions import get_function, is_constant, is_function

DEFAULT_MAX_LENGTH = 2000
DEFAULT_MAX_DEPTH = 256

_HOST_NAMES = (
    "window",
    "document",
    "globalThis",
    "self",
    "process",
    "require",
    "import",
    "eval",
    "exec",
    "compile",
    "Function",
    "fetch",
    "XMLHttpRequest",
    "localStorage",
    "sessionStorage",
    "indexedDB",
    "globals",
    "locals",
    "getattr",
    "setattr",
    "open",
    "os",
    "sys",
)

# (pattern, reason) pairs, checked in order against the formula with
# ``{name}`` tokens masked out.
_DENYLIST: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"[\[\]]"), "bracket indexing"),
    (re.compile(r"`|\$\{"), "template literal syntax"),
    (re.compile(r"\\"), "escape sequence"),
    (re.compile(r"[\"']"), "string literal"),
    (re.compile(r"__\w*"), "dunder name"),
    (re.compile(r"\b(?:constructor|prototype)\b"), "prototype access"),
    (re.compile(r"\b(?:" + "|".join(_HOST_NAMES) + r")\b"), "reference to host object"),
    (re.compile(r"[A-Za-z0-9_)]\s*\.\s*[A-Za-z_$]"), "member access"),
    (re.compile(r"=|;"), "assignment or statement"),
]


class SafeExpression(BaseModel):
    """A formula the :class:`Sanitizer` has proven to be plain arithmetic.

    Attributes:
        source: The formula text, unchanged.
        tree: The allow-listed parse tree.
        variables: Names referenced via ``{name}``.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    source: str
    tree: Tree
    variables: frozenset[str]


class Sanitizer:
    """Validate formulas against the allow-list grammar.

    Instances hold only an immutable parser and limits, so one instance
    can be shared freely.

    Usage::

        sanitizer = Sanitizer()
        safe = sanitizer.sanitize("max({a}, {b}) * 2")
        if safe is None:
            ...  # rejected
    """

    def __init__(
        self,
        *,
        max_length: int = DEFAULT_MAX_LENGTH,
        max_depth: int = DEFAULT_MAX_DEPTH,
        parser: Lark | None = None,
    ) -> None:
        self.max_length = max_length
        self.max_depth = max_depth
        self._parser = parser or build_parser()

    def sanitize(self, expr: str) -> SafeExpression | None:
        """Return a :class:`SafeExpression` for *expr*, or ``None`` if unsafe."""
        try:
            return self.check(expr)
        except FormulaError:
            return None

    def check(self, expr: str) -> SafeExpression:
        """Prove *expr* safe or explain why not.

        Raises:
            FormulaUnsafeError: Denylisted construct, or over the limits.
            FormulaParseError: Text outside the grammar.
            FormulaFunctionError: Unknown function/constant or bad arity.
        """
        if not isinstance(expr, str):
            raise FormulaUnsafeError("formula must be a string")
        if len(expr) > self.max_length:
            raise FormulaUnsafeError(
                f"formula longer than {self.max_length} characters"
            )

        _scan_denylist(expr)

        tree = parse_formula(expr, self._parser)
        if tree_depth(tree) > self.max_depth:
            raise FormulaUnsafeError(f"nesting deeper than {self.max_depth} levels")

        variables, calls, constants = collect_names(tree)
        for name, argc in calls:
            if not is_function(name):
                raise FormulaFunctionError(name)
            spec = get_function(name)
            if not spec.accepts(argc):
                raise FormulaFunctionError(
                    name,
                    f"{name}() takes {spec.describe_arity()} argument(s), got {argc}",
                )
        for name in constants:
            if not is_constant(name):
                if is_function(name):
                    raise FormulaFunctionError(name, f"{name} must be called: {name}(...)")
                raise FormulaUnsafeError("unknown identifier", name)

        return SafeExpression(source=expr, tree=tree, variables=frozenset(variables))


def _scan_denylist(expr: str) -> None:
    masked = VARIABLE_TOKEN_RE.sub("0", expr)
    for pattern, reason in _DENYLIST:
        match = pattern.search(masked)
        if match:
            raise FormulaUnsafeError(reason, match.group(0).strip())
