"""Lark-based parser for calculator formulas.

Supports:
- Variable references: ``{name}``
- Numeric literals: ``12``, ``3.5``, ``.25``
- Binary ``+ - * / %`` (``%`` is the remainder) and unary minus
- Calls to allow-listed functions: ``max({a}, {b})``
- Bare constants: ``PI``, ``E``
"""

from __future__ import annotations

import re

from lark import Lark, Token, Tree, Visitor
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedInput

from calcblocks.formulas.errors import FormulaParseError

# LALR(1) grammar.
# Operator precedence (lowest to highest):
#   1. Addition/subtraction: + -
#   2. Multiplication/division/remainder: * / %
#   3. Unary minus
#   4. Atoms: number, variable, function call, constant, parenthesized expr
# There is no unary plus, so "2 + + 3" and "2 * / 3" fail to parse while
# "2 * -3" and "2 - -3" are accepted.
GRAMMAR = r"""
start: expr

?expr: addition

?addition: multiplication
    | addition "+" multiplication  -> add
    | addition "-" multiplication  -> sub

?multiplication: unary
    | multiplication "*" unary  -> mul
    | multiplication "/" unary  -> div
    | multiplication "%" unary  -> mod

?unary: atom
    | "-" unary  -> neg

?atom: NUMBER                   -> number
    | VARIABLE                  -> variable
    | NAME "(" args ")"         -> func_call
    | NAME                      -> constant
    | "(" expr ")"

args: expr ("," expr)*
    |

VARIABLE: /\{[A-Za-z_][A-Za-z0-9_]*\}/
NUMBER: /\d+(\.\d*)?|\.\d+/
NAME: /[A-Za-z_][A-Za-z0-9_]*/

WS: /\s+/
%ignore WS
"""

VARIABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
VARIABLE_TOKEN_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def build_parser() -> Lark:
    """Construct a fresh LALR parser for the formula grammar."""
    return Lark(GRAMMAR, parser="lalr", start="start")


def parse_formula(text: str, parser: Lark | None = None) -> Tree:
    """Parse a formula string into a Lark Tree.

    Args:
        text: The formula text, e.g. ``"({revenue} - {costs}) / {costs}"``.
        parser: Parser to use; a new one is built when omitted.

    Returns:
        A Lark parse tree.

    Raises:
        FormulaParseError: If the formula has invalid syntax.
    """
    parser = parser or build_parser()
    try:
        return parser.parse(text)
    except UnexpectedCharacters as exc:
        raise FormulaParseError(
            f"unexpected character {exc.char!r}", position=exc.column
        ) from exc
    except UnexpectedEOF as exc:
        raise FormulaParseError("unexpected end of formula") from exc
    except UnexpectedInput as exc:
        token = getattr(exc, "token", None)
        if token is None or getattr(token, "type", None) == "$END":
            raise FormulaParseError("unexpected end of formula") from exc
        where = f"unexpected token {str(token)!r}"
        raise FormulaParseError(where, position=getattr(exc, "column", None)) from exc


def variable_name(token: Token | str) -> str:
    """Strip the braces from a ``VARIABLE`` token."""
    return str(token)[1:-1]


def extract_variables(formula: str) -> list[str]:
    """Return the unique ``{name}`` references in order of first appearance.

    Works on formulas that do not parse yet, so the editor can list
    variables while the user is still typing.

    Examples:
        ``"{a} + {b} * {a}"`` → ``["a", "b"]``
    """
    if not formula:
        return []
    seen: dict[str, None] = {}
    for match in VARIABLE_TOKEN_RE.finditer(formula):
        seen.setdefault(match.group(1), None)
    return list(seen)


class _NameCollector(Visitor):
    """Visitor that collects variables, calls and constants from a parse tree."""

    def __init__(self) -> None:
        self.variables: set[str] = set()
        self.calls: list[tuple[str, int]] = []
        self.constants: list[str] = []

    def variable(self, tree: Tree) -> None:
        self.variables.add(variable_name(tree.children[0]))

    def func_call(self, tree: Tree) -> None:
        name = str(tree.children[0])
        args = tree.children[1]
        self.calls.append((name, len(args.children)))

    def constant(self, tree: Tree) -> None:
        self.constants.append(str(tree.children[0]))


def collect_names(tree: Tree) -> tuple[set[str], list[tuple[str, int]], list[str]]:
    """Extract every identifier use from a parsed formula tree.

    Returns:
        Tuple of (variables, calls, constants) where:
        - variables: set of referenced variable names (without braces)
        - calls: ``(function_name, argument_count)`` per call site
        - constants: bare identifiers, in source order
    """
    collector = _NameCollector()
    collector.visit(tree)
    return collector.variables, collector.calls, collector.constants


def tree_depth(tree: Tree) -> int:
    """Maximum nesting depth of *tree*, computed without recursion."""
    deepest = 0
    stack: list[tuple[Tree | Token, int]] = [(tree, 1)]
    while stack:
        node, depth = stack.pop()
        deepest = max(deepest, depth)
        if isinstance(node, Tree):
            stack.extend((child, depth + 1) for child in node.children)
    return deepest
