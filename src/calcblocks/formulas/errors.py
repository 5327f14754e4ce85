"""Error types for formula sanitizing and evaluation."""

from __future__ import annotations


class FormulaError(Exception):
    """Base class for all formula-related errors."""


class FormulaParseError(FormulaError):
    """Syntax error in a formula expression.

    Attributes:
        position: Character position where the error was detected.
        message: Human-readable description.
    """

    def __init__(self, message: str, position: int | None = None) -> None:
        self.position = position
        self.message = message
        full = f"Formula parse error: {message}"
        if position is not None:
            full += f" (at position {position})"
        super().__init__(full)


class FormulaUnsafeError(FormulaError):
    """Formula contains a token or pattern outside the accepted grammar.

    Attributes:
        reason: Short description of the rejected construct.
        token: The offending text, when one can be isolated.
    """

    def __init__(self, reason: str, token: str | None = None) -> None:
        self.reason = reason
        self.token = token
        msg = f"Unsafe formula: {reason}"
        if token is not None:
            msg += f" ({token!r})"
        super().__init__(msg)


class FormulaFunctionError(FormulaError):
    """Unknown function or wrong number of arguments.

    Attributes:
        func_name: The function that caused the error.
    """

    def __init__(self, func_name: str, message: str | None = None) -> None:
        self.func_name = func_name
        msg = message or f"Unknown function: {func_name!r}"
        super().__init__(msg)
