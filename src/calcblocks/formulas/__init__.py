"""Safe calculator formula sanitizing and evaluation.

Public API::

    from calcblocks.formulas import evaluate, validate, extract_variables
"""

from calcblocks.formulas.errors import (
    FormulaError,
    FormulaFunctionError,
    FormulaParseError,
    FormulaUnsafeError,
)
from calcblocks.formulas.evaluator import (
    EvaluationResult,
    Evaluator,
    ValidationResult,
    default_evaluator,
    evaluate,
    validate,
)
from calcblocks.formulas.parser import extract_variables, parse_formula
from calcblocks.formulas.sanitizer import SafeExpression, Sanitizer

__all__ = [
    "EvaluationResult",
    "Evaluator",
    "FormulaError",
    "FormulaFunctionError",
    "FormulaParseError",
    "FormulaUnsafeError",
    "SafeExpression",
    "Sanitizer",
    "ValidationResult",
    "default_evaluator",
    "evaluate",
    "extract_variables",
    "parse_formula",
    "validate",
]
