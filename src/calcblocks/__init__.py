"""calcblocks -- safe formula engine for block-based calculators."""

__version__ = "0.1.0"

from calcblocks.blocks import CalculatorConfig, create_block
from calcblocks.formatting import format_value
from calcblocks.formulas import (
    EvaluationResult,
    Evaluator,
    Sanitizer,
    ValidationResult,
    evaluate,
    extract_variables,
    validate,
)
from calcblocks.session import CalculatorSession
from calcblocks.variables import VariableStore

__all__ = [
    "CalculatorConfig",
    "CalculatorSession",
    "EvaluationResult",
    "Evaluator",
    "Sanitizer",
    "ValidationResult",
    "VariableStore",
    "__version__",
    "create_block",
    "evaluate",
    "extract_variables",
    "format_value",
    "validate",
]
