"""Allow-listed formula functions.

Importing this package registers the built-in functions and constants.
"""

from calcblocks.functions import builtin  # noqa: F401  (registers built-ins)
from calcblocks.functions.registry import (
    FunctionSpec,
    function_names,
    get_constant,
    get_function,
    is_constant,
    is_function,
    register_constant,
    register_function,
    registry_snapshot,
)

__all__ = [
    "FunctionSpec",
    "function_names",
    "get_constant",
    "get_function",
    "is_constant",
    "is_function",
    "register_constant",
    "register_function",
    "registry_snapshot",
]
