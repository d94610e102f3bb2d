"""
Conditions - Comparison rules shared by the if and filter nodes.

A condition is a dict with already-resolved operands:

    {"value1": 42, "operation": "greaterThan", "value2": 18}

String operations compare the string forms of both sides, numeric
operations parse both sides as floats.
"""

from __future__ import annotations

import math
import re
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional

from kerdar.node_sdk.errors import NodeOperationError


class ComparisonOperation(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    REGEX = "regex"
    IS_EMPTY = "isEmpty"
    IS_NOT_EMPTY = "isNotEmpty"
    GREATER_THAN = "greaterThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN = "lessThan"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    IS_TRUE = "isTrue"
    IS_FALSE = "isFalse"
    EXISTS = "exists"
    DOES_NOT_EXIST = "doesNotExist"


class CombineMode(str, Enum):
    AND = "and"
    OR = "or"


def as_string(value: Any) -> str:
    """String form the way a user typing into a field sees it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def as_number(value: Any) -> float:
    """Float form; NaN when the value has no numeric reading."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    match = re.match(r"^\s*[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?", as_string(value))
    return float(match.group(0)) if match else math.nan


def is_empty(value: Any) -> bool:
    if value is None or value == "":
        return True
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _numeric(compare: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def check(value1: Any, value2: Any) -> bool:
        left, right = as_number(value1), as_number(value2)
        if math.isnan(left) or math.isnan(right):
            return False
        return compare(left, right)
    return check


def _matches(value1: Any, value2: Any) -> bool:
    try:
        return re.search(as_string(value2), as_string(value1)) is not None
    except re.error as e:
        raise NodeOperationError(f"Invalid regular expression: {value2}", description=str(e)) from e


_OPERATIONS: Dict[str, Callable[[Any, Any], bool]] = {
    ComparisonOperation.EQUALS.value: lambda a, b: as_string(a) == as_string(b),
    ComparisonOperation.NOT_EQUALS.value: lambda a, b: as_string(a) != as_string(b),
    ComparisonOperation.CONTAINS.value: lambda a, b: as_string(b) in as_string(a),
    ComparisonOperation.NOT_CONTAINS.value: lambda a, b: as_string(b) not in as_string(a),
    ComparisonOperation.STARTS_WITH.value: lambda a, b: as_string(a).startswith(as_string(b)),
    ComparisonOperation.ENDS_WITH.value: lambda a, b: as_string(a).endswith(as_string(b)),
    ComparisonOperation.REGEX.value: _matches,
    ComparisonOperation.IS_EMPTY.value: lambda a, b: is_empty(a),
    ComparisonOperation.IS_NOT_EMPTY.value: lambda a, b: not is_empty(a),
    ComparisonOperation.GREATER_THAN.value: _numeric(lambda a, b: a > b),
    ComparisonOperation.GREATER_THAN_OR_EQUAL.value: _numeric(lambda a, b: a >= b),
    ComparisonOperation.LESS_THAN.value: _numeric(lambda a, b: a < b),
    ComparisonOperation.LESS_THAN_OR_EQUAL.value: _numeric(lambda a, b: a <= b),
    ComparisonOperation.IS_TRUE.value: lambda a, b: a is True or as_string(a).lower() == "true",
    ComparisonOperation.IS_FALSE.value: lambda a, b: a is False or as_string(a).lower() == "false",
    ComparisonOperation.EXISTS.value: lambda a, b: a is not None,
    ComparisonOperation.DOES_NOT_EXIST.value: lambda a, b: a is None,
}


def evaluate_condition(value1: Any, operation: str, value2: Any = None) -> bool:
    """
    Apply one comparison.

    Raises:
        NodeOperationError: Unknown operation or invalid regex
    """
    check = _OPERATIONS.get(operation)
    if check is None:
        raise NodeOperationError(f"Unknown operation: {operation}")
    return check(value1, value2)


def evaluate_conditions(
    conditions: Iterable[Dict[str, Any]],
    combine: Optional[str] = CombineMode.AND.value,
) -> bool:
    """
    Combine condition results with "and" / "or".

    No conditions at all passes.
    """
    results = [
        evaluate_condition(c.get("value1"), c.get("operation", ComparisonOperation.EQUALS.value), c.get("value2"))
        for c in conditions
    ]
    if not results:
        return True
    if combine == CombineMode.OR.value:
        return any(results)
    return all(results)


__all__ = [
    "CombineMode",
    "ComparisonOperation",
    "as_number",
    "as_string",
    "evaluate_condition",
    "evaluate_conditions",
    "is_empty",
]
