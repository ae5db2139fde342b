"""
Step condition evaluation against the execution context.
"""

import logging
import math
import re
from typing import Any, Mapping

from .models import ConditionType, PlaybookStepCondition

logger = logging.getLogger(__name__)

_MISSING = object()


def resolve_field(context: Mapping[str, Any], field_path: str) -> Any:
    """
    Walk a dot path through nested mappings (and list indexes).

    Args:
        context: The execution context data
        field_path: Dot-separated path, e.g. "trigger.entity.severity"

    Returns:
        The resolved value, or the module sentinel if any segment is missing
        or an intermediate value is None
    """
    current: Any = context
    for part in field_path.split("."):
        if current is None:
            return _MISSING
        if isinstance(current, Mapping):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


_DECIMAL = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_RADIX = re.compile(r"^0([xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)$")
_INFINITY = re.compile(r"^[+-]?Infinity$")


def _to_number(value: Any) -> float:
    """
    Numeric coercion for greater_than / less_than.

    None and blank text are 0. Text must be a plain decimal, a 0x / 0o / 0b
    literal or Infinity; anything else (including "1_000", "nan", "inf")
    becomes NaN, as do non-scalar values.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if _DECIMAL.match(text):
            return float(text)
        if _RADIX.match(text):
            return float(int(text, 0))
        if _INFINITY.match(text):
            return -math.inf if text.startswith("-") else math.inf
        return math.nan
    return math.nan


def _strict_equals(left: Any, right: Any) -> bool:
    """Value equality that does not treat booleans as numbers."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


class ConditionEvaluator:
    """
    Evaluates step conditions.

    Evaluation is pure: it reads the context and never mutates it, and
    internal errors evaluate to False instead of propagating.
    """

    def evaluate(self, condition: PlaybookStepCondition, context: Mapping[str, Any]) -> bool:
        """
        Evaluate a condition against the context.

        Args:
            condition: The condition to evaluate
            context: The execution context data

        Returns:
            True if the condition holds, False otherwise (including on error)
        """
        try:
            value = resolve_field(context, condition.field)
            if value is _MISSING:
                return False
            return self._compare(condition.type, value, condition.value)
        except Exception as e:
            logger.debug(f"Condition on '{condition.field}' evaluated to False: {e}")
            return False

    def _compare(self, condition_type: ConditionType, value: Any, expected: Any) -> bool:
        if condition_type == ConditionType.EQUALS:
            return _strict_equals(value, expected)
        elif condition_type == ConditionType.CONTAINS:
            if isinstance(value, str):
                return str(expected) in value
            if isinstance(value, (list, tuple)):
                return any(_strict_equals(item, expected) for item in value)
            return False
        elif condition_type == ConditionType.GREATER_THAN:
            return _to_number(value) > _to_number(expected)
        elif condition_type == ConditionType.LESS_THAN:
            return _to_number(value) < _to_number(expected)
        elif condition_type == ConditionType.EXISTS:
            return value is not None

        return False
