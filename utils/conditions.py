"""
Condition evaluator for graph condition nodes.

All comparisons are string comparisons on lower-cased values; a missing
context variable compares as the empty string.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from pydantic import BaseModel


OPERATORS: dict[str, Callable[[str, str], bool]] = {
    "equals": lambda a, b: a == b,
    "contains": lambda a, b: b in a,
    "startsWith": lambda a, b: a.startswith(b),
    "endsWith": lambda a, b: a.endswith(b),
}


class Condition(BaseModel):
    """(variable, operator, value) triple carried by a condition node."""
    variable: Optional[str] = None
    operator: Optional[str] = None
    value: Optional[str] = None


def evaluate_condition(
    variable: Optional[str],
    operator: Optional[str],
    value: Optional[str],
    context: dict[str, Any],
) -> bool:
    """Evaluate one condition against the session context."""
    if not variable or not operator:
        return False
    fn = OPERATORS.get(operator)
    if fn is None:
        return False
    actual = str(context.get(variable) or "").lower()
    expected = str(value or "").lower()
    return fn(actual, expected)


def evaluate(condition: Condition, context: dict[str, Any]) -> bool:
    return evaluate_condition(condition.variable, condition.operator, condition.value, context)
