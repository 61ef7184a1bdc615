"""Evaluation of condition-node rule sets against entity field values."""

from __future__ import annotations

import logging
import operator
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional

from .contracts import ConditionGroup, ConditionRule

logger = logging.getLogger(__name__)


def _as_number(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        number = Decimal(str(value))
        return number if number.is_finite() else None
    if isinstance(value, str) and value.strip():
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
        return number if number.is_finite() else None
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _ordered(left: Any, right: Any) -> tuple:
    """Pair operands numerically when both parse as numbers, else as strings."""
    left_num, right_num = _as_number(left), _as_number(right)
    if left_num is not None and right_num is not None:
        return left_num, right_num
    return _as_text(left), _as_text(right)


def _contains(left: Any, right: Any) -> bool:
    if not isinstance(left, str):
        return False
    return _as_text(right) in left


_COMPARISONS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": operator.eq,
    "not_equals": operator.ne,
    "greater_than": operator.gt,
    "less_than": operator.lt,
    "greater_than_or_equal": operator.ge,
    "less_than_or_equal": operator.le,
}


def evaluate_rule(rule: ConditionRule, fields: Mapping[str, Any]) -> bool:
    """Apply one rule to the entity's current field values."""
    actual = fields.get(rule.field)
    if rule.operator == "contains":
        result = _contains(actual, rule.value)
    else:
        result = _COMPARISONS[rule.operator](*_ordered(actual, rule.value))
    logger.debug(f"Rule {rule.field} {rule.operator} {rule.value!r} against {actual!r} -> {result}")
    return result


def evaluate(group: ConditionGroup, fields: Mapping[str, Any]) -> bool:
    """Combine rule results with ``all`` (AND) or ``any`` (OR) logic."""
    results = (evaluate_rule(rule, fields) for rule in group.rules)
    if group.logic == "any":
        return any(results)
    return all(results)


def referenced_fields(group: ConditionGroup) -> list[str]:
    """Entity fields read by ``group``, in rule order without duplicates."""
    seen: list[str] = []
    for rule in group.rules:
        if rule.field not in seen:
            seen.append(rule.field)
    return seen
