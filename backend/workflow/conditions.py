"""Condition evaluation for step gating and decision criteria.

A condition compares the value found at ``field`` (a dot path into the
execution variables) against ``value`` using ``operator``:

    {"field": "priority", "operator": "equals", "value": "high"}
    {"field": "steps.review.score", "operator": "greater_than", "value": 7}
    {"field": "region", "operator": "in", "value": ["eu", "us"]}

Evaluation never raises: malformed input (non-numeric operands, a bad
regex, a non-list ``in`` value, an unknown operator) evaluates to False.
"""

import logging
import re
from typing import Any, Iterable, Union

from core.constants import ConditionOperator, LogicalOperator
from core.utils import resolve_path
from workflow.models import WorkflowCondition

logger = logging.getLogger(__name__)

ConditionLike = Union[WorkflowCondition, dict]


def _attr(condition: ConditionLike, name: str, default: Any = None) -> Any:
    if isinstance(condition, dict):
        return condition.get(name, default)
    return getattr(condition, name, default)


def _as_number(value: Any) -> float:
    if isinstance(value, str):
        value = value.strip()
    return float(value)


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


class ConditionEvaluator:
    """Pure evaluator for WorkflowCondition / decision criteria."""

    @staticmethod
    def evaluate(condition: ConditionLike, value: Any) -> bool:
        """Evaluate a single comparison against a runtime value."""
        operator = _attr(condition, "operator")
        expected = _attr(condition, "value")

        try:
            op = ConditionOperator(operator)
        except ValueError:
            logger.warning("Unknown condition operator: %r", operator)
            return False

        if op == ConditionOperator.EQUALS:
            return value == expected
        if op == ConditionOperator.NOT_EQUALS:
            return value != expected

        if op in (
            ConditionOperator.CONTAINS,
            ConditionOperator.NOT_CONTAINS,
            ConditionOperator.STARTS_WITH,
            ConditionOperator.ENDS_WITH,
        ):
            text, needle = _as_text(value), _as_text(expected)
            if op == ConditionOperator.CONTAINS:
                return needle in text
            if op == ConditionOperator.NOT_CONTAINS:
                return needle not in text
            if op == ConditionOperator.STARTS_WITH:
                return text.startswith(needle)
            return text.endswith(needle)

        if op in (
            ConditionOperator.GREATER_THAN,
            ConditionOperator.LESS_THAN,
            ConditionOperator.GREATER_THAN_OR_EQUAL,
            ConditionOperator.LESS_THAN_OR_EQUAL,
        ):
            try:
                left, right = _as_number(value), _as_number(expected)
            except (TypeError, ValueError):
                return False
            if op == ConditionOperator.GREATER_THAN:
                return left > right
            if op == ConditionOperator.LESS_THAN:
                return left < right
            if op == ConditionOperator.GREATER_THAN_OR_EQUAL:
                return left >= right
            return left <= right

        if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
            if not isinstance(expected, (list, tuple, set, frozenset)):
                return False
            found = value in expected
            return found if op == ConditionOperator.IN else not found

        if op == ConditionOperator.IS_NULL:
            return value is None
        if op == ConditionOperator.IS_NOT_NULL:
            return value is not None

        # REGEX
        try:
            return re.search(_as_text(expected), _as_text(value)) is not None
        except re.error as e:
            logger.warning("Invalid regex in condition: %r (%s)", expected, e)
            return False

    @classmethod
    def evaluate_condition(cls, condition: ConditionLike, variables: dict) -> bool:
        """Resolve the condition's field in ``variables`` and evaluate it.

        Nested ``conditions`` form a group; a condition with a group and no
        field of its own evaluates to the group's result, otherwise both
        must hold.
        """
        nested = _attr(condition, "conditions") or []
        field_path = _attr(condition, "field") or ""

        if nested and not field_path:
            return cls.evaluate_all(nested, variables)

        met = cls.evaluate(condition, resolve_path(variables, field_path))
        if nested:
            met = met and cls.evaluate_all(nested, variables)
        return met

    @classmethod
    def evaluate_all(cls, conditions: Iterable[ConditionLike], variables: dict) -> bool:
        """Combine conditions left to right.

        The running result starts with the first condition. Each following
        condition is AND-ed in unless it carries ``logical_operator="or"``.
        Combination short-circuits: a condition is not evaluated when it
        cannot change the running result. An empty list is True.
        """
        result = None
        for condition in conditions:
            op = (_attr(condition, "logical_operator") or _attr(condition, "logicalOperator")
                  or LogicalOperator.AND.value)

            if result is None:
                result = cls.evaluate_condition(condition, variables)
            elif op == LogicalOperator.OR.value:
                result = result or cls.evaluate_condition(condition, variables)
            else:
                result = result and cls.evaluate_condition(condition, variables)

        return True if result is None else bool(result)
