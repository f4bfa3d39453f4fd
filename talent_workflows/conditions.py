"""
Condition Evaluator Module

Decides whether a transition's guards hold for an instance. Evaluation is pure
and fails closed: a value that cannot be compared makes the guard False.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Optional

from .logging_config import get_logger
from .models import (
    ConditionOperator, ConditionType, WorkflowCondition, WorkflowInstance, utc_now
)


logger = get_logger("talent_workflows.conditions")


def _to_decimal(value: Any) -> Optional[Decimal]:
    """Numeric view of a value, or None when it has none"""
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None


def _compare_numeric(left: Any, right: Any, comparator: Callable[[Decimal, Decimal], bool]) -> bool:
    a = _to_decimal(left)
    b = _to_decimal(right)
    if a is None or b is None or a.is_nan() or b.is_nan():
        return False
    return comparator(a, b)


def _strict_equals(left: Any, right: Any) -> bool:
    """Equality that keeps booleans apart from the numbers 0 and 1"""
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _strict_member(value: Any, items: Iterable[Any]) -> bool:
    return any(_strict_equals(value, item) for item in items)


class ConditionEvaluator:
    """
    Evaluates guard conditions against an instance.

    ``role`` conditions are accepted but not enforced: the engine has no
    access to a role directory, so they always pass.
    """

    def evaluate(self, conditions: Iterable[WorkflowCondition], instance: WorkflowInstance,
                 actor_role: Optional[str] = None, now: Optional[datetime] = None) -> bool:
        """
        Evaluate conditions with AND semantics

        Args:
            conditions: Guards of one transition; empty means always allowed
            instance: Instance whose metadata and history are read
            actor_role: Role of the caller, passed through to role guards
            now: Reference time for time guards (defaults to current UTC time)

        Returns:
            True if every condition holds
        """
        now = now or utc_now()
        for condition in conditions:
            if not self.evaluate_condition(condition, instance, actor_role, now):
                return False
        return True

    def evaluate_condition(self, condition: WorkflowCondition, instance: WorkflowInstance,
                           actor_role: Optional[str] = None, now: Optional[datetime] = None) -> bool:
        """Evaluate one condition; any unexpected error counts as not satisfied"""
        try:
            if condition.type == ConditionType.FIELD:
                return self._evaluate_field(condition, instance)
            if condition.type == ConditionType.ROLE:
                logger.debug(f"Role condition on {condition.value!r} not enforced "
                             f"(actor role {actor_role!r})")
                return True
            if condition.type == ConditionType.TIME:
                return self._evaluate_time(condition, instance, now or utc_now())
        except Exception as e:
            logger.warning(f"Condition evaluation failed for instance {instance.id}: {e}")
            return False

        return False

    def _evaluate_field(self, condition: WorkflowCondition, instance: WorkflowInstance) -> bool:
        field_value = instance.metadata.get(condition.field)
        operator = condition.operator
        expected = condition.value

        if operator == ConditionOperator.EXISTS:
            return field_value is not None

        if operator == ConditionOperator.EQUALS:
            return _strict_equals(field_value, expected)

        if operator == ConditionOperator.NOT_EQUALS:
            return not _strict_equals(field_value, expected)

        if operator == ConditionOperator.GREATER_THAN:
            return _compare_numeric(field_value, expected, lambda a, b: a > b)

        if operator == ConditionOperator.LESS_THAN:
            return _compare_numeric(field_value, expected, lambda a, b: a < b)

        if operator == ConditionOperator.CONTAINS:
            if field_value is None:
                return False
            if isinstance(field_value, (list, tuple, set)):
                return _strict_member(expected, field_value)
            return str(expected) in str(field_value)

        if operator == ConditionOperator.IN:
            if not isinstance(expected, (list, tuple)):
                return False
            return _strict_member(field_value, expected)

        return False

    def _evaluate_time(self, condition: WorkflowCondition, instance: WorkflowInstance,
                       now: datetime) -> bool:
        # Elapsed milliseconds in the current state
        elapsed = instance.time_in_current_state(now)

        if condition.operator == ConditionOperator.GREATER_THAN:
            return _compare_numeric(elapsed, condition.value, lambda a, b: a > b)
        if condition.operator == ConditionOperator.LESS_THAN:
            return _compare_numeric(elapsed, condition.value, lambda a, b: a < b)

        return False
