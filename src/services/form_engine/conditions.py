"""
Condition evaluation for field visibility.

Evaluates single FieldConditions and recursive ConditionGroups against
the current form data. Missing fields read as None, so every condition
on a field the user has not answered yet behaves like the is_empty case.
"""

from typing import Any, Iterator, Tuple, Union

import structlog

from src.domain.models.form_schema import (
    ConditionGroup,
    ConditionOperator,
    FieldCondition,
    FormData,
    FormField,
    LogicalOperator,
)
from src.services.form_engine.values import as_number, is_empty_value

log = structlog.get_logger(__name__)

ConditionNode = Union[FieldCondition, ConditionGroup]


def _as_members(value: Any) -> set:
    if isinstance(value, (list, tuple, set)):
        return {str(item) for item in value}
    return {str(value)}


def _scalar_equal(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None

    if isinstance(left, bool) or isinstance(right, bool):
        if isinstance(left, bool) and isinstance(right, bool):
            return left == right
        flag, other = (left, right) if isinstance(left, bool) else (right, left)
        return isinstance(other, str) and other.strip().lower() == str(flag).lower()

    left_num, right_num = as_number(left), as_number(right)
    if left_num is not None and right_num is not None:
        return left_num == right_num

    return str(left) == str(right)


def loosely_equal(field_value: Any, compare_value: Any) -> bool:
    """Equality used by ``equals``/``not_equals``.

    List field values compare as sets; a scalar compare value is treated
    as a one-element set.
    """
    if isinstance(field_value, (list, tuple)):
        if compare_value is None:
            return False
        return _as_members(field_value) == _as_members(compare_value)
    if isinstance(compare_value, (list, tuple)):
        return False
    return _scalar_equal(field_value, compare_value)


def _contains(field_value: Any, compare_value: Any) -> bool:
    if compare_value is None:
        return False
    if isinstance(field_value, str):
        return str(compare_value).lower() in field_value.lower()
    if isinstance(field_value, (list, tuple)):
        if isinstance(compare_value, (list, tuple)):
            return _as_members(compare_value) <= _as_members(field_value)
        return str(compare_value) in _as_members(field_value)
    return False


def _compare_numbers(field_value: Any, compare_value: Any, greater: bool) -> bool:
    left, right = as_number(field_value), as_number(compare_value)
    if left is None or right is None:
        return False
    return left > right if greater else left < right


def _member_of(field_value: Any, compare_value: Any) -> bool:
    if not isinstance(compare_value, (list, tuple)):
        return False
    if field_value is None:
        return False
    allowed = _as_members(compare_value)
    if isinstance(field_value, (list, tuple)):
        return any(str(item) in allowed for item in field_value)
    return any(_scalar_equal(field_value, option) for option in compare_value)


def evaluate_condition(condition: FieldCondition, form_data: FormData) -> bool:
    """Evaluate a single condition against form data."""
    field_value = form_data.get(condition.field_id)
    compare_value = condition.value
    op = condition.operator

    if op == ConditionOperator.EQUALS:
        return loosely_equal(field_value, compare_value)
    if op == ConditionOperator.NOT_EQUALS:
        return not loosely_equal(field_value, compare_value)
    if op == ConditionOperator.CONTAINS:
        return _contains(field_value, compare_value)
    if op == ConditionOperator.NOT_CONTAINS:
        return not _contains(field_value, compare_value)
    if op == ConditionOperator.GREATER_THAN:
        return _compare_numbers(field_value, compare_value, greater=True)
    if op == ConditionOperator.LESS_THAN:
        return _compare_numbers(field_value, compare_value, greater=False)
    if op == ConditionOperator.IS_EMPTY:
        return is_empty_value(field_value)
    if op == ConditionOperator.IS_NOT_EMPTY:
        return not is_empty_value(field_value)
    if op == ConditionOperator.IN:
        return _member_of(field_value, compare_value)
    if op == ConditionOperator.NOT_IN:
        if not isinstance(compare_value, (list, tuple)):
            return True
        return not _member_of(field_value, compare_value)

    # Unreachable while ConditionOperator is validated by the model
    log.warning("unknown_condition_operator", operator=str(op))
    return True


def _is_group(node: ConditionNode) -> bool:
    return isinstance(node, ConditionGroup)


def evaluate_condition_group(group: ConditionGroup, form_data: FormData) -> bool:
    """Evaluate a condition group, recursing into nested groups.

    Short-circuits: AND stops at the first false child, OR at the first
    true child.
    """
    results = (
        evaluate_condition_group(node, form_data)
        if _is_group(node)
        else evaluate_condition(node, form_data)
        for node in group.conditions
    )
    if group.operator == LogicalOperator.AND:
        return all(results)
    return any(results)


def is_field_visible(field: FormField, form_data: FormData) -> bool:
    """Fields without conditions, and quarantined fields, are always shown."""
    if field.schema_error or field.visibility_conditions is None:
        return True
    return evaluate_condition_group(field.visibility_conditions, form_data)


def iter_conditions(group: ConditionGroup) -> Iterator[FieldCondition]:
    """Yield every leaf condition of ``group`` depth-first."""
    for node in group.conditions:
        if _is_group(node):
            yield from iter_conditions(node)
        else:
            yield node


def collect_condition_field_ids(group: ConditionGroup) -> set:
    """Field ids referenced anywhere in ``group``."""
    return {condition.field_id for condition in iter_conditions(group)}


def measure_condition_tree(group: ConditionGroup) -> Tuple[int, int]:
    """Return (depth, node_count) of ``group``; a lone group has depth 1."""
    depth = 1
    count = 1
    for node in group.conditions:
        if _is_group(node):
            child_depth, child_count = measure_condition_tree(node)
            depth = max(depth, child_depth + 1)
            count += child_count
        else:
            count += 1
    return depth, count
