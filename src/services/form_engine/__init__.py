"""Conditional form engine: visibility, validation and dependencies."""

from .conditions import (
    collect_condition_field_ids,
    evaluate_condition,
    evaluate_condition_group,
    is_field_visible,
    measure_condition_tree,
)
from .dependencies import (
    build_dependency_graph,
    check_dependency_consistency,
    collect_affected_fields,
    find_dependency_cycle,
)
from .schema_store import (
    FormPagination,
    add_field_to_schema,
    build_initial_form_data,
    can_continue,
    create_empty_form_schema,
    get_visible_fields,
    merge_research_depth,
    sanitize_schema,
    validate_step,
)
from .validation import register_custom_rule, validate_field, validate_fields, validate_form
from .values import ValueKind, coerce_field_value, coerce_form_data, value_kind

__all__ = [
    "collect_condition_field_ids",
    "evaluate_condition",
    "evaluate_condition_group",
    "is_field_visible",
    "measure_condition_tree",
    "build_dependency_graph",
    "check_dependency_consistency",
    "collect_affected_fields",
    "find_dependency_cycle",
    "FormPagination",
    "add_field_to_schema",
    "build_initial_form_data",
    "can_continue",
    "create_empty_form_schema",
    "get_visible_fields",
    "merge_research_depth",
    "sanitize_schema",
    "validate_step",
    "register_custom_rule",
    "validate_field",
    "validate_fields",
    "validate_form",
    "ValueKind",
    "coerce_field_value",
    "coerce_form_data",
    "value_kind",
]
