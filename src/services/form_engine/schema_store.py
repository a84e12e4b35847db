"""
Form schema operations.

Pure functions over FormSchema and FormData used by the active-form UI:
visibility filtering, step pagination, step/form validation, schema
authoring helpers and schema sanitization on ingestion.
"""

from dataclasses import dataclass, field as dataclass_field
from typing import Dict, List, Optional

import structlog

from src.core.config import workflow_config
from src.domain.models.form_schema import (
    FormData,
    FormField,
    FormSchema,
)
from src.services.form_engine.conditions import is_field_visible, measure_condition_tree
from src.services.form_engine.dependencies import (
    check_dependency_consistency,
    find_dependency_cycle,
)
from src.services.form_engine.validation import validate_fields, validate_form
from src.services.form_engine.values import is_empty_value

log = structlog.get_logger(__name__)

RESEARCH_DEPTH_KEY = "researchDepth"
RESEARCH_DEPTHS = ("standard", "deep")

__all__ = [
    "FormPagination",
    "RESEARCH_DEPTH_KEY",
    "RESEARCH_DEPTHS",
    "add_field_to_schema",
    "build_initial_form_data",
    "can_continue",
    "create_empty_form_schema",
    "get_visible_fields",
    "merge_research_depth",
    "sanitize_schema",
    "validate_form",
    "validate_step",
]


def get_visible_fields(schema: FormSchema, form_data: FormData) -> List[FormField]:
    """Visible fields sorted by ``order`` (stable for equal orders)."""
    visible = [field for field in schema.fields if is_field_visible(field, form_data)]
    return sorted(visible, key=lambda field: field.order)


@dataclass
class FormPagination:
    """Visible fields chunked into fixed-size steps.

    There is always at least one (possibly empty) step. Rebuild it after
    every data change, since visibility can move page boundaries.
    """

    steps: List[List[FormField]] = dataclass_field(default_factory=lambda: [[]])
    page_size: int = 5

    @classmethod
    def build(
        cls,
        schema: FormSchema,
        form_data: FormData,
        page_size: Optional[int] = None,
    ) -> "FormPagination":
        size = page_size or workflow_config.form.fields_per_step
        visible = get_visible_fields(schema, form_data)
        steps = [visible[i : i + size] for i in range(0, len(visible), size)]
        return cls(steps=steps or [[]], page_size=size)

    @property
    def page_count(self) -> int:
        return len(self.steps)

    @property
    def visible_count(self) -> int:
        return sum(len(step) for step in self.steps)

    def clamp_step(self, step_index: int) -> int:
        """Clamp ``step_index`` into [0, page_count - 1]."""
        return min(max(step_index, 0), self.page_count - 1)

    def fields_for_step(self, step_index: int) -> List[FormField]:
        return self.steps[self.clamp_step(step_index)]

    def is_last_step(self, step_index: int) -> bool:
        return self.clamp_step(step_index) == self.page_count - 1

    def progress_percent(self, step_index: int) -> float:
        return (self.clamp_step(step_index) + 1) / self.page_count * 100


def validate_step(
    schema: FormSchema,
    form_data: FormData,
    step_index: int,
    page_size: Optional[int] = None,
) -> Dict[str, str]:
    """Validate only the fields on one step."""
    pagination = FormPagination.build(schema, form_data, page_size)
    return validate_fields(pagination.fields_for_step(step_index), form_data)


def can_continue(
    schema: FormSchema,
    form_data: FormData,
    step_index: int,
    page_size: Optional[int] = None,
) -> bool:
    """Conservative UI gate: no required visible field on the step is empty.

    This does not replace validate_step.
    """
    pagination = FormPagination.build(schema, form_data, page_size)
    return all(
        not field.required or not is_empty_value(form_data.get(field.id))
        for field in pagination.fields_for_step(step_index)
    )


def add_field_to_schema(schema: FormSchema, field: FormField) -> FormSchema:
    """Return a new schema with ``field`` appended at order len(fields)."""
    appended = field.model_copy(update={"order": len(schema.fields)})
    return schema.model_copy(update={"fields": [*schema.fields, appended]})


def create_empty_form_schema(
    research_topic: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> FormSchema:
    """Seed schema for interactive field authoring."""
    return FormSchema(
        title=title or research_topic,
        description=description,
        research_topic=research_topic,
        fields=[],
    )


def build_initial_form_data(schema: FormSchema) -> FormData:
    """Initial values: interview prefills win over declared defaults."""
    data: FormData = {}
    for field in schema.fields:
        if field.prefilled_from_interview is not None:
            prefilled = field.prefilled_from_interview.value
            if not is_empty_value(prefilled):
                data[field.id] = prefilled
                continue
        if field.default_value is not None:
            data[field.id] = field.default_value
    return data


def merge_research_depth(form_data: FormData, depth: str) -> FormData:
    """Copy of ``form_data`` with the research depth selector added."""
    if depth not in RESEARCH_DEPTHS:
        raise ValueError(f"Unknown research depth: {depth}")
    return {**form_data, RESEARCH_DEPTH_KEY: depth}


def _quarantine(field: FormField, reason: str) -> FormField:
    log.warning("form_field_quarantined", field_id=field.id, reason=reason)
    return field.model_copy(
        update={
            "schema_error": reason,
            "visibility_conditions": None,
            "depends_on": None,
        }
    )


def sanitize_schema(
    schema: FormSchema,
    max_depth: Optional[int] = None,
    max_nodes: Optional[int] = None,
) -> FormSchema:
    """
    Quarantine fields that would break the form engine.

    Fields whose condition tree exceeds the configured size or depth, and
    fields taking part in a dependency cycle, keep rendering (always
    visible, never validated) but lose their conditions. Drift between
    dependsOn and the conditions is only logged.

    Returns:
        A new schema; the input is not modified
    """
    max_depth = max_depth or workflow_config.form.max_condition_depth
    max_nodes = max_nodes or workflow_config.form.max_condition_nodes

    fields: List[FormField] = []
    for field in schema.fields:
        if field.visibility_conditions is not None:
            depth, nodes = measure_condition_tree(field.visibility_conditions)
            if depth > max_depth or nodes > max_nodes:
                field = _quarantine(
                    field,
                    f"visibility conditions too large (depth={depth}, nodes={nodes})",
                )
        fields.append(field)

    # Break cycles one at a time until none remain
    cycle = find_dependency_cycle(fields)
    while cycle:
        members = set(cycle)
        reason = f"dependency cycle: {' -> '.join(cycle)}"
        fields = [_quarantine(f, reason) if f.id in members else f for f in fields]
        cycle = find_dependency_cycle(fields)

    for issue in check_dependency_consistency(fields):
        log.warning("form_dependency_drift", form_id=schema.id, issue=issue)

    return schema.model_copy(update={"fields": fields})
