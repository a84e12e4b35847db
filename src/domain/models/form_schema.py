"""Form schema domain models for the criteria capture form.

A form schema is a flat list of fields, each optionally gated by a
visibility condition tree over other fields' current values.

Core Models:
    - FieldCondition / ConditionGroup: recursive boolean expression tree
    - ValidationRule: declarative per-field check with a user-facing message
    - FormField / FormGroup / FormSchema: the form itself
    - FormData: mutable value bag keyed by field id

Wire Format:
    Models accept and emit the camelCase keys of the form payload
    (fieldId, dependsOn, visibilityConditions, ...). Python code uses the
    snake_case attribute names.
"""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serializing with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Scalars and string lists are the only values a form field can hold
FieldValue = Union[bool, int, float, str, List[str], None]
FormData = Dict[str, FieldValue]


class FieldType(str, Enum):
    """Supported field input types."""

    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    EMAIL = "email"
    URL = "url"
    SELECT = "select"
    MULTISELECT = "multiselect"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    DATE = "date"
    DATETIME = "datetime"
    BOOLEAN = "boolean"
    PRIORITY = "priority"
    DEALBREAKER = "dealbreaker"


class ConditionOperator(str, Enum):
    """Comparison operators for a single field condition."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    IN = "in"
    NOT_IN = "not_in"


class LogicalOperator(str, Enum):
    """Operators combining the children of a condition group."""

    AND = "AND"
    OR = "OR"


class ValidationRuleType(str, Enum):
    """Declarative validation rule kinds."""

    REQUIRED = "required"
    MIN = "min"
    MAX = "max"
    MIN_LENGTH = "minLength"
    MAX_LENGTH = "maxLength"
    PATTERN = "pattern"
    EMAIL = "email"
    URL = "url"
    CUSTOM = "custom"


class FieldCondition(CamelModel):
    """Single comparison of one field's current value."""

    field_id: str = Field(min_length=1)
    operator: ConditionOperator
    value: FieldValue = None


class ConditionGroup(CamelModel):
    """Boolean combination of conditions and nested groups.

    AND over no children is true, OR over no children is false.
    """

    operator: LogicalOperator
    conditions: List[Union[FieldCondition, "ConditionGroup"]] = Field(
        default_factory=list
    )


ConditionGroup.model_rebuild()


class ValidationRule(CamelModel):
    """Validation rule; ``message`` is shown when the rule fails."""

    type: ValidationRuleType
    value: Union[int, float, str, None] = None
    message: str


class FieldOption(CamelModel):
    """Choice for select, multiselect, radio, priority and dealbreaker fields."""

    value: str
    label: str
    description: Optional[str] = None


class PrefilledValue(CamelModel):
    """Value already captured during the interview."""

    value: FieldValue = None
    source: str = "interview"


class FormField(CamelModel):
    """Form field definition with conditional visibility.

    ``schema_error`` is set when the field was quarantined because its
    conditions or dependencies were unusable. Quarantined fields are
    always visible and never validated.
    """

    id: str = Field(min_length=1)
    type: FieldType = FieldType.TEXT
    label: str
    description: Optional[str] = None
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    default_value: FieldValue = None
    required: bool = False
    validation_rules: Optional[List[ValidationRule]] = None
    options: Optional[List[FieldOption]] = None
    visibility_conditions: Optional[ConditionGroup] = None
    depends_on: Optional[List[str]] = None
    group: Optional[str] = None
    order: int = 0
    prefilled_from_interview: Optional[PrefilledValue] = None
    schema_error: Optional[str] = None


class FormGroup(CamelModel):
    """Organizational heading for fields; no behavior."""

    id: str
    title: str
    description: Optional[str] = None
    order: int = 0


class FormSchema(CamelModel):
    """Complete form definition for one research topic."""

    id: str = Field(default_factory=lambda: generate_form_id())
    title: str
    description: Optional[str] = None
    fields: List[FormField] = Field(default_factory=list)
    groups: Optional[List[FormGroup]] = None
    research_topic: str = ""
    interview_context: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def field_ids_unique(self) -> "FormSchema":
        seen = set()
        for field in self.fields:
            if field.id in seen:
                raise ValueError(f"Duplicate field id in form schema: {field.id}")
            seen.add(field.id)
        return self

    def get_field(self, field_id: str) -> Optional[FormField]:
        """Return the field with ``field_id``, or None."""
        for field in self.fields:
            if field.id == field_id:
                return field
        return None


def generate_form_id() -> str:
    return f"form_{uuid.uuid4().hex[:12]}"


_WHITESPACE_RE = re.compile(r"\s+")


def normalize_option_value(label: str) -> str:
    """Machine key for an option label: lower-cased, whitespace runs to '_'."""
    return _WHITESPACE_RE.sub("_", label.strip().lower())
