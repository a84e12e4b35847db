"""
Field validation for the criteria capture form.

validate_field returns the message of the first failing check, or None.
Checks run in a fixed order:

1. Hidden or quarantined fields are valid.
2. ``field.required``: None, "" and [] fail; False is a present answer.
3. Empty optional values skip everything else.
4. Declared validation rules, in declaration order.
5. Intrinsic type check (numbers, email/url format, option membership),
   unless a declared rule of the same kind covers it: ``min``/``max`` for
   number fields, ``email`` and ``url`` for those field types.

Custom rules:
    A ``custom`` rule's ``value`` names a check in CUSTOM_RULES. Names not
    in the registry are treated as valid. Built-in checks:

    - ``not_blank``: string is not whitespace only
    - ``iso_date``: string parses as an ISO-8601 date or datetime
    - ``unique_items``: list holds no duplicates
"""

import re
from datetime import date, datetime
from functools import lru_cache
from typing import Any, Callable, Dict, Iterable, Optional, Set

import structlog
from pydantic import HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from src.domain.models.form_schema import (
    FieldType,
    FieldValue,
    FormData,
    FormField,
    FormSchema,
    ValidationRule,
    ValidationRuleType,
)
from src.services.form_engine.conditions import is_field_visible
from src.services.form_engine.values import (
    SINGLE_CHOICE_TYPES,
    ValueKind,
    as_number,
    is_empty_value,
    value_kind,
)

log = structlog.get_logger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_http_url = TypeAdapter(HttpUrl)

CustomCheck = Callable[[Any], bool]
CUSTOM_RULES: Dict[str, CustomCheck] = {}


def register_custom_rule(name: str) -> Callable[[CustomCheck], CustomCheck]:
    """Register a named check usable as ``{"type": "custom", "value": name}``."""

    def decorator(check: CustomCheck) -> CustomCheck:
        CUSTOM_RULES[name] = check
        return check

    return decorator


@register_custom_rule("not_blank")
def _not_blank(value: Any) -> bool:
    return not isinstance(value, str) or value.strip() != ""


@register_custom_rule("iso_date")
def _iso_date(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    for parse in (date.fromisoformat, datetime.fromisoformat):
        try:
            parse(value)
            return True
        except ValueError:
            continue
    return False


@register_custom_rule("unique_items")
def _unique_items(value: Any) -> bool:
    if not isinstance(value, list):
        return True
    return len(set(value)) == len(value)


@lru_cache(maxsize=256)
def _compile_pattern(pattern: str) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern)
    except re.error as e:
        log.warning("invalid_validation_pattern", pattern=pattern, error=str(e))
        return None


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(EMAIL_RE.match(value))


def is_valid_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        _http_url.validate_python(value)
    except PydanticValidationError:
        return False
    return True


def _length(value: Any) -> Optional[int]:
    if isinstance(value, (str, list)):
        return len(value)
    return None


def _rule_fails(rule: ValidationRule, value: FieldValue) -> bool:
    """True when ``value`` violates ``rule``. Inapplicable rules pass."""
    rule_type = rule.type

    if rule_type == ValidationRuleType.REQUIRED:
        return is_empty_value(value)

    if rule_type in (ValidationRuleType.MIN, ValidationRuleType.MAX):
        number = as_number(value) if isinstance(value, (int, float)) else None
        bound = as_number(rule.value)
        if number is None or bound is None:
            return False
        return number < bound if rule_type == ValidationRuleType.MIN else number > bound

    if rule_type in (ValidationRuleType.MIN_LENGTH, ValidationRuleType.MAX_LENGTH):
        length = _length(value)
        bound = as_number(rule.value)
        if length is None or bound is None:
            return False
        if rule_type == ValidationRuleType.MIN_LENGTH:
            return length < bound
        return length > bound

    if rule_type == ValidationRuleType.PATTERN:
        if not isinstance(value, str):
            return True
        if not isinstance(rule.value, str) or not rule.value:
            return False
        pattern = _compile_pattern(rule.value)
        if pattern is None:
            return False
        return pattern.search(value) is None

    if rule_type == ValidationRuleType.EMAIL:
        return not is_valid_email(value)

    if rule_type == ValidationRuleType.URL:
        return not is_valid_url(value)

    if rule_type == ValidationRuleType.CUSTOM:
        check = CUSTOM_RULES.get(str(rule.value)) if rule.value is not None else None
        if check is None:
            return False
        return not check(value)

    return False


def _type_error(
    field: FormField, value: FieldValue, declared: Set[ValidationRuleType]
) -> Optional[str]:
    """Intrinsic check derived from the field's declared type.

    Skipped for a kind the field already constrains with its own rules.
    """
    kind = value_kind(field)

    if kind == ValueKind.NUMBER:
        if declared & {ValidationRuleType.MIN, ValidationRuleType.MAX}:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return f"{field.label} must be a number"
        return None

    if kind == ValueKind.BOOLEAN:
        if not isinstance(value, bool):
            return f"{field.label} must be yes or no"
        return None

    if field.type == FieldType.EMAIL and ValidationRuleType.EMAIL not in declared:
        if not is_valid_email(value):
            return f"{field.label} must be a valid email address"

    if field.type == FieldType.URL and ValidationRuleType.URL not in declared:
        if not is_valid_url(value):
            return f"{field.label} must be a valid URL"

    if field.options:
        allowed = {option.value for option in field.options}
        if field.type in SINGLE_CHOICE_TYPES:
            if not isinstance(value, str) or value not in allowed:
                return f"{field.label} has an invalid choice"
        elif kind == ValueKind.LIST:
            if not isinstance(value, list) or any(item not in allowed for item in value):
                return f"{field.label} has an invalid choice"

    return None


def validate_field(
    field: FormField, value: FieldValue, form_data: FormData
) -> Optional[str]:
    """
    Validate one field value.

    Args:
        field: Field definition
        value: Current value of the field
        form_data: Whole form, used for visibility

    Returns:
        Message of the first failing check, or None when valid
    """
    if field.schema_error:
        return None

    if not is_field_visible(field, form_data):
        return None

    empty = is_empty_value(value)

    if field.required and empty:
        return f"{field.label} is required"

    if empty:
        # Only an explicit required rule can fail an empty optional field
        for rule in field.validation_rules or []:
            if rule.type == ValidationRuleType.REQUIRED:
                return rule.message
        return None

    rules = field.validation_rules or []
    for rule in rules:
        if _rule_fails(rule, value):
            return rule.message

    return _type_error(field, value, {rule.type for rule in rules})


def validate_fields(fields: Iterable[FormField], form_data: FormData) -> Dict[str, str]:
    """Validate the given fields; returns field_id -> message for failures."""
    errors: Dict[str, str] = {}
    for field in fields:
        error = validate_field(field, form_data.get(field.id), form_data)
        if error:
            errors[field.id] = error
    return errors


def validate_form(schema: FormSchema, form_data: FormData) -> Dict[str, str]:
    """Validate every visible field of ``schema``. Hidden fields are exempt."""
    return validate_fields(schema.fields, form_data)
