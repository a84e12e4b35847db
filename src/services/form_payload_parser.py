"""
Form payload parsing.

Turns the ``generate_form`` payload an assistant message may carry into a
FormSchema. The payload usually sits in a ```json fenced block; a bare
JSON object is accepted too.

Field normalization:
    - ``showOnlyIf: {dependsOnField, condition, value}`` becomes a
      one-condition AND group plus a one-element ``dependsOn``
    - plain-string ``options`` become FieldOptions with normalized values
    - ``fieldId``/``fieldType`` spellings are accepted for ``id``/``type``
    - unknown field types fall back to ``text``
    - a field with unparseable conditions, unusable options or other
      invalid attributes is quarantined (kept, always visible, never
      validated) instead of failing the whole form
"""

import json
import re
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from src.core.exceptions import FormPayloadError
from src.domain.models.form_schema import (
    ConditionGroup,
    ConditionOperator,
    FieldType,
    FormField,
    FormSchema,
    normalize_option_value,
)
from src.services.form_engine.schema_store import sanitize_schema

log = structlog.get_logger(__name__)

GENERATE_FORM_ACTION = "generate_form"

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)```")


def _json_candidates(content: str) -> List[str]:
    """Fenced blocks first, then the outermost braces of the whole text."""
    candidates = [m.group(1).strip() for m in _FENCED_JSON_RE.finditer(content)]
    first, last = content.find("{"), content.rfind("}")
    if first != -1 and last > first:
        candidates.append(content[first : last + 1])
    return [c for c in candidates if c]


def extract_form_payload(content: str) -> Optional[Dict[str, Any]]:
    """
    Find a generate_form payload in assistant text.

    Returns:
        The decoded payload dict, or None when the text carries none
    """
    for candidate in _json_candidates(content):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if (
            isinstance(parsed, dict)
            and parsed.get("action") == GENERATE_FORM_ACTION
            and isinstance(parsed.get("form"), dict)
        ):
            return parsed
    return None


def _option_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _normalize_options(
    raw_options: Any, field_id: str, problems: List[str]
) -> Optional[List[Dict[str, Any]]]:
    if not raw_options:
        return None
    if not isinstance(raw_options, list):
        log.warning("form_options_not_a_list", field_id=field_id, options=repr(raw_options))
        problems.append("options is not a list")
        return None

    options = []
    for option in raw_options:
        if isinstance(option, dict):
            value = _option_text(option.get("value"))
            label = _option_text(option.get("label")) or value
            description = option.get("description")
        else:
            label = _option_text(option)
            value = None
            description = None
        if not label:
            log.warning("form_option_skipped", field_id=field_id, option=repr(option))
            problems.append("unusable option")
            continue
        options.append(
            {
                "value": value or normalize_option_value(label),
                "label": label,
                "description": description if isinstance(description, str) else None,
            }
        )
    return options or None


def _show_only_if_conditions(show_only_if: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "operator": "AND",
        "conditions": [
            {
                "fieldId": show_only_if.get("dependsOnField"),
                "operator": show_only_if.get("condition") or ConditionOperator.EQUALS.value,
                "value": show_only_if.get("value"),
            }
        ],
    }


def _normalize_field(
    raw: Dict[str, Any], index: int, problems: List[str]
) -> Dict[str, Any]:
    field_id = _option_text(raw.get("id") or raw.get("fieldId"))
    if not field_id:
        raise FormPayloadError(f"Field at position {index} has no id")

    field_type = raw.get("type") or raw.get("fieldType") or FieldType.TEXT.value
    if not isinstance(field_type, str) or field_type not in {t.value for t in FieldType}:
        log.warning("unknown_field_type", field_id=field_id, field_type=repr(field_type))
        field_type = FieldType.TEXT.value

    normalized: Dict[str, Any] = {
        "id": field_id,
        "type": field_type,
        "label": _option_text(raw.get("label")) or field_id,
        "description": raw.get("description"),
        "placeholder": raw.get("placeholder"),
        "helpText": raw.get("helpText"),
        "defaultValue": raw.get("defaultValue"),
        "required": bool(raw.get("required", False)),
        "validationRules": raw.get("validationRules"),
        "options": _normalize_options(raw.get("options"), field_id, problems),
        "group": raw.get("group"),
        "order": raw.get("order", index),
        "prefilledFromInterview": raw.get("prefilledFromInterview"),
    }

    show_only_if = raw.get("showOnlyIf")
    if isinstance(show_only_if, dict) and show_only_if.get("dependsOnField"):
        normalized["visibilityConditions"] = _show_only_if_conditions(show_only_if)
        normalized["dependsOn"] = [show_only_if["dependsOnField"]]
    else:
        normalized["visibilityConditions"] = raw.get("visibilityConditions")
        normalized["dependsOn"] = raw.get("dependsOn")

    return normalized


def _quarantine(field: FormField, reason: str, **details: Any) -> FormField:
    log.warning("form_field_quarantined", field_id=field.id, reason=reason, **details)
    return field.model_copy(update={"schema_error": reason})


def _build_field(raw: Dict[str, Any], index: int) -> FormField:
    """
    Validate one raw field, degrading instead of failing.

    Attempts, in order: the field as given; the field without its
    conditions; only ``id``, ``type`` and ``label``. A field that needed
    a fallback, or lost options on the way in, is quarantined.
    """
    problems: List[str] = []
    normalized = _normalize_field(raw, index, problems)
    try:
        field = FormField.model_validate(normalized)
    except PydanticValidationError as e:
        errors = e.errors(include_url=False)
    else:
        if problems:
            return _quarantine(field, "malformed options", problems=problems)
        return field

    stripped = {**normalized, "visibilityConditions": None, "dependsOn": None}
    try:
        field = FormField.model_validate(stripped)
    except PydanticValidationError:
        pass
    else:
        return _quarantine(field, "malformed visibility conditions", errors=errors)

    minimal = {
        "id": normalized["id"],
        "type": normalized["type"],
        "label": normalized["label"],
        "order": index,
    }
    try:
        field = FormField.model_validate(minimal)
    except PydanticValidationError as e:
        raise FormPayloadError(
            f"Field '{normalized['id']}' is invalid: {e.error_count()} error(s)"
        ) from e
    return _quarantine(field, "invalid field definition", errors=errors)


def parse_form_payload(payload: Dict[str, Any]) -> FormSchema:
    """
    Build a sanitized FormSchema from a generate_form payload.

    Raises:
        FormPayloadError: If the payload is not a usable generate_form payload
    """
    if payload.get("action") != GENERATE_FORM_ACTION:
        raise FormPayloadError(f"Unsupported form action: {payload.get('action')!r}")

    form = payload.get("form")
    if not isinstance(form, dict):
        raise FormPayloadError("generate_form payload has no form object")

    raw_fields = form.get("fields") or []
    if not isinstance(raw_fields, list):
        raise FormPayloadError("form.fields must be a list")

    fields = []
    for index, raw in enumerate(raw_fields):
        if not isinstance(raw, dict):
            raise FormPayloadError(f"Field at position {index} is not an object")
        fields.append(_build_field(raw, index))

    try:
        schema = FormSchema(
            title=form.get("title") or form.get("researchTopic") or "Research Form",
            description=form.get("description"),
            research_topic=form.get("researchTopic") or form.get("title") or "",
            interview_context=form.get("interviewContext"),
            fields=fields,
            groups=form.get("groups"),
        )
    except PydanticValidationError as e:
        raise FormPayloadError(f"Invalid form schema: {e.errors(include_url=False)[0]['msg']}") from e

    schema = sanitize_schema(schema)
    log.info(
        "form_payload_parsed",
        form_id=schema.id,
        field_count=len(schema.fields),
        quarantined=sum(1 for f in schema.fields if f.schema_error),
    )
    return schema


def parse_form_from_message(content: str) -> Optional[FormSchema]:
    """Schema carried by an assistant message, or None if it carries none.

    Raises:
        FormPayloadError: If a payload is present but unusable
    """
    payload = extract_form_payload(content)
    if payload is None:
        return None
    return parse_form_payload(payload)


def condition_group_from_show_only_if(show_only_if: Dict[str, Any]) -> ConditionGroup:
    """Normalize a singular showOnlyIf clause into a ConditionGroup."""
    return ConditionGroup.model_validate(_show_only_if_conditions(show_only_if))
