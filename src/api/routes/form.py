"""
Form API routes.

Schema loading, field edits, visibility, step pagination, validation and
submission of the active form.
"""

from fastapi import APIRouter
import structlog

from src.api.dependencies import MachineDep, WorkflowDep
from src.api.schemas import (
    FieldUpdateResponse,
    FieldValueRequest,
    FormDataRequest,
    FormDataResponse,
    FormSchemaResponse,
    StepResponse,
    SubmitRequest,
    SubmitResponse,
    ValidationResponse,
    VisibleFieldsResponse,
)
from src.core.exceptions import FormPayloadError
from src.domain.models.form_schema import FormSchema
from src.services.form_engine import (
    FormPagination,
    build_initial_form_data,
    can_continue,
    check_dependency_consistency,
    coerce_form_data,
    get_visible_fields,
    sanitize_schema,
    validate_step,
)
from src.services.state_machine import AppStateMachine

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/form", tags=["form"])


def _require_schema(machine: AppStateMachine) -> FormSchema:
    if machine.form_schema is None:
        raise FormPayloadError("No form is loaded")
    return machine.form_schema


# ============ SCHEMA ============


@router.get("/schema", response_model=FormSchemaResponse)
async def get_form_schema(machine: MachineDep):
    schema = machine.form_schema
    issues = check_dependency_consistency(schema.fields) if schema else []
    return FormSchemaResponse(form_schema=schema, integrity_issues=issues)


@router.put("/schema", response_model=FormSchemaResponse)
async def put_form_schema(schema: FormSchema, machine: MachineDep):
    """Load a schema directly (sanitized) and seed its initial data.

    The state is not changed; request view_form afterwards.
    """
    sanitized = sanitize_schema(schema)
    machine.set_form_schema(sanitized)
    machine.set_form_data(build_initial_form_data(sanitized))
    log.info("form_schema_loaded", form_id=sanitized.id, field_count=len(sanitized.fields))
    return FormSchemaResponse(
        form_schema=machine.form_schema,
        integrity_issues=check_dependency_consistency(sanitized.fields),
    )


# ============ DATA ============


@router.get("/data", response_model=FormDataResponse)
async def get_form_data(machine: MachineDep):
    return FormDataResponse(data=machine.form_data)


@router.put("/data", response_model=FormDataResponse)
async def put_form_data(request: FormDataRequest, machine: MachineDep):
    """Replace the form data; known fields are coerced to their value kind."""
    schema = _require_schema(machine)
    machine.set_form_data(coerce_form_data(schema.fields, request.data))
    return FormDataResponse(data=machine.form_data)


@router.patch("/data/{field_id}", response_model=FieldUpdateResponse)
async def update_field(field_id: str, request: FieldValueRequest, workflow: WorkflowDep):
    """Set one field and revalidate every field depending on it."""
    result = workflow.update_field(field_id, request.value)
    return FieldUpdateResponse(
        field_id=result.field_id,
        value=result.value,
        affected_fields=result.affected_fields,
        visible_field_ids=result.visible_field_ids,
        errors=result.errors,
    )


# ============ VISIBILITY AND STEPS ============


@router.get("/visible-fields", response_model=VisibleFieldsResponse)
async def get_visible(machine: MachineDep):
    fields = get_visible_fields(_require_schema(machine), machine.form_data)
    return VisibleFieldsResponse(fields=fields, total=len(fields))


@router.get("/steps/{index}", response_model=StepResponse)
async def get_step(index: int, machine: MachineDep):
    """One page of visible fields; out-of-range indexes are clamped."""
    schema = _require_schema(machine)
    pagination = FormPagination.build(schema, machine.form_data)
    step = pagination.clamp_step(index)
    return StepResponse(
        index=step,
        page_count=pagination.page_count,
        fields=pagination.fields_for_step(step),
        is_last_step=pagination.is_last_step(step),
        progress_percent=pagination.progress_percent(step),
        can_continue=can_continue(schema, machine.form_data, step),
    )


@router.post("/steps/{index}/validate", response_model=ValidationResponse)
async def validate_form_step(index: int, machine: MachineDep):
    errors = validate_step(_require_schema(machine), machine.form_data, index)
    return ValidationResponse(valid=not errors, errors=errors)


# ============ SUBMISSION ============


@router.post("/validate", response_model=ValidationResponse)
async def validate_whole_form(workflow: WorkflowDep):
    errors = workflow.validate_current_form()
    return ValidationResponse(valid=not errors, errors=errors)


@router.post("/submit", response_model=SubmitResponse)
async def submit_form(request: SubmitRequest, workflow: WorkflowDep):
    """Validate the form and start research when there are no errors."""
    result = workflow.submit_form(request.research_depth)
    return SubmitResponse(
        accepted=result.accepted,
        errors=result.errors,
        current_state=workflow.machine.current_state,
        research_progress=workflow.machine.research_progress,
    )
