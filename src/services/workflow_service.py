"""
Research workflow orchestration.

Ties the pieces of the workflow together on top of one AppStateMachine:

    assistant text -> form payload -> FormSchema -> FORM_PREVIEW
    field edit     -> coercion -> affected fields -> revalidation
    submission     -> full validation -> RESEARCHING
    research stream -> progress -> ResearchResult -> PRESENTING

The machine itself never raises on bad UI input. This service is the
boundary used by the HTTP layer, so it raises domain exceptions
(InvalidTransitionError, FormPayloadError, SchemaIntegrityError) that
the API maps to status codes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import structlog

from src.core.exceptions import (
    FormPayloadError,
    InvalidTransitionError,
    SchemaIntegrityError,
)
from src.domain.models.app_state import (
    AppState,
    ChatMessage,
    ChatRole,
    ErrorState,
    TransitionTrigger,
)
from src.domain.models.form_schema import FieldValue, FormData, FormSchema
from src.domain.models.research import ResearchResult
from src.services.form_engine import (
    build_dependency_graph,
    build_initial_form_data,
    coerce_field_value,
    collect_affected_fields,
    get_visible_fields,
    merge_research_depth,
    validate_fields,
    validate_form,
)
from src.services.form_payload_parser import parse_form_from_message
from src.services.research_progress import ResearchProgressTracker
from src.services.research_result_parser import parse_or_fallback
from src.services.state_machine import AppStateMachine

log = structlog.get_logger(__name__)

FORM_PAYLOAD_INVALID = "FORM_PAYLOAD_INVALID"
RESEARCH_FAILED = "RESEARCH_FAILED"
BACKEND_ERROR = "BACKEND_ERROR"


@dataclass
class FieldUpdateResult:
    """Outcome of one field edit."""

    field_id: str
    value: FieldValue
    affected_fields: List[str] = field(default_factory=list)
    visible_field_ids: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass
class SubmissionResult:
    """Outcome of a form submission attempt."""

    accepted: bool
    errors: Dict[str, str] = field(default_factory=dict)
    form_data: FormData = field(default_factory=dict)


class WorkflowService:
    """Drives the research workflow through an AppStateMachine."""

    def __init__(self, machine: AppStateMachine):
        self.machine = machine
        self._tracker: Optional[ResearchProgressTracker] = None

    @property
    def tracker(self) -> Optional[ResearchProgressTracker]:
        return self._tracker

    def apply_transition(
        self,
        to: Union[AppState, str],
        trigger: Union[TransitionTrigger, str],
    ) -> AppState:
        """
        Request a transition, raising when the machine rejects it.

        Raises:
            InvalidTransitionError: If (current_state, trigger) is not allowed
        """
        from_state = self.machine.current_state
        if not self.machine.transition(to, trigger):
            message = self.machine.error.message if self.machine.error else "Transition rejected"
            raise InvalidTransitionError(
                message,
                from_state=from_state.value,
                trigger=str(getattr(trigger, "value", trigger)),
            )
        if self.machine.current_state == AppState.RESEARCHING:
            self.start_research()
        else:
            self._tracker = None
        return self.machine.current_state

    # =========================================================================
    # Interview
    # =========================================================================

    def record_user_message(self, content: str) -> ChatMessage:
        return self.machine.add_chat_message(ChatRole.USER, content)

    def handle_assistant_message(self, content: str) -> Optional[FormSchema]:
        """
        Record an assistant message and load any form it carries.

        A usable generate_form payload replaces the current schema, seeds
        the form data with prefills and defaults and moves to FORM_PREVIEW
        when the current state allows it. A broken payload is reported as
        a recoverable error; the message itself is still recorded.

        Returns:
            The loaded schema, or None when the message carries no form
        """
        self.machine.add_chat_message(ChatRole.ASSISTANT, content)

        try:
            schema = parse_form_from_message(content)
        except FormPayloadError as e:
            log.warning("form_payload_rejected", error=e.message)
            self.machine.report_error(FORM_PAYLOAD_INVALID, e.message)
            return None

        if schema is None:
            return None

        self.machine.set_form_schema(schema)
        self.machine.set_form_data(build_initial_form_data(schema))

        if self.machine.can_transition(TransitionTrigger.VIEW_FORM) == AppState.FORM_PREVIEW:
            self.machine.transition(AppState.FORM_PREVIEW, TransitionTrigger.VIEW_FORM)
        else:
            log.info(
                "form_loaded_without_preview",
                state=self.machine.current_state.value,
                form_id=schema.id,
            )
        return schema

    # =========================================================================
    # Form
    # =========================================================================

    def _require_schema(self) -> FormSchema:
        if self.machine.form_schema is None:
            raise FormPayloadError("No form is loaded")
        return self.machine.form_schema

    def update_field(self, field_id: str, raw_value: Any) -> FieldUpdateResult:
        """
        Store one field value and revalidate the fields it affects.

        Raises:
            FormPayloadError: If no form is loaded
            SchemaIntegrityError: If the field does not exist
        """
        schema = self._require_schema()
        form_field = schema.get_field(field_id)
        if form_field is None:
            raise SchemaIntegrityError(f"Unknown field '{field_id}'", field_ids=(field_id,))

        value = coerce_field_value(form_field, raw_value)
        self.machine.set_form_value(field_id, value)
        form_data = self.machine.form_data

        try:
            graph = build_dependency_graph(schema.fields)
        except SchemaIntegrityError as e:
            # Ingested schemas are sanitized, so this only happens for hand-built ones
            log.warning("dependency_graph_unavailable", error=e.message, field_ids=e.field_ids)
            graph = {}
        affected = collect_affected_fields(graph, field_id)

        to_check = [f for f in schema.fields if f.id == field_id or f.id in affected]
        errors = validate_fields(to_check, form_data)

        log.debug(
            "form_field_updated",
            field_id=field_id,
            affected=len(affected),
            errors=len(errors),
        )
        return FieldUpdateResult(
            field_id=field_id,
            value=value,
            affected_fields=sorted(affected),
            visible_field_ids=[f.id for f in get_visible_fields(schema, form_data)],
            errors=errors,
        )

    def validate_current_form(self) -> Dict[str, str]:
        return validate_form(self._require_schema(), self.machine.form_data)

    def submit_form(self, research_depth: str = "standard") -> SubmissionResult:
        """
        Validate the whole form and start research when it is clean.

        Raises:
            FormPayloadError: If no form is loaded or the depth is unknown
            InvalidTransitionError: If the machine is not in FORM_ACTIVE
        """
        schema = self._require_schema()
        if self.machine.can_transition(TransitionTrigger.FORM_SUBMITTED) is None:
            raise InvalidTransitionError(
                f"Cannot submit the form from {self.machine.current_state.value}",
                from_state=self.machine.current_state.value,
                trigger=TransitionTrigger.FORM_SUBMITTED.value,
            )

        try:
            form_data = merge_research_depth(self.machine.form_data, research_depth)
        except ValueError as e:
            raise FormPayloadError(str(e)) from e

        errors = validate_form(schema, self.machine.form_data)
        if errors:
            log.info("form_submission_blocked", form_id=schema.id, errors=len(errors))
            return SubmissionResult(accepted=False, errors=errors, form_data=self.machine.form_data)

        self.machine.set_form_data(form_data)
        self.apply_transition(AppState.RESEARCHING, TransitionTrigger.FORM_SUBMITTED)
        log.info("form_submitted", form_id=schema.id, research_depth=research_depth)
        return SubmissionResult(accepted=True, form_data=form_data)

    # =========================================================================
    # Research
    # =========================================================================

    def _research_topic(self) -> Optional[str]:
        schema = self.machine.form_schema
        return schema.research_topic if schema is not None else None

    def start_research(self) -> ResearchProgressTracker:
        """Begin tracking a research run. Requires RESEARCHING."""
        if self.machine.current_state != AppState.RESEARCHING:
            raise InvalidTransitionError(
                "Research can only start from RESEARCHING",
                from_state=self.machine.current_state.value,
            )
        self._tracker = ResearchProgressTracker(
            self.machine.set_research_progress,
            research_topic=self._research_topic(),
            config=self.machine.config.research,
        )
        self._tracker.start()
        return self._tracker

    def _resume_tracker(self) -> ResearchProgressTracker:
        """
        Tracker for a research run that outlived its process.

        Used when state was rehydrated into RESEARCHING. Progress picks up
        from the stored value; text streamed before the restart is lost.
        """
        tracker = ResearchProgressTracker(
            self.machine.set_research_progress,
            research_topic=self._research_topic(),
            config=self.machine.config.research,
        )
        tracker.progress = self.machine.research_progress
        log.info("research_tracker_resumed", research_progress=tracker.progress)
        return tracker

    def feed_research_stream(self, chunk: str) -> int:
        """Feed a chunk of the research stream; returns current progress."""
        if self.machine.current_state != AppState.RESEARCHING:
            raise InvalidTransitionError(
                "No research is in progress",
                from_state=self.machine.current_state.value,
            )
        if self._tracker is None:
            self._tracker = self._resume_tracker()
        self._tracker.feed_chunk(chunk)
        return self.machine.research_progress

    def complete_research(self, text: Optional[str] = None) -> Optional[ResearchResult]:
        """
        Finish the research run and present its result.

        Args:
            text: Full research output. When None, the text accumulated by
                the stream tracker is used.

        Returns:
            The result, or None when research was cancelled in the meantime
        """
        if self.machine.current_state != AppState.RESEARCHING:
            log.info("research_result_ignored", state=self.machine.current_state.value)
            self._tracker = None
            return None

        if text is None and self._tracker is not None:
            result = self._tracker.finish()
        else:
            result = parse_or_fallback(text or "", self._research_topic())
            self.machine.set_research_progress(100, self.machine.config.research.complete_status)

        self.machine.set_research_results(result)
        self.apply_transition(AppState.PRESENTING, TransitionTrigger.RESEARCH_COMPLETE)
        log.info("research_completed", result_id=result.id, is_fallback=result.is_fallback)
        return result

    def cancel_research(self) -> AppState:
        """Return to FORM_ACTIVE; later progress and results are ignored."""
        state = self.apply_transition(AppState.FORM_ACTIVE, TransitionTrigger.RESEARCH_CANCELLED)
        self._tracker = None
        log.info("research_cancelled", session_id=self.machine.current_session_id)
        return state

    def fail_research(self, message: str) -> ErrorState:
        """Research backend failed: back to the form with a recoverable error."""
        if self.machine.current_state == AppState.RESEARCHING:
            self.apply_transition(AppState.FORM_ACTIVE, TransitionTrigger.RESEARCH_CANCELLED)
            self.machine.research_status = self.machine.config.research.failed_status
        self._tracker = None
        return self.machine.report_error(RESEARCH_FAILED, message, recoverable=True)

    def report_backend_error(
        self, message: str, code: str = BACKEND_ERROR, recoverable: bool = True
    ) -> ErrorState:
        """Record an error raised by an external collaborator."""
        return self.machine.report_error(code, message, recoverable=recoverable)
