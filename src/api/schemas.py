"""
API request/response schemas.

Pydantic models for API validation and serialization. Envelopes use
snake_case; embedded domain models serialize with their camelCase aliases.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, Field

from src.domain.models.app_state import (
    AppState,
    ChatMessage,
    ChatRole,
    ChatSession,
    ErrorState,
    TransitionLog,
)
from src.domain.models.form_schema import FieldValue, FormData, FormField, FormSchema
from src.domain.models.research import ResearchResult

if TYPE_CHECKING:
    from src.services.state_machine import AppStateMachine


# ============ STATE SCHEMAS ============


class StateResponse(BaseModel):
    """Snapshot of the state machine."""

    current_state: AppState
    previous_state: Optional[AppState] = None
    state_history: List[AppState]
    current_session_id: Optional[str] = None
    research_progress: int = 0
    research_status: str = ""
    error: Optional[ErrorState] = None
    chat_messages: List[ChatMessage] = Field(default_factory=list)
    form_schema: Optional[FormSchema] = None
    form_data: FormData = Field(default_factory=dict)
    research_results: Optional[ResearchResult] = None
    is_hydrated: bool = True
    storage_available: bool = False

    @classmethod
    def from_machine(cls, machine: "AppStateMachine") -> "StateResponse":
        return cls(
            current_state=machine.current_state,
            previous_state=machine.previous_state,
            state_history=machine.state_history,
            current_session_id=machine.current_session_id,
            research_progress=machine.research_progress,
            research_status=machine.research_status,
            error=machine.error,
            chat_messages=machine.chat_messages,
            form_schema=machine.form_schema,
            form_data=machine.form_data,
            research_results=machine.research_results,
            is_hydrated=machine.is_hydrated,
            storage_available=machine.storage_available,
        )


class TransitionRequest(BaseModel):
    """Request a state transition.

    Plain strings so unknown states and triggers are rejected by the
    machine (409) rather than by request validation.
    """

    to: str = Field(..., min_length=1)
    trigger: str = Field(..., min_length=1)


class TransitionResponse(BaseModel):
    current_state: AppState
    previous_state: Optional[AppState] = None
    state_history: List[AppState]


class TransitionLogResponse(BaseModel):
    """Transition log plus the triggers available right now."""

    current_state: AppState
    available_triggers: List[str]
    transitions: List[TransitionLog]


# ============ CHAT SCHEMAS ============


class ChatMessageRequest(BaseModel):
    role: ChatRole
    content: str = Field(..., min_length=1, max_length=100_000)


class ChatMessageResponse(BaseModel):
    message: ChatMessage
    form_loaded: bool = False
    current_state: AppState
    error: Optional[ErrorState] = None


# ============ FORM SCHEMAS ============


class FormSchemaResponse(BaseModel):
    form_schema: Optional[FormSchema] = None
    integrity_issues: List[str] = Field(default_factory=list)


class FormDataRequest(BaseModel):
    data: Dict[str, Any] = Field(default_factory=dict)


class FormDataResponse(BaseModel):
    data: FormData


class FieldValueRequest(BaseModel):
    value: Any = None


class FieldUpdateResponse(BaseModel):
    field_id: str
    value: FieldValue = None
    affected_fields: List[str] = Field(default_factory=list)
    visible_field_ids: List[str] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)


class VisibleFieldsResponse(BaseModel):
    fields: List[FormField]
    total: int


class StepResponse(BaseModel):
    """One page of the active form."""

    index: int
    page_count: int
    fields: List[FormField]
    is_last_step: bool
    progress_percent: float
    can_continue: bool


class ValidationResponse(BaseModel):
    valid: bool
    errors: Dict[str, str] = Field(default_factory=dict)


class SubmitRequest(BaseModel):
    research_depth: str = Field(default="standard")


class SubmitResponse(BaseModel):
    accepted: bool
    errors: Dict[str, str] = Field(default_factory=dict)
    current_state: AppState
    research_progress: int = 0


# ============ RESEARCH SCHEMAS ============


class ProgressRequest(BaseModel):
    percent: float
    status_label: Optional[str] = None


class ProgressResponse(BaseModel):
    accepted: bool
    research_progress: int
    research_status: str


class StreamChunkRequest(BaseModel):
    chunk: str


class StreamChunkResponse(BaseModel):
    research_progress: int
    research_status: str
    logs: List[str] = Field(default_factory=list)


class CompleteResearchRequest(BaseModel):
    """Finish research; without ``text`` the streamed text is used."""

    text: Optional[str] = None


class CompleteResearchResponse(BaseModel):
    result: Optional[ResearchResult] = None
    current_state: AppState


# ============ ERROR SCHEMAS ============


class ErrorReportRequest(BaseModel):
    code: str = Field(default="BACKEND_ERROR", min_length=1)
    message: str = Field(..., min_length=1)
    recoverable: bool = True


class ErrorResponse(BaseModel):
    error: Optional[ErrorState] = None


# ============ SESSION SCHEMAS ============


class SessionSummary(BaseModel):
    """Session list entry."""

    id: str
    title: str
    state: AppState
    created_at: datetime
    updated_at: datetime
    message_count: int = 0
    has_results: bool = False
    is_current: bool = False

    @classmethod
    def from_session(cls, session: ChatSession, current_id: Optional[str]) -> "SessionSummary":
        return cls(
            id=session.id,
            title=session.title,
            state=session.state,
            created_at=session.created_at,
            updated_at=session.updated_at,
            message_count=len(session.chat_messages),
            has_results=session.research_results is not None,
            is_current=session.id == current_id,
        )


class SessionListResponse(BaseModel):
    sessions: List[SessionSummary]
    total: int
    current_session_id: Optional[str] = None


class SessionRenameRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
