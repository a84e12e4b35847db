"""Application state domain models.

This module defines the lifecycle states of the research workflow and
the records the state machine keeps about them.

Core Models:
    - AppState: the single finite-state variable driving the UI
    - TransitionTrigger: named events that move between states
    - TransitionLog: append-only record of applied transitions
    - ErrorState: transient, user-facing error
    - ChatMessage / ChatSession: per-conversation history
    - PersistedAppState: the one record written to durable storage

State Lifecycle:
    INTERVIEWING -> FORM_PREVIEW -> FORM_ACTIVE -> RESEARCHING -> PRESENTING,
    with back edges for editing, cancelling and re-entering the form.
    See src/services/state_machine.py for the transition table.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from pydantic import Field, field_validator

from src.domain.models.form_schema import CamelModel, FormData, FormSchema
from src.domain.models.research import ResearchResult

log = structlog.get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AppState(str, Enum):
    """Lifecycle states of the research workflow."""

    INTERVIEWING = "INTERVIEWING"
    FORM_PREVIEW = "FORM_PREVIEW"
    FORM_ACTIVE = "FORM_ACTIVE"
    RESEARCHING = "RESEARCHING"
    PRESENTING = "PRESENTING"

    @classmethod
    def parse(cls, value: Any) -> "AppState":
        """Coerce a stored value, falling back to INTERVIEWING when unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            log.warning("unknown_app_state", value=value, fallback=cls.INTERVIEWING.value)
            return cls.INTERVIEWING


class TransitionTrigger(str, Enum):
    """Named events that request a state transition."""

    VIEW_FORM = "view_form"
    EDIT_FORM = "edit_form"
    CONFIRM_FORM = "confirm_form"
    BACK_TO_PREVIEW = "back_to_preview"
    FORM_SUBMITTED = "form_submitted"
    RESEARCH_CANCELLED = "research_cancelled"
    RESEARCH_COMPLETE = "research_complete"
    RESET = "reset"
    GO_BACK = "go_back"


class TransitionLog(CamelModel):
    """Single applied transition. Never pruned within a session."""

    from_state: AppState = Field(alias="from")
    to_state: AppState = Field(alias="to")
    trigger: str
    timestamp: datetime = Field(default_factory=utc_now)


class ErrorState(CamelModel):
    """Transient error shown to the user.

    ``recoverable=False`` is terminal for the current session only.
    """

    code: str
    message: str
    timestamp: datetime = Field(default_factory=utc_now)
    recoverable: bool = True


class ChatRole(str, Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(CamelModel):
    """One message of the interview conversation."""

    id: str = Field(default_factory=lambda: f"msg_{uuid.uuid4().hex[:12]}")
    role: ChatRole
    content: str
    timestamp: datetime = Field(default_factory=utc_now)


class ChatSession(CamelModel):
    """Snapshot of one independent research conversation.

    Owned by the AppStateMachine. The current session's fields are
    mirrored at the top level of the machine and written back on save.
    """

    id: str = Field(default_factory=lambda: f"session_{uuid.uuid4().hex}")
    title: str
    state: AppState = AppState.INTERVIEWING
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    chat_messages: List[ChatMessage] = Field(default_factory=list)
    form_schema: Optional[FormSchema] = None
    form_data: FormData = Field(default_factory=dict)
    research_results: Optional[ResearchResult] = None

    @field_validator("state", mode="before")
    @classmethod
    def tolerate_unknown_state(cls, v: Any) -> AppState:
        return AppState.parse(v)

    def is_empty(self) -> bool:
        return (
            not self.chat_messages
            and self.form_schema is None
            and self.research_results is None
        )


class PersistedAppState(CamelModel):
    """Serialized state machine: all sessions plus the mirrored fields."""

    current_state: AppState = AppState.INTERVIEWING
    previous_state: Optional[AppState] = None
    state_history: List[AppState] = Field(
        default_factory=lambda: [AppState.INTERVIEWING]
    )
    current_session_id: Optional[str] = None
    sessions: List[ChatSession] = Field(default_factory=list)
    chat_messages: List[ChatMessage] = Field(default_factory=list)
    form_schema: Optional[FormSchema] = None
    form_data: FormData = Field(default_factory=dict)
    research_results: Optional[ResearchResult] = None
    transition_logs: List[TransitionLog] = Field(default_factory=list)

    @field_validator("current_state", mode="before")
    @classmethod
    def tolerate_unknown_state(cls, v: Any) -> AppState:
        return AppState.parse(v)

    @field_validator("previous_state", mode="before")
    @classmethod
    def tolerate_unknown_previous(cls, v: Any) -> Optional[AppState]:
        return None if v is None else AppState.parse(v)

    @field_validator("state_history", mode="before")
    @classmethod
    def tolerate_unknown_history(cls, v: Any) -> List[AppState]:
        if not isinstance(v, list):
            return [AppState.INTERVIEWING]
        return [AppState.parse(item) for item in v] or [AppState.INTERVIEWING]

    def to_record(self) -> Dict[str, Any]:
        """JSON-ready dict using wire (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True)
