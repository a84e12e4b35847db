"""
Application state machine.

Owns the single finite-state variable driving the UI, the transition
log, chat history, research progress, the current error and the
collection of chat sessions. The current session's fields are mirrored
at the top level (current_state, chat_messages, form_schema, form_data,
research_results) and written back on every mutating action.

Transition table (trigger -> target):

    INTERVIEWING  view_form           -> FORM_PREVIEW   (needs a schema)
    FORM_PREVIEW  edit_form           -> INTERVIEWING
    FORM_PREVIEW  confirm_form        -> FORM_ACTIVE
    FORM_ACTIVE   back_to_preview     -> FORM_PREVIEW
    FORM_ACTIVE   form_submitted      -> RESEARCHING
    RESEARCHING   research_cancelled  -> FORM_ACTIVE
    RESEARCHING   research_complete   -> PRESENTING
    PRESENTING    view_form           -> FORM_PREVIEW   (needs a schema)
    any           reset               -> INTERVIEWING

Every other (state, trigger) pair is rejected: state is left untouched
and a recoverable ErrorState is recorded.

Persistence:
    Each mutation writes the whole machine as one versioned record
    through a StateRepository. Writes are fire-and-forget: they run as
    an asyncio task when a loop is running and are otherwise deferred to
    flush(). A storage failure switches the machine to in-memory-only
    operation; it is logged, never raised.
"""

import asyncio
import copy
import math
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple, Union

import structlog

from src.core.config import WorkflowConfig, settings, workflow_config
from src.core.exceptions import StorageError
from src.domain.models.app_state import (
    AppState,
    ChatMessage,
    ChatRole,
    ChatSession,
    ErrorState,
    PersistedAppState,
    TransitionLog,
    TransitionTrigger,
)
from src.domain.models.form_schema import FieldValue, FormData, FormSchema
from src.domain.models.research import ResearchResult
from src.persistence.repositories.state_repo import StateRepository

log = structlog.get_logger(__name__)

TRANSITIONS: Dict[Tuple[AppState, TransitionTrigger], AppState] = {
    (AppState.INTERVIEWING, TransitionTrigger.VIEW_FORM): AppState.FORM_PREVIEW,
    (AppState.FORM_PREVIEW, TransitionTrigger.EDIT_FORM): AppState.INTERVIEWING,
    (AppState.FORM_PREVIEW, TransitionTrigger.CONFIRM_FORM): AppState.FORM_ACTIVE,
    (AppState.FORM_ACTIVE, TransitionTrigger.BACK_TO_PREVIEW): AppState.FORM_PREVIEW,
    (AppState.FORM_ACTIVE, TransitionTrigger.FORM_SUBMITTED): AppState.RESEARCHING,
    (AppState.RESEARCHING, TransitionTrigger.RESEARCH_CANCELLED): AppState.FORM_ACTIVE,
    (AppState.RESEARCHING, TransitionTrigger.RESEARCH_COMPLETE): AppState.PRESENTING,
    (AppState.PRESENTING, TransitionTrigger.VIEW_FORM): AppState.FORM_PREVIEW,
}

INVALID_TRANSITION = "INVALID_TRANSITION"
TRANSITION_GUARD_FAILED = "TRANSITION_GUARD_FAILED"
SESSION_NOT_FOUND = "SESSION_NOT_FOUND"

StateLike = Union[AppState, str]
TriggerLike = Union[TransitionTrigger, str]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_trigger(trigger: TriggerLike) -> Optional[TransitionTrigger]:
    try:
        return TransitionTrigger(trigger)
    except ValueError:
        return None


def _parse_state(state: StateLike) -> Optional[AppState]:
    try:
        return AppState(state)
    except ValueError:
        return None


class AppStateMachine:
    """Finite state machine plus session store for the research workflow.

    Created once by the application root and injected where needed.
    Methods never raise on bad input from the UI; they return False or
    record an ErrorState instead.
    """

    def __init__(
        self,
        repository: Optional[StateRepository] = None,
        storage_key: Optional[str] = None,
        storage_version: Optional[int] = None,
        config: Optional[WorkflowConfig] = None,
    ):
        """
        Args:
            repository: Durable storage; None keeps the machine in memory
            storage_key: Record key (default: settings.storage_key)
            storage_version: Record version (default: settings.storage_version)
            config: Workflow configuration (default: workflow_config)
        """
        self.repository = repository
        self.storage_key = storage_key or settings.storage_key
        self.storage_version = storage_version or settings.storage_version
        self.config = config or workflow_config
        self.storage_available = repository is not None

        self.current_state = AppState.INTERVIEWING
        self.previous_state: Optional[AppState] = None
        self.state_history: List[AppState] = [AppState.INTERVIEWING]
        self.transition_logs: List[TransitionLog] = []
        self.error: Optional[ErrorState] = None

        self.sessions: Dict[str, ChatSession] = {}
        self.current_session_id: Optional[str] = None

        self.chat_messages: List[ChatMessage] = []
        self.form_schema: Optional[FormSchema] = None
        self.form_data: FormData = {}
        self.research_results: Optional[ResearchResult] = None
        self.research_progress = 0
        self.research_status = ""

        self._pending_record: Optional[dict] = None
        self._writer: Optional[asyncio.Task] = None
        self._hydrated = asyncio.Event()
        if repository is None:
            self._hydrated.set()

        self._start_session(self._new_session())

    # =========================================================================
    # Transitions
    # =========================================================================

    def can_transition(self, trigger: TriggerLike) -> Optional[AppState]:
        """Target state for ``trigger`` from the current state, or None."""
        parsed = _parse_trigger(trigger)
        if parsed is None:
            return None
        if parsed == TransitionTrigger.RESET:
            return AppState.INTERVIEWING
        target = TRANSITIONS.get((self.current_state, parsed))
        if target is None or self._guard_failure(parsed) is not None:
            return None
        return target

    def _guard_failure(self, trigger: TransitionTrigger) -> Optional[str]:
        if trigger == TransitionTrigger.VIEW_FORM:
            if self.form_schema is None or not self.form_schema.fields:
                return "No form is available to view yet"
        return None

    def _reject(self, code: str, message: str, to: StateLike, trigger: TriggerLike) -> bool:
        log.warning(
            "transition_rejected",
            code=code,
            from_state=self.current_state.value,
            to_state=str(getattr(to, "value", to)),
            trigger=str(getattr(trigger, "value", trigger)),
        )
        self.error = ErrorState(code=code, message=message, recoverable=True)
        return False

    def transition(self, to: StateLike, trigger: TriggerLike) -> bool:
        """
        Move to ``to`` if (current_state, trigger) allows it.

        Returns:
            True when applied. On rejection the state, history and log
            are unchanged and ``error`` holds a recoverable ErrorState.
        """
        target = _parse_state(to)
        parsed_trigger = _parse_trigger(trigger)
        if target is None or parsed_trigger is None:
            return self._reject(
                INVALID_TRANSITION,
                f"Unknown transition {trigger!s} -> {to!s}",
                to,
                trigger,
            )

        if parsed_trigger == TransitionTrigger.RESET:
            if target != AppState.INTERVIEWING:
                return self._reject(
                    INVALID_TRANSITION,
                    f"reset always leads to {AppState.INTERVIEWING.value}",
                    to,
                    trigger,
                )
            self.reset()
            return True

        expected = TRANSITIONS.get((self.current_state, parsed_trigger))
        if expected is None or expected != target:
            return self._reject(
                INVALID_TRANSITION,
                f"Cannot go from {self.current_state.value} to {target.value} "
                f"via {parsed_trigger.value}",
                to,
                trigger,
            )

        guard_message = self._guard_failure(parsed_trigger)
        if guard_message is not None:
            return self._reject(TRANSITION_GUARD_FAILED, guard_message, to, trigger)

        self._apply_transition(target, parsed_trigger.value)
        return True

    def _apply_transition(self, target: AppState, trigger: str) -> None:
        entry = TransitionLog(from_state=self.current_state, to_state=target, trigger=trigger)
        self.transition_logs.append(entry)
        self.previous_state = self.current_state
        self.current_state = target
        self.state_history.append(target)
        self.error = None

        if target == AppState.RESEARCHING:
            self.research_progress = self.config.research.initial_progress
            self.research_status = self.config.research.initial_status
        elif trigger == TransitionTrigger.RESEARCH_CANCELLED.value:
            self.research_progress = 0
            self.research_status = ""
        elif target == AppState.PRESENTING:
            self.research_progress = 100
            self.research_status = self.config.research.complete_status

        log.info(
            "transition_applied",
            from_state=entry.from_state.value,
            to_state=entry.to_state.value,
            trigger=trigger,
            session_id=self.current_session_id,
        )
        self.save_current_session()

    def go_back(self) -> bool:
        """Return to the previous state in the history if the table allows it."""
        if len(self.state_history) < 2:
            log.warning("go_back_rejected", reason="no_history")
            return False

        previous = self.state_history[-2]
        allowed = any(
            source == self.current_state and target == previous
            for (source, _trigger), target in TRANSITIONS.items()
        )
        if not allowed:
            log.warning(
                "go_back_rejected",
                from_state=self.current_state.value,
                to_state=previous.value,
            )
            return False

        entry = TransitionLog(
            from_state=self.current_state,
            to_state=previous,
            trigger=TransitionTrigger.GO_BACK.value,
        )
        self.transition_logs.append(entry)
        self.previous_state = self.current_state
        self.current_state = previous
        self.state_history = self.state_history[:-1]
        log.info("transition_applied", from_state=entry.from_state.value, to_state=previous.value, trigger="go_back")
        self.save_current_session()
        return True

    def reset(self) -> None:
        """Back to INTERVIEWING; clears form, results and error, keeps sessions."""
        entry = TransitionLog(
            from_state=self.current_state,
            to_state=AppState.INTERVIEWING,
            trigger=TransitionTrigger.RESET.value,
        )
        self.transition_logs.append(entry)
        self.previous_state = self.current_state
        self.current_state = AppState.INTERVIEWING
        self.state_history = [AppState.INTERVIEWING]
        self.form_schema = None
        self.form_data = {}
        self.research_results = None
        self.research_progress = 0
        self.research_status = ""
        self.error = None
        log.info("state_reset", from_state=entry.from_state.value, session_id=self.current_session_id)
        self.save_current_session()

    # =========================================================================
    # Mirrored field setters
    # =========================================================================

    def set_form_schema(self, schema: Optional[FormSchema]) -> None:
        self.form_schema = schema.model_copy(deep=True) if schema is not None else None
        self.save_current_session()

    def set_form_data(self, data: FormData) -> None:
        self.form_data = copy.deepcopy(dict(data))
        self.save_current_session()

    def set_form_value(self, field_id: str, value: FieldValue) -> None:
        self.form_data = {**self.form_data, field_id: copy.deepcopy(value)}
        self.save_current_session()

    def add_chat_message(self, role: Union[ChatRole, str], content: str) -> ChatMessage:
        message = ChatMessage(role=ChatRole(role), content=content)
        self.chat_messages = [*self.chat_messages, message]
        self.save_current_session()
        return message

    def clear_chat_messages(self) -> None:
        self.chat_messages = []
        self.save_current_session()

    def set_research_results(self, results: ResearchResult) -> None:
        self.research_results = results.model_copy(deep=True)
        self.save_current_session()

    def set_research_progress(self, percent: float, status_label: Optional[str] = None) -> bool:
        """
        Record research progress.

        Clamped to [0, 100]. Ignored (returns False) outside RESEARCHING, so
        late updates after a cancel are harmless, and for NaN or infinite
        values. Within a run, progress never decreases when
        enforce_monotonic_progress is set; the latest status label always
        wins.
        """
        if self.current_state != AppState.RESEARCHING:
            log.debug("research_progress_ignored", state=self.current_state.value, percent=percent)
            return False

        if not math.isfinite(percent):
            log.warning("research_progress_not_finite", percent=repr(percent))
            return False

        clamped = int(min(100, max(0, round(percent))))
        if self.config.research.enforce_monotonic_progress:
            clamped = max(self.research_progress, clamped)
        self.research_progress = clamped
        if status_label:
            self.research_status = status_label
        return True

    def set_error(self, error: Optional[ErrorState]) -> None:
        """Overwrite the current error; None clears it."""
        self.error = error
        if error is not None:
            log.error(
                "app_error",
                code=error.code,
                message=error.message,
                recoverable=error.recoverable,
                session_id=self.current_session_id,
            )

    def report_error(self, code: str, message: str, recoverable: bool = True) -> ErrorState:
        error = ErrorState(code=code, message=message, recoverable=recoverable)
        self.set_error(error)
        return error

    # =========================================================================
    # Sessions
    # =========================================================================

    def _new_session(self) -> ChatSession:
        return ChatSession(title=self.config.session.default_title)

    def _start_session(self, session: ChatSession) -> None:
        self.sessions[session.id] = session
        self.current_session_id = session.id
        self._mirror(session)

    def _mirror(self, session: ChatSession) -> None:
        """Load ``session`` into the top-level fields (deep copies)."""
        self.current_state = session.state
        self.previous_state = None
        self.state_history = [session.state]
        self.chat_messages = [m.model_copy(deep=True) for m in session.chat_messages]
        self.form_schema = (
            session.form_schema.model_copy(deep=True) if session.form_schema else None
        )
        self.form_data = copy.deepcopy(session.form_data)
        self.research_results = (
            session.research_results.model_copy(deep=True)
            if session.research_results
            else None
        )
        has_results = self.research_results is not None
        self.research_progress = 100 if has_results else 0
        self.research_status = self.config.research.complete_status if has_results else ""
        self.error = None

    def _derive_title(self, fallback: str) -> str:
        limit = self.config.session.title_max_length
        if self.form_schema is not None and self.form_schema.research_topic:
            return self.form_schema.research_topic[:limit]
        for message in self.chat_messages:
            if message.role == ChatRole.USER:
                content = message.content.strip()
                return content[:limit] + ("..." if len(content) > limit else "")
        return fallback

    def save_current_session(self) -> None:
        """Write the mirrored fields back into the current session and persist."""
        session = self.sessions.get(self.current_session_id or "")
        if session is None:
            return

        self.sessions[session.id] = session.model_copy(
            update={
                "title": self._derive_title(session.title),
                "state": self.current_state,
                "updated_at": _utc_now(),
                "chat_messages": [m.model_copy(deep=True) for m in self.chat_messages],
                "form_schema": (
                    self.form_schema.model_copy(deep=True) if self.form_schema else None
                ),
                "form_data": copy.deepcopy(self.form_data),
                "research_results": (
                    self.research_results.model_copy(deep=True)
                    if self.research_results
                    else None
                ),
            }
        )
        self._persist()

    def create_new_session(self) -> str:
        """Save the current session, then start and return a fresh one."""
        if self.current_session_id in self.sessions:
            self.save_current_session()
        session = self._new_session()
        self._start_session(session)
        log.info("session_created", session_id=session.id, total=len(self.sessions))
        self._persist()
        return session.id

    def switch_session(self, session_id: str) -> bool:
        """Make ``session_id`` current. Other sessions are not modified."""
        target = self.sessions.get(session_id)
        if target is None:
            log.warning("session_not_found", session_id=session_id)
            self.report_error(SESSION_NOT_FOUND, f"Session {session_id} not found")
            return False

        if session_id == self.current_session_id:
            return True

        self.save_current_session()
        # Re-read: saving may have replaced the stored model
        target = self.sessions[session_id]
        self.current_session_id = session_id
        self._mirror(target)
        log.info("session_switched", session_id=session_id)
        self._persist()
        return True

    def delete_session(self, session_id: str) -> bool:
        """Remove a session; deleting the current one starts a new session."""
        if session_id not in self.sessions:
            log.warning("session_not_found", session_id=session_id)
            self.report_error(SESSION_NOT_FOUND, f"Session {session_id} not found")
            return False

        del self.sessions[session_id]
        log.info("session_deleted", session_id=session_id, remaining=len(self.sessions))

        if session_id == self.current_session_id:
            self.current_session_id = None
            self.create_new_session()
        else:
            self._persist()
        return True

    def rename_session(self, session_id: str, title: str) -> bool:
        session = self.sessions.get(session_id)
        if session is None:
            self.report_error(SESSION_NOT_FOUND, f"Session {session_id} not found")
            return False
        self.sessions[session_id] = session.model_copy(
            update={"title": title, "updated_at": _utc_now()}
        )
        self._persist()
        return True

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return self.sessions.get(session_id)

    def list_sessions(self) -> List[ChatSession]:
        """Sessions, most recently updated first."""
        return sorted(self.sessions.values(), key=lambda s: s.updated_at, reverse=True)

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_persisted(self) -> PersistedAppState:
        return PersistedAppState(
            current_state=self.current_state,
            previous_state=self.previous_state,
            state_history=list(self.state_history),
            current_session_id=self.current_session_id,
            sessions=[s.model_copy(deep=True) for s in self.sessions.values()],
            chat_messages=[m.model_copy(deep=True) for m in self.chat_messages],
            form_schema=self.form_schema.model_copy(deep=True) if self.form_schema else None,
            form_data=copy.deepcopy(self.form_data),
            research_results=(
                self.research_results.model_copy(deep=True) if self.research_results else None
            ),
            transition_logs=[entry.model_copy() for entry in self.transition_logs],
        )

    def restore(self, persisted: PersistedAppState) -> None:
        """Replace the whole machine state with ``persisted``."""
        self.sessions = {session.id: session for session in persisted.sessions}
        self.transition_logs = list(persisted.transition_logs)
        self.current_session_id = persisted.current_session_id

        if self.current_session_id not in self.sessions:
            self.current_session_id = None
            self._start_session(self._new_session())
            return

        self.current_state = persisted.current_state
        self.previous_state = persisted.previous_state
        self.state_history = list(persisted.state_history) or [self.current_state]
        self.chat_messages = list(persisted.chat_messages)
        self.form_schema = persisted.form_schema
        self.form_data = dict(persisted.form_data)
        self.research_results = persisted.research_results
        has_results = self.research_results is not None
        self.research_progress = 100 if has_results else 0
        self.research_status = self.config.research.complete_status if has_results else ""
        self.error = None

    # =========================================================================
    # Persistence
    # =========================================================================

    def _persist(self) -> None:
        if self.repository is None or not self.storage_available:
            return
        self._pending_record = self.to_persisted().to_record()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # Written by the next flush()
        if self._writer is None or self._writer.done():
            self._writer = loop.create_task(self._drain())

    async def _drain(self) -> None:
        """Write the newest pending record until none is left."""
        while self._pending_record is not None and self.storage_available:
            record, self._pending_record = self._pending_record, None
            try:
                await self.repository.save(self.storage_key, self.storage_version, record)
            except StorageError as e:
                self.storage_available = False
                self._pending_record = None
                log.warning("state_persist_failed", error=e.message, fallback="in_memory")

    async def flush(self) -> None:
        """Wait for in-flight writes and write anything still pending."""
        writer = self._writer
        if writer is not None and not writer.done():
            try:
                await writer
            except RuntimeError as e:
                # Task bound to a loop that is gone
                log.warning("state_writer_lost", error=str(e))
        await self._drain()

    async def hydrate(self) -> bool:
        """
        Restore the persisted record, if any.

        Returns:
            True when a stored record was restored
        """
        restored = False
        try:
            if self.repository is not None:
                stored = await self.repository.load(self.storage_key)
                if stored is None:
                    log.info("state_not_found", key=self.storage_key)
                else:
                    version, record = stored
                    if version != self.storage_version:
                        log.warning(
                            "state_version_mismatch",
                            key=self.storage_key,
                            stored=version,
                            expected=self.storage_version,
                        )
                    else:
                        self.restore(PersistedAppState.model_validate(record))
                        restored = True
                        log.info(
                            "state_hydrated",
                            key=self.storage_key,
                            sessions=len(self.sessions),
                            state=self.current_state.value,
                        )
        except StorageError as e:
            self.storage_available = False
            log.warning("state_hydrate_failed", error=e.message, fallback="in_memory")
        except ValueError as e:
            # pydantic ValidationError subclasses ValueError
            log.warning("state_record_invalid", key=self.storage_key, error=str(e))
        finally:
            self._hydrated.set()
        return restored

    @property
    def is_hydrated(self) -> bool:
        return self._hydrated.is_set()

    async def wait_until_hydrated(self) -> None:
        await self._hydrated.wait()
