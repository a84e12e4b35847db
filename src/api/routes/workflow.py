"""
Workflow API routes.

State snapshot, transitions, chat history and the current error.
"""

from typing import List

from fastapi import APIRouter, status
import structlog

from src.api.dependencies import MachineDep, WorkflowDep
from src.api.schemas import (
    ChatMessageRequest,
    ChatMessageResponse,
    ErrorReportRequest,
    ErrorResponse,
    StateResponse,
    TransitionLogResponse,
    TransitionRequest,
    TransitionResponse,
)
from src.core.exceptions import InvalidTransitionError
from src.domain.models.app_state import ChatMessage, ChatRole, TransitionTrigger
from src.services.state_machine import AppStateMachine

log = structlog.get_logger(__name__)

router = APIRouter(tags=["workflow"])


def _transition_response(machine: AppStateMachine) -> TransitionResponse:
    return TransitionResponse(
        current_state=machine.current_state,
        previous_state=machine.previous_state,
        state_history=machine.state_history,
    )


# ============ STATE ============


@router.get("/state", response_model=StateResponse)
async def get_state(machine: MachineDep):
    """Full snapshot of the state machine and the current session."""
    return StateResponse.from_machine(machine)


@router.get("/transitions", response_model=TransitionLogResponse)
async def list_transitions(machine: MachineDep):
    """Transition log of this run plus the triggers valid right now."""
    available = [
        trigger.value
        for trigger in TransitionTrigger
        if trigger != TransitionTrigger.GO_BACK and machine.can_transition(trigger) is not None
    ]
    return TransitionLogResponse(
        current_state=machine.current_state,
        available_triggers=available,
        transitions=machine.transition_logs,
    )


@router.post("/transitions", response_model=TransitionResponse)
async def request_transition(request: TransitionRequest, workflow: WorkflowDep):
    """Apply a transition; rejected pairs answer 409 and change nothing."""
    workflow.apply_transition(request.to, request.trigger)
    return _transition_response(workflow.machine)


@router.post("/reset", response_model=TransitionResponse)
async def reset_state(machine: MachineDep):
    """Back to INTERVIEWING; clears form, results and error."""
    machine.reset()
    return _transition_response(machine)


@router.post("/go-back", response_model=TransitionResponse)
async def go_back(machine: MachineDep):
    """Return to the previous state if the transition table allows it."""
    from_state = machine.current_state
    if not machine.go_back():
        raise InvalidTransitionError(
            f"Cannot go back from {from_state.value}",
            from_state=from_state.value,
            trigger=TransitionTrigger.GO_BACK.value,
        )
    return _transition_response(machine)


# ============ CHAT ============


@router.get("/chat/messages", response_model=List[ChatMessage])
async def list_chat_messages(machine: MachineDep):
    return machine.chat_messages


@router.post(
    "/chat/messages",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def post_chat_message(request: ChatMessageRequest, workflow: WorkflowDep):
    """Record a chat message.

    Assistant messages carrying a generate_form payload load the form and
    move to FORM_PREVIEW. A broken payload leaves a recoverable error on
    the machine instead of failing the request.
    """
    machine = workflow.machine
    if request.role == ChatRole.USER:
        message = workflow.record_user_message(request.content)
        form_loaded = False
    else:
        form_loaded = workflow.handle_assistant_message(request.content) is not None
        message = machine.chat_messages[-1]

    return ChatMessageResponse(
        message=message,
        form_loaded=form_loaded,
        current_state=machine.current_state,
        error=machine.error,
    )


@router.delete("/chat/messages", status_code=status.HTTP_204_NO_CONTENT)
async def clear_chat_messages(machine: MachineDep):
    machine.clear_chat_messages()


# ============ ERRORS ============


@router.get("/errors", response_model=ErrorResponse)
async def get_error(machine: MachineDep):
    return ErrorResponse(error=machine.error)


@router.post("/errors", response_model=ErrorResponse, status_code=status.HTTP_201_CREATED)
async def report_error(request: ErrorReportRequest, workflow: WorkflowDep):
    """Record an error reported by an external collaborator."""
    error = workflow.report_backend_error(
        request.message, code=request.code, recoverable=request.recoverable
    )
    return ErrorResponse(error=error)


@router.delete("/errors", status_code=status.HTTP_204_NO_CONTENT)
async def clear_error(machine: MachineDep):
    machine.set_error(None)
