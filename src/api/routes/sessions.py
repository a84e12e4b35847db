"""
Session API routes.

Endpoints for listing, creating, switching, renaming and deleting chat
sessions.
"""

from fastapi import APIRouter, status
import structlog

from src.api.dependencies import MachineDep
from src.api.schemas import (
    SessionListResponse,
    SessionRenameRequest,
    SessionSummary,
    StateResponse,
)
from src.core.exceptions import SessionNotFoundError
from src.services.state_machine import AppStateMachine

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _summary(machine: AppStateMachine, session_id: str) -> SessionSummary:
    session = machine.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(f"Session {session_id} not found")
    return SessionSummary.from_session(session, machine.current_session_id)


@router.get("", response_model=SessionListResponse)
async def list_sessions(machine: MachineDep):
    """All sessions, most recently updated first."""
    sessions = [
        SessionSummary.from_session(s, machine.current_session_id)
        for s in machine.list_sessions()
    ]
    return SessionListResponse(
        sessions=sessions,
        total=len(sessions),
        current_session_id=machine.current_session_id,
    )


@router.post("", response_model=SessionSummary, status_code=status.HTTP_201_CREATED)
async def create_session(machine: MachineDep):
    """Save the current session and start a fresh one."""
    session_id = machine.create_new_session()
    return _summary(machine, session_id)


@router.post("/{session_id}/switch", response_model=StateResponse)
async def switch_session(session_id: str, machine: MachineDep):
    """Make a session current and return the resulting state."""
    if not machine.switch_session(session_id):
        raise SessionNotFoundError(f"Session {session_id} not found")
    return StateResponse.from_machine(machine)


@router.patch("/{session_id}", response_model=SessionSummary)
async def rename_session(session_id: str, request: SessionRenameRequest, machine: MachineDep):
    if not machine.rename_session(session_id, request.title):
        raise SessionNotFoundError(f"Session {session_id} not found")
    return _summary(machine, session_id)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(session_id: str, machine: MachineDep):
    """Delete a session; deleting the current one starts a new session."""
    if not machine.delete_session(session_id):
        raise SessionNotFoundError(f"Session {session_id} not found")
    log.info("session_deleted_via_api", session_id=session_id)
