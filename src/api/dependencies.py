"""Dependency injection for API routes."""

from typing import Annotated

from fastapi import Depends, Request

from src.core.config import settings
from src.core.exceptions import ConfigurationError
from src.persistence.repositories.state_repo import StateRepository
from src.services.state_machine import AppStateMachine
from src.services.workflow_service import WorkflowService


def get_state_repository() -> StateRepository:
    """StateRepository bound to the configured database path."""
    return StateRepository(str(settings.database_path))


def get_state_machine(request: Request) -> AppStateMachine:
    """The application's single AppStateMachine.

    Created by the lifespan handler and stored on ``app.state``.
    """
    machine = getattr(request.app.state, "machine", None)
    if machine is None:
        raise ConfigurationError("State machine is not initialized")
    return machine


def get_workflow_service(request: Request) -> WorkflowService:
    """WorkflowService sharing the machine; kept on ``app.state`` so the
    research tracker survives between requests."""
    service = getattr(request.app.state, "workflow", None)
    if service is None:
        service = WorkflowService(get_state_machine(request))
        request.app.state.workflow = service
    return service


# Type aliases for dependency injection
StateRepoDep = Annotated[StateRepository, Depends(get_state_repository)]
MachineDep = Annotated[AppStateMachine, Depends(get_state_machine)]
WorkflowDep = Annotated[WorkflowService, Depends(get_workflow_service)]
