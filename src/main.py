"""
FastAPI application entry point.

Run with: uvicorn src.main:app --reload
"""

from contextlib import asynccontextmanager
import uuid

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from src.core.config import settings
from src.core.logging import (
    bind_request_context,
    clear_context,
    configure_logging,
    get_logger,
)
from src.persistence.database import init_database
from src.persistence.repositories.state_repo import StateRepository
from src.api.routes import form, health, research, sessions, workflow
from src.api.exception_handlers import setup_exception_handlers
from src.services.state_machine import AppStateMachine
from src.services.workflow_service import WorkflowService

# Configure logging before anything else
configure_logging()
log = get_logger(__name__)


# =============================================================================
# Correlation ID Middleware
# =============================================================================


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Binds ``request_id`` plus the current session and state to the
    structlog context and echoes the id in the X-Request-ID header.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        bind_request_context(request_id, getattr(request.app.state, "machine", None))

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()


def create_state_machine() -> AppStateMachine:
    """AppStateMachine backed by the configured SQLite database."""
    return AppStateMachine(
        repository=StateRepository(str(settings.database_path)),
        storage_key=settings.storage_key,
        storage_version=settings.storage_version,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup creates the database, builds the state machine and restores
    the persisted record. Shutdown flushes pending state writes.
    """
    log.info(
        "application_starting",
        debug=settings.debug,
        database_path=str(settings.database_path),
    )

    await init_database()

    machine = create_state_machine()
    await machine.hydrate()
    app.state.machine = machine
    app.state.workflow = WorkflowService(machine)

    log.info(
        "application_started",
        state=machine.current_state.value,
        sessions=len(machine.sessions),
    )

    yield

    log.info("application_shutting_down")
    await machine.flush()


# Create FastAPI application
app = FastAPI(
    title="Research Workflow Engine",
    description="Interview, dynamic form and research workflow backend",
    version="0.1.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS middleware for development
if settings.debug:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(CorrelationIDMiddleware)

setup_exception_handlers(app)

app.include_router(health.router, tags=["system"])
app.include_router(workflow.router)
app.include_router(form.router)
app.include_router(research.router)
app.include_router(sessions.router)


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    return {"name": "Research Workflow Engine", "version": "0.1.0", "status": "running"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
