"""
Research API routes.

Progress updates, the research stream, completion and cancellation.
"""

from fastapi import APIRouter

from src.api.dependencies import MachineDep, WorkflowDep
from src.api.schemas import (
    CompleteResearchRequest,
    CompleteResearchResponse,
    ProgressRequest,
    ProgressResponse,
    StreamChunkRequest,
    StreamChunkResponse,
    TransitionResponse,
)

router = APIRouter(prefix="/research", tags=["research"])


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(machine: MachineDep):
    return ProgressResponse(
        accepted=True,
        research_progress=machine.research_progress,
        research_status=machine.research_status,
    )


@router.post("/progress", response_model=ProgressResponse)
async def post_progress(request: ProgressRequest, machine: MachineDep):
    """Record progress. Outside RESEARCHING the update is ignored, not an error."""
    accepted = machine.set_research_progress(request.percent, request.status_label)
    return ProgressResponse(
        accepted=accepted,
        research_progress=machine.research_progress,
        research_status=machine.research_status,
    )


@router.post("/stream", response_model=StreamChunkResponse)
async def post_stream_chunk(request: StreamChunkRequest, workflow: WorkflowDep):
    """Feed a chunk of the research stream (``0:"..."`` lines)."""
    progress = workflow.feed_research_stream(request.chunk)
    return StreamChunkResponse(
        research_progress=progress,
        research_status=workflow.machine.research_status,
        logs=workflow.tracker.logs if workflow.tracker else [],
    )


@router.post("/complete", response_model=CompleteResearchResponse)
async def complete_research(request: CompleteResearchRequest, workflow: WorkflowDep):
    """Parse the research output and present it.

    Returns a null result when research was cancelled meanwhile.
    """
    result = workflow.complete_research(request.text)
    return CompleteResearchResponse(result=result, current_state=workflow.machine.current_state)


@router.post("/cancel", response_model=TransitionResponse)
async def cancel_research(workflow: WorkflowDep):
    workflow.cancel_research()
    machine = workflow.machine
    return TransitionResponse(
        current_state=machine.current_state,
        previous_state=machine.previous_state,
        state_history=machine.state_history,
    )
