"""
Method Card router for the two-stage generation workflow.

Endpoints:
- POST /runs - Submit generation parameters and start a run
- GET /runs/current - Latest run snapshot for the session
- GET /runs/events - SSE stream of run snapshots until the run settles
- DELETE /runs/current - Cancel the in-flight run

The session is identified by the X-Session-ID header; one run may be in
flight per session.
"""

import asyncio
import json
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from methodlab.dependencies import get_session_registry
from methodlab.errors import InputValidationError, WorkflowBusyError
from methodlab.models import IDLE_SNAPSHOT, GenerationParameters, WorkflowSnapshot
from methodlab.services.session_registry import SessionRegistry
from methodlab.services.workflow_coordinator import WorkflowCoordinator

logger = logging.getLogger(__name__)

router = APIRouter()


class GenerationRequest(BaseModel):
    """Method Card form submission."""
    analyte: str = ""
    matrix: str = ""
    chemicalGroup: str = ""
    technique: str = ""
    referenceStandards: str = ""
    language: Optional[Literal["en", "vi"]] = None


class CancelResponse(BaseModel):
    cancelled: bool
    run_id: Optional[str] = None


def get_coordinator(
    x_session_id: Optional[str] = Header(default=None, alias="X-Session-ID"),
    registry: SessionRegistry = Depends(get_session_registry),
) -> WorkflowCoordinator:
    """Resolve the calling session's coordinator, creating it if needed."""
    return registry.get(x_session_id)


def find_coordinator(
    x_session_id: Optional[str] = Header(default=None, alias="X-Session-ID"),
    registry: SessionRegistry = Depends(get_session_registry),
) -> Optional[WorkflowCoordinator]:
    """Resolve the calling session's coordinator without creating one."""
    return registry.find(x_session_id)


@router.post("/runs", status_code=status.HTTP_202_ACCEPTED)
async def submit_run(
    request: GenerationRequest,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
):
    """Start a Method Card run. Returns the DRAFTING snapshot."""
    params = GenerationParameters.from_dict(request.model_dump())
    try:
        snapshot = coordinator.submit(params)
    except InputValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"field": e.field, "message": str(e)},
        )
    except WorkflowBusyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return snapshot.to_dict()


@router.get("/runs/current")
async def get_current_run(
    coordinator: Optional[WorkflowCoordinator] = Depends(find_coordinator),
):
    """Latest snapshot of the session's run (idle for unknown sessions)."""
    if coordinator is None:
        return IDLE_SNAPSHOT.to_dict()
    return coordinator.current().to_dict()


@router.delete("/runs/current", response_model=CancelResponse)
async def cancel_run(
    coordinator: Optional[WorkflowCoordinator] = Depends(find_coordinator),
):
    """
    Cancel the in-flight run.

    The run settles in the error state once the current call is interrupted.
    """
    if coordinator is None:
        return CancelResponse(cancelled=False)
    run_id = coordinator.current().run_id
    cancelled = coordinator.cancel()
    if cancelled:
        logger.info(f"Run {run_id} cancelled")
    return CancelResponse(cancelled=cancelled, run_id=run_id)


def _finish_status(snapshot: WorkflowSnapshot) -> str:
    if snapshot.succeeded:
        return "completed"
    if snapshot.error:
        return "failed"
    return "idle"


@router.get("/runs/events")
async def stream_run_events(
    coordinator: Optional[WorkflowCoordinator] = Depends(find_coordinator),
):
    """
    SSE stream of run snapshots for real-time progress tracking.

    The first event is the current snapshot; the stream ends after the run
    settles (or immediately when no run is in flight).
    """
    if coordinator is None:
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(IDLE_SNAPSHOT)
    else:
        queue = coordinator.subscribe()

    async def event_generator():
        """Generate SSE events."""
        sequence = 0
        try:
            while True:
                snapshot = await queue.get()
                sequence += 1
                yield {
                    "event": "snapshot",
                    "id": str(sequence),
                    "data": json.dumps(snapshot.to_dict(), ensure_ascii=False),
                }

                if not snapshot.is_active:
                    yield {
                        "event": "run_finished",
                        "data": json.dumps({
                            "run_id": snapshot.run_id,
                            "status": _finish_status(snapshot),
                        }),
                    }
                    break
        finally:
            if coordinator is not None:
                coordinator.unsubscribe(queue)

    return EventSourceResponse(event_generator())
