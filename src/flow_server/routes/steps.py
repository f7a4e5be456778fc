"""Step endpoints — read the active step and drive navigation.

Every mutating endpoint returns the resulting ``StepView`` so clients can
render the next screen without a second request.  Engine contract errors
(wrong step, navigation disabled, session ended) come back as 409 with
the error class in ``error``.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from flow_engine.models.session import StepView

from flow_server.dependencies import get_registry, get_snapshot_db
from flow_server.registry import SessionRegistry

router = APIRouter(tags=["steps"])


# ------------------------------------------------------------------
# Request models
# ------------------------------------------------------------------

class CompleteStepRequest(BaseModel):
    """Body for POST /sessions/{session_id}/step."""
    step_id: str
    value: Any = None


class BackRequest(BaseModel):
    """Body for POST /sessions/{session_id}/back.

    ``retake`` re-runs the previous ai-transform step from scratch.
    """
    retake: bool = False


class AbortRequest(BaseModel):
    reason: str = "Session aborted by host"


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("/sessions/{session_id}/step")
async def get_current_step(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> StepView:
    """Return the active step.  ``step`` is null once the session has ended."""
    return registry.get(session_id).view()


@router.post("/sessions/{session_id}/step")
async def complete_step(
    session_id: str,
    body: CompleteStepRequest,
    registry: SessionRegistry = Depends(get_registry),
    db: Optional[AsyncSession] = Depends(get_snapshot_db),
) -> StepView:
    """Record the value for the active step and advance."""
    flow = registry.get(session_id)
    await flow.complete(body.step_id, body.value)
    await registry.persist(db, flow)
    return flow.view()


@router.post("/sessions/{session_id}/back")
async def go_back(
    session_id: str,
    body: Optional[BackRequest] = None,
    registry: SessionRegistry = Depends(get_registry),
    db: Optional[AsyncSession] = Depends(get_snapshot_db),
) -> StepView:
    """Move to the previous step (requires ``allow_back``)."""
    flow = registry.get(session_id)
    await flow.back(retake=body.retake if body else False)
    await registry.persist(db, flow)
    return flow.view()


@router.post("/sessions/{session_id}/skip")
async def skip_step(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
    db: Optional[AsyncSession] = Depends(get_snapshot_db),
) -> StepView:
    """Skip the active step (requires ``allow_skip`` for its kind)."""
    flow = registry.get(session_id)
    await flow.skip()
    await registry.persist(db, flow)
    return flow.view()


@router.post("/sessions/{session_id}/retry")
async def retry_transform(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
    db: Optional[AsyncSession] = Depends(get_snapshot_db),
) -> StepView:
    """Resubmit the failed transform job for the active step."""
    flow = registry.get(session_id)
    await flow.retry()
    await registry.persist(db, flow)
    return flow.view()


@router.post("/sessions/{session_id}/abort")
async def abort_session(
    session_id: str,
    body: Optional[AbortRequest] = None,
    registry: SessionRegistry = Depends(get_registry),
    db: Optional[AsyncSession] = Depends(get_snapshot_db),
) -> StepView:
    """Abort the session.  Repeating the call has no further effect."""
    flow = registry.get(session_id)
    flow.abort(body.reason if body else "Session aborted by host")
    await registry.persist(db, flow)
    return flow.view()
