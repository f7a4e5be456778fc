"""Session management endpoints — start, resume, inspect, list and discard sessions.

Sessions live in this server process (see ``SessionRegistry``); ids are
generated by the engine unless the client supplies one.
"""

from typing import Any, Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from flow_engine import FlowCatalog, FlowConfig
from flow_engine.models.enums import DispatcherState, ExtraSlot, StepType
from flow_engine.models.session import SessionInfo

from flow_server.config import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from flow_server.dependencies import get_catalog, get_registry, get_snapshot_db
from flow_server.registry import SessionRegistry

router = APIRouter(tags=["sessions"])


# ------------------------------------------------------------------
# Request / response models
# ------------------------------------------------------------------

class CreateSessionRequest(BaseModel):
    """Body for POST /sessions.

    ``experience_id`` may be omitted when ``event_id`` names an event
    with a default experience.
    """
    experience_id: Optional[str] = None
    event_id: Optional[str] = None
    interactive: bool = True
    allow_skip: Union[bool, list[StepType]] = False
    allow_back: bool = False
    session_id: Optional[str] = None


class ResumeSessionRequest(BaseModel):
    """Body for POST /sessions/{session_id}/resume.

    Navigation policy is not stored with the snapshot, so it is given again.
    """
    allow_skip: Union[bool, list[StepType]] = False
    allow_back: bool = False


class SequenceItem(BaseModel):
    index: int
    step_id: str
    step_type: str
    experience_id: str
    slot: Optional[ExtraSlot] = None


class EventsPage(BaseModel):
    session_id: str
    last_seq: int
    events: list[dict[str, Any]]


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("/sessions", status_code=201)
async def create_session(
    body: CreateSessionRequest,
    registry: SessionRegistry = Depends(get_registry),
    catalog: FlowCatalog = Depends(get_catalog),
    db: Optional[AsyncSession] = Depends(get_snapshot_db),
) -> SessionInfo:
    """Start a new session and enter its first step.

    Returns 201 on success, 404 for an unknown experience or event, and
    409 if ``session_id`` is already live.
    """
    experience_id = body.experience_id
    if experience_id is None:
        if body.event_id is None:
            raise ValueError("experience_id or event_id is required")
        experience_id = catalog.get_event(body.event_id).experience_id
        if experience_id is None:
            raise ValueError(f"Event {body.event_id} has no default experience")

    flow = await registry.start(FlowConfig(
        experience_id=experience_id,
        event_id=body.event_id,
        interactive=body.interactive,
        allow_skip=body.allow_skip,
        allow_back=body.allow_back,
        session_id=body.session_id,
    ))
    await registry.persist(db, flow)
    return flow.info()


@router.post("/sessions/{session_id}/resume", status_code=201)
async def resume_session(
    session_id: str,
    body: Optional[ResumeSessionRequest] = None,
    registry: SessionRegistry = Depends(get_registry),
    db: Optional[AsyncSession] = Depends(get_snapshot_db),
) -> SessionInfo:
    """Make a stored session live again and re-enter its active step.

    Returns 404 if no snapshot exists, 409 if the session is already live
    (or its position no longer fits the experience) and 400 when snapshot
    persistence is disabled.
    """
    body = body or ResumeSessionRequest()
    flow = await registry.resume(
        db,
        session_id,
        allow_back=body.allow_back,
        allow_skip=body.allow_skip,
    )
    await registry.persist(db, flow)
    return flow.info()


@router.get("/sessions")
async def list_sessions(
    registry: SessionRegistry = Depends(get_registry),
    state: Optional[DispatcherState] = Query(None),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    offset: int = Query(0, ge=0),
) -> list[SessionInfo]:
    """List live sessions, most recent first."""
    flows = registry.list(state)[offset:offset + limit]
    return [f.info() for f in flows]


@router.get("/sessions/{session_id}")
async def get_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionInfo:
    """Get session info.  Raises 404 if the session is not live."""
    return registry.get(session_id).info()


@router.delete("/sessions/{session_id}", status_code=204)
async def discard_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
    db: Optional[AsyncSession] = Depends(get_snapshot_db),
) -> None:
    """Abort the session if it is still running and drop it from memory.

    The final snapshot (if persistence is on) is kept.
    """
    flow = registry.get(session_id)
    registry.discard(session_id)
    await registry.persist(db, flow)


@router.get("/sessions/{session_id}/sequence")
async def get_sequence(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> list[SequenceItem]:
    """Return the session's effective step sequence."""
    flow = registry.get(session_id)
    return [
        SequenceItem(
            index=i,
            step_id=entry.step_id,
            step_type=entry.step_type,
            experience_id=entry.experience_id,
            slot=entry.slot,
        )
        for i, entry in enumerate(flow.sequence)
    ]


@router.get("/sessions/{session_id}/events")
async def get_events(
    session_id: str,
    after: int = Query(0, ge=0),
    registry: SessionRegistry = Depends(get_registry),
) -> EventsPage:
    """Return buffered events with ``seq > after``.

    Clients poll with the last ``seq`` they saw to pick up changes made
    between requests, such as a job completing and advancing the session.
    """
    events = registry.events(session_id, after)
    last_seq = events[-1]["seq"] if events else after
    return EventsPage(session_id=session_id, last_seq=last_seq, events=events)
