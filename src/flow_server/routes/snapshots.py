"""Snapshot endpoints — browse sessions stored in ``flow_sessions``.

Unlike ``/sessions`` these read the database, so they also cover sessions
that ended or were evicted from memory and sessions started by another
server process.  All of them return 400 when ``PERSIST_SNAPSHOTS`` is off.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from flow_db.repository import SessionSnapshotRepository
from flow_engine.models.enums import DispatcherState
from flow_engine.models.session import Session

from flow_server.config import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from flow_server.dependencies import get_snapshot_db

router = APIRouter(prefix="/snapshots", tags=["snapshots"])

_repo = SessionSnapshotRepository()


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class SnapshotSummary(BaseModel):
    """One row of GET /snapshots."""
    session_id: str
    experience_id: str
    event_id: Optional[str] = None
    mode: str
    state: str
    effective_step_index: int
    current_step_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


def _require_db(db: Optional[AsyncSession]) -> AsyncSession:
    if db is None:
        raise ValueError("Snapshot persistence is disabled")
    return db


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("")
async def list_snapshots(
    experience_id: Optional[str] = Query(None),
    state: Optional[DispatcherState] = Query(None),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    offset: int = Query(0, ge=0),
    db: Optional[AsyncSession] = Depends(get_snapshot_db),
) -> list[SnapshotSummary]:
    """List stored snapshots, most recent first."""
    rows = await _repo.list_recent(
        _require_db(db),
        experience_id=experience_id,
        state=state.value if state else None,
        limit=limit,
        offset=offset,
    )
    return [
        SnapshotSummary(
            session_id=row.session_id,
            experience_id=row.experience_id,
            event_id=row.event_id,
            mode=row.mode,
            state=row.state,
            effective_step_index=row.effective_step_index,
            current_step_id=row.current_step_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
            completed_at=row.completed_at,
        )
        for row in rows
    ]


@router.get("/{session_id}")
async def get_snapshot(
    session_id: str,
    db: Optional[AsyncSession] = Depends(get_snapshot_db),
) -> Session:
    """Return the full stored session, including collected data."""
    snapshot = await _repo.load_session(_require_db(db), session_id)
    if snapshot is None:
        raise ValueError(f"Snapshot not found: {session_id}")
    return snapshot
