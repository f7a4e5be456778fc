"""Admin endpoints — purge stored session snapshots.

Protected by the ``ADMIN_API_KEY`` setting.  Every request must include an
``X-Admin-Key`` header whose value matches the configured key.  Returns 401
if missing, 403 if wrong or if admin access is not configured.
"""

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from flow_db.repository import SessionSnapshotRepository

from flow_server.config import DEFAULT_CLEANUP_DAYS
from flow_server.dependencies import get_db

router = APIRouter(prefix="/admin", tags=["admin"])


# ------------------------------------------------------------------
# Auth dependency
# ------------------------------------------------------------------

async def require_admin_key(
    request: Request,
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
) -> str:
    """Validate the ``X-Admin-Key`` header against the configured admin key."""
    expected = request.app.state.settings.admin_api_key
    if not expected:
        raise HTTPException(
            status_code=403,
            detail="Admin endpoints are disabled (ADMIN_API_KEY not configured)",
        )
    if not x_admin_key:
        raise HTTPException(status_code=401, detail="X-Admin-Key header is required")
    if not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=403, detail="Invalid admin key")
    return x_admin_key


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class CleanupResult(BaseModel):
    """Response body for cleanup operations."""
    affected_rows: int
    older_than_days: int


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

_repo = SessionSnapshotRepository()


@router.post("/cleanup/sessions")
async def cleanup_sessions(
    older_than_days: int = Query(DEFAULT_CLEANUP_DAYS, ge=0),
    state: list[str] | None = Query(None),
    _admin: str = Depends(require_admin_key),
    db: AsyncSession = Depends(get_db),
) -> CleanupResult:
    """Delete stored snapshots older than ``older_than_days``.

    Args:
        older_than_days: snapshots created more than this many days ago are removed
        state: only remove snapshots in these states (e.g. ``completed``, ``aborted``)
    """
    affected = await _repo.bulk_purge_old_sessions(
        db,
        older_than_days=older_than_days,
        states=state,
    )
    return CleanupResult(affected_rows=affected, older_than_days=older_than_days)
