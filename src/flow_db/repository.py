"""Async repository for flow session snapshots.

All methods accept an ``AsyncSession`` so the caller controls transaction
boundaries; writes ``flush()`` and the caller commits.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from flow_engine.models.enums import SessionMode
from flow_engine.models.session import Session

from flow_db.models.session import FlowSessionRecord


def _snapshot_columns(session: Session) -> dict:
    """Map an engine ``Session`` onto the row's column values."""
    dumped = session.model_dump(mode="json")
    return {
        "experience_id": session.experience_id,
        "event_id": session.event_id,
        "mode": session.mode.value,
        "state": session.state.value,
        "effective_step_index": session.effective_step_index,
        "current_step_id": session.current_step_id,
        "data": dumped["data"],
        "transform": dumped["transform"],
        "extras_seen": sorted(dumped["extras_seen"]),
        "slot_decisions": dumped["slot_decisions"],
        "created_at": session.created_at,
        "updated_at": session.updated_at,
        "completed_at": session.completed_at,
    }


def record_to_session(row: FlowSessionRecord) -> Session:
    """Rebuild the engine ``Session`` stored in *row*."""
    return Session.model_validate({
        "session_id": row.session_id,
        "experience_id": row.experience_id,
        "event_id": row.event_id,
        "interactive": row.mode == SessionMode.GUEST.value,
        "state": row.state,
        "effective_step_index": row.effective_step_index,
        "current_step_id": row.current_step_id,
        "data": row.data or {},
        "transform": row.transform or {},
        "extras_seen": row.extras_seen or [],
        "slot_decisions": row.slot_decisions or {},
        "created_at": row.created_at,
        "updated_at": row.updated_at,
        "completed_at": row.completed_at,
    })


class SessionSnapshotRepository:
    """Async read/write operations on the ``flow_sessions`` table."""

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def save_snapshot(self, db: AsyncSession, session: Session) -> FlowSessionRecord:
        """Insert or overwrite the row for ``session.session_id``."""
        columns = _snapshot_columns(session)
        row = await self.get_by_session_id(db, session.session_id)
        if row is None:
            row = FlowSessionRecord(session_id=session.session_id, **columns)
            db.add(row)
        else:
            for name, value in columns.items():
                setattr(row, name, value)
        await db.flush()
        return row

    async def delete(self, db: AsyncSession, session_id: str) -> bool:
        """Delete one snapshot.  Returns False if it did not exist."""
        row = await self.get_by_session_id(db, session_id)
        if row is None:
            return False
        await db.delete(row)
        await db.flush()
        return True

    async def bulk_purge_old_sessions(
        self,
        db: AsyncSession,
        *,
        older_than_days: int,
        states: Iterable[str] | None = None,
    ) -> int:
        """Delete snapshots created more than *older_than_days* days ago.

        Args:
            states: only purge rows in these states (e.g. ``completed``)

        Returns:
            number of rows removed
        """
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        stmt = delete(FlowSessionRecord).where(FlowSessionRecord.created_at < cutoff)
        if states:
            stmt = stmt.where(FlowSessionRecord.state.in_(list(states)))
        result = await db.execute(stmt)
        await db.flush()
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_by_session_id(
        self, db: AsyncSession, session_id: str
    ) -> FlowSessionRecord | None:
        stmt = select(FlowSessionRecord).where(FlowSessionRecord.session_id == session_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def load_session(self, db: AsyncSession, session_id: str) -> Session | None:
        """Return the stored snapshot as an engine ``Session``, or None."""
        row = await self.get_by_session_id(db, session_id)
        if row is None:
            return None
        return record_to_session(row)

    async def list_recent(
        self,
        db: AsyncSession,
        *,
        experience_id: str | None = None,
        state: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[FlowSessionRecord]:
        """List snapshots, most recent first."""
        stmt = select(FlowSessionRecord)
        if experience_id is not None:
            stmt = stmt.where(FlowSessionRecord.experience_id == experience_id)
        if state is not None:
            stmt = stmt.where(FlowSessionRecord.state == state)
        stmt = stmt.order_by(FlowSessionRecord.created_at.desc()).limit(limit).offset(offset)
        result = await db.execute(stmt)
        return list(result.scalars().all())
