"""SessionRegistry — live flow sessions held by this server process.

Each session gets an :class:`EventLog` listener so HTTP clients can poll
for events (step changes triggered by job completions happen between
requests).  Snapshots are written to ``flow_db`` when persistence is on,
and a stored snapshot can be resumed into a live session again.

Completed and aborted sessions stay readable for ``session_ttl`` seconds
after they end; each ``start``, ``resume`` and ``list`` sweeps out the
expired ones.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from flow_db.repository import SessionSnapshotRepository
from flow_engine import FlowConfig, FlowEngine, FlowListener, FlowSession
from flow_engine.models.enums import DispatcherState, StepType
from flow_engine.models.session import utcnow

logger = logging.getLogger(__name__)


class EventLog(FlowListener):
    """Bounded, sequence-numbered buffer of one session's events."""

    def __init__(self, maxlen: int = 500) -> None:
        self._events: deque[dict[str, Any]] = deque(maxlen=maxlen)
        self._seq = 0

    def _append(self, event) -> None:
        self._seq += 1
        self._events.append({"seq": self._seq, "event": event.model_dump(mode="json")})

    on_start = _append
    on_step_change = _append
    on_data_update = _append
    on_complete = _append
    on_error = _append

    @property
    def last_seq(self) -> int:
        return self._seq

    def since(self, after: int = 0) -> list[dict[str, Any]]:
        """Events with ``seq > after``, oldest first."""
        return [e for e in self._events if e["seq"] > after]


class SessionRegistry:
    """In-memory map of session id to live :class:`FlowSession`.

    Args:
        engine: the engine used to start sessions
        event_buffer_size: events retained per session
        session_ttl: seconds an ended session is kept before eviction
    """

    def __init__(
        self,
        engine: FlowEngine,
        *,
        event_buffer_size: int = 500,
        session_ttl: float = 3600.0,
    ) -> None:
        self._engine = engine
        self._event_buffer_size = event_buffer_size
        self._session_ttl = timedelta(seconds=session_ttl)
        self._flows: dict[str, FlowSession] = {}
        self._logs: dict[str, EventLog] = {}
        self._snapshots = SessionSnapshotRepository()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, config: FlowConfig) -> FlowSession:
        """Start a session and register it.

        Raises:
            ValueError: a live session already uses ``config.session_id``
        """
        self.sweep()
        if config.session_id is not None and config.session_id in self._flows:
            raise ValueError(f"Session already exists: {config.session_id}")
        log = EventLog(self._event_buffer_size)
        flow = await self._engine.start(config, listeners=[log])
        self._register(flow, log)
        return flow

    async def resume(
        self,
        db: Optional[AsyncSession],
        session_id: str,
        *,
        allow_back: bool = False,
        allow_skip: Union[bool, list[StepType]] = False,
    ) -> FlowSession:
        """Load the stored snapshot of *session_id* and make it live again.

        Raises:
            ValueError: the session is already live, persistence is
                disabled (db is None) or no snapshot exists
        """
        self.sweep()
        if session_id in self._flows:
            raise ValueError(f"Session already exists: {session_id}")
        if db is None:
            raise ValueError("Cannot resume: snapshot persistence is disabled")
        snapshot = await self._snapshots.load_session(db, session_id)
        if snapshot is None:
            raise ValueError(f"Snapshot not found: {session_id}")

        config = FlowConfig(
            experience_id=snapshot.experience_id,
            event_id=snapshot.event_id,
            interactive=snapshot.interactive,
            allow_back=allow_back,
            allow_skip=allow_skip,
        )
        log = EventLog(self._event_buffer_size)
        flow = await self._engine.resume(snapshot, config, listeners=[log])
        self._register(flow, log)
        logger.info("Session %s resumed from snapshot (%s)", session_id, flow.state.value)
        return flow

    def _register(self, flow: FlowSession, log: EventLog) -> None:
        self._flows[flow.session_id] = flow
        self._logs[flow.session_id] = log

    def get(self, session_id: str) -> FlowSession:
        """Raises ``ValueError`` if the session is not live in this process."""
        flow = self._flows.get(session_id)
        if flow is None:
            raise ValueError(f"Session not found: {session_id}")
        return flow

    def list(self, state: Optional[DispatcherState] = None) -> list[FlowSession]:
        self.sweep()
        flows = sorted(self._flows.values(), key=lambda f: f.session.created_at, reverse=True)
        if state is None:
            return flows
        return [f for f in flows if f.state == state]

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Forget ended sessions whose ``completed_at`` is older than the TTL.

        Returns:
            number of sessions evicted
        """
        cutoff = (now or utcnow()) - self._session_ttl
        expired = [
            session_id
            for session_id, flow in self._flows.items()
            if flow.state != DispatcherState.RUNNING
            and flow.session.completed_at is not None
            and flow.session.completed_at <= cutoff
        ]
        for session_id in expired:
            del self._flows[session_id]
            del self._logs[session_id]
        if expired:
            logger.info("Evicted %d ended session(s) past the %ss TTL",
                        len(expired), int(self._session_ttl.total_seconds()))
        return len(expired)

    def events(self, session_id: str, after: int = 0) -> list[dict[str, Any]]:
        self.get(session_id)
        return self._logs[session_id].since(after)

    def discard(self, session_id: str) -> None:
        """Abort (if still running) and forget a session."""
        flow = self.get(session_id)
        flow.abort("Session discarded by host")
        del self._flows[session_id]
        del self._logs[session_id]
        logger.info("Session %s discarded", session_id)

    async def shutdown(self) -> None:
        """Abort every running session and wait for cancellations to settle."""
        for flow in list(self._flows.values()):
            if flow.abort("Server shutting down"):
                await flow.wait_idle()
        self._flows.clear()
        self._logs.clear()

    def __len__(self) -> int:
        return len(self._flows)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def persist(self, db: Optional[AsyncSession], flow: FlowSession) -> None:
        """Save a snapshot of *flow*; no-op when persistence is disabled (db is None)."""
        if db is None:
            return
        await self._snapshots.save_snapshot(db, flow.snapshot())
