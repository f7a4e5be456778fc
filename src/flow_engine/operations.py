"""OperationQueue — single-writer serialization of session mutations.

Host calls go through :meth:`OperationQueue.run`; job status callbacks go
through :meth:`OperationQueue.post`.  Only one operation holds the session
at a time.  A callback posted while an operation is running is processed
right after it, before the next host call gets the session.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable

from flow_engine.errors import InvalidStateError

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


class OperationQueue:
    """A mutex plus a FIFO of deferred operations."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._pending: deque[Operation] = deque()
        self._owner: asyncio.Task | None = None
        self._drains: set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def idle(self) -> bool:
        """True when nothing is queued or draining."""
        return not self._pending and not self._drains

    async def run(self, op: Operation) -> Any:
        """Run *op* exclusively and return its result.

        Queued callbacks are drained before and after *op*.

        Raises:
            InvalidStateError: called from inside another operation
        """
        if self._owner is not None and self._owner is asyncio.current_task():
            raise InvalidStateError("Session operations cannot be nested")
        async with self._lock:
            self._owner = asyncio.current_task()
            try:
                await self._drain()
                return await op()
            finally:
                try:
                    await self._drain()
                finally:
                    self._owner = None

    def post(self, op: Operation) -> None:
        """Queue *op*; it runs as soon as the session is free.

        Must be called on the event loop thread.
        """
        self._pending.append(op)
        if not self._lock.locked():
            task = asyncio.ensure_future(self._drain_exclusive())
            self._drains.add(task)
            task.add_done_callback(self._drains.discard)

    async def join(self) -> None:
        """Wait until every queued operation has been processed."""
        while self._pending or self._drains:
            if self._drains:
                await asyncio.gather(*list(self._drains))
            else:
                await self._drain_exclusive()

    async def _drain_exclusive(self) -> None:
        async with self._lock:
            self._owner = asyncio.current_task()
            try:
                await self._drain()
            finally:
                self._owner = None

    async def _drain(self) -> None:
        while self._pending:
            op = self._pending.popleft()
            try:
                await op()
            except Exception:
                # No caller to propagate to; callbacks report via events
                logger.exception("Queued session operation failed")
