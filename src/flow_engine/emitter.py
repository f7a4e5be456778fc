"""EventEmitter — ordered, synchronous delivery of engine events."""

from __future__ import annotations

import logging
from typing import Callable

from flow_engine.interfaces import FlowListener
from flow_engine.models.events import (
    CompleteEvent,
    DataUpdateEvent,
    ErrorEvent,
    StartEvent,
    StepChangeEvent,
)

logger = logging.getLogger(__name__)


class EventEmitter:
    """Delivers events to listeners in subscription order.

    A listener that raises is logged and skipped; delivery continues with
    the next listener and the engine operation is not interrupted.
    """

    def __init__(self, listeners: list[FlowListener] | None = None) -> None:
        self._listeners: list[FlowListener] = list(listeners or [])

    def subscribe(self, listener: FlowListener) -> Callable[[], None]:
        """Add *listener* and return a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def start(self, event: StartEvent) -> None:
        self._dispatch("on_start", event)

    def step_change(self, event: StepChangeEvent) -> None:
        self._dispatch("on_step_change", event)

    def data_update(self, event: DataUpdateEvent) -> None:
        self._dispatch("on_data_update", event)

    def complete(self, event: CompleteEvent) -> None:
        self._dispatch("on_complete", event)

    def error(self, event: ErrorEvent) -> None:
        self._dispatch("on_error", event)

    def _dispatch(self, method: str, event) -> None:
        # Copy so listeners may unsubscribe during delivery
        for listener in list(self._listeners):
            try:
                getattr(listener, method)(event)
            except Exception:
                logger.exception(
                    "Listener %r failed in %s for session %s",
                    listener, method, event.session_id,
                )
