"""SessionStore — holds the ``Session`` record and guards every mutation.

No other component writes to the session.  Each mutator validates its
precondition first and raises before touching any field, so a rejected
call leaves the session unchanged.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from flow_engine.constants import IN_FLIGHT_STATUSES, TRANSFORM_TRANSITIONS
from flow_engine.errors import InvalidStateError, InvalidTransitionError, NavigationError
from flow_engine.models.enums import DispatcherState, ExtraSlot, StepType, TransformStatus
from flow_engine.models.job import JobErrorInfo, JobProgress
from flow_engine.models.session import (
    FlowConfig,
    Session,
    StepResponse,
    TransformState,
    utcnow,
)

logger = logging.getLogger(__name__)


class SessionStore:
    """Owns one session and its navigation policy.

    Args:
        session: the session record to manage
        config: host configuration (``allow_back`` / ``allow_skip``)
    """

    def __init__(self, session: Session, config: FlowConfig) -> None:
        self._session = session
        self._config = config

    @classmethod
    def create(
        cls,
        config: FlowConfig,
        *,
        session_id: str | None = None,
    ) -> "SessionStore":
        """Create a fresh session: index 0, no data, idle transform, no extras seen."""
        session = Session(
            session_id=session_id or config.session_id or str(uuid.uuid4()),
            experience_id=config.experience_id,
            event_id=config.event_id,
            interactive=config.interactive,
        )
        return cls(session, config)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def config(self) -> FlowConfig:
        return self._config

    def _touch(self) -> None:
        self._session.updated_at = utcnow()

    # ==================================================================
    # Step data
    # ==================================================================

    def record_step_data(self, step_id: str, step_type: str, value: Any) -> StepResponse:
        """Write (or overwrite) the value for the active step.

        Raises:
            InvalidStateError: *step_id* is not the currently active step
        """
        if step_id != self._session.current_step_id:
            raise InvalidStateError(
                f"Cannot record data for {step_id!r}: active step is "
                f"{self._session.current_step_id!r}"
            )
        response = StepResponse(step_id=step_id, step_type=StepType(step_type), value=value)
        # Re-insert so the mapping stays ordered by completion time
        self._session.data.pop(step_id, None)
        self._session.data[step_id] = response
        self._touch()
        return response

    def clear_step_data(self, step_id: str) -> None:
        """Drop the recorded value for *step_id* (used by retake)."""
        if self._session.data.pop(step_id, None) is not None:
            self._touch()

    # ==================================================================
    # Position
    # ==================================================================

    def advance(
        self,
        to_index: int,
        step_id: str,
        *,
        sequence_length: int,
        skip_from: Optional[str] = None,
    ) -> None:
        """Move the cursor to *to_index* and make *step_id* the active step.

        Forward moves are limited to one position.  Backward moves require
        ``allow_back``.  When *skip_from* names a step kind the move is a
        skip and requires ``allow_skip`` for that kind.

        Raises:
            NavigationError: the move violates the navigation policy or
                addresses a position outside the sequence
        """
        current = self._session.effective_step_index
        if not 0 <= to_index < sequence_length:
            raise NavigationError(
                f"Index {to_index} is outside the sequence (length {sequence_length})"
            )
        if to_index < current and not self._config.allow_back:
            raise NavigationError("Back navigation is not allowed for this session")
        if to_index > current + 1:
            raise NavigationError(
                f"Cannot jump forward from {current} to {to_index}"
            )
        if skip_from is not None and not self._config.can_skip(skip_from):
            raise NavigationError(f"Skipping {skip_from!r} steps is not allowed")

        logger.debug(
            "Session %s: index %d -> %d (%s)",
            self._session.session_id, current, to_index, step_id,
        )
        self._session.effective_step_index = to_index
        self._session.current_step_id = step_id
        self._touch()

    def set_position(self, index: int, step_id: str) -> None:
        """Set the initial position without policy checks (session start only)."""
        self._session.effective_step_index = index
        self._session.current_step_id = step_id
        self._touch()

    # ==================================================================
    # Extras
    # ==================================================================

    def mark_extra_seen(self, slot: ExtraSlot) -> bool:
        """Record that *slot* ran.  Idempotent; returns True on first insertion."""
        if slot in self._session.extras_seen:
            return False
        self._session.extras_seen.add(slot)
        self._touch()
        return True

    def record_slot_decision(self, slot: ExtraSlot, run: bool) -> None:
        self._session.slot_decisions[slot] = run
        self._touch()

    def clear_slot_decision(self, slot: ExtraSlot) -> None:
        if self._session.slot_decisions.pop(slot, None) is not None:
            self._touch()

    # ==================================================================
    # Lifecycle
    # ==================================================================

    def set_state(self, state: DispatcherState) -> None:
        self._session.state = state
        if state != DispatcherState.RUNNING:
            self._session.completed_at = utcnow()
        self._touch()

    # ==================================================================
    # Transform status
    # ==================================================================

    def set_transform_status(
        self,
        target: TransformStatus,
        *,
        result_ref: Optional[str] = None,
        error_info: Optional[JobErrorInfo] = None,
        job_id: Optional[str] = None,
    ) -> TransformState:
        """Move the transform state machine to *target*.

        Allowed edges: idle->pending, pending->processing, pending->error,
        processing->complete, processing->error, error->pending.

        Raises:
            InvalidTransitionError: the edge is not in the graph
        """
        state = self._session.transform
        if target not in TRANSFORM_TRANSITIONS[state.status]:
            raise InvalidTransitionError(state.status.value, target.value)

        logger.debug(
            "Session %s: transform %s -> %s",
            self._session.session_id, state.status.value, target.value,
        )
        state.status = target
        if target == TransformStatus.PENDING:
            state.attempts += 1
            state.result_ref = None
            state.error_info = None
            state.progress = None
            state.job_id = None
        elif target == TransformStatus.PROCESSING:
            if job_id is not None:
                state.job_id = job_id
        elif target == TransformStatus.COMPLETE:
            state.result_ref = result_ref
        elif target == TransformStatus.ERROR:
            state.error_info = error_info
        self._touch()
        return state

    def set_transform_progress(self, progress: JobProgress) -> None:
        """Record a progress report; only valid while a job is in flight."""
        if self._session.transform.status not in IN_FLIGHT_STATUSES:
            raise InvalidStateError("No transform job in flight")
        self._session.transform.progress = progress
        self._touch()

    def reset_transform(self, step_id: str) -> None:
        """Return the transform state to ``idle`` for a fresh entry into *step_id*.

        Only allowed from ``idle`` or a terminal status: an in-flight job
        must finish or be cancelled first.

        Raises:
            InvalidStateError: a job is still in flight
        """
        status = self._session.transform.status
        if status in IN_FLIGHT_STATUSES:
            raise InvalidStateError(
                f"Cannot reset transform while status is {status.value}"
            )
        self._session.transform = TransformState(step_id=step_id)
        self._touch()
