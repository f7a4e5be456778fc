"""StepDispatcher — exposes the active step and enforces navigation policy.

The dispatcher is the single mutator of ``effective_step_index``.  It
re-resolves the effective sequence whenever an extras slot's insertion
point is reached, freezes the slot decision on the session, and hands
ai-transform steps to the :class:`TransformJobCoordinator` on entry.

State machine::

    running --complete(last step)--> completed
    running --abort()--------------> aborted
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from flow_engine.constants import SLOT_ORDER
from flow_engine.coordinator import TransformJobCoordinator
from flow_engine.emitter import EventEmitter
from flow_engine.errors import (
    ConcurrentJobError,
    InvalidStateError,
    NavigationError,
    SessionTerminatedError,
)
from flow_engine.extras import ExtrasPolicyEvaluator
from flow_engine.models.enums import DispatcherState, ExtraSlot, TransformStatus
from flow_engine.models.events import (
    CompleteEvent,
    DataUpdateEvent,
    ErrorEvent,
    StartEvent,
    StepChangeEvent,
)
from flow_engine.models.session import SequenceEntry, StepView
from flow_engine.resolver import SequenceResolver
from flow_engine.store import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class _ForwardMove:
    """A validated forward move, applied only once every check has passed."""

    index: int
    sequence: list[SequenceEntry]
    decisions: dict[ExtraSlot, bool] = field(default_factory=dict)
    # Slot whose sub-flow is being left
    finished_slot: Optional[ExtraSlot] = None

    @property
    def target(self) -> SequenceEntry:
        return self.sequence[self.index]


class StepDispatcher:
    """Drives one session through its effective sequence.

    Args:
        store: the session store
        resolver: sequence resolver for the session's flow definition
        emitter: event emitter
        coordinator: transform job coordinator for ai-transform steps
    """

    def __init__(
        self,
        store: SessionStore,
        resolver: SequenceResolver,
        emitter: EventEmitter,
        coordinator: TransformJobCoordinator,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._emitter = emitter
        self._coordinator = coordinator
        self._sequence: list[SequenceEntry] = []
        coordinator.bind(self._complete_from_transform)

    @property
    def sequence(self) -> list[SequenceEntry]:
        return list(self._sequence)

    @property
    def state(self) -> DispatcherState:
        return self._store.session.state

    # ==================================================================
    # Queries
    # ==================================================================

    def current(self) -> SequenceEntry:
        """Return the active sequence entry.

        Raises:
            SessionTerminatedError: the session is completed or aborted
        """
        self._ensure_running()
        return self._sequence[self._store.session.effective_step_index]

    def view(self) -> StepView:
        session = self._store.session
        entry = None
        if session.is_running:
            entry = self._sequence[session.effective_step_index]
        value = None
        if entry is not None and entry.step_id in session.data:
            value = session.data[entry.step_id].value
        return StepView(
            session_id=session.session_id,
            state=session.state,
            index=session.effective_step_index,
            total=len(self._sequence),
            step=entry.step if entry else None,
            slot=entry.slot if entry else None,
            value=value,
            transform=session.transform.model_copy(deep=True),
        )

    # ==================================================================
    # Session start
    # ==================================================================

    async def begin(self) -> None:
        """Decide the entry gate, resolve the sequence and enter the first step.

        Raises:
            InvalidStateError: the effective sequence is empty
        """
        session = self._store.session
        definition = self._resolver.definition
        decisions: dict[ExtraSlot, bool] = {}
        for slot in SLOT_ORDER:
            if definition.extras.get(slot) is None:
                continue
            if self._resolver.insertion_index(slot, session, decisions) == 0:
                decisions[slot] = ExtrasPolicyEvaluator.should_run(slot, definition, session)
        for slot, run in decisions.items():
            self._store.record_slot_decision(slot, run)
            logger.info("Session %s: slot %s decision=%s", session.session_id, slot.value, run)

        self._sequence = self._resolver.resolve(session)
        if not self._sequence:
            raise InvalidStateError(f"Experience {session.experience_id!r} has no steps")
        first = self._sequence[0]
        self._store.set_position(0, first.step_id)

        self._emitter.start(StartEvent(
            session_id=session.session_id,
            experience_id=session.experience_id,
            mode=session.mode,
            sequence=[e.step_id for e in self._sequence],
        ))
        await self._enter(first, previous_step_id=None)

    async def restore(self) -> None:
        """Rebuild the sequence of a session restored from a snapshot.

        Slot decisions frozen on the session are reused, so the sequence
        is the one the session was walking when the snapshot was taken.
        A running session emits ``on_start`` and re-enters its active
        step; an ended session is left as it is.

        Raises:
            InvalidStateError: the stored position does not match the
                sequence (the experience changed since the snapshot)
        """
        session = self._store.session
        self._sequence = self._resolver.resolve(session)
        if not session.is_running:
            return
        index = session.effective_step_index
        if (
            not 0 <= index < len(self._sequence)
            or self._sequence[index].step_id != session.current_step_id
        ):
            raise InvalidStateError(
                f"Cannot restore session {session.session_id}: step "
                f"{session.current_step_id!r} is no longer at position {index}"
            )
        logger.info("Session %s: restored at %d (%s)",
                    session.session_id, index, session.current_step_id)

        entry = self._sequence[index]
        self._emitter.start(StartEvent(
            session_id=session.session_id,
            experience_id=session.experience_id,
            mode=session.mode,
            sequence=[e.step_id for e in self._sequence],
        ))
        self._emitter.step_change(StepChangeEvent(
            session_id=session.session_id,
            index=index,
            step_id=entry.step_id,
            step_type=entry.step_type,
            slot=entry.slot,
        ))
        if entry.step.is_transform:
            await self._coordinator.resume(entry)

    # ==================================================================
    # Navigation
    # ==================================================================

    async def complete(self, step_id: str, value: Any, *, from_transform: bool = False) -> None:
        """Record *value* for the active step and advance.

        Completing the last effective step moves the session to
        ``completed``.  ai-transform steps complete themselves when their
        job finishes; a host may only complete one that already has a
        result.

        Raises:
            SessionTerminatedError: the session is completed or aborted
            InvalidStateError: *step_id* is not the active step
            ConcurrentJobError: the next step needs a job while one is in flight
        """
        entry = self.current()
        session = self._store.session
        if step_id != entry.step_id:
            raise InvalidStateError(
                f"Cannot complete {step_id!r}: active step is {entry.step_id!r}"
            )
        if entry.step.is_transform and not from_transform:
            transform = session.transform
            finished = (
                transform.step_id == step_id and transform.status == TransformStatus.COMPLETE
            )
            if not finished and step_id not in session.data:
                raise InvalidStateError(
                    f"ai-transform step {step_id!r} completes when its job finishes"
                )

        move = self._plan_forward(entry)
        if move is not None:
            self._check_job_slot(move.target)

        self._store.record_step_data(step_id, entry.step_type, value)
        self._emitter.data_update(DataUpdateEvent(
            session_id=session.session_id, step_id=step_id, value=value,
        ))
        await self._apply_forward(entry, move)

    async def skip(self) -> None:
        """Advance past the active step without recording data.

        Leaving an ai-transform step whose job is still in flight cancels
        the job.

        Raises:
            SessionTerminatedError: the session is completed or aborted
            NavigationError: skipping this step kind is not allowed
        """
        entry = self.current()
        if not self._store.config.can_skip(entry.step_type):
            self._reject_navigation(f"Skipping {entry.step_type!r} steps is not allowed")

        move = self._plan_forward(entry)
        if entry.step.is_transform and self._coordinator.in_flight:
            self._coordinator.cancel(f"Step {entry.step_id!r} skipped")
        if move is not None:
            self._check_job_slot(move.target)
        await self._apply_forward(entry, move, skip_from=entry.step_type)

    async def back(self, *, retake: bool = False) -> None:
        """Move to the previous position.

        With *retake* the previous step must be an ai-transform step; its
        data entry and transform state are reset and the job runs again.

        Raises:
            SessionTerminatedError: the session is completed or aborted
            NavigationError: back navigation is disabled or already at the start
            InvalidStateError: *retake* requested for a non ai-transform step
        """
        entry = self.current()
        session = self._store.session
        if not self._store.config.allow_back:
            self._reject_navigation("Back navigation is not allowed for this session")
        index = session.effective_step_index
        if index == 0:
            self._reject_navigation("Already at the first step")

        target_index = index - 1
        if retake and not self._sequence[target_index].step.is_transform:
            raise InvalidStateError(
                f"Retake is only available for ai-transform steps, not "
                f"{self._sequence[target_index].step_type!r}"
            )

        if entry.step.is_transform and self._coordinator.in_flight:
            self._coordinator.cancel(f"Left step {entry.step_id!r} before its job finished")

        # Slots ahead of the target are decided again when reached
        for slot in SLOT_ORDER:
            if (
                slot in session.slot_decisions
                and self._resolver.insertion_index(slot, session) > target_index
            ):
                self._store.clear_slot_decision(slot)
        self._sequence = self._resolver.resolve(session)

        target = self._sequence[target_index]
        self._advance(target_index, target.step_id, sequence_length=len(self._sequence))
        if retake:
            self._store.clear_step_data(target.step_id)
            self._store.reset_transform(target.step_id)
        await self._enter(target, previous_step_id=entry.step_id)

    def abort(self, reason: str = "Session aborted by host") -> bool:
        """Move to ``aborted`` from any non-terminal state.

        Idempotent: returns False (and emits nothing) when the session has
        already ended.  An in-flight job is cancelled without waiting.
        """
        session = self._store.session
        if not session.is_running:
            return False
        cancelled = self._coordinator.cancel(reason, emit=False)
        self._store.set_state(DispatcherState.ABORTED)
        logger.info("Session %s aborted (%s)", session.session_id, reason)
        self._emitter.error(ErrorEvent(
            session_id=session.session_id,
            kind="abort",
            message=reason,
            step_id=session.current_step_id,
            error_info=session.transform.error_info if cancelled else None,
            cancelled=cancelled,
        ))
        return True

    # ==================================================================
    # Internals
    # ==================================================================

    def _ensure_running(self) -> None:
        state = self._store.session.state
        if state != DispatcherState.RUNNING:
            raise SessionTerminatedError(f"Session is {state.value}")

    def _reject_navigation(self, message: str) -> None:
        session = self._store.session
        self._emitter.error(ErrorEvent(
            session_id=session.session_id,
            kind="navigation",
            message=message,
            step_id=session.current_step_id,
        ))
        raise NavigationError(message)

    def _advance(self, to_index: int, step_id: str, **kwargs: Any) -> None:
        """Move the store cursor, emitting a navigation error if the store rejects the move."""
        try:
            self._store.advance(to_index, step_id, **kwargs)
        except NavigationError as exc:
            self._reject_navigation(str(exc))

    def _check_job_slot(self, target: SequenceEntry) -> None:
        session = self._store.session
        if (
            target.step.is_transform
            and self._coordinator.in_flight
            and target.step_id not in session.data
        ):
            raise ConcurrentJobError(
                f"Cannot enter {target.step_id!r}: job for "
                f"{session.transform.step_id!r} is still in flight"
            )

    def _plan_forward(self, entry: SequenceEntry) -> Optional[_ForwardMove]:
        """Work out the next position, or None if *entry* is the last step.

        Slots whose insertion point is the next position are decided here;
        the decisions are applied together with the move.
        """
        session = self._store.session
        index = session.effective_step_index
        if index >= len(self._sequence) - 1:
            return None

        next_index = index + 1
        finished_slot = None
        if entry.slot is not None and self._sequence[next_index].slot != entry.slot:
            finished_slot = entry.slot

        decisions: dict[ExtraSlot, bool] = {}
        definition = self._resolver.definition
        for slot in SLOT_ORDER:
            if slot in session.slot_decisions or definition.extras.get(slot) is None:
                continue
            if self._resolver.insertion_index(slot, session, decisions) == next_index:
                decisions[slot] = ExtrasPolicyEvaluator.should_run(slot, definition, session)
        sequence = self._resolver.resolve(session, decisions)
        return _ForwardMove(
            index=next_index,
            sequence=sequence,
            decisions=decisions,
            finished_slot=finished_slot,
        )

    async def _apply_forward(
        self,
        entry: SequenceEntry,
        move: Optional[_ForwardMove],
        *,
        skip_from: Optional[str] = None,
    ) -> None:
        session = self._store.session
        if move is None:
            if entry.slot is not None:
                self._store.mark_extra_seen(entry.slot)
            self._finish()
            return

        self._advance(
            move.index,
            move.target.step_id,
            sequence_length=len(move.sequence),
            skip_from=skip_from,
        )
        if move.finished_slot is not None and self._store.mark_extra_seen(move.finished_slot):
            logger.info("Session %s: slot %s finished", session.session_id,
                        move.finished_slot.value)
        for slot, run in move.decisions.items():
            self._store.record_slot_decision(slot, run)
            logger.info("Session %s: slot %s decision=%s", session.session_id, slot.value, run)
        self._sequence = move.sequence
        await self._enter(move.target, previous_step_id=entry.step_id)

    async def _enter(self, entry: SequenceEntry, *, previous_step_id: Optional[str]) -> None:
        session = self._store.session
        self._emitter.step_change(StepChangeEvent(
            session_id=session.session_id,
            index=session.effective_step_index,
            step_id=entry.step_id,
            step_type=entry.step_type,
            slot=entry.slot,
            previous_step_id=previous_step_id,
        ))
        if entry.step.is_transform:
            await self._coordinator.enter(entry)

    def _finish(self) -> None:
        session = self._store.session
        self._store.set_state(DispatcherState.COMPLETED)
        logger.info("Session %s completed with %d responses",
                    session.session_id, len(session.data))
        self._emitter.complete(CompleteEvent(
            session_id=session.session_id,
            data=session.values(),
        ))

    async def _complete_from_transform(self, step_id: str, result_ref: Any) -> None:
        await self.complete(step_id, result_ref, from_transform=True)
