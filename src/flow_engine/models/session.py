"""Session and view models — the engine's mutable state and what hosts see.

``Session`` is owned by exactly one running flow and mutated only through
:class:`flow_engine.store.SessionStore`.  ``SessionInfo`` and ``StepView``
are read-only projections for API callers and persistence.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from flow_engine.models.enums import (
    DispatcherState,
    ExtraSlot,
    SessionMode,
    StepType,
    TransformStatus,
)
from flow_engine.models.job import JobErrorInfo, JobProgress
from flow_engine.models.step import Step


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepResponse(BaseModel):
    """Value recorded for one completed step."""

    step_id: str
    step_type: StepType
    value: Any = None
    answered_at: datetime = Field(default_factory=utcnow)


class TransformState(BaseModel):
    """Transform job state for the current (or last) ai-transform step."""

    status: TransformStatus = TransformStatus.IDLE
    result_ref: Optional[str] = None
    error_info: Optional[JobErrorInfo] = None
    step_id: Optional[str] = None
    job_id: Optional[str] = None
    # Incremented on every submission, including retries
    attempts: int = 0
    progress: Optional[JobProgress] = None


class Session(BaseModel):
    """The engine's sole mutable entity."""

    session_id: str
    experience_id: str
    event_id: Optional[str] = None
    interactive: bool = True
    state: DispatcherState = DispatcherState.RUNNING
    effective_step_index: int = 0
    current_step_id: Optional[str] = None
    # Ordered by completion time; overwrites move the entry to the end
    data: dict[str, StepResponse] = Field(default_factory=dict)
    transform: TransformState = Field(default_factory=TransformState)
    extras_seen: set[ExtraSlot] = Field(default_factory=set)
    # Frozen shouldRun decisions for slots whose insertion point was reached
    slot_decisions: dict[ExtraSlot, bool] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def mode(self) -> SessionMode:
        return SessionMode.GUEST if self.interactive else SessionMode.PREVIEW

    @property
    def is_running(self) -> bool:
        return self.state == DispatcherState.RUNNING

    def values(self) -> dict[str, Any]:
        """Flat ``{step_id: value}`` view of the collected data."""
        return {sid: resp.value for sid, resp in self.data.items()}


class FlowConfig(BaseModel):
    """Host-supplied options for starting a session.

    ``allow_skip`` is either a blanket boolean or the list of step kinds
    that may be skipped.
    """

    experience_id: str
    interactive: bool = True
    allow_skip: Union[bool, list[StepType]] = False
    allow_back: bool = False
    event_id: Optional[str] = None
    # Host-supplied id; generated when omitted
    session_id: Optional[str] = None

    def can_skip(self, step_type: str) -> bool:
        if isinstance(self.allow_skip, bool):
            return self.allow_skip
        return any(kind.value == step_type for kind in self.allow_skip)


class SequenceEntry(BaseModel):
    """One position in the effective sequence.

    ``slot`` is ``None`` for base steps and names the slot for steps that
    came from an injected sub-flow.
    """

    model_config = ConfigDict(frozen=True)

    step: Step
    experience_id: str
    slot: Optional[ExtraSlot] = None

    @property
    def step_id(self) -> str:
        return self.step.id

    @property
    def step_type(self) -> str:
        return self.step.type


class SessionInfo(BaseModel):
    """Public view of session state for API consumers."""

    session_id: str
    experience_id: str
    event_id: Optional[str] = None
    mode: SessionMode
    state: DispatcherState
    effective_step_index: int
    sequence_length: int
    current_step_id: Optional[str] = None
    transform_status: TransformStatus
    extras_seen: list[ExtraSlot]
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class StepView(BaseModel):
    """The active step as the host should render it.

    ``step`` is ``None`` once the session has completed or been aborted.
    """

    session_id: str
    state: DispatcherState
    index: int
    total: int
    step: Optional[Step] = None
    slot: Optional[ExtraSlot] = None
    # Value already recorded for this step (e.g. after navigating back)
    value: Any = None
    transform: TransformState
