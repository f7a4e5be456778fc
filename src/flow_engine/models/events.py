"""Event payloads delivered to host listeners.

Events are emitted synchronously, in order, inside the operation that
caused them.  ``type`` lets hosts that buffer events dispatch on the kind.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from flow_engine.models.enums import ExtraSlot, SessionMode
from flow_engine.models.job import JobErrorInfo


class StartEvent(BaseModel):
    type: Literal["start"] = "start"
    session_id: str
    experience_id: str
    mode: SessionMode
    sequence: list[str]


class StepChangeEvent(BaseModel):
    type: Literal["step_change"] = "step_change"
    session_id: str
    index: int
    step_id: str
    step_type: str
    slot: Optional[ExtraSlot] = None
    previous_step_id: Optional[str] = None


class DataUpdateEvent(BaseModel):
    type: Literal["data_update"] = "data_update"
    session_id: str
    step_id: str
    value: Any = None


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    session_id: str
    data: dict[str, Any]


class ErrorEvent(BaseModel):
    """Job failure, rejected navigation, or abort.

    ``cancelled`` marks an abort that interrupted an in-flight job.
    """

    type: Literal["error"] = "error"
    session_id: str
    kind: Literal["job", "navigation", "abort"]
    message: str
    step_id: Optional[str] = None
    error_info: Optional[JobErrorInfo] = None
    cancelled: bool = False


FlowEvent = Annotated[
    Union[StartEvent, StepChangeEvent, DataUpdateEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]
