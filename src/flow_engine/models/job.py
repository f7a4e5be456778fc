"""Transform job models — the contract with the external job runner.

The engine hands a ``TransformJobRequest`` to ``JobRunner.submit`` and
receives a ``JobHandle``.  Status reports arrive as ``JobStatusUpdate``
objects through the subscription callback.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from flow_engine.models.enums import TransformStatus


class JobErrorInfo(BaseModel):
    """Opaque job failure details surfaced to the host.

    ``code`` values other than ``CANCELLED`` and ``SUBMIT_FAILED`` come from
    the job runner (e.g. ``TIMEOUT``).  ``retryable`` is advisory: the engine
    never retries on its own.
    """

    code: str
    message: str = ""
    retryable: bool = True
    step: Optional[str] = None
    details: Optional[dict[str, Any]] = None


class JobProgress(BaseModel):
    current_step: Optional[str] = None
    percentage: Optional[float] = None
    message: Optional[str] = None


class JobHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str


class JobStatusUpdate(BaseModel):
    """One status report from the job runner.

    A ``processing`` report that only carries ``progress`` updates the
    progress without changing the status.
    """

    status: TransformStatus
    result_ref: Optional[str] = None
    error: Optional[JobErrorInfo] = None
    progress: Optional[JobProgress] = None


class TransformJobRequest(BaseModel):
    """Input handed to the job runner.

    Built once when the step is entered and reused unchanged on retry,
    apart from ``attempt``.
    """

    session_id: str
    experience_id: str
    step_id: str
    prompt: str
    source_ref: Optional[str] = None
    # Snapshot of every value collected before the step was entered
    inputs: dict[str, Any] = Field(default_factory=dict)
    missing_variables: list[str] = Field(default_factory=list)
    config: dict[str, Any] = Field(default_factory=dict)
    attempt: int = 1
