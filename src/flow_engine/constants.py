"""Flow engine constants shared across the SDK.

These values are referenced by the store, resolver, dispatcher and job
coordinator.  The mock result prefix can be overridden via an environment
variable so that preview deployments can point at their own placeholder
media.
"""

import os

from flow_engine.models.enums import ExtraSlot, StepType, TransformStatus

# Prefix for the synthetic result reference written by non-interactive
# (preview) sessions instead of running a real transform job.
# Overridable via FLOW_MOCK_RESULT_PREFIX env var.
MOCK_RESULT_PREFIX = os.getenv("FLOW_MOCK_RESULT_PREFIX", "preview://mock-result")

# errorInfo codes produced by the engine itself.  Everything else comes
# from the external job runner.
CANCELLED_ERROR_CODE = "CANCELLED"
SUBMIT_FAILED_ERROR_CODE = "SUBMIT_FAILED"
PROMPT_ERROR_CODE = "PROMPT_ERROR"

# Extra slots in journey order.
SLOT_ORDER: list[ExtraSlot] = [ExtraSlot.PRE_ENTRY_GATE, ExtraSlot.PRE_REWARD]

# The step kind that ends an experience.
TERMINAL_STEP_TYPE = StepType.REWARD

# A job in one of these statuses is "in flight"; at most one per session.
IN_FLIGHT_STATUSES: frozenset[TransformStatus] = frozenset(
    {TransformStatus.PENDING, TransformStatus.PROCESSING}
)
TERMINAL_TRANSFORM_STATUSES: frozenset[TransformStatus] = frozenset(
    {TransformStatus.COMPLETE, TransformStatus.ERROR}
)

# Allowed transform status edges (current -> set of targets).
# pending -> error covers submission failures and cancellation before the
# runner acknowledged the job.
TRANSFORM_TRANSITIONS: dict[TransformStatus, frozenset[TransformStatus]] = {
    TransformStatus.IDLE: frozenset({TransformStatus.PENDING}),
    TransformStatus.PENDING: frozenset(
        {TransformStatus.PROCESSING, TransformStatus.ERROR}
    ),
    TransformStatus.PROCESSING: frozenset(
        {TransformStatus.COMPLETE, TransformStatus.ERROR}
    ),
    TransformStatus.COMPLETE: frozenset(),
    TransformStatus.ERROR: frozenset({TransformStatus.PENDING}),
}
