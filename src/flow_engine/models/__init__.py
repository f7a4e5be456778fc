"""Public model re-exports for flow_engine.

Consumers should import from ``flow_engine.models`` rather than reaching
into sub-modules directly.
"""

# --- Enums ---
from flow_engine.models.enums import (
    DispatcherState,
    ExperienceStatus,
    ExtraSlot,
    Frequency,
    SessionMode,
    StepType,
    TransformStatus,
)

# --- Steps ---
from flow_engine.models.step import (
    AiTransformConfig,
    AiTransformStep,
    BaseStep,
    CaptureStep,
    ChoiceOption,
    EmailStep,
    InfoStep,
    LongTextStep,
    MultipleChoiceStep,
    OpinionScaleConfig,
    OpinionScaleStep,
    ProcessingStep,
    RewardStep,
    ShortTextStep,
    Step,
    YesNoStep,
    step_mapper,
)

# --- Experiences / extras ---
from flow_engine.models.experience import (
    EventConfig,
    Experience,
    ExtraSlotConfig,
    ExtrasConfig,
    FlowDefinition,
)

# --- Jobs ---
from flow_engine.models.job import (
    JobErrorInfo,
    JobHandle,
    JobProgress,
    JobStatusUpdate,
    TransformJobRequest,
)

# --- Session ---
from flow_engine.models.session import (
    FlowConfig,
    SequenceEntry,
    Session,
    SessionInfo,
    StepResponse,
    StepView,
    TransformState,
)

# --- Events ---
from flow_engine.models.events import (
    CompleteEvent,
    DataUpdateEvent,
    ErrorEvent,
    FlowEvent,
    StartEvent,
    StepChangeEvent,
)

__all__ = [
    "DispatcherState",
    "ExperienceStatus",
    "ExtraSlot",
    "Frequency",
    "SessionMode",
    "StepType",
    "TransformStatus",
    "AiTransformConfig",
    "AiTransformStep",
    "BaseStep",
    "CaptureStep",
    "ChoiceOption",
    "EmailStep",
    "InfoStep",
    "LongTextStep",
    "MultipleChoiceStep",
    "OpinionScaleConfig",
    "OpinionScaleStep",
    "ProcessingStep",
    "RewardStep",
    "ShortTextStep",
    "Step",
    "YesNoStep",
    "step_mapper",
    "EventConfig",
    "Experience",
    "ExtraSlotConfig",
    "ExtrasConfig",
    "FlowDefinition",
    "JobErrorInfo",
    "JobHandle",
    "JobProgress",
    "JobStatusUpdate",
    "TransformJobRequest",
    "FlowConfig",
    "SequenceEntry",
    "Session",
    "SessionInfo",
    "StepResponse",
    "StepView",
    "TransformState",
    "CompleteEvent",
    "DataUpdateEvent",
    "ErrorEvent",
    "FlowEvent",
    "StartEvent",
    "StepChangeEvent",
]
