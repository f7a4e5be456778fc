"""flow_engine — Flow execution engine SDK.

Public API:
    FlowEngine        — builds and starts sessions from configuration providers
    FlowSession       — handle for one running session (complete/back/skip/retry/abort)
    FlowCatalog       — loads experiences and events from YAML
    FlowConfig        — host options for a session (interactive, allow_skip, allow_back)
    FlowListener      — base class for event subscribers

Collaborator interfaces:
    ExperienceProvider — source of experience definitions
    ExtrasProvider     — source of per-event extras configuration
    JobRunner          — external service that executes ai-transform jobs

Errors:
    FlowError and its subclasses NavigationError, InvalidStateError,
    InvalidTransitionError, ConcurrentJobError, SessionTerminatedError,
    ExperienceNotFoundError
"""

from flow_engine.catalog import FlowCatalog
from flow_engine.engine import FlowEngine, FlowSession
from flow_engine.errors import (
    ConcurrentJobError,
    ExperienceNotFoundError,
    FlowError,
    InvalidStateError,
    InvalidTransitionError,
    NavigationError,
    SessionTerminatedError,
)
from flow_engine.interfaces import (
    ExperienceProvider,
    ExtrasProvider,
    FlowListener,
    JobRunner,
)
from flow_engine.models import (
    EventConfig,
    Experience,
    ExtrasConfig,
    ExtraSlot,
    ExtraSlotConfig,
    FlowConfig,
    FlowDefinition,
    JobErrorInfo,
    JobHandle,
    JobStatusUpdate,
    Session,
    SessionInfo,
    StepView,
    TransformJobRequest,
    TransformStatus,
)
from flow_engine.prompt import PromptResolver

__all__ = [
    # Engine & catalog
    "FlowEngine",
    "FlowSession",
    "FlowCatalog",
    "PromptResolver",
    # Interfaces
    "ExperienceProvider",
    "ExtrasProvider",
    "FlowListener",
    "JobRunner",
    # Models
    "EventConfig",
    "Experience",
    "ExtrasConfig",
    "ExtraSlot",
    "ExtraSlotConfig",
    "FlowConfig",
    "FlowDefinition",
    "JobErrorInfo",
    "JobHandle",
    "JobStatusUpdate",
    "Session",
    "SessionInfo",
    "StepView",
    "TransformJobRequest",
    "TransformStatus",
    # Errors
    "FlowError",
    "NavigationError",
    "InvalidStateError",
    "InvalidTransitionError",
    "ConcurrentJobError",
    "SessionTerminatedError",
    "ExperienceNotFoundError",
]
