"""String enums shared by the engine models.

All enums subclass ``str`` so that they serialise as their plain value in
JSON responses and JSONB snapshots.
"""

import enum


class StepType(str, enum.Enum):
    """Kinds of step an experience can contain."""

    INFO = "info"
    CAPTURE = "capture"
    SHORT_TEXT = "short_text"
    LONG_TEXT = "long_text"
    MULTIPLE_CHOICE = "multiple_choice"
    YES_NO = "yes_no"
    OPINION_SCALE = "opinion_scale"
    EMAIL = "email"
    AI_TRANSFORM = "ai-transform"
    PROCESSING = "processing"
    REWARD = "reward"


class ExtraSlot(str, enum.Enum):
    """Named insertion points for optional sub-flows."""

    PRE_ENTRY_GATE = "preEntryGate"
    PRE_REWARD = "preReward"


class Frequency(str, enum.Enum):
    """How often a slot's sub-flow runs within one session."""

    ALWAYS = "always"
    ONCE_PER_SESSION = "once_per_session"


class ExperienceStatus(str, enum.Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class TransformStatus(str, enum.Enum):
    """Lifecycle of the transform job attached to an ai-transform step."""

    IDLE = "idle"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class DispatcherState(str, enum.Enum):
    """Session-level state: running until completed or aborted."""

    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class SessionMode(str, enum.Enum):
    """``preview`` sessions never trigger external side effects."""

    GUEST = "guest"
    PREVIEW = "preview"
