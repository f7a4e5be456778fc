"""Engine error taxonomy.

Contract violations are raised synchronously to the calling host code.
Job failures are never raised: they surface as ``transform.status == error``
plus an ``on_error`` event.
"""

from __future__ import annotations


class FlowError(Exception):
    """Base class for all engine contract errors."""


class NavigationError(FlowError):
    """Back/skip/advance rejected by the session's navigation policy."""


class InvalidStateError(FlowError):
    """Operation not valid for the session's current position or status."""


class InvalidTransitionError(FlowError):
    """Illegal transform status transition."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Illegal transform transition: {current} -> {target}")


class ConcurrentJobError(FlowError):
    """A second transform job was requested while one is still in flight."""


class SessionTerminatedError(FlowError):
    """Operation attempted on a completed or aborted session."""


class ExperienceNotFoundError(FlowError):
    """The requested root experience does not exist or was deleted."""

    def __init__(self, experience_id: str) -> None:
        self.experience_id = experience_id
        super().__init__(f"Experience not found: {experience_id}")
