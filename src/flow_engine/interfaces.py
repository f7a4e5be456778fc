"""Abstract interfaces for the engine's external collaborators.

These ABCs define the contract that host implementations must fulfil.
The SDK ships a YAML-backed catalog (:class:`flow_engine.catalog.FlowCatalog`)
that implements both configuration providers; job runners live with the host
(see ``flow_server.job_runner``).

Typical integration flow::

    catalog = FlowCatalog()
    catalog.load()
    engine = FlowEngine(catalog, extras_provider=catalog, runner=MyJobRunner())

    flow = await engine.start(FlowConfig(experience_id="scenario-photo"))
    await flow.complete("info", None)
    await flow.complete("capture", "s3://bucket/capture.jpg")
    # the runner reports completion -> the engine advances to "reward"
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional

from flow_engine.models.events import (
    CompleteEvent,
    DataUpdateEvent,
    ErrorEvent,
    StartEvent,
    StepChangeEvent,
)
from flow_engine.models.experience import Experience, ExtrasConfig
from flow_engine.models.job import JobHandle, JobStatusUpdate, TransformJobRequest

# Callback passed to JobRunner.subscribe.  May be invoked from any thread.
StatusCallback = Callable[[JobStatusUpdate], None]


class ExperienceProvider(ABC):
    """Read-only source of experience definitions."""

    @abstractmethod
    def get_experience(self, experience_id: str) -> Optional[Experience]:
        """Return the experience, or ``None`` if it does not exist."""
        ...


class ExtrasProvider(ABC):
    """Read-only source of per-event extras configuration."""

    @abstractmethod
    def get_extras_config(self, event_id: str) -> ExtrasConfig:
        """Return the slot configuration for *event_id*.

        Unknown events return an empty ``ExtrasConfig``.
        """
        ...


class JobRunner(ABC):
    """Interface for the external service that executes transform jobs.

    The engine never blocks on the runner beyond ``submit`` returning a
    handle.  Status reports are delivered through the callback registered
    with :meth:`subscribe`; the runner must eventually report a terminal
    status (``complete`` or ``error``) unless the job is cancelled.
    """

    @abstractmethod
    async def submit(self, request: TransformJobRequest) -> JobHandle:
        """Submit a job and return its handle once acknowledged.

        Raising here is treated as a failed submission
        (``errorInfo.code == "SUBMIT_FAILED"``).
        """
        ...

    @abstractmethod
    async def subscribe(self, handle: JobHandle, on_status: StatusCallback) -> None:
        """Register *on_status* for status reports on *handle*.

        Must return promptly; reports are delivered later.
        """
        ...

    @abstractmethod
    async def cancel(self, handle: JobHandle) -> None:
        """Best-effort cancellation.  The engine does not await confirmation."""
        ...


class FlowListener:
    """Base class for host event subscribers.

    Override only the callbacks you need; the defaults do nothing.  Callbacks
    run synchronously inside the engine operation that triggered them, so
    they must not call back into the session's async operations.
    """

    def on_start(self, event: StartEvent) -> None:
        pass

    def on_step_change(self, event: StepChangeEvent) -> None:
        pass

    def on_data_update(self, event: DataUpdateEvent) -> None:
        pass

    def on_complete(self, event: CompleteEvent) -> None:
        pass

    def on_error(self, event: ErrorEvent) -> None:
        pass
