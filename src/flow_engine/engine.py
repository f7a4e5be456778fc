"""FlowEngine — builds and starts flow sessions.

The engine itself holds only read-only collaborators (configuration
providers, the job runner, the prompt renderer).  Every call to
:meth:`FlowEngine.start` builds a fresh :class:`FlowSession` that owns its
own store, dispatcher, job coordinator and event emitter, so preview
sessions and live guest sessions never share mutable state.

Usage::

    engine = FlowEngine(catalog, extras_provider=catalog, runner=runner)
    flow = await engine.start(
        FlowConfig(experience_id="scenario-photo", event_id="launch-party"),
        listeners=[MyListener()],
    )
    step = flow.current()
    await flow.complete(step.id, None)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, Optional

from flow_engine.coordinator import TransformJobCoordinator
from flow_engine.dispatcher import StepDispatcher
from flow_engine.emitter import EventEmitter
from flow_engine.errors import ExperienceNotFoundError
from flow_engine.extras import ExtrasPolicyEvaluator
from flow_engine.interfaces import (
    ExperienceProvider,
    ExtrasProvider,
    FlowListener,
    JobRunner,
)
from flow_engine.models.enums import DispatcherState
from flow_engine.models.experience import ExtrasConfig, FlowDefinition
from flow_engine.models.session import (
    FlowConfig,
    SequenceEntry,
    Session,
    SessionInfo,
    StepView,
)
from flow_engine.models.step import Step
from flow_engine.operations import OperationQueue
from flow_engine.prompt import PromptResolver
from flow_engine.resolver import SequenceResolver
from flow_engine.store import SessionStore

logger = logging.getLogger(__name__)


class FlowEngine:
    """Factory for flow sessions.

    Args:
        experiences: source of experience definitions
        extras_provider: source of per-event extras; without one, sessions
            run with no extras
        runner: external job runner for interactive ai-transform steps
        prompts: prompt renderer shared by all sessions
    """

    def __init__(
        self,
        experiences: ExperienceProvider,
        extras_provider: Optional[ExtrasProvider] = None,
        runner: Optional[JobRunner] = None,
        prompts: Optional[PromptResolver] = None,
    ) -> None:
        self._experiences = experiences
        self._extras_provider = extras_provider
        self._runner = runner
        self._prompts = prompts or PromptResolver()
        self._evaluator = ExtrasPolicyEvaluator(experiences)

    def build_definition(self, config: FlowConfig) -> FlowDefinition:
        """Resolve the experience, extras and sub-flows for *config*.

        Raises:
            ExperienceNotFoundError: the experience is missing or deleted
        """
        experience = self._experiences.get_experience(config.experience_id)
        if experience is None or not experience.is_active:
            raise ExperienceNotFoundError(config.experience_id)

        extras = ExtrasConfig()
        if config.event_id is not None and self._extras_provider is not None:
            extras = self._extras_provider.get_extras_config(config.event_id)
        return FlowDefinition(
            experience=experience,
            extras=extras,
            sub_flows=self._evaluator.resolve_sub_flows(extras, experience),
        )

    def _check_runner(self, config: FlowConfig, definition: FlowDefinition) -> None:
        if config.interactive and self._runner is None and _needs_runner(definition):
            raise ValueError(
                f"Experience {config.experience_id!r} has ai-transform steps but "
                "no job runner is configured"
            )

    async def start(
        self,
        config: FlowConfig,
        listeners: Iterable[FlowListener] = (),
    ) -> "FlowSession":
        """Create a session, emit ``on_start`` and enter the first step.

        Raises:
            ExperienceNotFoundError: the experience is missing or deleted
            ValueError: an interactive session needs a job runner but none
                is configured
        """
        definition = self.build_definition(config)
        self._check_runner(config, definition)
        flow = FlowSession(
            definition,
            config,
            runner=self._runner,
            prompts=self._prompts,
            listeners=listeners,
        )
        logger.info(
            "Starting session %s: experience=%s event=%s mode=%s",
            flow.session_id, config.experience_id, config.event_id, flow.session.mode.value,
        )
        await flow.begin()
        return flow

    async def resume(
        self,
        snapshot: Session,
        config: Optional[FlowConfig] = None,
        listeners: Iterable[FlowListener] = (),
    ) -> "FlowSession":
        """Rebuild a session from a stored snapshot and re-enter its active step.

        The snapshot does not carry the navigation policy, so *config*
        supplies ``allow_back`` / ``allow_skip``; when omitted both are off.

        Raises:
            ExperienceNotFoundError: the experience is missing or deleted
            InvalidStateError: the snapshot no longer fits the experience
            ValueError: *config* names a different experience, event or mode
        """
        if config is None:
            config = FlowConfig(
                experience_id=snapshot.experience_id,
                event_id=snapshot.event_id,
                interactive=snapshot.interactive,
            )
        identity = (config.experience_id, config.event_id, config.interactive)
        if identity != (snapshot.experience_id, snapshot.event_id, snapshot.interactive):
            raise ValueError(
                f"Config for {config.experience_id!r} does not match snapshot "
                f"{snapshot.session_id}"
            )
        config = config.model_copy(update={"session_id": snapshot.session_id})
        definition = self.build_definition(config)
        self._check_runner(config, definition)
        flow = FlowSession(
            definition,
            config,
            runner=self._runner,
            prompts=self._prompts,
            listeners=listeners,
            session=snapshot.model_copy(deep=True),
        )
        logger.info(
            "Resuming session %s: experience=%s state=%s index=%d",
            flow.session_id, config.experience_id, snapshot.state.value,
            snapshot.effective_step_index,
        )
        await flow.restore()
        return flow


def _needs_runner(definition: FlowDefinition) -> bool:
    experiences = [definition.experience, *definition.sub_flows.values()]
    return any(
        step.is_transform and step.config.prompt.strip()
        for exp in experiences
        for step in exp.steps
    )


class FlowSession:
    """Handle for one running session.

    Mutating calls are serialized through the session's operation queue.
    ``abort`` is synchronous and always accepted immediately.
    """

    def __init__(
        self,
        definition: FlowDefinition,
        config: FlowConfig,
        *,
        runner: Optional[JobRunner] = None,
        prompts: Optional[PromptResolver] = None,
        listeners: Iterable[FlowListener] = (),
        session: Optional[Session] = None,
    ) -> None:
        self._definition = definition
        if session is None:
            self._store = SessionStore.create(config)
        else:
            self._store = SessionStore(session, config)
        self._emitter = EventEmitter(list(listeners))
        self._queue = OperationQueue()
        step_names = {
            step.id: step.name
            for exp in [definition.experience, *definition.sub_flows.values()]
            for step in exp.steps
            if step.name
        }
        self._coordinator = TransformJobCoordinator(
            self._store,
            self._emitter,
            self._queue,
            runner=runner,
            prompts=prompts,
            step_names=step_names,
        )
        self._dispatcher = StepDispatcher(
            self._store,
            SequenceResolver(definition),
            self._emitter,
            self._coordinator,
        )

    # ==================================================================
    # Queries
    # ==================================================================

    @property
    def session_id(self) -> str:
        return self._store.session.session_id

    @property
    def session(self) -> Session:
        """The live session record.  Treat as read-only."""
        return self._store.session

    @property
    def definition(self) -> FlowDefinition:
        return self._definition

    @property
    def state(self) -> DispatcherState:
        return self._store.session.state

    @property
    def sequence(self) -> list[SequenceEntry]:
        return self._dispatcher.sequence

    def current(self) -> Step:
        """Return the active step.

        Raises:
            SessionTerminatedError: the session is completed or aborted
        """
        return self._dispatcher.current().step

    def view(self) -> StepView:
        return self._dispatcher.view()

    def snapshot(self) -> Session:
        """Deep copy of the session record, safe to persist or serialise."""
        return self._store.session.model_copy(deep=True)

    def info(self) -> SessionInfo:
        session = self._store.session
        return SessionInfo(
            session_id=session.session_id,
            experience_id=session.experience_id,
            event_id=session.event_id,
            mode=session.mode,
            state=session.state,
            effective_step_index=session.effective_step_index,
            sequence_length=len(self._dispatcher.sequence),
            current_step_id=session.current_step_id,
            transform_status=session.transform.status,
            extras_seen=sorted(session.extras_seen, key=lambda s: s.value),
            created_at=session.created_at,
            updated_at=session.updated_at,
            completed_at=session.completed_at,
        )

    def subscribe(self, listener: FlowListener) -> Callable[[], None]:
        """Add an event listener; returns a function that removes it."""
        return self._emitter.subscribe(listener)

    # ==================================================================
    # Operations
    # ==================================================================

    async def begin(self) -> None:
        await self._queue.run(self._dispatcher.begin)

    async def restore(self) -> None:
        await self._queue.run(self._dispatcher.restore)

    async def complete(self, step_id: str, value: Any = None) -> None:
        await self._queue.run(lambda: self._dispatcher.complete(step_id, value))

    async def back(self, *, retake: bool = False) -> None:
        await self._queue.run(lambda: self._dispatcher.back(retake=retake))

    async def skip(self) -> None:
        await self._queue.run(self._dispatcher.skip)

    async def retry(self) -> None:
        """Resubmit the failed transform job for the active step."""

        async def op() -> None:
            self._dispatcher.current()
            await self._coordinator.retry()

        await self._queue.run(op)

    def abort(self, reason: str = "Session aborted by host") -> bool:
        """Abort the session.  Idempotent; returns True on the first call."""
        return self._dispatcher.abort(reason)

    async def wait_idle(self) -> None:
        """Wait until queued job reports and cancellations have been processed."""
        await asyncio.sleep(0)
        while not (self._queue.idle and self._coordinator.idle):
            await self._queue.join()
            await self._coordinator.join()
            await asyncio.sleep(0)
