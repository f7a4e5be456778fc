"""TransformJobCoordinator — owns the async lifecycle of ai-transform steps.

On entry to an ai-transform step the coordinator moves the transform state
to ``pending``, submits a job, and moves to ``processing`` once the runner
acknowledges it.  Status reports from the runner are posted onto the
session's :class:`OperationQueue` so they never interleave with a host
call.  A successful job records its result and advances the session; a
failed job stops and waits for a host-triggered :meth:`retry`.

Non-interactive (preview) sessions never contact the runner: the status
walks ``pending -> processing -> complete`` with a mock result reference.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Optional

from flow_engine.constants import (
    CANCELLED_ERROR_CODE,
    IN_FLIGHT_STATUSES,
    MOCK_RESULT_PREFIX,
    PROMPT_ERROR_CODE,
    SUBMIT_FAILED_ERROR_CODE,
)
from flow_engine.emitter import EventEmitter
from flow_engine.errors import ConcurrentJobError, InvalidStateError
from flow_engine.interfaces import JobRunner
from flow_engine.models.enums import StepType, TransformStatus
from flow_engine.models.events import ErrorEvent
from flow_engine.models.job import (
    JobErrorInfo,
    JobHandle,
    JobStatusUpdate,
    TransformJobRequest,
)
from flow_engine.models.session import SequenceEntry
from flow_engine.operations import OperationQueue
from flow_engine.prompt import PromptResolver
from flow_engine.store import SessionStore

logger = logging.getLogger(__name__)

# Signature of the dispatcher hook used to self-advance after a result
CompleteStep = Callable[[str, Any], Awaitable[None]]


class TransformJobCoordinator:
    """Runs at most one transform job at a time for one session.

    Args:
        store: the session store
        emitter: event emitter for job ``on_error`` events
        queue: the session's operation queue (status callbacks are posted here)
        runner: external job runner; may be ``None`` for preview-only use
        prompts: renderer for step prompt templates
        step_names: step id -> step name, so prompts can use either
    """

    def __init__(
        self,
        store: SessionStore,
        emitter: EventEmitter,
        queue: OperationQueue,
        runner: Optional[JobRunner] = None,
        prompts: Optional[PromptResolver] = None,
        step_names: Optional[dict[str, str]] = None,
    ) -> None:
        self._store = store
        self._emitter = emitter
        self._queue = queue
        self._runner = runner
        self._prompts = prompts or PromptResolver()
        self._step_names = dict(step_names or {})
        self._complete_step: Optional[CompleteStep] = None
        # Request per step id, reused unchanged on retry
        self._requests: dict[str, TransformJobRequest] = {}
        self._active: Optional[JobHandle] = None
        self._tasks: set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind(self, complete_step: CompleteStep) -> None:
        """Register the dispatcher hook called when a job completes."""
        self._complete_step = complete_step

    @property
    def in_flight(self) -> bool:
        return self._store.session.transform.status in IN_FLIGHT_STATUSES

    # ==================================================================
    # Step entry
    # ==================================================================

    async def enter(self, entry: SequenceEntry) -> None:
        """Start the transform for *entry* (an ai-transform step).

        A step that already has a recorded result is not re-triggered.  A
        prompt that fails to render leaves the transform in ``error`` with a
        non-retryable ``PROMPT_ERROR``; nothing is sent to the runner.

        Raises:
            ConcurrentJobError: a previous job is still in flight
        """
        session = self._store.session
        if not session.is_running:
            return
        step = entry.step
        if self.in_flight:
            raise ConcurrentJobError(
                f"Cannot start a job for {step.id!r}: job for "
                f"{session.transform.step_id!r} is still {session.transform.status.value}"
            )
        if step.id in session.data:
            logger.debug("Session %s: %s already has a result; not resubmitting",
                         session.session_id, step.id)
            return

        self._loop = asyncio.get_running_loop()
        self._store.reset_transform(step.id)
        self._store.set_transform_status(TransformStatus.PENDING)
        try:
            request = self._build_request(entry)
        except ValueError as exc:
            logger.warning("Session %s: prompt for %s failed to render: %s",
                           session.session_id, step.id, exc)
            info = JobErrorInfo(
                code=PROMPT_ERROR_CODE,
                message=str(exc),
                retryable=False,
                step=step.id,
            )
            self._store.set_transform_status(TransformStatus.ERROR, error_info=info)
            self._emit_job_error(step.id, info)
            return
        self._requests[step.id] = request
        await self._run(step.id, request)

    async def resume(self, entry: SequenceEntry) -> None:
        """Pick up the transform for *entry* in a session restored from a snapshot.

        The job handle of a job that was in flight is not part of the
        snapshot, so that job is submitted again.  A failed job keeps its
        error and can be retried; a finished one advances the session.
        """
        session = self._store.session
        step = entry.step
        state = session.transform
        if step.id in session.data or state.step_id != step.id:
            await self.enter(entry)
            return

        if state.status == TransformStatus.COMPLETE:
            logger.info("Session %s: restored transform for %s already finished",
                        session.session_id, step.id)
            await self._finish(step.id, state.result_ref)
        elif state.status == TransformStatus.ERROR:
            self._loop = asyncio.get_running_loop()
            if state.error_info is None or state.error_info.code != PROMPT_ERROR_CODE:
                self._requests[step.id] = self._build_request(entry)
        elif state.status in IN_FLIGHT_STATUSES:
            logger.info("Session %s: resubmitting %s job %s lost with the previous process",
                        session.session_id, step.id, state.job_id)
            # Forget the lost job so the reset below is allowed
            self._store.set_transform_status(
                TransformStatus.ERROR,
                error_info=JobErrorInfo(
                    code=CANCELLED_ERROR_CODE,
                    message="Job lost on restore",
                    step=step.id,
                ),
            )
            await self.enter(entry)
        else:
            await self.enter(entry)

    async def retry(self) -> None:
        """Resubmit the failed job for the current step with the same input.

        Raises:
            InvalidStateError: the transform is not in ``error``, belongs
                to a step other than the active one, or its prompt never rendered
        """
        session = self._store.session
        state = session.transform
        if state.status != TransformStatus.ERROR:
            raise InvalidStateError(
                f"Nothing to retry: transform status is {state.status.value}"
            )
        if state.step_id == session.current_step_id and state.step_id not in self._requests:
            raise InvalidStateError(
                f"Nothing to retry for {state.step_id!r}: its job request could not be built"
            )
        if state.step_id != session.current_step_id:
            raise InvalidStateError(
                f"Failed job belongs to {state.step_id!r}, not the active step "
                f"{session.current_step_id!r}"
            )
        logger.info("Session %s: retrying transform for %s (attempt %d)",
                    session.session_id, state.step_id, state.attempts + 1)
        self._store.set_transform_status(TransformStatus.PENDING)
        await self._run(state.step_id, self._requests[state.step_id])

    # ==================================================================
    # Cancellation
    # ==================================================================

    def cancel(self, reason: str, *, emit: bool = True) -> bool:
        """Stop tracking the in-flight job and mark the transform cancelled.

        Cancellation at the runner is best-effort and not awaited.  Returns
        False when no job was in flight.
        """
        session = self._store.session
        state = session.transform
        if state.status not in IN_FLIGHT_STATUSES:
            return False
        info = JobErrorInfo(
            code=CANCELLED_ERROR_CODE,
            message=reason,
            retryable=True,
            step=state.step_id,
            details={"cancelled": True},
        )
        self._store.set_transform_status(TransformStatus.ERROR, error_info=info)
        handle, self._active = self._active, None
        if handle is not None:
            self._schedule_cancel(handle)
        logger.info("Session %s: transform for %s cancelled (%s)",
                    session.session_id, state.step_id, reason)
        if emit:
            self._emitter.error(ErrorEvent(
                session_id=session.session_id,
                kind="job",
                message=reason,
                step_id=state.step_id,
                error_info=info,
                cancelled=True,
            ))
        return True

    @property
    def idle(self) -> bool:
        return not self._tasks

    async def join(self) -> None:
        """Wait for background cancellation tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _schedule_cancel(self, handle: JobHandle) -> None:
        if self._runner is None or self._loop is None:
            return
        task = self._loop.create_task(self._cancel_job(handle))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _cancel_job(self, handle: JobHandle) -> None:
        try:
            await self._runner.cancel(handle)
        except Exception:
            logger.warning("Best-effort cancel of job %s failed", handle.job_id, exc_info=True)

    # ==================================================================
    # Submission
    # ==================================================================

    async def _run(self, step_id: str, request: TransformJobRequest) -> None:
        session = self._store.session
        if not session.interactive:
            ref = f"{MOCK_RESULT_PREFIX}/{session.session_id}/{step_id}"
            self._store.set_transform_status(TransformStatus.PROCESSING)
            self._store.set_transform_status(TransformStatus.COMPLETE, result_ref=ref)
            logger.info("Session %s: preview transform for %s -> %s",
                        session.session_id, step_id, ref)
            await self._finish(step_id, ref)
            return

        if not request.prompt:
            await self._passthrough(step_id, request)
            return

        attempt = session.transform.attempts
        request = request.model_copy(update={"attempt": attempt})
        try:
            handle = await self._runner.submit(request)
        except Exception as exc:
            logger.warning("Session %s: job submission for %s failed: %s",
                           session.session_id, step_id, exc)
            self._fail_submission(step_id, attempt, str(exc))
            return

        state = session.transform
        if (
            not session.is_running
            or state.status != TransformStatus.PENDING
            or state.step_id != step_id
            or state.attempts != attempt
        ):
            # Cancelled or superseded while the submission was in progress
            logger.info("Session %s: job %s acknowledged after cancellation",
                        session.session_id, handle.job_id)
            self._schedule_cancel(handle)
            return

        self._store.set_transform_status(TransformStatus.PROCESSING, job_id=handle.job_id)
        self._active = handle
        logger.info("Session %s: job %s submitted for %s (attempt %d)",
                    session.session_id, handle.job_id, step_id, attempt)
        try:
            await self._runner.subscribe(handle, self._make_callback(handle))
        except Exception as exc:
            logger.warning("Session %s: subscribing to job %s failed: %s",
                           session.session_id, handle.job_id, exc)
            self._active = None
            self._schedule_cancel(handle)
            self._fail_submission(step_id, attempt, str(exc))

    async def _passthrough(self, step_id: str, request: TransformJobRequest) -> None:
        """Copy the source media to the result without contacting the runner."""
        session = self._store.session
        if request.source_ref is None:
            info = JobErrorInfo(
                code="MISSING_SOURCE",
                message="Passthrough transform has no source media",
                retryable=False,
                step=step_id,
            )
            self._store.set_transform_status(TransformStatus.ERROR, error_info=info)
            self._emit_job_error(step_id, info)
            return
        self._store.set_transform_status(TransformStatus.PROCESSING)
        self._store.set_transform_status(TransformStatus.COMPLETE, result_ref=request.source_ref)
        logger.info("Session %s: passthrough transform for %s", session.session_id, step_id)
        await self._finish(step_id, request.source_ref)

    def _fail_submission(self, step_id: str, attempt: int, message: str) -> None:
        state = self._store.session.transform
        if state.status not in IN_FLIGHT_STATUSES or state.attempts != attempt:
            return
        info = JobErrorInfo(
            code=SUBMIT_FAILED_ERROR_CODE,
            message=message,
            retryable=True,
            step=step_id,
        )
        self._store.set_transform_status(TransformStatus.ERROR, error_info=info)
        self._emit_job_error(step_id, info)

    # ==================================================================
    # Status reports
    # ==================================================================

    def _make_callback(self, handle: JobHandle):
        loop = self._loop

        def on_status(update: JobStatusUpdate) -> None:
            # Runners may report from any thread
            loop.call_soon_threadsafe(
                self._queue.post, functools.partial(self._apply_status, handle, update)
            )

        return on_status

    async def _apply_status(self, handle: JobHandle, update: JobStatusUpdate) -> None:
        session = self._store.session
        state = session.transform
        if state.job_id != handle.job_id or state.status not in IN_FLIGHT_STATUSES:
            logger.warning("Session %s: ignoring stale %s report for job %s",
                           session.session_id, update.status.value, handle.job_id)
            return

        if update.status in (TransformStatus.PENDING, TransformStatus.PROCESSING):
            if update.progress is not None:
                self._store.set_transform_progress(update.progress)
            return

        step_id = state.step_id
        self._active = None
        if update.status == TransformStatus.COMPLETE:
            self._store.set_transform_status(TransformStatus.COMPLETE, result_ref=update.result_ref)
            logger.info("Session %s: job %s complete -> %s",
                        session.session_id, handle.job_id, update.result_ref)
            await self._finish(step_id, update.result_ref)
            return

        info = update.error or JobErrorInfo(code="UNKNOWN", message="Job failed")
        if info.step is None:
            info = info.model_copy(update={"step": step_id})
        self._store.set_transform_status(TransformStatus.ERROR, error_info=info)
        logger.info("Session %s: job %s failed with %s",
                    session.session_id, handle.job_id, info.code)
        self._emit_job_error(step_id, info)

    async def _finish(self, step_id: str, result_ref: Optional[str]) -> None:
        session = self._store.session
        if not session.is_running or session.current_step_id != step_id:
            logger.info("Session %s: transform for %s finished off-step; not advancing",
                        session.session_id, step_id)
            return
        await self._complete_step(step_id, result_ref)

    def _emit_job_error(self, step_id: str, info: JobErrorInfo) -> None:
        self._emitter.error(ErrorEvent(
            session_id=self._store.session.session_id,
            kind="job",
            message=info.message or info.code,
            step_id=step_id,
            error_info=info,
        ))

    # ==================================================================
    # Request building
    # ==================================================================

    def _build_request(self, entry: SequenceEntry) -> TransformJobRequest:
        session = self._store.session
        step = entry.step
        config = step.config
        steps: dict[str, Any] = {}
        # Names first so a step id always wins over a clashing name
        for resp in session.data.values():
            name = self._step_names.get(resp.step_id)
            if name:
                steps[name] = resp.value
        steps.update(session.values())
        rendered = self._prompts.render(
            config.prompt,
            steps=steps,
            session={
                "session_id": session.session_id,
                "experience_id": session.experience_id,
                "mode": session.mode.value,
            },
        )
        if rendered.missing:
            logger.warning("Session %s: prompt for %s has unresolved references %s",
                           session.session_id, step.id, rendered.missing)
        return TransformJobRequest(
            session_id=session.session_id,
            experience_id=entry.experience_id,
            step_id=step.id,
            prompt=rendered.text,
            source_ref=self._source_ref(config.source_step_id),
            inputs=session.values(),
            missing_variables=rendered.missing,
            config=config.model_dump(exclude={"prompt"}),
        )

    def _source_ref(self, source_step_id: Optional[str]) -> Optional[str]:
        data = self._store.session.data
        if source_step_id is not None:
            resp = data.get(source_step_id)
        else:
            captures = [r for r in data.values() if r.step_type == StepType.CAPTURE]
            resp = captures[-1] if captures else None
        if resp is None or resp.value is None:
            return None
        return str(resp.value)
