"""HttpJobRunner — job runner adapter that talks to a transform service over HTTP.

Wire protocol::

    POST {base}/jobs              body: TransformJobRequest  -> {"job_id": "..."}
    GET  {base}/jobs/{job_id}     -> {"status": "...", "result_ref": ..., "error": {...}, "progress": {...}}
    POST {base}/jobs/{job_id}/cancel

The service's status vocabulary is mapped onto the engine's
``pending | processing | complete | error``.  Subscriptions poll until a
terminal status, the job timeout, or too many consecutive transport
failures.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from flow_engine.interfaces import JobRunner, StatusCallback
from flow_engine.models.enums import TransformStatus
from flow_engine.models.job import (
    JobErrorInfo,
    JobHandle,
    JobProgress,
    JobStatusUpdate,
    TransformJobRequest,
)

logger = logging.getLogger(__name__)

# Service status -> engine status
_STATUS_MAP: dict[str, TransformStatus] = {
    "pending": TransformStatus.PENDING,
    "queued": TransformStatus.PENDING,
    "processing": TransformStatus.PROCESSING,
    "running": TransformStatus.PROCESSING,
    "complete": TransformStatus.COMPLETE,
    "completed": TransformStatus.COMPLETE,
    "succeeded": TransformStatus.COMPLETE,
    "error": TransformStatus.ERROR,
    "failed": TransformStatus.ERROR,
    "cancelled": TransformStatus.ERROR,
}

TIMEOUT_ERROR_CODE = "TIMEOUT"
UNREACHABLE_ERROR_CODE = "RUNNER_UNREACHABLE"


def parse_status(payload: dict[str, Any]) -> JobStatusUpdate:
    """Convert one ``GET /jobs/{id}`` body into a :class:`JobStatusUpdate`.

    Raises:
        ValueError: the status is not one the service is known to send
    """
    raw = str(payload.get("status", "")).lower()
    status = _STATUS_MAP.get(raw)
    if status is None:
        raise ValueError(f"Unknown job status: {raw!r}")

    error = None
    if status == TransformStatus.ERROR:
        raw_error = payload.get("error") or {}
        error = JobErrorInfo(
            code=raw_error.get("code") or ("CANCELLED" if raw == "cancelled" else "JOB_FAILED"),
            message=raw_error.get("message", ""),
            retryable=raw_error.get("retryable", True),
            step=raw_error.get("step"),
            details=raw_error.get("details"),
        )
    progress = None
    if payload.get("progress"):
        progress = JobProgress.model_validate(payload["progress"])
    return JobStatusUpdate(
        status=status,
        result_ref=payload.get("result_ref") or payload.get("result_url"),
        error=error,
        progress=progress,
    )


class HttpJobRunner(JobRunner):
    """Polling HTTP client for the transform service.

    Args:
        base_url: service root, e.g. ``http://transform:9000``
        poll_interval: seconds between status polls
        timeout: seconds after subscription before the job is reported
            as ``error`` with code ``TIMEOUT``
        max_poll_failures: consecutive transport failures tolerated before
            reporting ``RUNNER_UNREACHABLE``
        client: optional preconfigured ``httpx.AsyncClient`` (tests)
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        poll_interval: float = 2.0,
        timeout: float = 120.0,
        max_poll_failures: int = 3,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=10.0)
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._max_poll_failures = max_poll_failures
        self._polls: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # JobRunner interface
    # ------------------------------------------------------------------

    async def submit(self, request: TransformJobRequest) -> JobHandle:
        resp = await self._client.post("/jobs", json=request.model_dump(mode="json"))
        resp.raise_for_status()
        job_id = resp.json()["job_id"]
        logger.info("Submitted job %s for session %s step %s",
                    job_id, request.session_id, request.step_id)
        return JobHandle(job_id=str(job_id))

    async def subscribe(self, handle: JobHandle, on_status: StatusCallback) -> None:
        task = asyncio.create_task(self._poll(handle, on_status))
        self._polls[handle.job_id] = task
        task.add_done_callback(lambda _t: self._polls.pop(handle.job_id, None))

    async def cancel(self, handle: JobHandle) -> None:
        task = self._polls.pop(handle.job_id, None)
        if task is not None:
            task.cancel()
        resp = await self._client.post(f"/jobs/{handle.job_id}/cancel")
        resp.raise_for_status()
        logger.info("Cancelled job %s", handle.job_id)

    async def aclose(self) -> None:
        """Stop all polling and close the HTTP client."""
        for task in list(self._polls.values()):
            task.cancel()
        self._polls.clear()
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def _poll(self, handle: JobHandle, on_status: StatusCallback) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        failures = 0
        last: Optional[JobStatusUpdate] = None

        while True:
            await asyncio.sleep(self._poll_interval)
            if loop.time() >= deadline:
                logger.warning("Job %s timed out after %.0fs", handle.job_id, self._timeout)
                on_status(JobStatusUpdate(
                    status=TransformStatus.ERROR,
                    error=JobErrorInfo(
                        code=TIMEOUT_ERROR_CODE,
                        message=f"Job did not finish within {self._timeout:.0f}s",
                        retryable=True,
                    ),
                ))
                return

            try:
                resp = await self._client.get(f"/jobs/{handle.job_id}")
                resp.raise_for_status()
                update = parse_status(resp.json())
            except (httpx.HTTPError, ValueError) as exc:
                failures += 1
                logger.warning("Polling job %s failed (%d/%d): %s",
                               handle.job_id, failures, self._max_poll_failures, exc)
                if failures >= self._max_poll_failures:
                    on_status(JobStatusUpdate(
                        status=TransformStatus.ERROR,
                        error=JobErrorInfo(
                            code=UNREACHABLE_ERROR_CODE,
                            message=str(exc),
                            retryable=True,
                        ),
                    ))
                    return
                continue

            failures = 0
            if update != last:
                on_status(update)
                last = update
            if update.status in (TransformStatus.COMPLETE, TransformStatus.ERROR):
                return
