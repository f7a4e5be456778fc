#!/usr/bin/env python3
"""Simulate a flow session end-to-end with the in-process engine.

Loads the YAML catalog, starts a session for one experience (optionally
under an event with extras), and answers every step with a generated
value, printing each engine event as it arrives.

In preview mode (the default) ai-transform steps complete immediately
with a mock result.  With ``--interactive`` a simulated job runner
completes each job after a short delay, failing a configurable share of
them so the retry path is exercised too.

Usage::

    # Preview run of the photo booth
    python scripts/simulate_flow.py

    # Booth under the launch-party event (consent gate + survey)
    python scripts/simulate_flow.py --event launch-party

    # Interactive run with a flaky runner
    python scripts/simulate_flow.py -e style-quiz --interactive --fail-rate 0.5

    # List experiences and events
    python scripts/simulate_flow.py --list
"""

from __future__ import annotations

import argparse
import asyncio
import json
import random
import sys
from typing import Any

from flow_engine import FlowCatalog, FlowEngine, FlowListener, JobRunner
from flow_engine.constants import IN_FLIGHT_STATUSES
from flow_engine.interfaces import StatusCallback
from flow_engine.models import (
    DispatcherState,
    FlowConfig,
    JobErrorInfo,
    JobHandle,
    JobProgress,
    JobStatusUpdate,
    TransformJobRequest,
    TransformStatus,
)

_DEFAULT_EXPERIENCE = "scenario-photo"

# Retries per failed job before the simulation gives up.
_MAX_RETRIES = 3

_NAME_POOL = ["Ada", "Grace", "Linus", "Mina", "Tomas"]
_TEXT_POOL = [
    "Loved the lighting",
    "The countdown was too short",
    "Great fun with friends",
]


# ---------------------------------------------------------------------------
# Simulated job runner
# ---------------------------------------------------------------------------


class SimJobRunner(JobRunner):
    """Completes each job after *delay* seconds; fails a share of them."""

    def __init__(self, rng: random.Random, delay: float = 0.2, fail_rate: float = 0.0):
        self._rng = rng
        self._delay = delay
        self._fail_rate = fail_rate
        self._tasks: dict[str, asyncio.Task] = {}
        self._counter = 0

    async def submit(self, request: TransformJobRequest) -> JobHandle:
        self._counter += 1
        job_id = f"sim-{self._counter}"
        _print(f"    [runner] submit {job_id} attempt={request.attempt}")
        _print(f"    [runner] prompt: {request.prompt or '(passthrough)'}")
        if request.missing_variables:
            _print(f"    [runner] missing: {', '.join(request.missing_variables)}")
        return JobHandle(job_id=job_id)

    async def subscribe(self, handle: JobHandle, on_status: StatusCallback) -> None:
        self._tasks[handle.job_id] = asyncio.create_task(self._run(handle, on_status))

    async def cancel(self, handle: JobHandle) -> None:
        task = self._tasks.pop(handle.job_id, None)
        if task is not None:
            task.cancel()
        _print(f"    [runner] cancel {handle.job_id}")

    async def _run(self, handle: JobHandle, on_status: StatusCallback) -> None:
        await asyncio.sleep(self._delay / 2)
        on_status(JobStatusUpdate(
            status=TransformStatus.PROCESSING,
            progress=JobProgress(current_step="render", percentage=50.0),
        ))
        await asyncio.sleep(self._delay / 2)
        if self._rng.random() < self._fail_rate:
            on_status(JobStatusUpdate(
                status=TransformStatus.ERROR,
                error=JobErrorInfo(code="SIM_FAILURE", message="Simulated failure"),
            ))
        else:
            on_status(JobStatusUpdate(
                status=TransformStatus.COMPLETE,
                result_ref=f"sim://result/{handle.job_id}.png",
            ))
        self._tasks.pop(handle.job_id, None)


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------

_quiet = False


def _print(*args: Any, **kwargs: Any) -> None:
    if not _quiet:
        print(*args, **kwargs)


class PrintListener(FlowListener):
    """Prints every engine event on one line."""

    def on_start(self, event):
        _print(f"\n[start] {event.experience_id} ({event.mode.value})")
        _print(f"  sequence: {' -> '.join(event.sequence)}")

    def on_step_change(self, event):
        slot = f" [{event.slot.value}]" if event.slot else ""
        _print(f"\n  #{event.index} {event.step_id} ({event.step_type}){slot}")

    def on_data_update(self, event):
        _print(f"    = {json.dumps(event.value, ensure_ascii=False)}")

    def on_complete(self, event):
        _print("\n[complete]")
        for step_id, value in event.data.items():
            _print(f"  {step_id:<16s} {json.dumps(value, ensure_ascii=False)}")

    def on_error(self, event):
        code = f" {event.error_info.code}" if event.error_info else ""
        _print(f"    [error:{event.kind}]{code} {event.message}")


# ---------------------------------------------------------------------------
# Answer generation
# ---------------------------------------------------------------------------


def generate_answer(step, rng: random.Random, capture_count: int) -> Any:
    """Return a plausible value for a host-completed step."""
    kind = step.type
    if kind == "capture":
        return f"sim://capture/{capture_count}.jpg"
    if kind == "short_text":
        return rng.choice(_NAME_POOL)
    if kind == "long_text":
        return rng.choice(_TEXT_POOL)
    if kind == "multiple_choice":
        ids = [o.id for o in step.config.options]
        if step.config.allow_multiple:
            return rng.sample(ids, rng.randint(1, len(ids)))
        return rng.choice(ids)
    if kind == "yes_no":
        return rng.choice([True, False])
    if kind == "opinion_scale":
        return rng.randint(step.config.min, step.config.max)
    if kind == "email":
        return f"{rng.choice(_NAME_POOL).lower()}@example.com"
    # info, processing, reward
    return None


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------


async def wait_for_transform(flow) -> None:
    """Block until the current transform job has reported a terminal status."""
    while flow.session.transform.status in IN_FLIGHT_STATUSES:
        await asyncio.sleep(0.02)
    await flow.wait_idle()


async def run_simulation(args: argparse.Namespace) -> bool:
    rng = random.Random(args.seed)
    catalog = FlowCatalog()
    catalog.load()

    runner = None
    if args.interactive:
        runner = SimJobRunner(rng, delay=args.delay, fail_rate=args.fail_rate)
    engine = FlowEngine(catalog, extras_provider=catalog, runner=runner)

    experience_id = args.experience
    if experience_id is None:
        experience_id = (
            catalog.get_event(args.event).experience_id if args.event else None
        ) or _DEFAULT_EXPERIENCE

    flow = await engine.start(
        FlowConfig(
            experience_id=experience_id,
            event_id=args.event,
            interactive=args.interactive,
        ),
        listeners=[PrintListener()],
    )

    captures = 0
    while flow.state == DispatcherState.RUNNING:
        step = flow.current()
        if step.is_transform:
            await wait_for_transform(flow)
            transform = flow.session.transform
            if flow.state != DispatcherState.RUNNING or flow.current().id != step.id:
                continue
            if transform.status == TransformStatus.ERROR:
                if not transform.error_info.retryable or transform.attempts > _MAX_RETRIES:
                    _print(f"\n  giving up on {step.id} after {transform.attempts} attempts")
                    flow.abort("Simulation gave up on a failing job")
                    break
                await flow.retry()
            continue

        if step.type == "capture":
            captures += 1
        await flow.complete(step.id, generate_answer(step, rng, captures))

    await flow.wait_idle()
    info = flow.info()
    _print(f"\n{'=' * 62}")
    _print(f" Session {info.session_id}: {info.state.value}")
    _print(f" Steps:  {info.effective_step_index + 1}/{info.sequence_length}")
    _print(f" Extras: {', '.join(s.value for s in info.extras_seen) or '(none)'}")
    _print(f"{'=' * 62}")
    return info.state == DispatcherState.COMPLETED


def list_catalog() -> None:
    """Print all experiences and events and exit."""
    catalog = FlowCatalog()
    catalog.load()
    print("Experiences:")
    for exp in catalog.list_experiences():
        kinds = ", ".join(s.type for s in exp.ordered_steps())
        print(f"  {exp.id:<20s} {kinds}")
    print("\nEvents:")
    for event in catalog.events.values():
        slots = [
            f"{name}={link.experience_id}"
            for name, link in (("gate", event.extras.pre_entry_gate),
                               ("reward", event.extras.pre_reward))
            if link is not None
        ]
        print(f"  {event.id:<24s} {', '.join(slots) or '(no extras)'}")


def main() -> None:
    global _quiet

    parser = argparse.ArgumentParser(
        description="Simulate a flow session end-to-end with the in-process engine.",
    )
    parser.add_argument(
        "-e", "--experience",
        default=None,
        help=f"Experience to run (default: the event's experience, else {_DEFAULT_EXPERIENCE})",
    )
    parser.add_argument("--event", default=None, help="Event id whose extras apply")
    parser.add_argument(
        "--interactive",
        action="store_true",
        help="Run ai-transform steps through the simulated job runner",
    )
    parser.add_argument(
        "--fail-rate",
        type=float,
        default=0.0,
        help="Share of simulated jobs that fail (interactive only)",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=0.2,
        help="Seconds each simulated job takes (interactive only)",
    )
    parser.add_argument("--seed", type=int, default=None, help="RNG seed")
    parser.add_argument("--list", action="store_true", help="List the catalog and exit")
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all print output (exit code still reflects success/failure)",
    )
    args = parser.parse_args()

    if args.list:
        list_catalog()
        sys.exit(0)

    _quiet = args.quiet
    ok = asyncio.run(run_simulation(args))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
