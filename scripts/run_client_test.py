#!/usr/bin/env python3
"""API client integration test for the flow server.

Exercises the session, step and event endpoints by acting as a pure HTTP
client against the live server (unlike ``simulate_flow.py`` which drives
the engine in-process).

Iterates over every active experience plus each configured event, runs N
random sessions per profile, generates a valid value for every step, and
flags errors or unexpected responses.  After each session the event log is
checked: sequence numbers increase, the log opens with ``start``, and
every step the client answered was announced by a ``step_change``.

Usage::

    # Install deps (first time only)
    uv pip install httpx rich

    # Quick smoke test (1 experience, 1 run)
    uv run python scripts/run_client_test.py -x scenario-photo -n 1 -v

    # Full run (all experiences and events x 3 runs)
    uv run python scripts/run_client_test.py

    # Guest sessions against a configured job runner, with back navigation
    uv run python scripts/run_client_test.py --interactive --back-rate 0.3

    # Reproducible run
    uv run python scripts/run_client_test.py --seed 42
"""

from __future__ import annotations

import argparse
import asyncio
import json
import random
import sys
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

import httpx
from rich.console import Console
from rich.table import Table

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Events that link extras (must match flows/events/*.yaml)
DEFAULT_EVENTS = ["launch-party", "gated-event", "survey-event"]

NAME_POOL = ["Ada", "Grace", "Linus", "Mina", "Tomas", "Noor"]

FREE_TEXT_POOL = [
    "Loved the lighting",
    "The countdown was too short",
    "Great fun with friends",
    "Would come back next year",
]

# Seconds between GET /step polls while a transform job runs
POLL_INTERVAL = 0.5


# ---------------------------------------------------------------------------
# Profile: one experience, optionally under an event
# ---------------------------------------------------------------------------

@dataclass
class Profile:
    """A test case: run ``experience_id`` directly or via ``event_id``."""

    experience_id: str | None = None
    event_id: str | None = None

    @property
    def label(self) -> str:
        if self.event_id:
            return f"event {self.event_id}"
        return f"experience {self.experience_id}"

    def request_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.experience_id:
            body["experience_id"] = self.experience_id
        if self.event_id:
            body["event_id"] = self.event_id
        return body


# ---------------------------------------------------------------------------
# APIClient: thin httpx wrapper
# ---------------------------------------------------------------------------

class APIClient:
    """Async HTTP client for the flow server API."""

    def __init__(self, base_url: str, timeout: float = 30.0):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> APIClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    async def health_check(self) -> bool:
        """Check server health. Returns True if server is reachable."""
        try:
            resp = await self._client.get("/health")  # type: ignore[union-attr]
            return resp.status_code == 200
        except (httpx.ConnectError, httpx.TimeoutException):
            return False

    async def list_experiences(self) -> list[dict]:
        return await self._get("/api/v1/experiences")

    async def create_session(self, body: dict[str, Any]) -> dict:
        return await self._post("/api/v1/sessions", json=body)

    async def get_step(self, session_id: str) -> dict:
        return await self._get(f"/api/v1/sessions/{session_id}/step")

    async def complete_step(self, session_id: str, step_id: str, value: Any) -> dict:
        return await self._post(
            f"/api/v1/sessions/{session_id}/step",
            json={"step_id": step_id, "value": value},
        )

    async def back(self, session_id: str) -> dict:
        return await self._post(f"/api/v1/sessions/{session_id}/back", json={})

    async def retry(self, session_id: str) -> dict:
        return await self._post(f"/api/v1/sessions/{session_id}/retry", json={})

    async def abort(self, session_id: str, reason: str) -> dict:
        return await self._post(
            f"/api/v1/sessions/{session_id}/abort", json={"reason": reason},
        )

    async def get_events(self, session_id: str, after: int = 0) -> dict:
        return await self._get(f"/api/v1/sessions/{session_id}/events?after={after}")

    async def _get(self, path: str) -> Any:
        """GET, retry once on timeout."""
        try:
            resp = await self._client.get(path)  # type: ignore[union-attr]
        except httpx.TimeoutException:
            # One retry
            resp = await self._client.get(path)  # type: ignore[union-attr]
        resp.raise_for_status()
        return resp.json()

    async def _post(self, path: str, json: Any) -> Any:
        """POST, retry once on timeout."""
        try:
            resp = await self._client.post(path, json=json)  # type: ignore[union-attr]
        except httpx.TimeoutException:
            resp = await self._client.post(path, json=json)  # type: ignore[union-attr]
        resp.raise_for_status()
        return resp.json()


# ---------------------------------------------------------------------------
# AnswerGenerator: random valid value per step type
# ---------------------------------------------------------------------------

class AnswerGenerator:
    """Generate random valid values for host-completed steps."""

    def __init__(self, rng: random.Random):
        self.rng = rng
        self._captures = 0

    def answer(self, step: dict) -> Any:
        kind = step["type"]
        config = step.get("config") or {}
        if kind == "capture":
            self._captures += 1
            return f"client://capture/{uuid.uuid4().hex[:8]}-{self._captures}.jpg"
        if kind == "short_text":
            return self.rng.choice(NAME_POOL)
        if kind == "long_text":
            return self.rng.choice(FREE_TEXT_POOL)
        if kind == "multiple_choice":
            ids = [o["id"] for o in config.get("options", [])]
            if config.get("allow_multiple"):
                return self.rng.sample(ids, self.rng.randint(1, len(ids)))
            return self.rng.choice(ids)
        if kind == "yes_no":
            return self.rng.choice([True, False])
        if kind == "opinion_scale":
            return self.rng.randint(config.get("min", 1), config.get("max", 5))
        if kind == "email":
            return f"{self.rng.choice(NAME_POOL).lower()}@example.com"
        return None


# ---------------------------------------------------------------------------
# SessionResult
# ---------------------------------------------------------------------------

@dataclass
class SessionResult:
    """Outcome of a single session run."""

    profile: Profile
    run_index: int
    status: str = "pending"          # "success", "failed", "incomplete", "aborted"
    session_id: str | None = None
    steps_taken: int = 0
    backs: int = 0
    retries: int = 0
    events: int = 0
    error: str | None = None
    visited: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# RichPrinter: verbosity-aware console output
# ---------------------------------------------------------------------------

class RichPrinter:
    """Verbosity-aware console output using rich."""

    def __init__(self, verbosity: int = 0):
        self.console = Console()
        self.verbosity = verbosity

    def session_header(
        self, index: int, total: int, profile: Profile, run: int, runs: int,
    ) -> None:
        self.console.print(
            f"\n[bold cyan][{index}/{total}][/] "
            f"{profile.label} (run {run}/{runs})"
        )

    def step_answer(self, view: dict, answer: Any) -> None:
        """Print a step and the value sent for it (verbosity >= 1)."""
        if self.verbosity < 1:
            return
        step = view["step"]
        slot = f" [{view['slot']}]" if view.get("slot") else ""
        self.console.print(
            f"    [dim]#{view['index']}[/] {step['id']} ({step['type']}){slot}"
            f" [dim]→[/] {json.dumps(answer, ensure_ascii=False)}"
        )

    def transform(self, view: dict) -> None:
        if self.verbosity < 1:
            return
        transform = view["transform"]
        self.console.print(
            f"    [dim]#{view['index']}[/] {view['step']['id']} "
            f"transform {transform['status']} (attempt {transform['attempts']})"
        )

    def json_payload(self, label: str, data: Any) -> None:
        """Print full JSON payload (verbosity >= 2)."""
        if self.verbosity < 2:
            return
        formatted = json.dumps(data, ensure_ascii=False, indent=2)
        self.console.print(f"    [dim]{label}:[/]")
        self.console.print(f"    {formatted}")

    def result_line(self, result: SessionResult) -> None:
        if result.status == "success":
            status_str = "[green]OK[/]"
        elif result.status == "failed":
            status_str = f"[red]FAILED[/]: {result.error}"
        else:
            status_str = f"[yellow]{result.status.upper()}[/]"
        self.console.print(
            f"  → {result.steps_taken} steps, {result.backs} backs, "
            f"{result.retries} retries, {result.events} events — {status_str}"
        )

    def warning(self, msg: str) -> None:
        self.console.print(f"  [yellow]![/] {msg}")


# ---------------------------------------------------------------------------
# SessionRunner: drives one session start-to-finish
# ---------------------------------------------------------------------------

class SessionRunner:
    """Run a single flow session through the API."""

    def __init__(
        self,
        client: APIClient,
        answers: AnswerGenerator,
        printer: RichPrinter,
        *,
        interactive: bool,
        back_rate: float,
        max_steps: int,
        max_retries: int,
        transform_timeout: float,
    ):
        self.client = client
        self.answers = answers
        self.printer = printer
        self.interactive = interactive
        self.back_rate = back_rate
        self.max_steps = max_steps
        self.max_retries = max_retries
        self.transform_timeout = transform_timeout

    async def run(self, profile: Profile, run_index: int) -> SessionResult:
        result = SessionResult(profile=profile, run_index=run_index)
        body = profile.request_body()
        body["interactive"] = self.interactive
        body["allow_back"] = self.back_rate > 0

        try:
            info = await self.client.create_session(body)
            result.session_id = info["session_id"]
            view = await self.client.get_step(result.session_id)
            view = await self._walk(view, result)
            await self._check_events(result)
        except httpx.HTTPStatusError as exc:
            result.status = "failed"
            result.error = f"HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            return result
        except (httpx.HTTPError, AssertionError) as exc:
            result.status = "failed"
            result.error = str(exc) or type(exc).__name__
            return result

        if result.status == "pending":
            result.status = {
                "completed": "success",
                "aborted": "aborted",
            }.get(view["state"], "incomplete")
        return result

    async def _walk(self, view: dict, result: SessionResult) -> dict:
        sid = result.session_id
        while view["state"] == "running":
            if result.steps_taken >= self.max_steps:
                self.printer.warning(f"Step limit {self.max_steps} reached")
                result.status = "incomplete"
                return view

            step = view["step"]
            result.visited.append(step["id"])
            if step["type"] == "ai-transform":
                view = await self._await_transform(view, result)
                continue

            answer = self.answers.answer(step)
            self.printer.step_answer(view, answer)
            next_view = await self.client.complete_step(sid, step["id"], answer)
            self.printer.json_payload("step", next_view)
            result.steps_taken += 1

            if (
                next_view["state"] == "running"
                and next_view["index"] > 0
                and self.answers.rng.random() < self.back_rate
            ):
                next_view = await self.client.back(sid)
                result.backs += 1
                assert next_view["value"] is not None or next_view["step"]["type"] in (
                    "info", "processing", "reward", "ai-transform",
                ), f"Back to {next_view['step']['id']} lost its recorded value"
            view = next_view
        return view

    async def _await_transform(self, view: dict, result: SessionResult) -> dict:
        """Poll until the transform step resolves, retrying failures."""
        sid = result.session_id
        step_id = view["step"]["id"]
        deadline = time.monotonic() + self.transform_timeout
        while True:
            self.printer.transform(view)
            if view["state"] != "running" or view["step"]["id"] != step_id:
                return view
            transform = view["transform"]
            if transform["status"] == "error":
                error = transform.get("error_info") or {}
                if not error.get("retryable", True) or result.retries >= self.max_retries:
                    result.status = "failed"
                    result.error = f"{step_id}: {error.get('code')} {error.get('message')}"
                    return await self.client.abort(sid, "Client test gave up")
                result.retries += 1
                view = await self.client.retry(sid)
                continue
            if view.get("value") is not None:
                # Re-entered after back: the recorded result stands
                result.steps_taken += 1
                return await self.client.complete_step(sid, step_id, view["value"])
            if time.monotonic() > deadline:
                result.status = "failed"
                result.error = f"{step_id}: no result after {self.transform_timeout:.0f}s"
                return await self.client.abort(sid, "Client test timed out")
            await asyncio.sleep(POLL_INTERVAL)
            view = await self.client.get_step(sid)

    async def _check_events(self, result: SessionResult) -> None:
        page = await self.client.get_events(result.session_id)
        events = page["events"]
        result.events = len(events)
        self.printer.json_payload("events", events)

        seqs = [e["seq"] for e in events]
        assert seqs == sorted(seqs) and len(set(seqs)) == len(seqs), (
            f"Event sequence numbers out of order: {seqs}"
        )
        assert events and events[0]["event"]["type"] == "start", "First event is not start"

        changes = [e["event"]["step_id"] for e in events if e["event"]["type"] == "step_change"]
        missing = [s for s in result.visited if s not in changes]
        assert not missing, f"No step_change for visited steps: {missing}"

        last = events[-1]["event"]
        if result.status == "pending" and last["type"] not in ("complete", "error"):
            result.status = "incomplete"


# ---------------------------------------------------------------------------
# ResultCollector: aggregates results for the summary
# ---------------------------------------------------------------------------

class ResultCollector:
    """Collect and aggregate session results for the final summary."""

    def __init__(self) -> None:
        self.results: list[SessionResult] = []

    def add(self, result: SessionResult) -> None:
        self.results.append(result)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.status == "success")

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == "failed")

    @property
    def incomplete(self) -> int:
        return sum(1 for r in self.results if r.status in ("incomplete", "aborted"))

    def print_summary(self, console: Console) -> None:
        """Print a rich summary table of all results."""
        console.print("\n")
        console.rule("[bold]Session Summary")
        console.print()

        console.print(f"  Total:       {self.total}")
        console.print(f"  [green]Passed:[/]      {self.passed}")
        console.print(f"  [red]Failed:[/]      {self.failed}")
        console.print(f"  [yellow]Incomplete:[/]  {self.incomplete}")
        console.print()

        table = Table(title="Results by Profile", show_lines=True)
        table.add_column("#", style="dim", width=4)
        table.add_column("Profile", min_width=26)
        table.add_column("Run", width=4)
        table.add_column("Status", width=8)
        table.add_column("Steps", width=6)
        table.add_column("Backs", width=6)
        table.add_column("Retries", width=8)
        table.add_column("Events", width=7)

        for i, r in enumerate(self.results, 1):
            status_str = {
                "success": "[green]OK[/]",
                "aborted": "[yellow]ABRT[/]",
                "failed": "[red]FAIL[/]",
                "incomplete": "[yellow]INC[/]",
            }.get(r.status, r.status)
            table.add_row(
                str(i),
                r.profile.label,
                str(r.run_index),
                status_str,
                str(r.steps_taken),
                str(r.backs),
                str(r.retries),
                str(r.events),
            )

        console.print(table)

        failed = [r for r in self.results if r.status == "failed"]
        if failed:
            console.print()
            console.rule("[red]Failed Sessions")
            for r in failed:
                console.print(
                    f"  {r.profile.label} (run {r.run_index}, {r.session_id}): {r.error}"
                )

        console.print()


# ---------------------------------------------------------------------------
# CLI + async main
# ---------------------------------------------------------------------------

def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="API client integration test for the flow server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--base-url",
        default="http://localhost:8080",
        help="Server base URL (default: http://localhost:8080)",
    )
    parser.add_argument(
        "-n", "--runs",
        type=int, default=3,
        help="Number of random runs per profile (default: 3)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count", default=0,
        help="Increase verbosity (-v for steps, -vv for full JSON)",
    )
    parser.add_argument(
        "--seed",
        type=int, default=None,
        help="RNG seed for reproducibility (default: current timestamp)",
    )
    parser.add_argument(
        "-x", "--experience",
        type=str, default=None,
        help="Filter experiences (comma-separated, e.g. 'scenario-photo,style-quiz')",
    )
    parser.add_argument(
        "--events",
        type=str, default=",".join(DEFAULT_EVENTS),
        help="Events to run (comma-separated; empty string for none)",
    )
    parser.add_argument(
        "--interactive",
        action="store_true",
        help="Start guest sessions (the server needs JOB_RUNNER_URL)",
    )
    parser.add_argument(
        "--back-rate",
        type=float, default=0.0,
        help="Probability of navigating back after each step (default: 0)",
    )
    parser.add_argument(
        "--max-steps",
        type=int, default=100,
        help="Safety limit: max steps per session (default: 100)",
    )
    parser.add_argument(
        "--max-retries",
        type=int, default=2,
        help="Retries per failed transform job (default: 2)",
    )
    parser.add_argument(
        "--transform-timeout",
        type=float, default=120.0,
        help="Seconds to wait for a transform result (default: 120)",
    )
    parser.add_argument(
        "--timeout",
        type=float, default=30.0,
        help="HTTP request timeout in seconds (default: 30)",
    )
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    console = Console()

    # --- Seed ---
    seed = args.seed if args.seed is not None else int(time.time())
    rng = random.Random(seed)
    console.print(f"[dim]RNG seed: {seed}[/]")

    printer = RichPrinter(verbosity=args.verbose)
    collector = ResultCollector()

    async with APIClient(args.base_url, timeout=args.timeout) as client:
        healthy = await client.health_check()
        if not healthy:
            console.print(
                f"[red]Server at {args.base_url} is not reachable. "
                f"Is the server running?[/]"
            )
            sys.exit(1)
        console.print(f"[green]Server health check passed[/] ({args.base_url})")

        # --- Build profiles ---
        available = [e["id"] for e in await client.list_experiences()]
        experiences = available
        if args.experience:
            experiences = [s.strip() for s in args.experience.split(",")]
            for exp in experiences:
                if exp not in available:
                    console.print(f"[red]Unknown experience:[/] '{exp}'")
                    console.print(f"Available: {', '.join(available)}")
                    sys.exit(1)
        events = [s.strip() for s in args.events.split(",") if s.strip()]
        profiles = [Profile(experience_id=e) for e in experiences]
        profiles += [Profile(event_id=e) for e in events]

        total_sessions = len(profiles) * args.runs
        console.print(
            f"[bold]Running {total_sessions} sessions "
            f"({len(profiles)} profiles x {args.runs} runs)[/]"
        )

        # --- Run sessions ---
        runner = SessionRunner(
            client,
            AnswerGenerator(rng),
            printer,
            interactive=args.interactive,
            back_rate=args.back_rate,
            max_steps=args.max_steps,
            max_retries=args.max_retries,
            transform_timeout=args.transform_timeout,
        )

        session_num = 0
        for profile in profiles:
            for run_idx in range(1, args.runs + 1):
                session_num += 1
                printer.session_header(
                    session_num, total_sessions, profile, run_idx, args.runs,
                )
                result = await runner.run(profile, run_idx)
                printer.result_line(result)
                collector.add(result)

    # --- Summary ---
    collector.print_summary(console)

    # Exit code: 1 if any failures
    if collector.failed > 0:
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
