"""OperationQueue and EventEmitter tests.

These two small pieces carry the engine's ordering guarantees: host
operations never interleave with queued job reports, and listener
failures never interrupt an operation.
"""

import asyncio

import pytest

from flow_engine.emitter import EventEmitter
from flow_engine.errors import InvalidStateError
from flow_engine.interfaces import FlowListener
from flow_engine.models import SessionMode, StartEvent
from flow_engine.operations import OperationQueue

from test_engine import RecordingListener


# =====================================================================
# OperationQueue
# =====================================================================


class TestOperationQueue:

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        queue = OperationQueue()

        async def op():
            return 42

        assert await queue.run(op) == 42
        assert queue.idle and not queue.busy

    @pytest.mark.asyncio
    async def test_posted_op_waits_for_running_op(self):
        queue = OperationQueue()
        trace = []
        gate = asyncio.Event()

        async def host_op():
            trace.append("host:start")
            queue.post(callback)
            await gate.wait()
            trace.append("host:end")

        async def callback():
            trace.append("callback")

        task = asyncio.create_task(queue.run(host_op))
        await asyncio.sleep(0)
        assert queue.busy
        gate.set()
        await task
        await queue.join()

        assert trace == ["host:start", "host:end", "callback"]

    @pytest.mark.asyncio
    async def test_posted_op_runs_when_free(self):
        queue = OperationQueue()
        seen = []

        async def callback():
            seen.append("ran")

        queue.post(callback)
        assert not queue.idle
        await queue.join()
        assert seen == ["ran"]
        assert queue.idle

    @pytest.mark.asyncio
    async def test_nested_run_rejected(self):
        queue = OperationQueue()

        async def inner():
            return None

        async def outer():
            await queue.run(inner)

        with pytest.raises(InvalidStateError, match="nested"):
            await queue.run(outer)
        assert not queue.busy

    @pytest.mark.asyncio
    async def test_failing_callback_is_logged(self, caplog):
        queue = OperationQueue()
        after = []

        async def broken():
            raise RuntimeError("boom")

        async def next_one():
            after.append("ok")

        with caplog.at_level("ERROR"):
            queue.post(broken)
            queue.post(next_one)
            await queue.join()

        assert after == ["ok"], "Later callbacks still run"
        assert "Queued session operation failed" in caplog.text

    @pytest.mark.asyncio
    async def test_host_calls_serialized(self):
        queue = OperationQueue()
        active = []
        overlap = []

        async def op(name):
            if active:
                overlap.append(name)
            active.append(name)
            await asyncio.sleep(0)
            active.remove(name)

        await asyncio.gather(*(queue.run(lambda n=n: op(n)) for n in "abc"))
        assert overlap == []


# =====================================================================
# EventEmitter
# =====================================================================


def _start_event():
    return StartEvent(
        session_id="s1", experience_id="exp", mode=SessionMode.GUEST, sequence=["a"],
    )


class ExplodingListener(FlowListener):
    def on_start(self, event):
        raise RuntimeError("listener bug")


class TestEventEmitter:

    def test_delivery_order(self):
        first, second = RecordingListener(), RecordingListener()
        emitter = EventEmitter([first])
        emitter.subscribe(second)
        emitter.start(_start_event())
        assert len(first.events) == 1 and len(second.events) == 1

    def test_failing_listener_skipped(self, caplog):
        after = RecordingListener()
        emitter = EventEmitter([ExplodingListener(), after])
        with caplog.at_level("ERROR"):
            emitter.start(_start_event())
        assert after.types() == ["start"]
        assert "failed in on_start" in caplog.text

    def test_unsubscribe(self):
        listener = RecordingListener()
        emitter = EventEmitter()
        unsubscribe = emitter.subscribe(listener)
        unsubscribe()
        unsubscribe()
        emitter.start(_start_event())
        assert listener.events == []

    def test_base_listener_ignores_events(self):
        EventEmitter([FlowListener()]).start(_start_event())
