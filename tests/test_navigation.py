"""Back, skip and retake navigation through FlowSession.

Sessions run against the YAML catalog with the FakeJobRunner from
test_engine, so transform steps can be left mid-job.
"""

from unittest.mock import patch

import pytest

from flow_engine import FlowCatalog, FlowEngine
from flow_engine.errors import InvalidStateError, NavigationError
from flow_engine.models import DispatcherState, FlowConfig, StepType, TransformStatus
from flow_engine.store import SessionStore

# Import mock infrastructure from test_engine
from test_engine import CAPTURE_REF, RESULT_REF, FakeJobRunner, RecordingListener


# =====================================================================
# Fixtures
# =====================================================================


@pytest.fixture(scope="session")
def catalog():
    c = FlowCatalog()
    c.load()
    return c


@pytest.fixture
def runner():
    return FakeJobRunner()


@pytest.fixture
def engine(catalog, runner):
    return FlowEngine(catalog, extras_provider=catalog, runner=runner)


@pytest.fixture
def listener():
    return RecordingListener()


async def _at_reward(flow, runner):
    """Drive an interactive scenario-photo session to the reward step."""
    await flow.complete("info", None)
    await flow.complete("capture", CAPTURE_REF)
    runner.report(runner.last_job_id, "complete", result_ref=RESULT_REF)
    await flow.wait_idle()
    assert flow.current().id == "reward"


# =====================================================================
# Back
# =====================================================================


class TestBack:

    @pytest.mark.asyncio
    async def test_back_restores_previous_value(self, engine, listener):
        flow = await engine.start(
            FlowConfig(experience_id="style-quiz", allow_back=True, interactive=False),
            listeners=[listener],
        )
        await flow.complete("name", "Ada")
        await flow.back()

        view = flow.view()
        assert view.step.id == "name"
        assert view.value == "Ada", "Collected value is kept for re-display"
        change = listener.of_type("step_change")[-1]
        assert change.previous_step_id == "outfit"
        assert change.index == 0

    @pytest.mark.asyncio
    async def test_back_at_first_step(self, engine, listener):
        flow = await engine.start(
            FlowConfig(experience_id="scenario-photo", allow_back=True),
            listeners=[listener],
        )
        with pytest.raises(NavigationError, match="first step"):
            await flow.back()
        assert listener.types()[-1] == "error:navigation"

    @pytest.mark.asyncio
    async def test_back_to_transform_does_not_resubmit(self, engine, runner):
        flow = await engine.start(FlowConfig(experience_id="scenario-photo", allow_back=True))
        await _at_reward(flow, runner)

        await flow.back()
        assert flow.current().id == "ai-transform"
        assert len(runner.submitted) == 1, "An existing result is reused"
        assert flow.session.transform.status == TransformStatus.COMPLETE

        await flow.complete("ai-transform", RESULT_REF)
        assert flow.current().id == "reward"

    @pytest.mark.asyncio
    async def test_back_from_running_job_cancels(self, engine, runner, listener):
        flow = await engine.start(
            FlowConfig(experience_id="scenario-photo", allow_back=True),
            listeners=[listener],
        )
        await flow.complete("info", None)
        await flow.complete("capture", CAPTURE_REF)

        await flow.back()
        await flow.wait_idle()
        assert flow.current().id == "capture"
        assert runner.cancelled == ["job-1"]
        error = listener.of_type("error")[-1]
        assert error.kind == "job" and error.cancelled is True

        # Forward again submits a fresh job
        await flow.complete("capture", "s3://bucket/second.jpg")
        assert len(runner.submitted) == 2
        assert runner.submitted[1].source_ref == "s3://bucket/second.jpg"

    @pytest.mark.asyncio
    async def test_back_with_gate_reenters_gate(self, engine):
        flow = await engine.start(
            FlowConfig(
                experience_id="scenario-photo",
                event_id="gated-event",
                allow_back=True,
            ),
        )
        await flow.complete("consent", True)
        await flow.back()
        assert flow.current().id == "consent"
        assert flow.session.effective_step_index == 0


# =====================================================================
# Retake
# =====================================================================


class TestRetake:

    @pytest.mark.asyncio
    async def test_retake_resubmits(self, engine, runner):
        flow = await engine.start(FlowConfig(experience_id="scenario-photo", allow_back=True))
        await _at_reward(flow, runner)

        await flow.back(retake=True)
        assert flow.current().id == "ai-transform"
        assert "ai-transform" not in flow.session.data
        assert len(runner.submitted) == 2
        assert flow.session.transform.status == TransformStatus.PROCESSING
        assert flow.session.transform.attempts == 1, "Retake starts a fresh transform"

        runner.report("job-2", "complete", result_ref="s3://results/take-two.png")
        await flow.wait_idle()
        assert flow.current().id == "reward"
        assert flow.session.values()["ai-transform"] == "s3://results/take-two.png"

    @pytest.mark.asyncio
    async def test_retake_requires_transform_target(self, engine):
        flow = await engine.start(
            FlowConfig(experience_id="scenario-photo", allow_back=True, interactive=False),
        )
        await flow.complete("info", None)
        with pytest.raises(InvalidStateError, match="Retake"):
            await flow.back(retake=True)
        assert flow.current().id == "capture"

    @pytest.mark.asyncio
    async def test_retake_in_preview(self, engine, runner):
        flow = await engine.start(
            FlowConfig(experience_id="scenario-photo", allow_back=True, interactive=False),
        )
        await flow.complete("info", None)
        await flow.complete("capture", CAPTURE_REF)
        await flow.back(retake=True)

        # Preview transforms complete immediately, so retake lands on reward again
        assert flow.current().id == "reward"
        assert runner.submitted == []


# =====================================================================
# Skip
# =====================================================================


class TestSkip:

    @pytest.mark.asyncio
    async def test_skip_disallowed(self, engine, listener):
        flow = await engine.start(
            FlowConfig(experience_id="scenario-photo"), listeners=[listener],
        )
        with pytest.raises(NavigationError, match="Skipping 'info'"):
            await flow.skip()
        assert flow.current().id == "info"
        assert listener.types()[-1] == "error:navigation"

    @pytest.mark.asyncio
    async def test_skip_records_nothing(self, engine):
        flow = await engine.start(
            FlowConfig(experience_id="scenario-photo", allow_skip=True, interactive=False),
        )
        await flow.skip()
        assert flow.current().id == "capture"
        assert "info" not in flow.session.data

    @pytest.mark.asyncio
    async def test_skip_by_kind(self, engine):
        flow = await engine.start(
            FlowConfig(
                experience_id="style-quiz",
                allow_skip=[StepType.SHORT_TEXT, StepType.EMAIL],
                interactive=False,
            ),
        )
        await flow.skip()
        assert flow.current().id == "outfit"
        with pytest.raises(NavigationError):
            await flow.skip()

    @pytest.mark.asyncio
    async def test_skip_last_step_completes(self, engine, listener):
        flow = await engine.start(
            FlowConfig(experience_id="scenario-photo", allow_skip=True, interactive=False),
            listeners=[listener],
        )
        await flow.skip()
        await flow.skip()
        assert flow.current().id == "reward"
        await flow.skip()
        assert flow.state == DispatcherState.COMPLETED
        assert len(listener.of_type("complete")) == 1

    @pytest.mark.asyncio
    async def test_skip_running_transform_cancels(self, engine, runner):
        flow = await engine.start(
            FlowConfig(experience_id="scenario-photo", allow_skip=[StepType.AI_TRANSFORM]),
        )
        await flow.complete("info", None)
        await flow.complete("capture", CAPTURE_REF)

        await flow.skip()
        await flow.wait_idle()
        assert flow.current().id == "reward"
        assert runner.cancelled == ["job-1"]
        assert flow.session.transform.error_info.code == "CANCELLED"
        assert "ai-transform" not in flow.session.data

    @pytest.mark.asyncio
    async def test_skip_gate_marks_slot_seen(self, engine):
        flow = await engine.start(
            FlowConfig(
                experience_id="scenario-photo",
                event_id="gated-event",
                allow_skip=True,
                interactive=False,
            ),
        )
        await flow.skip()
        assert flow.current().id == "info"
        assert len(flow.session.extras_seen) == 1


# =====================================================================
# Store-level rejections
# =====================================================================


class TestStoreRejection:
    """Moves the store refuses are reported exactly like dispatcher refusals."""

    @pytest.mark.asyncio
    async def test_store_rejection_emits_navigation_error(self, engine, listener):
        flow = await engine.start(
            FlowConfig(experience_id="scenario-photo"), listeners=[listener],
        )
        rejection = NavigationError("Index 1 is outside the sequence (length 1)")
        with patch.object(SessionStore, "advance", side_effect=rejection):
            with pytest.raises(NavigationError, match="outside the sequence"):
                await flow.complete("info", None)

        assert listener.types()[-1] == "error:navigation"
        error = listener.of_type("error")[-1]
        assert error.message == "Index 1 is outside the sequence (length 1)"
        assert error.step_id == "info"
        assert flow.current().id == "info"

    @pytest.mark.asyncio
    async def test_store_rejection_on_back(self, catalog, listener):
        engine = FlowEngine(catalog, extras_provider=catalog)
        flow = await engine.start(
            FlowConfig(experience_id="scenario-photo", interactive=False, allow_back=True),
            listeners=[listener],
        )
        await flow.complete("info", None)
        with patch.object(
            SessionStore, "advance", side_effect=NavigationError("Back navigation is not allowed"),
        ):
            with pytest.raises(NavigationError):
                await flow.back()

        assert listener.types()[-1] == "error:navigation"
        assert flow.current().id == "capture"
