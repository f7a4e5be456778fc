"""SessionStore tests — mutation guards and the transform state machine.

The store is exercised directly, without a dispatcher, so every check
here is about a single mutator: its precondition, and that a rejected
call leaves the session untouched.
"""

import pytest

from flow_engine.errors import InvalidStateError, InvalidTransitionError, NavigationError
from flow_engine.models import (
    DispatcherState,
    ExtraSlot,
    FlowConfig,
    JobErrorInfo,
    JobProgress,
    StepType,
    TransformStatus,
)
from flow_engine.store import SessionStore


# =====================================================================
# Fixtures
# =====================================================================


@pytest.fixture
def store():
    """Store positioned on step 'a' of a four-step sequence."""
    s = SessionStore.create(FlowConfig(experience_id="exp"), session_id="s1")
    s.set_position(0, "a")
    return s


@pytest.fixture
def back_store():
    s = SessionStore.create(
        FlowConfig(experience_id="exp", allow_back=True, allow_skip=[StepType.INFO]),
        session_id="s2",
    )
    s.set_position(0, "a")
    return s


# =====================================================================
# Creation
# =====================================================================


class TestCreate:

    def test_fresh_session(self, store):
        session = store.session
        assert session.session_id == "s1"
        assert session.effective_step_index == 0
        assert session.data == {}
        assert session.transform.status == TransformStatus.IDLE
        assert session.extras_seen == set()
        assert session.state == DispatcherState.RUNNING

    def test_generated_session_id(self):
        s1 = SessionStore.create(FlowConfig(experience_id="exp"))
        s2 = SessionStore.create(FlowConfig(experience_id="exp"))
        assert s1.session.session_id != s2.session.session_id


# =====================================================================
# Step data
# =====================================================================


class TestStepData:

    def test_record_for_active_step(self, store):
        resp = store.record_step_data("a", "info", None)
        assert resp.step_type == StepType.INFO
        assert "a" in store.session.data

    def test_record_for_other_step_rejected(self, store):
        with pytest.raises(InvalidStateError):
            store.record_step_data("b", "info", None)
        assert store.session.data == {}

    def test_overwrite_moves_entry_last(self, back_store):
        back_store.record_step_data("a", "short_text", "first")
        back_store.advance(1, "b", sequence_length=4)
        back_store.record_step_data("b", "short_text", "second")
        back_store.advance(0, "a", sequence_length=4)
        back_store.record_step_data("a", "short_text", "again")

        assert list(back_store.session.data) == ["b", "a"]
        assert back_store.session.values() == {"b": "second", "a": "again"}

    def test_clear_step_data(self, store):
        store.record_step_data("a", "capture", "ref")
        store.clear_step_data("a")
        store.clear_step_data("missing")
        assert store.session.data == {}


# =====================================================================
# Position
# =====================================================================


class TestAdvance:

    def test_forward_one(self, store):
        store.advance(1, "b", sequence_length=4)
        assert store.session.effective_step_index == 1
        assert store.session.current_step_id == "b"

    def test_forward_jump_rejected(self, store):
        with pytest.raises(NavigationError, match="Cannot jump"):
            store.advance(2, "c", sequence_length=4)
        assert store.session.effective_step_index == 0

    def test_out_of_range_rejected(self, store):
        with pytest.raises(NavigationError, match="outside the sequence"):
            store.advance(1, "b", sequence_length=1)

    def test_back_requires_allow_back(self, store):
        store.advance(1, "b", sequence_length=4)
        with pytest.raises(NavigationError, match="Back navigation"):
            store.advance(0, "a", sequence_length=4)
        assert store.session.current_step_id == "b"

    def test_back_allowed(self, back_store):
        back_store.advance(1, "b", sequence_length=4)
        back_store.advance(0, "a", sequence_length=4)
        assert back_store.session.effective_step_index == 0

    def test_skip_policy_per_kind(self, back_store):
        back_store.advance(1, "b", sequence_length=4, skip_from="info")
        with pytest.raises(NavigationError, match="Skipping 'capture'"):
            back_store.advance(2, "c", sequence_length=4, skip_from="capture")
        assert back_store.session.effective_step_index == 1

    def test_skip_disallowed_by_default(self, store):
        with pytest.raises(NavigationError):
            store.advance(1, "b", sequence_length=4, skip_from="info")


# =====================================================================
# Extras and lifecycle
# =====================================================================


class TestExtrasAndState:

    def test_mark_extra_seen_idempotent(self, store):
        assert store.mark_extra_seen(ExtraSlot.PRE_REWARD) is True
        assert store.mark_extra_seen(ExtraSlot.PRE_REWARD) is False
        assert store.session.extras_seen == {ExtraSlot.PRE_REWARD}

    def test_slot_decisions(self, store):
        store.record_slot_decision(ExtraSlot.PRE_ENTRY_GATE, True)
        assert store.session.slot_decisions == {ExtraSlot.PRE_ENTRY_GATE: True}
        store.clear_slot_decision(ExtraSlot.PRE_ENTRY_GATE)
        assert store.session.slot_decisions == {}

    def test_terminal_state_sets_completed_at(self, store):
        assert store.session.completed_at is None
        store.set_state(DispatcherState.ABORTED)
        assert store.session.completed_at is not None
        assert not store.session.is_running


# =====================================================================
# Transform state machine
# =====================================================================


ALLOWED = [
    (TransformStatus.IDLE, TransformStatus.PENDING),
    (TransformStatus.PENDING, TransformStatus.PROCESSING),
    (TransformStatus.PENDING, TransformStatus.ERROR),
    (TransformStatus.PROCESSING, TransformStatus.COMPLETE),
    (TransformStatus.PROCESSING, TransformStatus.ERROR),
    (TransformStatus.ERROR, TransformStatus.PENDING),
]

ALL_STATUSES = list(TransformStatus)

FORBIDDEN = [
    (src, dst)
    for src in ALL_STATUSES
    for dst in ALL_STATUSES
    if (src, dst) not in ALLOWED
]

# Shortest path from idle to each status
PATH_TO = {
    TransformStatus.IDLE: [],
    TransformStatus.PENDING: [TransformStatus.PENDING],
    TransformStatus.PROCESSING: [TransformStatus.PENDING, TransformStatus.PROCESSING],
    TransformStatus.COMPLETE: [
        TransformStatus.PENDING, TransformStatus.PROCESSING, TransformStatus.COMPLETE,
    ],
    TransformStatus.ERROR: [TransformStatus.PENDING, TransformStatus.ERROR],
}


def _drive(store, status):
    for step in PATH_TO[status]:
        store.set_transform_status(step)


class TestTransformTransitions:

    @pytest.mark.parametrize("src,dst", ALLOWED)
    def test_allowed_edges(self, store, src, dst):
        _drive(store, src)
        store.set_transform_status(dst)
        assert store.session.transform.status == dst

    @pytest.mark.parametrize("src,dst", FORBIDDEN)
    def test_forbidden_edges(self, store, src, dst):
        _drive(store, src)
        before = store.session.transform.model_copy()
        with pytest.raises(InvalidTransitionError) as exc_info:
            store.set_transform_status(dst)
        assert exc_info.value.current == src.value
        assert exc_info.value.target == dst.value
        assert store.session.transform == before, "Rejected edge must not mutate state"

    def test_pending_counts_attempts_and_clears(self, store):
        store.set_transform_status(TransformStatus.PENDING)
        store.set_transform_status(
            TransformStatus.ERROR, error_info=JobErrorInfo(code="TIMEOUT"),
        )
        store.set_transform_status(TransformStatus.PENDING)
        state = store.session.transform
        assert state.attempts == 2
        assert state.error_info is None

    def test_processing_records_job_id(self, store):
        _drive(store, TransformStatus.PENDING)
        store.set_transform_status(TransformStatus.PROCESSING, job_id="job-7")
        assert store.session.transform.job_id == "job-7"

    def test_complete_records_result(self, store):
        _drive(store, TransformStatus.PROCESSING)
        store.set_transform_status(TransformStatus.COMPLETE, result_ref="s3://r.png")
        assert store.session.transform.result_ref == "s3://r.png"

    def test_progress_only_in_flight(self, store):
        with pytest.raises(InvalidStateError):
            store.set_transform_progress(JobProgress(percentage=10))
        _drive(store, TransformStatus.PROCESSING)
        store.set_transform_progress(JobProgress(percentage=40, message="upscaling"))
        assert store.session.transform.progress.percentage == 40

    def test_reset_rejected_while_in_flight(self, store):
        _drive(store, TransformStatus.PROCESSING)
        with pytest.raises(InvalidStateError, match="processing"):
            store.reset_transform("a")

    def test_reset_after_terminal(self, store):
        _drive(store, TransformStatus.COMPLETE)
        store.reset_transform("b")
        state = store.session.transform
        assert state.status == TransformStatus.IDLE
        assert state.step_id == "b"
        assert state.attempts == 0
