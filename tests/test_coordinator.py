"""Tests for claim coordination and lifecycle transitions."""

import threading
from datetime import datetime, timedelta

import pytest

from app.pipeline.coordinator import JobCoordinator
from app.pipeline.errors import TransitionErrorCode
from app.pipeline.operations import Claim, Complete, RecordOutput, StartProcessing
from app.pipeline.state_machine import JobStatus
from app.services.job_store import JobStore

T0 = datetime(2026, 1, 1, 12, 0, 0)


class SteppingClock:
    """Clock advancing one second per call."""

    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        self.now = self.now + timedelta(seconds=1)
        return self.now


@pytest.fixture
def coordinator(store):
    return JobCoordinator(store, clock=SteppingClock())


@pytest.fixture
def pending(store, make_job):
    return store.create(make_job("job-1"))


def test_full_lifecycle(coordinator, pending):
    """Create, claim, process, stream and complete a job."""
    assert coordinator.claim(pending.id, "w1").success
    assert coordinator.start_processing(pending.id, "w1").success
    assert coordinator.start_streaming(pending.id, "w1").success

    result = coordinator.complete(pending.id, "hello", 100)

    assert result.success
    assert result.from_status == JobStatus.STREAMING
    job = result.job
    assert job.status == JobStatus.COMPLETE
    assert job.output == "hello"
    assert job.actual_cost == 100
    assert job.assigned_worker == "w1"
    assert job.completed_at is not None
    assert job.created_at <= job.started_at <= job.completed_at


def test_claim_sets_worker_and_start_time(coordinator, pending):
    result = coordinator.claim(pending.id, "w1")

    assert result.success
    assert result.from_status == JobStatus.PENDING
    assert result.to_status == JobStatus.ASSIGNED
    assert result.job.assigned_worker == "w1"
    assert result.job.started_at is not None


def test_cancel_then_claim(coordinator, pending):
    """A cancelled job cannot be claimed."""
    cancelled = coordinator.cancel(pending.id)
    assert cancelled.success
    assert cancelled.job.status == JobStatus.CANCELLED
    assert cancelled.job.completed_at is not None

    result = coordinator.claim(pending.id, "w1")

    assert not result.success
    assert result.error == TransitionErrorCode.INVALID_STATE


def test_failure_after_claim(coordinator, pending):
    """A failed job records its error and rejects further work."""
    coordinator.claim(pending.id, "w1")

    failed = coordinator.fail(pending.id, "upstream timeout")
    assert failed.success
    assert failed.job.status == JobStatus.FAILED
    assert failed.job.error == "upstream timeout"

    assert coordinator.claim(pending.id, "w2").error == TransitionErrorCode.INVALID_STATE
    assert coordinator.complete(pending.id, "late", 10).error == TransitionErrorCode.INVALID_TRANSITION


def test_terminal_job_rejects_everything_repeatedly(coordinator, store, pending):
    coordinator.claim(pending.id, "w1")
    coordinator.start_processing(pending.id)
    coordinator.complete(pending.id, "done", 42)
    before = store.get(pending.id)

    for _ in range(3):
        assert not coordinator.claim(pending.id, "w2").success
        assert not coordinator.start_processing(pending.id).success
        assert not coordinator.start_streaming(pending.id).success
        assert not coordinator.complete(pending.id, "again", 1).success
        assert not coordinator.fail(pending.id, "nope").success
        assert not coordinator.cancel(pending.id).success

    assert store.get(pending.id) == before


def test_second_claim_is_invalid_state(coordinator, store, pending):
    """A claim that reads an already assigned job never overwrites it."""
    coordinator.claim(pending.id, "w1")

    result = coordinator.claim(pending.id, "w2")

    assert result.error == TransitionErrorCode.INVALID_STATE
    assert store.get(pending.id).assigned_worker == "w1"


def test_unknown_job(coordinator):
    assert coordinator.claim("missing", "w1").error == TransitionErrorCode.NOT_FOUND
    assert coordinator.start_processing("missing").error == TransitionErrorCode.NOT_FOUND
    assert coordinator.cancel("missing").error == TransitionErrorCode.NOT_FOUND


def test_claim_requires_registered_worker(store, registry, register_worker, pending):
    coordinator = JobCoordinator(store, registry)
    register_worker("w1")

    assert coordinator.claim(pending.id, "ghost").error == TransitionErrorCode.NOT_FOUND
    assert coordinator.claim(pending.id, "w1").success


def test_invalid_input(coordinator, pending):
    assert coordinator.claim(pending.id, "").error == TransitionErrorCode.INVALID_INPUT
    assert coordinator.fail(pending.id, "  ").error == TransitionErrorCode.INVALID_INPUT

    coordinator.claim(pending.id, "w1")
    coordinator.start_processing(pending.id)
    assert coordinator.complete(pending.id, "x", -1).error == TransitionErrorCode.INVALID_INPUT


def test_only_assigned_worker_may_continue(coordinator, pending):
    coordinator.claim(pending.id, "w1")

    result = coordinator.start_processing(pending.id, "w2")

    assert result.error == TransitionErrorCode.NOT_OWNER
    assert coordinator.start_processing(pending.id, "w1").success


def test_requester_cancel_rules(coordinator, pending):
    """Only the requester may cancel, and only while pending."""
    assert coordinator.cancel(pending.id, requester="someone-else").error == TransitionErrorCode.NOT_OWNER

    coordinator.claim(pending.id, "w1")
    result = coordinator.cancel(pending.id, requester="req-1")

    assert result.error == TransitionErrorCode.INVALID_TRANSITION
    assert "Only pending jobs can be cancelled" in result.message


def test_invalid_transition_names_the_pair(coordinator, pending):
    result = coordinator.start_streaming(pending.id)

    assert result.error == TransitionErrorCode.INVALID_TRANSITION
    assert "'pending' to 'streaming'" in result.message


def test_record_output(coordinator, pending):
    assert coordinator.record_output(pending.id, "a").error == TransitionErrorCode.INVALID_STATE

    coordinator.claim(pending.id, "w1")
    coordinator.start_processing(pending.id)
    coordinator.record_output(pending.id, "Hel", 1, "w1")
    result = coordinator.record_output(pending.id, "lo", 1, "w1")

    assert result.success
    assert result.job.output == "Hello"
    assert result.job.output_tokens == 2
    assert result.job.status == JobStatus.RUNNING


def test_apply_dispatches_operations(coordinator, pending):
    assert coordinator.apply(Claim(job_id=pending.id, worker_id="w1")).success
    assert coordinator.apply(StartProcessing(job_id=pending.id, worker_id="w1")).success
    assert coordinator.apply(RecordOutput(job_id=pending.id, text="ok")).success

    result = coordinator.apply(Complete(job_id=pending.id, output="ok", actual_cost=5, output_tokens=1))

    assert result.job.status == JobStatus.COMPLETE
    assert result.job.output_tokens == 1


def test_abandon(coordinator, store, make_job):
    """Assigned jobs are cancelled, running jobs failed."""
    store.create(make_job("a"))
    store.create(make_job("b"))
    coordinator.claim("a", "w1")
    coordinator.claim("b", "w1")
    coordinator.start_processing("b", "w1")

    assigned = coordinator.abandon("a", "w1")
    running = coordinator.abandon("b", "w1")

    assert assigned.job.status == JobStatus.CANCELLED
    assert running.job.status == JobStatus.FAILED
    assert running.job.error == "Inference cancelled"
    assert coordinator.abandon("b", "w1").error == TransitionErrorCode.INVALID_TRANSITION


class BarrierStore(JobStore):
    """Store whose first read waits until every racing claimer has read."""

    def __init__(self, db, barrier):
        super().__init__(db)
        self.barrier = barrier
        self.waited = False

    def get(self, job_id):
        job = super().get(job_id)
        if not self.waited:
            self.waited = True
            self.barrier.wait(timeout=5)
        return job


def test_concurrent_claims_have_one_winner(session_factory, store, make_job):
    """Both claimers see a pending job; exactly one wins the write."""
    store.create(make_job("race"))
    barrier = threading.Barrier(2)
    results = {}

    def claim(worker_id):
        db = session_factory()
        try:
            results[worker_id] = JobCoordinator(BarrierStore(db, barrier)).claim("race", worker_id)
        finally:
            db.close()

    threads = [threading.Thread(target=claim, args=(w,)) for w in ("w1", "w2")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    winners = [w for w, r in results.items() if r.success]
    losers = [r for r in results.values() if not r.success]
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].error == TransitionErrorCode.ALREADY_CLAIMED
    assert store.get("race").assigned_worker == winners[0]
