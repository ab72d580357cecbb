"""Tests for the polling job synchronizer."""

import json
import threading

import httpx
import pytest

from app.pipeline.errors import SyncError, TransitionErrorCode
from app.pipeline.operations import Cancel, Claim, Complete, StartProcessing
from app.pipeline.state_machine import JobStatus
from app.schemas.job import JobDraft
from app.services.sync import JobApiClient, JobSynchronizer, update_body


class FakeService:
    """Records requests and answers from a canned job list."""

    def __init__(self, jobs=None, fail=False, reject_updates=False):
        self.jobs = jobs or []
        self.fail = fail
        self.reject_updates = reject_updates
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            return httpx.Response(500, json={"detail": "boom"})

        if request.method == "GET":
            return httpx.Response(200, json={"jobs": [j.model_dump(mode="json") for j in self.jobs]})
        if request.method == "POST":
            return httpx.Response(201, json=json.loads(request.content))
        if request.method == "PATCH":
            if self.reject_updates:
                return httpx.Response(400, json={"detail": "Only pending jobs can be cancelled"})
            job_id = request.url.path.rsplit("/", 1)[-1]
            job = next(j for j in self.jobs if j.id == job_id)
            body = json.loads(request.content)
            updated = job.model_copy(
                update={"status": JobStatus(body["status"]), "assigned_worker": body.get("assigned_worker")}
            )
            return httpx.Response(200, json={"job": updated.model_dump(mode="json")})
        return httpx.Response(405)


def make_sync(service):
    api = JobApiClient(base_url="http://marketplace.test", max_retries=1, transport=httpx.MockTransport(service))
    return JobSynchronizer(api, interval=0.01)


def test_poll_fills_cache(make_job):
    service = FakeService([make_job("a"), make_job("b", requester="req-2")])
    sync = make_sync(service)

    result = sync.poll()

    assert result.error is None
    assert {j.id for j in result.jobs} == {"a", "b"}
    assert sync.get("a").status == JobStatus.PENDING


def test_poll_forwards_filters(make_job):
    service = FakeService([make_job("a")])
    sync = make_sync(service)

    sync.poll(status=JobStatus.PENDING, requester="req-1")

    params = service.requests[0].url.params
    assert params["status"] == "pending"
    assert params["requester"] == "req-1"


def test_poll_error_keeps_snapshot(make_job):
    service = FakeService([make_job("a")])
    sync = make_sync(service)
    sync.poll()

    service.fail = True
    result = sync.poll()

    assert result.error is not None
    assert "500" in result.error
    assert [j.id for j in result.jobs] == ["a"]


def test_transport_errors_are_retried_then_reported():
    attempts = []

    def unreachable(request):
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    api = JobApiClient(base_url="http://marketplace.test", max_retries=1, transport=httpx.MockTransport(unreachable))

    with pytest.raises(SyncError):
        api.list_jobs()
    assert len(attempts) == 1


def test_finished_job_is_not_regressed(make_job):
    """A stale remote copy cannot move a locally finished job backwards."""
    service = FakeService([make_job("a", status=JobStatus.COMPLETE, assigned_worker="w1")])
    sync = make_sync(service)
    sync.poll()

    service.jobs = [make_job("a", status=JobStatus.RUNNING, assigned_worker="w1")]
    sync.poll()

    assert sync.get("a").status == JobStatus.COMPLETE


def test_local_only_jobs_survive_poll(make_job):
    service = FakeService(fail=True)
    sync = make_sync(service)
    created = sync.create_job(JobDraft(id="local", model_id="gpt-oss-20b", prompt="hi", requester="req-1"))

    service.fail = False
    service.jobs = [make_job("remote")]
    sync.poll()

    assert {j.id for j in sync.jobs()} == {"local", "remote"}
    assert created.input_tokens == 1


def test_create_job_is_optimistic():
    """A failed submission leaves the local job in place."""
    sync = make_sync(FakeService(fail=True))

    job = sync.create_job(JobDraft(model_id="gpt-oss-20b", prompt="hello", requester="req-1"))

    assert job.id
    assert job.status == JobStatus.PENDING
    assert sync.get(job.id) == job


def test_update_status_rejected_locally(make_job):
    service = FakeService([make_job("a")])
    sync = make_sync(service)
    sync.poll()
    service.requests.clear()

    result = sync.update_status("a", StartProcessing(job_id="a"))

    assert result.error == TransitionErrorCode.INVALID_TRANSITION
    assert service.requests == []
    assert sync.get("a").status == JobStatus.PENDING


def test_update_status_unknown_job():
    sync = make_sync(FakeService())

    result = sync.update_status("ghost", Claim(job_id="ghost", worker_id="w1"))

    assert result.error == TransitionErrorCode.NOT_FOUND


def test_update_status_sends_patch(make_job):
    service = FakeService([make_job("a")])
    sync = make_sync(service)
    sync.poll()

    result = sync.update_status("a", Claim(job_id="a", worker_id="w1"))

    assert result.success
    patch = service.requests[-1]
    assert patch.method == "PATCH"
    assert json.loads(patch.content) == {"status": "assigned", "assigned_worker": "w1"}
    assert sync.get("a").status == JobStatus.ASSIGNED


def test_remote_failure_does_not_roll_back(make_job):
    service = FakeService([make_job("a")])
    sync = make_sync(service)
    sync.poll()

    service.fail = True
    result = sync.update_status("a", Claim(job_id="a", worker_id="w1"))

    assert result.success
    assert sync.get("a").status == JobStatus.ASSIGNED
    assert sync.get("a").assigned_worker == "w1"


def test_update_body_for_completion():
    body = update_body(Complete(job_id="a", output="done", actual_cost=12, output_tokens=3, worker_id="w1"))

    assert body == {
        "status": "complete",
        "output": "done",
        "actual_cost": 12,
        "output_tokens": 3,
        "worker_id": "w1",
    }


def test_run_polls_until_stopped(make_job):
    service = FakeService([make_job("a")])
    sync = make_sync(service)
    stop = threading.Event()

    thread = threading.Thread(target=sync.run, args=(stop,))
    thread.start()
    while not service.requests:
        stop.wait(0.01)
    stop.set()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert sync.get("a") is not None


def test_cancel_outside_pending_rejected_locally(make_job):
    service = FakeService([make_job("a", status=JobStatus.ASSIGNED, assigned_worker="w1")])
    sync = make_sync(service)
    sync.poll()
    service.requests.clear()

    result = sync.update_status("a", Cancel(job_id="a", requester="req-1"))

    assert not result.success
    assert result.error == TransitionErrorCode.INVALID_TRANSITION
    assert service.requests == []
    assert sync.get("a").status == JobStatus.ASSIGNED


def test_cancel_by_other_requester_rejected_locally(make_job):
    sync = make_sync(FakeService([make_job("a")]))
    sync.poll()

    result = sync.update_status("a", Cancel(job_id="a", requester="req-2"))

    assert result.error == TransitionErrorCode.NOT_OWNER
    assert sync.get("a").status == JobStatus.PENDING


def test_rejected_local_change_yields_to_service_copy(make_job):
    """A finished status the service never accepted does not pin the cache."""
    service = FakeService([make_job("a")])
    sync = make_sync(service)
    sync.poll()

    # Claimed elsewhere after our last poll
    service.jobs = [make_job("a", status=JobStatus.ASSIGNED, assigned_worker="w1")]
    service.reject_updates = True
    result = sync.update_status("a", Cancel(job_id="a", requester="req-1"))

    assert result.success
    assert sync.get("a").status == JobStatus.CANCELLED

    sync.poll()

    assert sync.get("a").status == JobStatus.ASSIGNED
    assert sync.get("a").assigned_worker == "w1"


def test_filtered_poll_drops_jobs_that_left_the_filter(make_job):
    service = FakeService([make_job("a"), make_job("b")])
    sync = make_sync(service)
    assert {j.id for j in sync.poll(status=JobStatus.PENDING).jobs} == {"a", "b"}

    # "a" was claimed by another worker, so the service no longer lists it as pending
    service.jobs = [make_job("b")]
    result = sync.poll(status=JobStatus.PENDING)

    assert [j.id for j in result.jobs] == ["b"]
    assert sync.jobs(status=JobStatus.PENDING) == result.jobs
    assert sync.get("a") is None


def test_filtered_poll_keeps_unsubmitted_jobs(make_job):
    service = FakeService(fail=True)
    sync = make_sync(service)
    sync.create_job(JobDraft(id="local", model_id="gpt-oss-20b", prompt="hi", requester="req-1"))

    service.fail = False
    service.jobs = [make_job("remote")]
    result = sync.poll(status=JobStatus.PENDING, requester="req-1")

    assert {j.id for j in result.jobs} == {"local", "remote"}
