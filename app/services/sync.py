"""
Client-side job cache kept in step with the REST service by polling.

The cache is eventually consistent. Local changes are applied first and
then sent to the service; a remote failure is logged and the local change
stays until the service reports its own copy of the job. A poll replaces
cached records with the service's copies and drops cached jobs that match
the poll's filters but were not returned. A job the service has confirmed
as finished is never moved back to a live status.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import settings
from app.pipeline.coordinator import TransitionResult
from app.pipeline.errors import SyncError, TransitionErrorCode
from app.pipeline.operations import (
    OUTPUT_STATUSES,
    Cancel,
    Claim,
    Complete,
    Fail,
    Operation,
    RecordOutput,
    apply_operation,
    validate_operation,
)
from app.pipeline.state_machine import (
    JobStatus,
    can_be_cancelled,
    can_be_claimed,
    is_terminal,
    validate_transition,
)
from app.schemas.job import JobDraft, JobRecord
from app.services.model_catalog import count_tokens
from app.utils import utcnow

logger = logging.getLogger(__name__)


def update_body(op: Operation) -> Dict[str, Any]:
    """PATCH body for a tagged operation."""
    if isinstance(op, RecordOutput):
        body: Dict[str, Any] = {"output": op.text, "output_tokens": op.tokens}
    else:
        body = {"status": op.target.value}

    if isinstance(op, Claim):
        body["assigned_worker"] = op.worker_id
    elif isinstance(op, Complete):
        body["output"] = op.output
        body["actual_cost"] = op.actual_cost
        if op.output_tokens is not None:
            body["output_tokens"] = op.output_tokens
    elif isinstance(op, Fail):
        body["error"] = op.error
    elif isinstance(op, Cancel) and op.requester is not None:
        body["requester"] = op.requester

    worker_id = getattr(op, "worker_id", None)
    if worker_id is not None and not isinstance(op, Claim):
        body["worker_id"] = worker_id
    return body


def _matches(job: JobRecord, status: Optional[JobStatus], requester: Optional[str]) -> bool:
    if status is not None and job.status != status:
        return False
    return requester is None or job.requester == requester


class JobApiClient:
    """Thin httpx wrapper over the job REST endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or settings.SYNC_BASE_URL).rstrip("/")
        self.max_retries = max_retries or settings.SYNC_MAX_RETRIES
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self):
        self.client.close()

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=0.5, max=5),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )
        operation = f"{method} {path}"

        try:
            response = retrying(self.client.request, method, path, **kwargs)
        except httpx.TransportError as e:
            raise SyncError(operation, str(e)) from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise SyncError(operation, f"{response.status_code}: {detail}")
        return response.json()

    def list_jobs(self, status: Optional[JobStatus] = None, requester: Optional[str] = None) -> List[JobRecord]:
        params = {}
        if status is not None:
            params["status"] = JobStatus(status).value
        if requester is not None:
            params["requester"] = requester
        data = self._request("GET", "/jobs", params=params)
        return [JobRecord.model_validate(j) for j in data.get("jobs", [])]

    def create_job(self, job: JobRecord) -> JobRecord:
        draft = job.model_dump(mode="json", include=set(JobDraft.model_fields))
        data = self._request("POST", "/jobs", json={"job": draft})
        return JobRecord.model_validate(data["job"])

    def update_job(self, job_id: str, body: Dict[str, Any]) -> JobRecord:
        data = self._request("PATCH", f"/jobs/{job_id}", json=body)
        return JobRecord.model_validate(data["job"])


@dataclass
class SyncResult:
    """Jobs visible after a poll, plus the fetch error if there was one."""

    jobs: List[JobRecord] = field(default_factory=list)
    error: Optional[str] = None


class JobSynchronizer:
    """Local job cache reconciled with the service."""

    def __init__(self, api: JobApiClient, interval: Optional[float] = None):
        self.api = api
        self.interval = interval if interval is not None else settings.JOB_POLL_INTERVAL
        self._jobs: Dict[str, JobRecord] = {}
        # Jobs whose cached copy holds a change the service has not acknowledged
        self._unconfirmed: Set[str] = set()
        self._lock = threading.Lock()

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            return self._jobs.get(job_id)

    def jobs(self, status: Optional[JobStatus] = None, requester: Optional[str] = None) -> List[JobRecord]:
        """Cached jobs matching the filters, newest first."""
        with self._lock:
            jobs = [j for j in self._jobs.values() if _matches(j, status, requester)]
        return sorted(jobs, key=lambda j: (j.created_at, j.id), reverse=True)

    def _merge(self, remote: JobRecord):
        if remote.id in self._unconfirmed:
            self._unconfirmed.discard(remote.id)
            self._jobs[remote.id] = remote
            return

        local = self._jobs.get(remote.id)
        if local is not None and is_terminal(local.status) and not is_terminal(remote.status):
            logger.warning(
                f"Ignoring stale remote status '{remote.status.value}' for finished job {remote.id}"
            )
            return
        self._jobs[remote.id] = remote

    def _drop_missing(self, fetched_ids: Set[str], status: Optional[JobStatus], requester: Optional[str]):
        stale = [
            job_id
            for job_id, job in self._jobs.items()
            if job_id not in fetched_ids
            and job_id not in self._unconfirmed
            and _matches(job, status, requester)
        ]
        for job_id in stale:
            del self._jobs[job_id]
        if stale:
            logger.debug(f"Dropped {len(stale)} cached jobs no longer listed by the service")

    def poll(self, status: Optional[JobStatus] = None, requester: Optional[str] = None) -> SyncResult:
        """
        Fetch jobs from the service and merge them into the cache.

        Cached jobs that match the filters but are missing from the fetched
        set are dropped, unless they carry a change the service has not
        seen yet. A failed fetch keeps the previous snapshot and reports the
        error instead of raising.
        """
        try:
            fetched = self.api.list_jobs(status=status, requester=requester)
        except SyncError as e:
            logger.warning(f"Job poll failed, keeping cached snapshot: {e}")
            return SyncResult(jobs=self.jobs(status, requester), error=str(e))

        with self._lock:
            for remote in fetched:
                self._merge(remote)
            self._drop_missing({j.id for j in fetched}, status, requester)
        return SyncResult(jobs=self.jobs(status, requester))

    def create_job(self, draft: JobDraft) -> JobRecord:
        """Insert a new pending job locally, then submit it to the service."""
        job = JobRecord(
            id=draft.id or str(uuid.uuid4()),
            model_id=draft.model_id,
            prompt=draft.prompt,
            system_prompt=draft.system_prompt,
            parameters=draft.parameters,
            requester=draft.requester,
            created_at=draft.created_at or utcnow(),
            input_tokens=draft.input_tokens if draft.input_tokens is not None else count_tokens(draft.prompt),
            estimated_cost=draft.estimated_cost,
        )
        with self._lock:
            self._jobs[job.id] = job
            self._unconfirmed.add(job.id)

        try:
            stored = self.api.create_job(job)
        except SyncError as e:
            logger.error(f"Failed to submit job {job.id}, keeping local copy: {e}")
            return job

        with self._lock:
            self._merge(stored)
            return self._jobs[job.id]

    def _check_locally(self, job: Optional[JobRecord], op: Operation) -> Optional[TransitionResult]:
        problem = validate_operation(op)
        if problem:
            return TransitionResult.rejected(TransitionErrorCode.INVALID_INPUT, problem, job=job, to_status=op.target)
        if job is None:
            return TransitionResult.rejected(
                TransitionErrorCode.NOT_FOUND, f"Job not found: {op.job_id}", to_status=op.target
            )

        if isinstance(op, RecordOutput):
            if job.status not in OUTPUT_STATUSES:
                return TransitionResult.rejected(
                    TransitionErrorCode.INVALID_STATE,
                    f"Cannot record output while job is '{job.status.value}'",
                    job=job,
                )
            return None

        if isinstance(op, Claim) and (not can_be_claimed(job.status) or job.assigned_worker is not None):
            return TransitionResult.rejected(
                TransitionErrorCode.INVALID_STATE,
                f"Job {job.id} cannot be claimed: {validate_transition(job.status, op.target).message}",
                job=job,
                to_status=op.target,
            )

        if isinstance(op, Cancel) and op.requester is not None and op.requester != job.requester:
            return TransitionResult.rejected(
                TransitionErrorCode.NOT_OWNER,
                f"Only the requester can cancel job {job.id}",
                job=job,
                to_status=op.target,
            )

        validation = validate_transition(job.status, op.target)
        if not validation.valid:
            return TransitionResult.rejected(
                TransitionErrorCode.INVALID_TRANSITION, validation.message, job=job, to_status=op.target
            )

        # Requesters may only cancel while the job is still pending
        if isinstance(op, Cancel) and not can_be_cancelled(job.status):
            return TransitionResult.rejected(
                TransitionErrorCode.INVALID_TRANSITION,
                f"Invalid transition from '{job.status.value}' to 'cancelled'. Only pending jobs can be cancelled",
                job=job,
                to_status=op.target,
            )
        return None

    def update_status(self, job_id: str, op: Operation) -> TransitionResult:
        """
        Apply ``op`` to the cached job, then send it to the service.

        Operations the local state machine rejects are never sent.
        """
        if op.job_id != job_id:
            return TransitionResult.rejected(
                TransitionErrorCode.INVALID_INPUT, f"Operation is for job {op.job_id}, not {job_id}"
            )

        with self._lock:
            job = self._jobs.get(job_id)
            rejection = self._check_locally(job, op)
            if rejection:
                logger.warning(f"Local update of job {job_id} rejected: {rejection.message}")
                return rejection
            updated = apply_operation(job, op, utcnow())
            self._jobs[job_id] = updated
            self._unconfirmed.add(job_id)

        try:
            stored = self.api.update_job(job_id, update_body(op))
        except SyncError as e:
            logger.error(f"Failed to sync update of job {job_id}, keeping local change: {e}")
            return TransitionResult.ok(job, updated)

        with self._lock:
            self._merge(stored)
            current = self._jobs[job_id]
        return TransitionResult.ok(job, current)

    def run(self, stop_event: threading.Event):
        """Poll until ``stop_event`` is set."""
        logger.info(f"Job sync started (interval {self.interval}s)")
        while not stop_event.is_set():
            self.poll()
            stop_event.wait(self.interval)
        logger.info("Job sync stopped")
