"""
Claim coordination and lifecycle transitions.

Every status change goes through the same steps: read the job, ask the
state machine, then compare-and-set against the status that was read. The
claim step is the only place where several writers are expected to race for
the same job; the conditional write makes exactly one of them win.

Expected rejections come back as a TransitionResult with an error code.
Only unexpected store failures raise.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from app.pipeline.errors import TransitionErrorCode
from app.pipeline.operations import (
    OUTPUT_STATUSES,
    Cancel,
    Claim,
    Complete,
    Fail,
    Operation,
    RecordOutput,
    StartProcessing,
    StartStreaming,
    transition_values,
    validate_operation,
)
from app.pipeline.state_machine import (
    JobStatus,
    can_be_cancelled,
    can_be_claimed,
    is_terminal,
    validate_transition,
)
from app.schemas.job import JobRecord
from app.services.job_store import JobStore
from app.services.worker_registry import WorkerRegistry
from app.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a coordinator operation."""

    success: bool
    job: Optional[JobRecord] = None
    from_status: Optional[JobStatus] = None
    to_status: Optional[JobStatus] = None
    error: Optional[TransitionErrorCode] = None
    message: str = ""

    @classmethod
    def ok(cls, before: JobRecord, after: JobRecord, message: str = "") -> "TransitionResult":
        return cls(
            success=True,
            job=after,
            from_status=before.status,
            to_status=after.status,
            message=message,
        )

    @classmethod
    def rejected(
        cls,
        code: TransitionErrorCode,
        message: str,
        job: Optional[JobRecord] = None,
        to_status: Optional[JobStatus] = None,
    ) -> "TransitionResult":
        return cls(
            success=False,
            job=job,
            from_status=job.status if job else None,
            to_status=to_status,
            error=code,
            message=message,
        )


class JobCoordinator:
    """Race-safe claim plus validated continuation transitions."""

    def __init__(
        self,
        store: JobStore,
        workers: Optional[WorkerRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            store: Authoritative job store
            workers: When given, claims require a registered worker id
            clock: Source of lifecycle timestamps
        """
        self.store = store
        self.workers = workers
        self.clock = clock

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def claim(self, job_id: str, worker_id: str) -> TransitionResult:
        """
        Assign ``worker_id`` to a pending job.

        Fails with NOT_FOUND (unknown job or worker), INVALID_STATE (job not
        pending, including already assigned and terminal) or ALREADY_CLAIMED
        (another worker won the compare-and-swap). Never retried here.
        """
        op = Claim(job_id=job_id, worker_id=worker_id)
        problem = validate_operation(op)
        if problem:
            return TransitionResult.rejected(TransitionErrorCode.INVALID_INPUT, problem, to_status=op.target)

        if self.workers is not None and not self.workers.exists(worker_id):
            return TransitionResult.rejected(
                TransitionErrorCode.NOT_FOUND, f"Worker not found: {worker_id}", to_status=op.target
            )

        job = self.store.get(job_id)
        if job is None:
            return TransitionResult.rejected(
                TransitionErrorCode.NOT_FOUND, f"Job not found: {job_id}", to_status=op.target
            )

        if not can_be_claimed(job.status) or job.assigned_worker is not None:
            validation = validate_transition(job.status, op.target)
            logger.warning(f"Claim of job {job_id} by {worker_id} rejected: job is {job.status.value}")
            return TransitionResult.rejected(
                TransitionErrorCode.INVALID_STATE,
                f"Job {job_id} cannot be claimed: {validation.message}",
                job=job,
                to_status=op.target,
            )

        values = transition_values(job, op, self.clock())
        updated = self.store.compare_and_set(job_id, JobStatus.PENDING, values, require_unassigned=True)
        if updated is None:
            current = self.store.get(job_id) or job
            logger.info(f"Worker {worker_id} lost the claim race for job {job_id}")
            return TransitionResult.rejected(
                TransitionErrorCode.ALREADY_CLAIMED,
                f"Job {job_id} was already claimed by another worker",
                job=current,
                to_status=op.target,
            )

        logger.info(f"Job {job_id} claimed by worker {worker_id}")
        return TransitionResult.ok(job, updated, "Worker claims the job from the queue")

    # ------------------------------------------------------------------
    # Continuations
    # ------------------------------------------------------------------

    def start_processing(self, job_id: str, worker_id: Optional[str] = None) -> TransitionResult:
        return self._transition(StartProcessing(job_id=job_id, worker_id=worker_id))

    def start_streaming(self, job_id: str, worker_id: Optional[str] = None) -> TransitionResult:
        return self._transition(StartStreaming(job_id=job_id, worker_id=worker_id))

    def complete(
        self,
        job_id: str,
        output: str,
        actual_cost: float,
        output_tokens: Optional[int] = None,
        worker_id: Optional[str] = None,
    ) -> TransitionResult:
        return self._transition(
            Complete(
                job_id=job_id,
                output=output,
                actual_cost=actual_cost,
                output_tokens=output_tokens,
                worker_id=worker_id,
            )
        )

    def fail(self, job_id: str, error: str, worker_id: Optional[str] = None) -> TransitionResult:
        return self._transition(Fail(job_id=job_id, error=error, worker_id=worker_id))

    def cancel(self, job_id: str, requester: Optional[str] = None) -> TransitionResult:
        """Requester-initiated cancellation; only legal while pending."""
        return self._transition(Cancel(job_id=job_id, requester=requester))

    def record_output(
        self,
        job_id: str,
        text: str,
        tokens: int = 1,
        worker_id: Optional[str] = None,
    ) -> TransitionResult:
        """Append streamed output while the job is running or streaming."""
        op = RecordOutput(job_id=job_id, text=text, tokens=tokens, worker_id=worker_id)
        problem = validate_operation(op)
        if problem:
            return TransitionResult.rejected(TransitionErrorCode.INVALID_INPUT, problem)

        job, rejection = self._load(op)
        if rejection:
            return rejection

        if job.status not in OUTPUT_STATUSES:
            return TransitionResult.rejected(
                TransitionErrorCode.INVALID_STATE,
                f"Cannot record output while job is '{job.status.value}'",
                job=job,
            )

        updated = self.store.append_output(job_id, OUTPUT_STATUSES, text, tokens)
        if updated is None:
            current = self.store.get(job_id) or job
            return TransitionResult.rejected(
                TransitionErrorCode.INVALID_STATE,
                f"Job {job_id} left '{job.status.value}' while output was being recorded",
                job=current,
            )
        return TransitionResult.ok(job, updated)

    def apply(self, op: Operation) -> TransitionResult:
        """Dispatch a tagged operation."""
        if isinstance(op, Claim):
            return self.claim(op.job_id, op.worker_id)
        if isinstance(op, RecordOutput):
            return self.record_output(op.job_id, op.text, op.tokens, op.worker_id)
        return self._transition(op)

    def abandon(self, job_id: str, worker_id: Optional[str] = None, reason: str = "Inference cancelled") -> TransitionResult:
        """
        Drive a job the worker is giving up on to a terminal status.

        An assigned job is cancelled; a running or streaming job is failed with
        ``reason``. A job that is already terminal is left as it is.
        """
        job = self.store.get(job_id)
        if job is None:
            return TransitionResult.rejected(TransitionErrorCode.NOT_FOUND, f"Job not found: {job_id}")

        if job.status == JobStatus.ASSIGNED:
            return self._transition(Cancel(job_id=job_id), worker_id=worker_id, requester_only=False)
        if job.status in OUTPUT_STATUSES:
            return self._transition(Fail(job_id=job_id, error=reason, worker_id=worker_id))
        if is_terminal(job.status):
            return TransitionResult.rejected(
                TransitionErrorCode.INVALID_TRANSITION,
                f"Job {job_id} is already '{job.status.value}'",
                job=job,
            )
        return TransitionResult.rejected(
            TransitionErrorCode.INVALID_STATE,
            f"Job {job_id} has not been claimed",
            job=job,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, op: Operation):
        job = self.store.get(op.job_id)
        if job is None:
            return None, TransitionResult.rejected(
                TransitionErrorCode.NOT_FOUND, f"Job not found: {op.job_id}", to_status=op.target
            )

        worker_id = getattr(op, "worker_id", None)
        if worker_id is not None and job.assigned_worker != worker_id:
            return None, TransitionResult.rejected(
                TransitionErrorCode.NOT_OWNER,
                f"Job {op.job_id} is not assigned to worker {worker_id}",
                job=job,
                to_status=op.target,
            )
        return job, None

    def _transition(
        self,
        op: Operation,
        worker_id: Optional[str] = None,
        requester_only: bool = True,
    ) -> TransitionResult:
        problem = validate_operation(op)
        if problem:
            return TransitionResult.rejected(TransitionErrorCode.INVALID_INPUT, problem, to_status=op.target)

        job, rejection = self._load(op)
        if rejection:
            return rejection

        if isinstance(op, Cancel):
            if worker_id is not None and job.assigned_worker != worker_id:
                return TransitionResult.rejected(
                    TransitionErrorCode.NOT_OWNER,
                    f"Job {op.job_id} is not assigned to worker {worker_id}",
                    job=job,
                    to_status=op.target,
                )
            if op.requester is not None and op.requester != job.requester:
                return TransitionResult.rejected(
                    TransitionErrorCode.NOT_OWNER,
                    f"Only the requester can cancel job {op.job_id}",
                    job=job,
                    to_status=op.target,
                )

        validation = validate_transition(job.status, op.target)
        if not validation.valid:
            logger.warning(f"Rejected transition for job {op.job_id}: {validation.message}")
            return TransitionResult.rejected(
                TransitionErrorCode.INVALID_TRANSITION, validation.message, job=job, to_status=op.target
            )

        if isinstance(op, Cancel) and requester_only and not can_be_cancelled(job.status):
            return TransitionResult.rejected(
                TransitionErrorCode.INVALID_TRANSITION,
                f"Invalid transition from '{job.status.value}' to 'cancelled'. Only pending jobs can be cancelled",
                job=job,
                to_status=op.target,
            )

        values = transition_values(job, op, self.clock())
        updated = self.store.compare_and_set(op.job_id, job.status, values)
        if updated is None:
            current = self.store.get(op.job_id)
            if current is None:
                return TransitionResult.rejected(
                    TransitionErrorCode.NOT_FOUND, f"Job not found: {op.job_id}", to_status=op.target
                )
            retry = validate_transition(current.status, op.target)
            return TransitionResult.rejected(
                TransitionErrorCode.INVALID_TRANSITION,
                f"Job {op.job_id} changed concurrently: {retry.message}",
                job=current,
                to_status=op.target,
            )

        logger.info(f"Job {op.job_id}: {job.status.value} -> {updated.status.value} ({validation.trigger})")
        return TransitionResult.ok(job, updated, validation.reason)
