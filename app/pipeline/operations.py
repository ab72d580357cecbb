"""
Tagged job operations.

Each status change is its own operation type carrying exactly the arguments
it needs, instead of a free-form partial update merged into the record.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional, Union

from app.pipeline.state_machine import JobStatus
from app.schemas.job import JobRecord, JobUpdate


@dataclass(frozen=True)
class Claim:
    job_id: str
    worker_id: str
    target: ClassVar[Optional[JobStatus]] = JobStatus.ASSIGNED


@dataclass(frozen=True)
class StartProcessing:
    job_id: str
    worker_id: Optional[str] = None
    target: ClassVar[Optional[JobStatus]] = JobStatus.RUNNING


@dataclass(frozen=True)
class StartStreaming:
    job_id: str
    worker_id: Optional[str] = None
    target: ClassVar[Optional[JobStatus]] = JobStatus.STREAMING


@dataclass(frozen=True)
class Complete:
    job_id: str
    output: str
    actual_cost: float
    output_tokens: Optional[int] = None
    worker_id: Optional[str] = None
    target: ClassVar[Optional[JobStatus]] = JobStatus.COMPLETE


@dataclass(frozen=True)
class Fail:
    job_id: str
    error: str
    worker_id: Optional[str] = None
    target: ClassVar[Optional[JobStatus]] = JobStatus.FAILED


@dataclass(frozen=True)
class Cancel:
    job_id: str
    requester: Optional[str] = None
    target: ClassVar[Optional[JobStatus]] = JobStatus.CANCELLED


@dataclass(frozen=True)
class RecordOutput:
    """Streamed output progress; not a status change."""

    job_id: str
    text: str
    tokens: int = 1
    worker_id: Optional[str] = None
    target: ClassVar[Optional[JobStatus]] = None


Operation = Union[Claim, StartProcessing, StartStreaming, Complete, Fail, Cancel, RecordOutput]

# Statuses in which a worker may append output
OUTPUT_STATUSES = (JobStatus.RUNNING, JobStatus.STREAMING)


def validate_operation(op: Operation) -> Optional[str]:
    """Return a reason string if the operation's arguments are unusable."""
    if isinstance(op, Claim) and not (op.worker_id or "").strip():
        return "A worker id is required to claim a job"
    if isinstance(op, Complete):
        if op.output is None:
            return "Final output text is required to complete a job"
        if op.actual_cost is None or op.actual_cost < 0:
            return "A non-negative actual cost is required to complete a job"
        if op.output_tokens is not None and op.output_tokens < 0:
            return "Output token count cannot be negative"
    if isinstance(op, Fail) and not (op.error or "").strip():
        return "An error description is required to fail a job"
    if isinstance(op, RecordOutput) and op.tokens < 0:
        return "Token count cannot be negative"
    return None


def _not_before(now: datetime, *floors: Optional[datetime]) -> datetime:
    """Keep lifecycle timestamps monotonically non-decreasing."""
    candidates = [now] + [f for f in floors if f is not None]
    return max(candidates)


def transition_values(job: JobRecord, op: Operation, now: datetime) -> Dict[str, Any]:
    """
    Compute the field values an operation writes onto ``job``.

    Does not validate; callers run the state machine first.

    Args:
        job: Current job snapshot
        op: Operation to apply
        now: Timestamp to use for lifecycle fields

    Returns:
        Dict of field name to new value, including ``status`` for transitions
    """
    if isinstance(op, RecordOutput):
        return {
            "output": job.output + op.text,
            "output_tokens": job.output_tokens + op.tokens,
        }

    values: Dict[str, Any] = {"status": op.target}

    if isinstance(op, Claim):
        values["assigned_worker"] = op.worker_id
        values["started_at"] = _not_before(now, job.created_at)
    elif isinstance(op, Complete):
        values["output"] = op.output
        values["actual_cost"] = op.actual_cost
        if op.output_tokens is not None:
            values["output_tokens"] = op.output_tokens
        values["completed_at"] = _not_before(now, job.created_at, job.started_at)
    elif isinstance(op, Fail):
        values["error"] = op.error
        values["completed_at"] = _not_before(now, job.created_at, job.started_at)
    elif isinstance(op, Cancel):
        values["completed_at"] = _not_before(now, job.created_at, job.started_at)

    return values


def apply_operation(job: JobRecord, op: Operation, now: datetime) -> JobRecord:
    """Return a copy of ``job`` with the operation applied."""
    return job.model_copy(update=transition_values(job, op, now))


def operation_from_update(job_id: str, update: JobUpdate) -> Optional[Operation]:
    """
    Translate a PATCH body into a tagged operation.

    Returns None when the body carries neither a status nor output progress.
    """
    status = update.status
    if status is None:
        if update.output is None:
            return None
        return RecordOutput(
            job_id=job_id,
            text=update.output,
            tokens=update.output_tokens if update.output_tokens is not None else 1,
            worker_id=update.worker_id,
        )

    if status == JobStatus.ASSIGNED:
        return Claim(job_id=job_id, worker_id=update.assigned_worker or update.worker_id or "")
    if status == JobStatus.RUNNING:
        return StartProcessing(job_id=job_id, worker_id=update.worker_id)
    if status == JobStatus.STREAMING:
        return StartStreaming(job_id=job_id, worker_id=update.worker_id)
    if status == JobStatus.COMPLETE:
        return Complete(
            job_id=job_id,
            output=update.output,
            actual_cost=update.actual_cost,
            output_tokens=update.output_tokens,
            worker_id=update.worker_id,
        )
    if status == JobStatus.FAILED:
        return Fail(job_id=job_id, error=update.error or "", worker_id=update.worker_id)
    if status == JobStatus.CANCELLED:
        return Cancel(job_id=job_id, requester=update.requester)
    # pending is never a target
    return None
