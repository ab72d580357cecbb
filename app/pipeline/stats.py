"""Statistics over job collections."""

from typing import Iterable

from app.pipeline.state_machine import JobPhase, JobStatus, get_phase
from app.schemas.job import JobRecord
from app.schemas.pipeline import PipelineStats

_STATUS_FIELDS = {
    JobStatus.PENDING: "pending_count",
    JobStatus.ASSIGNED: "assigned_count",
    JobStatus.RUNNING: "running_count",
    JobStatus.STREAMING: "streaming_count",
    JobStatus.COMPLETE: "completed_count",
    JobStatus.FAILED: "failed_count",
    JobStatus.CANCELLED: "cancelled_count",
}

_PHASE_FIELDS = {
    JobPhase.QUEUED: "queued_count",
    JobPhase.PROCESSING: "processing_count",
    JobPhase.TERMINAL: "terminal_count",
}


def compute_stats(jobs: Iterable[JobRecord]) -> PipelineStats:
    """
    Aggregate counts, costs and durations in a single pass.

    Actual cost and processing time are taken from completed jobs only;
    wait time from every job that has been started. The input is not
    modified.

    Args:
        jobs: Any collection of job snapshots

    Returns:
        PipelineStats with all counts summing to ``total_jobs``
    """
    counts = {name: 0 for name in list(_STATUS_FIELDS.values()) + list(_PHASE_FIELDS.values())}
    total = 0
    total_estimated = 0.0
    total_actual = 0.0
    wait_sum = 0.0
    wait_n = 0
    processing_sum = 0.0
    processing_n = 0

    for job in jobs:
        total += 1
        counts[_STATUS_FIELDS[job.status]] += 1
        counts[_PHASE_FIELDS[get_phase(job.status)]] += 1
        total_estimated += job.estimated_cost or 0

        if job.started_at is not None:
            wait_sum += (job.started_at - job.created_at).total_seconds()
            wait_n += 1

        if job.status == JobStatus.COMPLETE:
            total_actual += job.actual_cost or 0
            if job.started_at is not None and job.completed_at is not None:
                processing_sum += (job.completed_at - job.started_at).total_seconds()
                processing_n += 1

    return PipelineStats(
        total_jobs=total,
        avg_wait_time=wait_sum / wait_n if wait_n else 0,
        avg_processing_time=processing_sum / processing_n if processing_n else 0,
        total_estimated_cost=total_estimated,
        total_actual_cost=total_actual,
        **counts,
    )
