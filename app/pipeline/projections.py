"""
Role projections.

Requester and worker look at the same job from opposite sides. These
functions build each side's view from a job snapshot plus the caller's
context, without touching the store. ``now`` is part of that context so the
same inputs always give the same view.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Set

from app.config import settings
from app.pipeline.state_machine import JobPhase, JobStatus, can_be_cancelled, can_be_claimed, get_phase
from app.pipeline.stats import compute_stats
from app.schemas.job import JobRecord
from app.schemas.pipeline import (
    RequesterJobView,
    RequesterPipelineState,
    WorkerJobView,
    WorkerPipelineState,
)
from app.utils import utcnow


def _seconds(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds()


def to_requester_view(
    job: JobRecord,
    has_review: bool = False,
    now: Optional[datetime] = None,
) -> RequesterJobView:
    """Full view for the requester, including worker identity and output."""
    now = now or utcnow()
    phase = get_phase(job.status)

    if job.started_at is not None:
        wait_time = _seconds(job.started_at, job.created_at)
    elif job.status == JobStatus.PENDING:
        wait_time = _seconds(now, job.created_at)
    else:
        wait_time = None

    if job.started_at is not None and job.completed_at is not None:
        processing_time = _seconds(job.completed_at, job.started_at)
    elif job.started_at is not None and phase == JobPhase.PROCESSING:
        processing_time = _seconds(now, job.started_at)
    else:
        processing_time = None

    return RequesterJobView(
        id=job.id,
        phase=phase,
        status=job.status,
        model_id=job.model_id,
        prompt=job.prompt,
        system_prompt=job.system_prompt,
        parameters=job.parameters,
        requester=job.requester,
        assigned_worker=job.assigned_worker,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        wait_time=wait_time,
        processing_time=processing_time,
        estimated_cost=job.estimated_cost,
        actual_cost=job.actual_cost,
        input_tokens=job.input_tokens,
        output_tokens=job.output_tokens,
        output=job.output,
        output_preview=job.output[: settings.OUTPUT_PREVIEW_CHARS],
        has_output=len(job.output) > 0,
        error=job.error,
        has_review=has_review,
        can_review=job.status == JobStatus.COMPLETE and job.assigned_worker is not None and not has_review,
        can_cancel=can_be_cancelled(job.status),
    )


def to_worker_view(
    job: JobRecord,
    viewer_worker_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> WorkerJobView:
    """Worker-side view; requester identity is only shown to the assigned worker."""
    now = now or utcnow()
    phase = get_phase(job.status)
    is_mine = viewer_worker_id is not None and job.assigned_worker == viewer_worker_id

    if job.started_at is not None:
        queue_duration = _seconds(job.started_at, job.created_at)
    else:
        queue_duration = _seconds(now, job.created_at)

    max_tokens = job.parameters.max_tokens or settings.DEFAULT_MAX_TOKENS
    output_progress = min(job.output_tokens / max_tokens * 100, 100.0)

    return WorkerJobView(
        id=job.id,
        phase=phase,
        status=job.status,
        model_id=job.model_id,
        prompt=job.prompt,
        system_prompt=job.system_prompt,
        parameters=job.parameters,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        queue_duration=queue_duration,
        potential_earnings=job.estimated_cost,
        actual_earnings=job.actual_cost if is_mine else None,
        is_mine=is_mine,
        requester=job.requester if is_mine else None,
        output_tokens=job.output_tokens,
        output_progress=output_progress,
        can_claim=can_be_claimed(job.status),
        can_process=is_mine and job.status == JobStatus.ASSIGNED,
        is_streaming=is_mine and job.status == JobStatus.STREAMING,
    )


def _newest_first(jobs: Iterable[JobRecord]) -> List[JobRecord]:
    return sorted(jobs, key=lambda j: j.created_at, reverse=True)


def build_requester_state(
    jobs: Iterable[JobRecord],
    requester_id: str,
    reviewed_job_ids: Optional[Set[str]] = None,
    now: Optional[datetime] = None,
) -> RequesterPipelineState:
    """Group a requester's jobs for their dashboard."""
    reviewed = reviewed_job_ids or set()
    now = now or utcnow()
    mine = [j for j in jobs if j.requester == requester_id]
    views = [to_requester_view(j, j.id in reviewed, now) for j in _newest_first(mine)]

    return RequesterPipelineState(
        requester_id=requester_id,
        jobs=views,
        stats=compute_stats(mine),
        active_jobs=[v for v in views if v.phase != JobPhase.TERMINAL],
        completed_jobs=[v for v in views if v.status == JobStatus.COMPLETE],
        history_jobs=[v for v in views if v.phase == JobPhase.TERMINAL],
        pending_reviews=[v for v in views if v.can_review],
    )


def build_worker_state(
    jobs: Iterable[JobRecord],
    worker_id: str,
    is_online: bool = True,
    now: Optional[datetime] = None,
) -> WorkerPipelineState:
    """Group claimable jobs and the worker's own jobs for their dashboard."""
    now = now or utcnow()
    jobs = list(jobs)
    claimable = [j for j in jobs if can_be_claimed(j.status)]
    mine = [j for j in jobs if j.assigned_worker == worker_id]
    active = next((j for j in _newest_first(mine) if get_phase(j.status) == JobPhase.PROCESSING), None)

    return WorkerPipelineState(
        worker_id=worker_id,
        stats=compute_stats(mine),
        available_jobs=[to_worker_view(j, worker_id, now) for j in _newest_first(claimable)],
        my_active_job=to_worker_view(active, worker_id, now) if active else None,
        my_completed_jobs=[
            to_worker_view(j, worker_id, now)
            for j in _newest_first(mine)
            if j.status == JobStatus.COMPLETE
        ],
        is_online=is_online,
        is_processing=active is not None,
    )
