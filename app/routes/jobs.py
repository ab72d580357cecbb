"""Job routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.pipeline.coordinator import JobCoordinator, TransitionResult
from app.pipeline.errors import HTTP_STATUS_BY_CODE, DuplicateJobError, ReviewRejectedError
from app.pipeline.operations import operation_from_update
from app.pipeline.pairing import PairingResolver
from app.pipeline.projections import to_requester_view, to_worker_view
from app.pipeline.state_machine import JobStatus, validate_transition
from app.schemas.job import JobCreateRequest, JobListResponse, JobRecord, JobResponse, JobUpdate
from app.schemas.pipeline import PairingResponse, RequesterJobView, WorkerJobView
from app.schemas.review import ReviewCreate, ReviewResponse
from app.services.job_store import JobStore
from app.services.model_catalog import count_tokens, is_supported
from app.services.reviews import ReviewService
from app.services.worker_registry import WorkerRegistry
from app.utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


def result_or_raise(result: TransitionResult) -> JobResponse:
    """Turn a coordinator result into a response, or the matching HTTP error."""
    if not result.success:
        raise HTTPException(status_code=HTTP_STATUS_BY_CODE[result.error], detail=result.message)
    return JobResponse(job=result.job)


def get_job_or_404(store: JobStore, job_id: str) -> JobRecord:
    job = store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("", response_model=JobResponse, status_code=201)
def create_job(
    data: JobCreateRequest,
    db: Session = Depends(get_db),
):
    """
    Submit a new job. It always starts out pending.

    Args:
        data: Envelope with the job draft
        db: Database session

    Returns:
        JobResponse with the stored job
    """
    draft = data.job
    if draft is None or not draft.id:
        raise HTTPException(status_code=400, detail="Job with id is required")
    if not is_supported(draft.model_id):
        raise HTTPException(status_code=400, detail=f"Unsupported model: {draft.model_id}")

    record = JobRecord(
        id=draft.id,
        model_id=draft.model_id,
        prompt=draft.prompt,
        system_prompt=draft.system_prompt,
        parameters=draft.parameters,
        requester=draft.requester,
        created_at=draft.created_at or utcnow(),
        input_tokens=draft.input_tokens if draft.input_tokens is not None else count_tokens(draft.prompt),
        estimated_cost=draft.estimated_cost,
    )

    try:
        job = JobStore(db).create(record)
    except DuplicateJobError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return JobResponse(job=job)


@router.get("", response_model=JobListResponse)
def list_jobs(
    status: Optional[JobStatus] = None,
    requester: Optional[str] = None,
    worker: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """List jobs, newest first."""
    jobs = JobStore(db).list(status=status, requester=requester, worker=worker)
    return JobListResponse(jobs=jobs)


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: str, db: Session = Depends(get_db)):
    return JobResponse(job=get_job_or_404(JobStore(db), job_id))


@router.patch("/{job_id}", response_model=JobResponse)
def update_job(
    job_id: str,
    update: JobUpdate,
    db: Session = Depends(get_db),
):
    """
    Apply a lifecycle operation to a job.

    ``status`` picks the transition (assigned, running, streaming, complete,
    failed, cancelled). Without ``status`` the body appends streamed output.
    """
    store = JobStore(db)
    op = operation_from_update(job_id, update)
    if op is None:
        job = get_job_or_404(store, job_id)
        if update.status is not None:
            raise HTTPException(status_code=400, detail=validate_transition(job.status, update.status).message)
        raise HTTPException(status_code=400, detail="Update must include a status or output")

    coordinator = JobCoordinator(store, WorkerRegistry(db))
    return result_or_raise(coordinator.apply(op))


@router.delete("/{job_id}", response_model=JobResponse)
def cancel_job(
    job_id: str,
    requester: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Cancel a pending job."""
    coordinator = JobCoordinator(JobStore(db))
    return result_or_raise(coordinator.cancel(job_id, requester))


@router.get("/{job_id}/views/requester", response_model=RequesterJobView)
def requester_view(job_id: str, db: Session = Depends(get_db)):
    job = get_job_or_404(JobStore(db), job_id)
    return to_requester_view(job, has_review=ReviewService(db).has_review(job_id))


@router.get("/{job_id}/views/worker", response_model=WorkerJobView)
def worker_view(
    job_id: str,
    worker_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    job = get_job_or_404(JobStore(db), job_id)
    return to_worker_view(job, viewer_worker_id=worker_id)


@router.post("/{job_id}/review", response_model=ReviewResponse, status_code=201)
def create_review(
    job_id: str,
    data: ReviewCreate,
    db: Session = Depends(get_db),
):
    """Rate a completed job. Each job can be reviewed once."""
    job = get_job_or_404(JobStore(db), job_id)
    try:
        review = ReviewService(db).create(job, data)
    except ReviewRejectedError as e:
        raise HTTPException(status_code=e.status_code, detail=e.reason)
    return ReviewResponse(review=review)


@router.get("/{job_id}/review", response_model=ReviewResponse)
def get_review(job_id: str, db: Session = Depends(get_db)):
    get_job_or_404(JobStore(db), job_id)
    review = ReviewService(db).get_for_job(job_id)
    if review is None:
        raise HTTPException(status_code=404, detail="Review not found")
    return ReviewResponse(review=review)


@router.get("/{job_id}/pairing", response_model=PairingResponse)
def get_pairing(job_id: str, db: Session = Depends(get_db)):
    """Requester/worker pairing for a live job; ``pairing`` is null otherwise."""
    store = JobStore(db)
    get_job_or_404(store, job_id)
    resolver = PairingResolver(store, WorkerRegistry(db))
    return PairingResponse(pairing=resolver.get_pairing(job_id))
