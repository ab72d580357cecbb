"""Pipeline-wide read routes: statistics, pairings, requester dashboards."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.pipeline.pairing import PairingResolver
from app.pipeline.projections import build_requester_state
from app.pipeline.stats import compute_stats
from app.schemas.pipeline import PairingListResponse, PipelineStats, RequesterPipelineState
from app.services.job_store import JobStore
from app.services.reviews import ReviewService
from app.services.worker_registry import WorkerRegistry

router = APIRouter(tags=["pipeline"])


@router.get("/stats", response_model=PipelineStats)
def get_stats(
    requester: Optional[str] = None,
    worker: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Aggregate statistics, optionally narrowed to one requester or worker."""
    jobs = JobStore(db).list(requester=requester, worker=worker)
    return compute_stats(jobs)


@router.get("/pairings", response_model=PairingListResponse)
def list_pairings(db: Session = Depends(get_db)):
    resolver = PairingResolver(JobStore(db), WorkerRegistry(db))
    return PairingListResponse(pairings=resolver.get_active_pairings())


@router.get("/requesters/{requester_id}/pipeline", response_model=RequesterPipelineState)
def requester_pipeline(requester_id: str, db: Session = Depends(get_db)):
    jobs = JobStore(db).list(requester=requester_id)
    reviewed = ReviewService(db).reviewed_job_ids(j.id for j in jobs)
    return build_requester_state(jobs, requester_id, reviewed)
