"""Worker registry routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.pipeline.projections import build_worker_state
from app.schemas.pipeline import WorkerPipelineState
from app.schemas.worker import (
    WorkerCreateRequest,
    WorkerListResponse,
    WorkerResponse,
    WorkerStatus,
    WorkerUpdate,
)
from app.services.job_store import JobStore
from app.services.worker_registry import WorkerRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workers", tags=["workers"])


@router.post("", response_model=WorkerResponse, status_code=201)
def register_worker(
    data: WorkerCreateRequest,
    db: Session = Depends(get_db),
):
    """Register a worker, or refresh an existing registration with the same id."""
    if data.worker is None:
        raise HTTPException(status_code=400, detail="Worker data is required")

    worker = WorkerRegistry(db).register(data.worker)
    if worker is None:
        raise HTTPException(status_code=409, detail="Address is registered to another worker")
    return WorkerResponse(worker=worker)


@router.get("", response_model=WorkerListResponse)
def list_workers(
    status: Optional[WorkerStatus] = None,
    db: Session = Depends(get_db),
):
    """List workers by reputation, highest first."""
    return WorkerListResponse(workers=WorkerRegistry(db).list(status))


@router.patch("", response_model=WorkerResponse)
def update_worker(
    update: WorkerUpdate,
    db: Session = Depends(get_db),
):
    if not update.address:
        raise HTTPException(status_code=400, detail="Worker address is required")

    worker = WorkerRegistry(db).update_by_address(update)
    if worker is None:
        raise HTTPException(status_code=404, detail="Worker not found")
    return WorkerResponse(worker=worker)


@router.get("/{worker_id}", response_model=WorkerResponse)
def get_worker(worker_id: str, db: Session = Depends(get_db)):
    worker = WorkerRegistry(db).get(worker_id)
    if worker is None:
        raise HTTPException(status_code=404, detail="Worker not found")
    return WorkerResponse(worker=worker)


@router.get("/{worker_id}/pipeline", response_model=WorkerPipelineState)
def worker_pipeline(
    worker_id: str,
    online: Optional[bool] = None,
    db: Session = Depends(get_db),
):
    """
    Dashboard state for a worker: claimable jobs plus the worker's own.

    ``online`` defaults to the registry status, or True for unregistered ids.
    """
    if online is None:
        worker = WorkerRegistry(db).get(worker_id)
        online = worker is None or worker.status != WorkerStatus.OFFLINE

    jobs = JobStore(db).list()
    return build_worker_state(jobs, worker_id, is_online=online)
