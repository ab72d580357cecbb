"""Requester to worker pairing visibility."""

from typing import Iterable, List, Optional

from app.pipeline.state_machine import JobStatus, get_phase, is_terminal
from app.schemas.job import JobRecord
from app.schemas.pipeline import JobPairing, PairingWorker
from app.schemas.worker import WorkerRecord
from app.services.job_store import JobStore
from app.services.worker_registry import WorkerRegistry


def pairing_for(job: JobRecord, worker: Optional[WorkerRecord] = None) -> Optional[JobPairing]:
    """Pairing for a live job, or None if unassigned or terminal."""
    if job.assigned_worker is None or is_terminal(job.status):
        return None

    if worker is not None and worker.id == job.assigned_worker:
        paired_worker = PairingWorker(
            id=worker.id,
            address=worker.address,
            name=worker.name or None,
            reputation=worker.reputation,
        )
    else:
        paired_worker = PairingWorker(id=job.assigned_worker)

    return JobPairing(
        job_id=job.id,
        requester=job.requester,
        worker=paired_worker,
        status=job.status,
        phase=get_phase(job.status),
        created_at=job.created_at,
        paired_at=job.started_at,
    )


def active_pairings(jobs: Iterable[JobRecord]) -> List[JobPairing]:
    """Every job that currently has a worker attached and is not finished."""
    pairings = []
    for job in jobs:
        pairing = pairing_for(job)
        if pairing is not None:
            pairings.append(pairing)
    return pairings


class PairingResolver:
    """Resolve pairings from the store, enriched with registry details."""

    def __init__(self, store: JobStore, workers: Optional[WorkerRegistry] = None):
        self.store = store
        self.workers = workers

    def _worker(self, worker_id: str) -> Optional[WorkerRecord]:
        if self.workers is None:
            return None
        return self.workers.get(worker_id)

    def get_pairing(self, job_id: str) -> Optional[JobPairing]:
        job = self.store.get(job_id)
        if job is None or job.assigned_worker is None:
            return None
        return pairing_for(job, self._worker(job.assigned_worker))

    def get_active_pairings(self) -> List[JobPairing]:
        live = []
        for status in (JobStatus.ASSIGNED, JobStatus.RUNNING, JobStatus.STREAMING):
            live.extend(self.store.list(status=status))

        pairings = []
        for job in sorted(live, key=lambda j: j.created_at, reverse=True):
            pairing = pairing_for(job, self._worker(job.assigned_worker))
            if pairing is not None:
                pairings.append(pairing)
        return pairings
