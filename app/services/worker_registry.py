"""Worker registry service."""

import logging
import uuid
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.worker import Worker
from app.schemas.worker import WorkerRecord, WorkerRegistration, WorkerStatus, WorkerUpdate
from app.utils import utcnow

logger = logging.getLogger(__name__)


class WorkerRegistry:
    """Register workers, look them up and keep their status and stats current."""

    def __init__(self, db: Session):
        """Initialize registry."""
        self.db = db

    def _row(self, worker_id: str) -> Optional[Worker]:
        return (
            self.db.query(Worker)
            .filter(Worker.id == worker_id)
            .populate_existing()
            .first()
        )

    def register(self, registration: WorkerRegistration) -> Optional[WorkerRecord]:
        """
        Register a worker, replacing any earlier registration with the same id.

        Returns:
            The stored worker, or None if the address belongs to another worker
        """
        worker_id = registration.id or str(uuid.uuid4())
        now = utcnow()

        row = self._row(worker_id)
        if row is None:
            row = Worker(id=worker_id, registered_at=now)
            self.db.add(row)

        row.address = registration.address
        row.name = registration.name
        row.status = registration.status.value
        row.hardware = registration.hardware.model_dump()
        row.supported_models = list(registration.supported_models)
        row.stake = registration.stake
        row.last_seen_at = now

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"Worker address {registration.address} already registered")
            return None

        logger.info(f"Registered worker {worker_id} ({registration.address})")
        return WorkerRecord.model_validate(row)

    def get(self, worker_id: str) -> Optional[WorkerRecord]:
        row = self._row(worker_id)
        return WorkerRecord.model_validate(row) if row else None

    def exists(self, worker_id: str) -> bool:
        return self.db.query(Worker.id).filter(Worker.id == worker_id).first() is not None

    def list(self, status: Optional[WorkerStatus] = None) -> List[WorkerRecord]:
        """List workers, highest reputation first."""
        query = self.db.query(Worker).populate_existing()
        if status is not None:
            query = query.filter(Worker.status == WorkerStatus(status).value)
        rows = query.order_by(Worker.reputation.desc(), Worker.id).all()
        return [WorkerRecord.model_validate(r) for r in rows]

    def update_by_address(self, update: WorkerUpdate) -> Optional[WorkerRecord]:
        """Apply an update to the worker with ``update.address``; None if unknown."""
        row = (
            self.db.query(Worker)
            .filter(Worker.address == update.address)
            .populate_existing()
            .first()
        )
        if row is None:
            return None

        fields = update.model_dump(exclude_unset=True, exclude={"address"})
        for name, value in fields.items():
            if name == "status" and value is not None:
                value = WorkerStatus(value).value
            setattr(row, name, value)
        row.last_seen_at = utcnow()
        self.db.commit()

        return WorkerRecord.model_validate(row)

    def heartbeat(
        self,
        worker_id: str,
        status: WorkerStatus,
        current_job_id: Optional[str] = None,
    ) -> None:
        """Record liveness and what the worker is doing; unknown ids are ignored."""
        row = self._row(worker_id)
        if row is None:
            return
        row.status = WorkerStatus(status).value
        row.current_job_id = current_job_id
        row.last_seen_at = utcnow()
        self.db.commit()

    def record_completion(self, worker_id: str, earnings: float, response_time: float) -> None:
        """Fold one completed job into the worker's running stats."""
        row = self._row(worker_id)
        if row is None:
            return
        completed = row.jobs_completed + 1
        row.avg_response_time = (row.avg_response_time * row.jobs_completed + response_time) / completed
        row.jobs_completed = completed
        row.total_earnings = row.total_earnings + earnings
        self.db.commit()
        logger.info(f"Worker {worker_id} completed job #{completed}")
