"""Authoritative job record store backed by SQLAlchemy."""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from app.models.job import Job
from app.pipeline.errors import DuplicateJobError, StoreUnavailableError
from app.pipeline.state_machine import JobStatus
from app.schemas.job import JobRecord

logger = logging.getLogger(__name__)


class JobLockRegistry:
    """Process-wide mutex per job id, serializing status-changing writes."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock_for(self, job_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[job_id] = lock
            return lock


# Shared by every JobStore so that sessions opened by different requests
# and worker threads contend on the same lock.
job_locks = JobLockRegistry()


class JobStore:
    """Create, read and conditionally update jobs. Holds no business rules."""

    def __init__(self, db: Session, locks: JobLockRegistry = job_locks):
        """Initialize the store on a session."""
        self.db = db
        self.locks = locks

    def create(self, record: JobRecord) -> JobRecord:
        """
        Insert a new job.

        Raises:
            DuplicateJobError: If a job with the same id exists
            StoreUnavailableError: If the database cannot be reached
        """
        row = Job(**record.model_dump(mode="python"))
        row.status = JobStatus(record.status).value
        try:
            with self.locks.lock_for(record.id):
                if self.db.get(Job, record.id) is not None:
                    raise DuplicateJobError(record.id)
                self.db.add(row)
                self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateJobError(record.id)
        except OperationalError as e:
            self.db.rollback()
            raise StoreUnavailableError("create", str(e))

        logger.info(f"Stored job {record.id} for requester {record.requester}")
        return JobRecord.model_validate(row)

    def get(self, job_id: str) -> Optional[JobRecord]:
        """Fetch a fresh snapshot of one job, or None."""
        try:
            row = (
                self.db.query(Job)
                .filter(Job.id == job_id)
                .populate_existing()
                .first()
            )
        except OperationalError as e:
            self.db.rollback()
            raise StoreUnavailableError("get", str(e))
        return JobRecord.model_validate(row) if row else None

    def list(
        self,
        status: Optional[JobStatus] = None,
        requester: Optional[str] = None,
        worker: Optional[str] = None,
        oldest_first: bool = False,
        limit: Optional[int] = None,
    ) -> List[JobRecord]:
        """List jobs, optionally filtered; newest first unless ``oldest_first``."""
        query = self.db.query(Job).populate_existing()
        if status is not None:
            query = query.filter(Job.status == JobStatus(status).value)
        if requester:
            query = query.filter(Job.requester == requester)
        if worker:
            query = query.filter(Job.assigned_worker == worker)

        order = Job.created_at.asc() if oldest_first else Job.created_at.desc()
        query = query.order_by(order, Job.id)
        if limit:
            query = query.limit(limit)

        try:
            rows = query.all()
        except OperationalError as e:
            self.db.rollback()
            raise StoreUnavailableError("list", str(e))
        return [JobRecord.model_validate(r) for r in rows]

    def compare_and_set(
        self,
        job_id: str,
        expected_status: JobStatus,
        values: Dict[str, Any],
        require_unassigned: bool = False,
    ) -> Optional[JobRecord]:
        """
        Write ``values`` only if the job is still in ``expected_status``.

        Args:
            job_id: Job to update
            expected_status: Status observed by the caller's read
            values: Column values to write
            require_unassigned: Also require that no worker is assigned

        Returns:
            The updated job, or None if the compare failed
        """
        values = {k: (v.value if isinstance(v, JobStatus) else v) for k, v in values.items()}

        with self.locks.lock_for(job_id):
            try:
                query = self.db.query(Job).filter(
                    Job.id == job_id,
                    Job.status == JobStatus(expected_status).value,
                )
                if require_unassigned:
                    query = query.filter(Job.assigned_worker.is_(None))
                updated = query.update(values, synchronize_session=False)
                self.db.commit()
            except OperationalError as e:
                self.db.rollback()
                raise StoreUnavailableError("compare_and_set", str(e))

        if updated != 1:
            return None
        return self.get(job_id)

    def append_output(
        self,
        job_id: str,
        allowed_statuses: Iterable[JobStatus],
        text: str,
        tokens: int,
    ) -> Optional[JobRecord]:
        """Append streamed text in SQL, only while the job is in an allowed status."""
        statuses = [JobStatus(s).value for s in allowed_statuses]

        with self.locks.lock_for(job_id):
            try:
                updated = (
                    self.db.query(Job)
                    .filter(Job.id == job_id, Job.status.in_(statuses))
                    .update(
                        {
                            Job.output: Job.output + text,
                            Job.output_tokens: Job.output_tokens + tokens,
                        },
                        synchronize_session=False,
                    )
                )
                self.db.commit()
            except OperationalError as e:
                self.db.rollback()
                raise StoreUnavailableError("append_output", str(e))

        if updated != 1:
            return None
        return self.get(job_id)
