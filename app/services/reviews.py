"""Requester reviews of completed jobs."""

import logging
from typing import Iterable, Optional, Set

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.review import Review
from app.models.worker import Worker
from app.pipeline.errors import ReviewRejectedError
from app.pipeline.state_machine import JobStatus
from app.schemas.job import JobRecord
from app.schemas.review import ReviewCreate, ReviewRecord

logger = logging.getLogger(__name__)


class ReviewService:
    """Record one review per completed job and keep worker reputation in step."""

    def __init__(self, db: Session):
        """Initialize review service."""
        self.db = db

    def get_for_job(self, job_id: str) -> Optional[ReviewRecord]:
        row = self.db.query(Review).filter(Review.job_id == job_id).first()
        return ReviewRecord.model_validate(row) if row else None

    def has_review(self, job_id: str) -> bool:
        return self.db.query(Review.id).filter(Review.job_id == job_id).first() is not None

    def reviewed_job_ids(self, job_ids: Iterable[str]) -> Set[str]:
        """Subset of ``job_ids`` that already carry a review."""
        ids = list(job_ids)
        if not ids:
            return set()
        rows = self.db.query(Review.job_id).filter(Review.job_id.in_(ids)).all()
        return {r[0] for r in rows}

    def create(self, job: JobRecord, data: ReviewCreate) -> ReviewRecord:
        """
        Record a review for a completed job.

        Args:
            job: The reviewed job
            data: Rating and comment from the requester

        Returns:
            The stored review

        Raises:
            ReviewRejectedError: If the job cannot be reviewed by this requester
        """
        if job.status != JobStatus.COMPLETE or not job.assigned_worker:
            raise ReviewRejectedError(job.id, "Only completed jobs can be reviewed")
        if data.requester != job.requester:
            raise ReviewRejectedError(job.id, "Only the requester can review a job", status_code=403)
        if self.has_review(job.id):
            raise ReviewRejectedError(job.id, "Job has already been reviewed", status_code=409)

        response_time = 0.0
        if job.started_at and job.completed_at:
            response_time = (job.completed_at - job.started_at).total_seconds()

        review = Review(
            job_id=job.id,
            worker_id=job.assigned_worker,
            requester_id=job.requester,
            rating=data.rating,
            comment=data.comment,
            response_time=response_time,
        )
        self.db.add(review)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise ReviewRejectedError(job.id, "Job has already been reviewed", status_code=409)

        self._refresh_reputation(job.assigned_worker)
        self.db.commit()

        logger.info(f"Review {review.id} recorded for job {job.id} (rating {data.rating})")
        return ReviewRecord.model_validate(review)

    def _refresh_reputation(self, worker_id: str) -> None:
        """Reputation is the worker's average rating scaled to 0-100."""
        worker = self.db.query(Worker).filter(Worker.id == worker_id).first()
        if worker is None:
            return
        avg_rating = (
            self.db.query(func.avg(Review.rating))
            .filter(Review.worker_id == worker_id)
            .scalar()
        )
        worker.reputation = round(float(avg_rating or 0) * 20, 2)
