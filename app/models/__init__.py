"""SQLAlchemy ORM models."""

from app.models.job import Job
from app.models.review import Review
from app.models.worker import Worker

__all__ = [
    "Job",
    "Review",
    "Worker",
]
