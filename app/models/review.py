"""Review model."""

import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, Text

from app.database import Base
from app.utils import utcnow


class Review(Base):
    """A requester's rating of the worker who completed one of their jobs."""

    __tablename__ = "reviews"

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    job_id = Column(Text, ForeignKey("jobs.id"), nullable=False, unique=True)
    worker_id = Column(Text, nullable=False)
    requester_id = Column(Text, nullable=False)
    rating = Column(Integer, nullable=False)  # 1-5
    comment = Column(Text, nullable=False, default="")
    response_time = Column(Float, nullable=False, default=0)  # seconds
    created_at = Column(DateTime, nullable=False, default=utcnow)
