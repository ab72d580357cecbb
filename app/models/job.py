"""Job model for the inference marketplace."""

from sqlalchemy import JSON, Column, DateTime, Float, Index, Integer, Text

from app.database import Base
from app.utils import utcnow


class Job(Base):
    """Job represents one inference request moving through its lifecycle."""

    __tablename__ = "jobs"

    id = Column(Text, primary_key=True)
    model_id = Column(Text, nullable=False)
    prompt = Column(Text, nullable=False, default="")
    system_prompt = Column(Text)
    parameters = Column(JSON, nullable=False, default=dict)
    status = Column(Text, nullable=False, default="pending")  # see pipeline.state_machine.JobStatus
    requester = Column(Text, nullable=False)
    assigned_worker = Column(Text)  # Set once, on claim
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    output = Column(Text, nullable=False, default="")
    estimated_cost = Column(Float, nullable=False, default=0)
    actual_cost = Column(Float)
    error = Column(Text)

    __table_args__ = (
        Index("idx_jobs_status", "status"),
        Index("idx_jobs_requester", "requester"),
        Index("idx_jobs_assigned_worker", "assigned_worker"),
    )
