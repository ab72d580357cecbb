"""Worker registry model."""

from sqlalchemy import JSON, Column, DateTime, Float, Integer, Text

from app.database import Base
from app.utils import utcnow


class Worker(Base):
    """A compute provider that claims and executes jobs."""

    __tablename__ = "workers"

    id = Column(Text, primary_key=True)
    address = Column(Text, nullable=False, unique=True)
    name = Column(Text, nullable=False, default="")
    status = Column(Text, nullable=False, default="online")  # 'online', 'busy', 'offline'
    hardware = Column(JSON, nullable=False, default=dict)
    supported_models = Column(JSON, nullable=False, default=list)
    stake = Column(Float, nullable=False, default=0)
    jobs_completed = Column(Integer, nullable=False, default=0)
    total_earnings = Column(Float, nullable=False, default=0)
    avg_response_time = Column(Float, nullable=False, default=0)
    reputation = Column(Float, nullable=False, default=0)  # 0-100
    current_job_id = Column(Text)
    registered_at = Column(DateTime, nullable=False, default=utcnow)
    last_seen_at = Column(DateTime, nullable=False, default=utcnow)
