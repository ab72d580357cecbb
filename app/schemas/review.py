"""Review Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ReviewCreate(BaseModel):
    """Body of POST /jobs/{id}/review."""

    requester: str
    rating: int = Field(ge=1, le=5)
    comment: str = ""


class ReviewRecord(BaseModel):
    """Stored review."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    job_id: str
    worker_id: str
    requester_id: str
    rating: int
    comment: str
    response_time: float
    created_at: datetime


class ReviewResponse(BaseModel):
    review: ReviewRecord
