"""Job-related Pydantic schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.config import settings
from app.pipeline.state_machine import JobStatus


class JobParameters(BaseModel):
    """Sampling parameters forwarded to the inference backend."""

    max_tokens: int = Field(default_factory=lambda: settings.DEFAULT_MAX_TOKENS, gt=0)
    temperature: float = 0.7
    top_p: float = 0.9
    seed: Optional[int] = None


class JobRecord(BaseModel):
    """Snapshot of a stored job, detached from any session."""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: str
    model_id: str
    prompt: str = ""
    system_prompt: Optional[str] = None
    parameters: JobParameters = Field(default_factory=JobParameters)
    status: JobStatus = JobStatus.PENDING
    requester: str
    assigned_worker: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    input_tokens: int = 0
    output_tokens: int = 0
    output: str = ""
    estimated_cost: float = 0
    actual_cost: Optional[float] = None
    error: Optional[str] = None


class JobDraft(BaseModel):
    """Fields a requester supplies when submitting a job."""

    model_config = ConfigDict(protected_namespaces=())

    id: Optional[str] = None
    model_id: str
    prompt: str
    system_prompt: Optional[str] = None
    parameters: JobParameters = Field(default_factory=JobParameters)
    requester: str
    created_at: Optional[datetime] = None
    input_tokens: Optional[int] = None
    estimated_cost: float = Field(default=0, ge=0)


class JobCreateRequest(BaseModel):
    """Body of POST /jobs."""

    job: Optional[JobDraft] = None


class JobUpdate(BaseModel):
    """Body of PATCH /jobs/{id}.

    ``status`` selects the transition; the remaining fields are the
    arguments that transition needs. Without ``status`` the update appends
    streamed output.
    """

    status: Optional[JobStatus] = None
    assigned_worker: Optional[str] = None
    worker_id: Optional[str] = None  # Caller identity for worker-driven transitions
    requester: Optional[str] = None  # Caller identity for cancellation
    output: Optional[str] = None
    output_tokens: Optional[int] = Field(default=None, ge=0)
    actual_cost: Optional[float] = None
    error: Optional[str] = None


class JobResponse(BaseModel):
    """Single job envelope."""

    job: JobRecord


class JobListResponse(BaseModel):
    """Job list envelope."""

    jobs: List[JobRecord]
