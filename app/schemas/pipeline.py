"""Derived, read-only pipeline schemas: role views, pairings, statistics."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.pipeline.state_machine import JobPhase, JobStatus
from app.schemas.job import JobParameters


class RequesterJobView(BaseModel):
    """A job as seen by the requester who submitted it."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    role: Literal["requester"] = "requester"
    id: str
    phase: JobPhase
    status: JobStatus
    model_id: str
    prompt: str
    system_prompt: Optional[str] = None
    parameters: JobParameters
    requester: str
    assigned_worker: Optional[str] = None

    # Timing (seconds)
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    wait_time: Optional[float] = None
    processing_time: Optional[float] = None

    # Cost
    estimated_cost: float
    actual_cost: Optional[float] = None

    # Output
    input_tokens: int
    output_tokens: int
    output: str
    output_preview: str
    has_output: bool
    error: Optional[str] = None

    # Actions
    has_review: bool
    can_review: bool
    can_cancel: bool


class WorkerJobView(BaseModel):
    """A job as seen by a worker deciding whether to claim or while executing it.

    ``requester`` and ``actual_earnings`` are only filled in for the worker
    the job is assigned to.
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    role: Literal["worker"] = "worker"
    id: str
    phase: JobPhase
    status: JobStatus
    model_id: str
    prompt: str
    system_prompt: Optional[str] = None
    parameters: JobParameters

    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    queue_duration: float

    potential_earnings: float
    actual_earnings: Optional[float] = None

    is_mine: bool
    requester: Optional[str] = None
    output_tokens: int
    output_progress: float  # percent of max_tokens

    can_claim: bool
    can_process: bool
    is_streaming: bool


class PairingWorker(BaseModel):
    id: str
    address: Optional[str] = None
    name: Optional[str] = None
    reputation: Optional[float] = None


class JobPairing(BaseModel):
    """Who is working with whom on a live job."""

    job_id: str
    requester: str
    worker: PairingWorker
    status: JobStatus
    phase: JobPhase
    created_at: datetime
    paired_at: Optional[datetime] = None


class PipelineStats(BaseModel):
    """Aggregate over a set of jobs."""

    total_jobs: int = 0

    # By phase
    queued_count: int = 0
    processing_count: int = 0
    terminal_count: int = 0

    # By status
    pending_count: int = 0
    assigned_count: int = 0
    running_count: int = 0
    streaming_count: int = 0
    completed_count: int = 0
    failed_count: int = 0
    cancelled_count: int = 0

    # Timing averages (seconds)
    avg_wait_time: float = 0
    avg_processing_time: float = 0

    # Costs
    total_estimated_cost: float = 0
    total_actual_cost: float = 0


class RequesterPipelineState(BaseModel):
    """Everything a requester dashboard shows."""

    role: Literal["requester"] = "requester"
    requester_id: str
    jobs: List[RequesterJobView] = Field(default_factory=list)
    stats: PipelineStats
    active_jobs: List[RequesterJobView] = Field(default_factory=list)
    completed_jobs: List[RequesterJobView] = Field(default_factory=list)
    history_jobs: List[RequesterJobView] = Field(default_factory=list)
    pending_reviews: List[RequesterJobView] = Field(default_factory=list)


class WorkerPipelineState(BaseModel):
    """Everything a worker dashboard shows."""

    role: Literal["worker"] = "worker"
    worker_id: str
    stats: PipelineStats
    available_jobs: List[WorkerJobView] = Field(default_factory=list)
    my_active_job: Optional[WorkerJobView] = None
    my_completed_jobs: List[WorkerJobView] = Field(default_factory=list)
    is_online: bool
    is_processing: bool


class PairingListResponse(BaseModel):
    pairings: List[JobPairing]


class PairingResponse(BaseModel):
    pairing: Optional[JobPairing] = None
