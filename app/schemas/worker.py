"""Worker registry Pydantic schemas."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WorkerStatus(str, Enum):
    ONLINE = "online"
    BUSY = "busy"
    OFFLINE = "offline"


class WorkerHardware(BaseModel):
    """Hardware specification reported at registration."""

    gpu: str = ""
    vram: float = 0  # GB
    cpu: str = ""
    ram: float = 0  # GB


class WorkerRecord(BaseModel):
    """Snapshot of a registered worker."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    address: str
    name: str = ""
    status: WorkerStatus = WorkerStatus.ONLINE
    hardware: WorkerHardware = Field(default_factory=WorkerHardware)
    supported_models: List[str] = Field(default_factory=list)
    stake: float = 0
    jobs_completed: int = 0
    total_earnings: float = 0
    avg_response_time: float = 0
    reputation: float = 0
    current_job_id: Optional[str] = None
    registered_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None


class WorkerRegistration(BaseModel):
    """Fields a worker supplies when registering."""

    id: Optional[str] = None
    address: str
    name: str = ""
    status: WorkerStatus = WorkerStatus.ONLINE
    hardware: WorkerHardware = Field(default_factory=WorkerHardware)
    supported_models: List[str] = Field(default_factory=list)
    stake: float = Field(default=0, ge=0)


class WorkerCreateRequest(BaseModel):
    """Body of POST /workers."""

    worker: Optional[WorkerRegistration] = None


class WorkerUpdate(BaseModel):
    """Body of PATCH /workers; the worker is looked up by address."""

    address: Optional[str] = None
    name: Optional[str] = None
    status: Optional[WorkerStatus] = None
    hardware: Optional[WorkerHardware] = None
    supported_models: Optional[List[str]] = None
    stake: Optional[float] = Field(default=None, ge=0)
    current_job_id: Optional[str] = None


class WorkerResponse(BaseModel):
    worker: WorkerRecord


class WorkerListResponse(BaseModel):
    workers: List[WorkerRecord]
