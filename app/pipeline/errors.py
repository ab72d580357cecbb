"""
Error types for the job pipeline.

Expected rejections (unknown job, illegal transition, lost claim race) are not
exceptions: they come back as a TransitionErrorCode on a TransitionResult.
Exceptions are reserved for conditions the caller cannot plan for.
"""

from enum import Enum


class TransitionErrorCode(str, Enum):
    """Why a coordinator operation was rejected."""

    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_STATE = "invalid_state"
    INVALID_INPUT = "invalid_input"
    ALREADY_CLAIMED = "already_claimed"
    NOT_OWNER = "not_owner"


HTTP_STATUS_BY_CODE = {
    TransitionErrorCode.NOT_FOUND: 404,
    TransitionErrorCode.INVALID_TRANSITION: 400,
    TransitionErrorCode.INVALID_STATE: 400,
    TransitionErrorCode.INVALID_INPUT: 400,
    TransitionErrorCode.ALREADY_CLAIMED: 409,
    TransitionErrorCode.NOT_OWNER: 403,
}


class MarketplaceError(Exception):
    """Base exception for unexpected marketplace failures."""
    pass


class StoreUnavailableError(MarketplaceError):
    """Raised when the job record store cannot be reached."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Job store unavailable during {operation}: {reason}")


class DuplicateJobError(MarketplaceError):
    """Raised when a job is created with an id that is already stored."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job already exists: {job_id}")


class ReviewRejectedError(MarketplaceError):
    """Raised when a review cannot be recorded for a job."""

    def __init__(self, job_id: str, reason: str, status_code: int = 400):
        self.job_id = job_id
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Review for job {job_id} rejected: {reason}")


class UpstreamError(MarketplaceError):
    """Raised when the inference backend fails before or during a stream."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class SyncError(MarketplaceError):
    """Raised by the remote job API client when a request cannot be completed."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Sync {operation} failed: {reason}")
