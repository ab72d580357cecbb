"""
Job lifecycle state machine.

Single source of truth for which status changes are legal. Every mutation
path (claim, processing start, streaming start, completion, failure,
cancellation) asks this module before anything is written.

    pending    -> assigned, cancelled
    assigned   -> running, failed, cancelled
    running    -> streaming, complete, failed
    streaming  -> complete, failed
    complete, failed, cancelled -> (terminal)

Terminal jobs are immutable. To retry a failed or cancelled job a new job
must be created.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, NamedTuple, Optional


class JobStatus(str, Enum):
    """Granular job status."""

    PENDING = "pending"  # Queued, waiting for a worker
    ASSIGNED = "assigned"  # Claimed, processing not started
    RUNNING = "running"  # Model loading / preparing
    STREAMING = "streaming"  # Tokens being generated
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobPhase(str, Enum):
    """Coarse grouping of statuses used for reporting."""

    QUEUED = "queued"
    PROCESSING = "processing"
    TERMINAL = "terminal"


class Transition(NamedTuple):
    to: JobStatus
    trigger: str
    description: str


STATUS_TO_PHASE: Dict[JobStatus, JobPhase] = {
    JobStatus.PENDING: JobPhase.QUEUED,
    JobStatus.ASSIGNED: JobPhase.PROCESSING,
    JobStatus.RUNNING: JobPhase.PROCESSING,
    JobStatus.STREAMING: JobPhase.PROCESSING,
    JobStatus.COMPLETE: JobPhase.TERMINAL,
    JobStatus.FAILED: JobPhase.TERMINAL,
    JobStatus.CANCELLED: JobPhase.TERMINAL,
}

TERMINAL_STATES: FrozenSet[JobStatus] = frozenset(
    status for status, phase in STATUS_TO_PHASE.items() if phase == JobPhase.TERMINAL
)

STATUS_DESCRIPTIONS: Dict[JobStatus, str] = {
    JobStatus.PENDING: "Job is queued waiting for a worker to claim it",
    JobStatus.ASSIGNED: "Job claimed by worker, awaiting processing start",
    JobStatus.RUNNING: "Worker is actively processing (model loaded, generating)",
    JobStatus.STREAMING: "Output tokens are being generated and streamed to requester",
    JobStatus.COMPLETE: "Job completed successfully - output delivered to requester",
    JobStatus.FAILED: "Job failed due to an error",
    JobStatus.CANCELLED: "Job cancelled by requester",
}

_TRANSITIONS: Dict[JobStatus, List[Transition]] = {
    JobStatus.PENDING: [
        Transition(JobStatus.ASSIGNED, "CLAIM", "Worker claims the job from the queue"),
        Transition(JobStatus.CANCELLED, "CANCEL", "Requester cancels the job before assignment"),
    ],
    JobStatus.ASSIGNED: [
        Transition(JobStatus.RUNNING, "START_PROCESSING", "Worker begins processing the job"),
        Transition(JobStatus.FAILED, "FAIL", "Job claim or initialization fails"),
        Transition(JobStatus.CANCELLED, "CANCEL", "Job is abandoned before processing starts"),
    ],
    JobStatus.RUNNING: [
        Transition(JobStatus.STREAMING, "START_STREAMING", "First output token generated, streaming begins"),
        Transition(JobStatus.COMPLETE, "COMPLETE", "Processing completes without streaming phase"),
        Transition(JobStatus.FAILED, "FAIL", "Processing error (model crash, timeout, etc.)"),
    ],
    JobStatus.STREAMING: [
        Transition(JobStatus.COMPLETE, "COMPLETE", "All output tokens generated successfully"),
        Transition(JobStatus.FAILED, "FAIL", "Streaming error (network failure, model error)"),
    ],
    JobStatus.COMPLETE: [],
    JobStatus.FAILED: [],
    JobStatus.CANCELLED: [],
}


@dataclass(frozen=True)
class TransitionValidation:
    """Outcome of checking a single (from, to) pair."""

    valid: bool
    from_status: JobStatus
    to_status: JobStatus
    reason: str
    trigger: Optional[str] = None
    suggestion: Optional[str] = None

    @property
    def message(self) -> str:
        """Reason and suggestion joined for display."""
        if self.suggestion:
            return f"{self.reason}. {self.suggestion}"
        return self.reason


def get_phase(status: JobStatus) -> JobPhase:
    return STATUS_TO_PHASE[JobStatus(status)]


def is_terminal(status: JobStatus) -> bool:
    """
    Check if a job status is terminal (immutable).

    Args:
        status: The job status to check

    Returns:
        True if no further transitions are possible
    """
    return JobStatus(status) in TERMINAL_STATES


def valid_transitions_from(status: JobStatus) -> List[JobStatus]:
    """Legal target statuses from ``status``, in table order."""
    return [t.to for t in _TRANSITIONS[JobStatus(status)]]


def status_description(status: JobStatus) -> str:
    return STATUS_DESCRIPTIONS[JobStatus(status)]


def can_be_claimed(status: JobStatus) -> bool:
    return JobStatus(status) == JobStatus.PENDING


def can_be_cancelled(status: JobStatus) -> bool:
    """Requesters may only cancel while the job is still queued."""
    return JobStatus(status) == JobStatus.PENDING


def _terminal_suggestion(status: JobStatus) -> str:
    if status == JobStatus.FAILED:
        return "Create a new job to retry the operation"
    if status == JobStatus.CANCELLED:
        return "Create a new job - cancelled jobs cannot be reactivated"
    return "Job is complete - no further transitions possible"


def validate_transition(from_status: JobStatus, to_status: JobStatus) -> TransitionValidation:
    """
    Validate whether a job may move from one status to another.

    Never raises for a known status and has no side effects; callers decide
    how to surface a negative result.

    Args:
        from_status: Current job status
        to_status: Desired target status

    Returns:
        TransitionValidation describing the outcome
    """
    from_status = JobStatus(from_status)
    to_status = JobStatus(to_status)

    if from_status == to_status:
        return TransitionValidation(
            valid=False,
            from_status=from_status,
            to_status=to_status,
            reason=f"Job is already in '{from_status.value}' status",
            suggestion="No action required - job is already in the target state",
        )

    if is_terminal(from_status):
        return TransitionValidation(
            valid=False,
            from_status=from_status,
            to_status=to_status,
            reason=f"Cannot transition from terminal state '{from_status.value}' to '{to_status.value}'",
            suggestion=_terminal_suggestion(from_status),
        )

    for transition in _TRANSITIONS[from_status]:
        if transition.to == to_status:
            return TransitionValidation(
                valid=True,
                from_status=from_status,
                to_status=to_status,
                reason=transition.description,
                trigger=transition.trigger,
            )

    legal = ", ".join(s.value for s in valid_transitions_from(from_status))
    return TransitionValidation(
        valid=False,
        from_status=from_status,
        to_status=to_status,
        reason=f"Invalid transition from '{from_status.value}' to '{to_status.value}'",
        suggestion=f"Valid transitions from '{from_status.value}': {legal}",
    )


def is_valid_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    return validate_transition(from_status, to_status).valid
