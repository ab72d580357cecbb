"""Tests for the job lifecycle state machine."""

import itertools

import pytest

from app.pipeline.state_machine import (
    TERMINAL_STATES,
    JobPhase,
    JobStatus,
    can_be_cancelled,
    can_be_claimed,
    get_phase,
    is_terminal,
    is_valid_transition,
    status_description,
    valid_transitions_from,
    validate_transition,
)

LEGAL = {
    (JobStatus.PENDING, JobStatus.ASSIGNED),
    (JobStatus.PENDING, JobStatus.CANCELLED),
    (JobStatus.ASSIGNED, JobStatus.RUNNING),
    (JobStatus.ASSIGNED, JobStatus.FAILED),
    (JobStatus.ASSIGNED, JobStatus.CANCELLED),
    (JobStatus.RUNNING, JobStatus.STREAMING),
    (JobStatus.RUNNING, JobStatus.COMPLETE),
    (JobStatus.RUNNING, JobStatus.FAILED),
    (JobStatus.STREAMING, JobStatus.COMPLETE),
    (JobStatus.STREAMING, JobStatus.FAILED),
}


def test_every_pair_matches_table():
    """Exactly the pairs in the table are valid."""
    for from_status, to_status in itertools.product(JobStatus, JobStatus):
        expected = (from_status, to_status) in LEGAL
        assert is_valid_transition(from_status, to_status) == expected, (from_status, to_status)


def test_terminal_states_have_no_exits():
    """Complete, failed and cancelled admit nothing."""
    assert TERMINAL_STATES == {JobStatus.COMPLETE, JobStatus.FAILED, JobStatus.CANCELLED}
    for status in TERMINAL_STATES:
        assert is_terminal(status)
        assert valid_transitions_from(status) == []


def test_same_state_is_rejected():
    result = validate_transition(JobStatus.RUNNING, JobStatus.RUNNING)

    assert not result.valid
    assert "already in 'running'" in result.reason


def test_valid_transition_carries_trigger():
    result = validate_transition(JobStatus.PENDING, JobStatus.ASSIGNED)

    assert result.valid
    assert result.trigger == "CLAIM"
    assert result.suggestion is None


def test_invalid_transition_suggests_legal_targets():
    result = validate_transition(JobStatus.PENDING, JobStatus.COMPLETE)

    assert not result.valid
    assert result.reason == "Invalid transition from 'pending' to 'complete'"
    assert result.suggestion == "Valid transitions from 'pending': assigned, cancelled"


@pytest.mark.parametrize(
    "status,hint",
    [
        (JobStatus.FAILED, "Create a new job to retry"),
        (JobStatus.CANCELLED, "cancelled jobs cannot be reactivated"),
    ],
)
def test_terminal_suggestion(status, hint):
    """Leaving a terminal state points at creating a new job."""
    result = validate_transition(status, JobStatus.PENDING)

    assert not result.valid
    assert hint in result.message


def test_phase_mapping():
    assert get_phase(JobStatus.PENDING) == JobPhase.QUEUED
    for status in (JobStatus.ASSIGNED, JobStatus.RUNNING, JobStatus.STREAMING):
        assert get_phase(status) == JobPhase.PROCESSING
    for status in TERMINAL_STATES:
        assert get_phase(status) == JobPhase.TERMINAL


def test_claim_and_cancel_only_while_pending():
    for status in JobStatus:
        assert can_be_claimed(status) == (status == JobStatus.PENDING)
        assert can_be_cancelled(status) == (status == JobStatus.PENDING)


def test_accepts_plain_strings():
    """Statuses read from JSON arrive as strings."""
    assert is_valid_transition("running", "streaming")
    assert is_terminal("failed")
    assert status_description("pending").startswith("Job is queued")
