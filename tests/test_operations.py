"""Tests for tagged operations, update mapping and the model catalog."""

from datetime import datetime, timedelta

import pytest

from app.pipeline.operations import (
    Cancel,
    Claim,
    Complete,
    Fail,
    RecordOutput,
    StartProcessing,
    StartStreaming,
    apply_operation,
    operation_from_update,
    validate_operation,
)
from app.pipeline.state_machine import JobStatus
from app.schemas.job import JobUpdate
from app.services.model_catalog import calculate_actual_cost, count_tokens, get_model, is_supported


@pytest.mark.parametrize(
    "update,expected",
    [
        (JobUpdate(status="assigned", assigned_worker="w1"), Claim(job_id="j", worker_id="w1")),
        (JobUpdate(status="running", worker_id="w1"), StartProcessing(job_id="j", worker_id="w1")),
        (JobUpdate(status="streaming"), StartStreaming(job_id="j")),
        (JobUpdate(status="failed", error="boom"), Fail(job_id="j", error="boom")),
        (JobUpdate(status="cancelled", requester="req-1"), Cancel(job_id="j", requester="req-1")),
        (JobUpdate(output="tok"), RecordOutput(job_id="j", text="tok")),
        (JobUpdate(status="pending"), None),
        (JobUpdate(), None),
    ],
)
def test_operation_from_update(update, expected):
    assert operation_from_update("j", update) == expected


def test_complete_from_update():
    op = operation_from_update("j", JobUpdate(status="complete", output="hi", actual_cost=3, output_tokens=1))

    assert op == Complete(job_id="j", output="hi", actual_cost=3, output_tokens=1)


def test_validate_operation():
    assert validate_operation(Claim(job_id="j", worker_id="w1")) is None
    assert validate_operation(Claim(job_id="j", worker_id=" ")) is not None
    assert validate_operation(Complete(job_id="j", output=None, actual_cost=1)) is not None
    assert validate_operation(RecordOutput(job_id="j", text="x", tokens=-1)) is not None


def test_completion_time_never_precedes_start(make_job):
    """A skewed clock cannot put completed_at before started_at."""
    started = datetime(2026, 1, 1, 13, 0, 0)
    job = make_job(status=JobStatus.RUNNING, assigned_worker="w1", started_at=started)

    done = apply_operation(job, Complete(job_id=job.id, output="x", actual_cost=1), started - timedelta(hours=1))

    assert done.completed_at == started
    assert job.status == JobStatus.RUNNING


def test_count_tokens():
    assert count_tokens("") == 0
    assert count_tokens("abcd") == 1
    assert count_tokens("abcde") == 2


def test_catalog():
    assert get_model("ministral-3-14b").backend_name == "ministral-3:14b"
    assert not is_supported("gpt-9")
    assert calculate_actual_cost("ministral-3-14b", 1000, 1000) == 75_000
    assert calculate_actual_cost("gpt-oss-20b", 1, 1) == 125

    with pytest.raises(ValueError):
        calculate_actual_cost("gpt-9", 1, 1)
