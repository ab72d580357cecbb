"""Tests for requester/worker pairings."""

from app.pipeline.pairing import PairingResolver, active_pairings, pairing_for
from app.pipeline.state_machine import JobPhase, JobStatus


def test_no_pairing_without_worker(make_job):
    assert pairing_for(make_job()) is None


def test_no_pairing_once_terminal(make_job):
    assert pairing_for(make_job(status=JobStatus.COMPLETE, assigned_worker="w1")) is None


def test_pairing_for_live_job(make_job):
    job = make_job(status=JobStatus.RUNNING, assigned_worker="w1")

    pairing = pairing_for(job)

    assert pairing.job_id == job.id
    assert pairing.requester == "req-1"
    assert pairing.worker.id == "w1"
    assert pairing.worker.address is None
    assert pairing.phase == JobPhase.PROCESSING


def test_active_pairings(make_job):
    jobs = [
        make_job("p"),
        make_job("a", status=JobStatus.ASSIGNED, assigned_worker="w1"),
        make_job("s", status=JobStatus.STREAMING, assigned_worker="w2"),
        make_job("f", status=JobStatus.FAILED, assigned_worker="w3"),
    ]

    assert {p.job_id for p in active_pairings(jobs)} == {"a", "s"}


def test_resolver_enriches_from_registry(store, registry, register_worker, make_job):
    register_worker("w1", address="0xabc", name="Rig One")
    store.create(make_job("j", status=JobStatus.ASSIGNED, assigned_worker="w1"))
    store.create(make_job("k"))
    resolver = PairingResolver(store, registry)

    pairing = resolver.get_pairing("j")

    assert pairing.worker.address == "0xabc"
    assert pairing.worker.name == "Rig One"
    assert resolver.get_pairing("k") is None
    assert resolver.get_pairing("missing") is None
    assert [p.job_id for p in resolver.get_active_pairings()] == ["j"]
