"""Pytest configuration and fixtures."""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401
from app.database import Base, get_db, make_engine
from app.schemas.job import JobParameters, JobRecord
from app.schemas.worker import WorkerRegistration
from app.services.job_store import JobStore
from app.services.worker_registry import WorkerRegistry

CREATED_AT = datetime(2026, 1, 1, 12, 0, 0)


@pytest.fixture(scope="function")
def session_factory(tmp_path):
    """Session factory on a fresh file-backed SQLite database.

    A file rather than :memory: so that sessions opened from several threads
    see the same data.
    """
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)

    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    yield factory

    engine.dispose()


@pytest.fixture(scope="function")
def test_db(session_factory):
    """Create a test database session for each test."""
    db = session_factory()

    yield db

    db.close()


@pytest.fixture
def store(test_db):
    return JobStore(test_db)


@pytest.fixture
def registry(test_db):
    return WorkerRegistry(test_db)


@pytest.fixture
def make_job():
    """Build an unsaved pending job with sensible defaults."""

    def _make(job_id: str = "job-1", **overrides) -> JobRecord:
        fields = dict(
            id=job_id,
            model_id="gpt-oss-20b",
            prompt="Explain compare-and-swap in one sentence.",
            parameters=JobParameters(max_tokens=100),
            requester="req-1",
            created_at=CREATED_AT,
            input_tokens=10,
            estimated_cost=500,
        )
        fields.update(overrides)
        return JobRecord(**fields)

    return _make


@pytest.fixture
def register_worker(registry):
    def _register(worker_id: str = "w1", address: str = None, **overrides) -> str:
        registration = WorkerRegistration(id=worker_id, address=address or f"0x{worker_id}", **overrides)
        registry.register(registration)
        return worker_id

    return _register


@pytest.fixture
def client(session_factory):
    """API client whose requests use the test database."""
    from app.main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
