"""Background worker that claims pending jobs and runs inference for them."""

import logging
import threading
import time
from typing import Callable, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.database import SessionLocal
from app.pipeline.coordinator import JobCoordinator
from app.pipeline.errors import TransitionErrorCode, UpstreamError
from app.pipeline.state_machine import JobStatus, is_terminal
from app.schemas.job import JobRecord
from app.schemas.worker import WorkerStatus
from app.services.inference_client import InferenceClient, build_request
from app.services.job_store import JobStore
from app.services.model_catalog import calculate_actual_cost, count_tokens
from app.services.worker_registry import WorkerRegistry

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

# Claim rejections that just mean another worker got there first
SKIPPABLE_CLAIM_ERRORS = (TransitionErrorCode.ALREADY_CLAIMED, TransitionErrorCode.INVALID_STATE)


class Worker:
    """Polls for pending jobs, claims one at a time and streams its output."""

    def __init__(
        self,
        worker_id: Optional[str] = None,
        inference_client: Optional[InferenceClient] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        poll_interval: Optional[float] = None,
    ):
        """Initialize worker."""
        self.worker_id = worker_id or settings.WORKER_ID
        self.inference_client = inference_client or InferenceClient()
        self.session_factory = session_factory
        self.poll_interval = poll_interval if poll_interval is not None else settings.WORKER_POLL_INTERVAL
        self.current_job_id: Optional[str] = None
        self._cancel = threading.Event()

    def cancel_current(self) -> bool:
        """
        Ask the worker to give up on the job it is processing.

        Safe to call repeatedly. Returns False when there is no current job.
        """
        if self.current_job_id is None:
            logger.info(f"Worker {self.worker_id}: no job to cancel")
            return False
        if not self._cancel.is_set():
            logger.info(f"Worker {self.worker_id}: cancelling job {self.current_job_id}")
        self._cancel.set()
        return True

    def wait_for_database(self, max_wait: int = 60):
        """Block until the jobs table is queryable or ``max_wait`` seconds pass."""
        waited = 0
        while waited < max_wait:
            db = self.session_factory()
            try:
                db.execute(text("SELECT 1 FROM jobs LIMIT 1"))
                logger.info("Database is ready, starting worker loop")
                return
            except SQLAlchemyError as e:
                logger.info(f"Waiting for database ({waited}s): {e}")
            finally:
                db.close()
            time.sleep(2)
            waited += 2
        logger.error(f"Database not ready after {max_wait} seconds, starting anyway...")

    def run(self, stop_event: Optional[threading.Event] = None):
        """Main worker loop.

        Args:
            stop_event: Optional threading.Event to signal worker to stop
        """
        logger.info(f"Worker {self.worker_id} started - waiting for database to be ready...")
        self.wait_for_database()

        while True:
            if stop_event and stop_event.is_set():
                logger.info("Worker stop signal received")
                break

            try:
                job = self.run_once()
            except KeyboardInterrupt:
                logger.info("Worker shutting down")
                break
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)
                job = None

            if job is None:
                if stop_event:
                    stop_event.wait(self.poll_interval)
                else:
                    time.sleep(self.poll_interval)

    def run_once(self) -> Optional[JobRecord]:
        """Claim and process at most one job. Returns the job's final snapshot."""
        db = self.session_factory()
        try:
            coordinator = JobCoordinator(JobStore(db))
            job = self.claim_next(coordinator)
            if job is None:
                return None
            return self.process_job(job, coordinator, WorkerRegistry(db))
        finally:
            db.close()

    def claim_next(self, coordinator: JobCoordinator) -> Optional[JobRecord]:
        """Claim the oldest pending job this worker can win."""
        for job in coordinator.store.list(status=JobStatus.PENDING, oldest_first=True):
            result = coordinator.claim(job.id, self.worker_id)
            if result.success:
                return result.job
            if result.error not in SKIPPABLE_CLAIM_ERRORS:
                logger.warning(f"Unexpected claim rejection for job {job.id}: {result.message}")
        return None

    def process_job(
        self,
        job: JobRecord,
        coordinator: JobCoordinator,
        registry: Optional[WorkerRegistry] = None,
    ) -> Optional[JobRecord]:
        """Drive a claimed job to a terminal status."""
        logger.info(f"Processing job {job.id} (model: {job.model_id})")
        self.current_job_id = job.id
        if registry:
            registry.heartbeat(self.worker_id, WorkerStatus.BUSY, job.id)

        try:
            if self._cancel.is_set():
                return coordinator.abandon(job.id, self.worker_id).job

            started = coordinator.start_processing(job.id, self.worker_id)
            if not started.success:
                logger.warning(f"Could not start job {job.id}: {started.message}")
                return started.job

            output = self._stream(job, coordinator)
            if output is None:
                return coordinator.abandon(job.id, self.worker_id).job

            output_text, eval_count = output
            output_tokens = eval_count if eval_count is not None else count_tokens(output_text)
            cost = calculate_actual_cost(job.model_id, job.input_tokens, output_tokens)

            result = coordinator.complete(job.id, output_text, cost, output_tokens, self.worker_id)
            if not result.success:
                logger.warning(f"Could not complete job {job.id}: {result.message}")
                return result.job

            finished = result.job
            if registry and finished.started_at and finished.completed_at:
                response_time = (finished.completed_at - finished.started_at).total_seconds()
                registry.record_completion(self.worker_id, cost, response_time)

            logger.info(f"Job {job.id} completed ({output_tokens} tokens, cost {cost})")
            return finished

        except UpstreamError as e:
            logger.error(f"Inference failed for job {job.id}: {e}")
            return coordinator.fail(job.id, str(e), self.worker_id).job

        except Exception as e:
            logger.error(f"Job {job.id} failed: {e}", exc_info=True)
            return coordinator.fail(job.id, f"Worker error: {e}", self.worker_id).job

        finally:
            current = coordinator.store.get(job.id)
            if current is not None and not is_terminal(current.status) and current.assigned_worker == self.worker_id:
                logger.warning(f"Job {job.id} left in '{current.status.value}', abandoning")
                coordinator.abandon(job.id, self.worker_id, "Worker stopped before the job finished")

            self.current_job_id = None
            self._cancel.clear()
            if registry:
                registry.heartbeat(self.worker_id, WorkerStatus.ONLINE)

    def _stream(self, job: JobRecord, coordinator: JobCoordinator):
        """
        Stream the backend's output into the job.

        Returns (text, eval_count), or None if the job was cancelled
        mid-stream or stopped accepting output.
        """
        request = build_request(job)
        parts = []
        eval_count = None
        streaming = False

        chunks = self.inference_client.stream_generate(request)
        try:
            for chunk in chunks:
                if self._cancel.is_set():
                    return None

                if not streaming:
                    result = coordinator.start_streaming(job.id, self.worker_id)
                    if not result.success:
                        raise RuntimeError(result.message)
                    streaming = True

                if chunk.response:
                    parts.append(chunk.response)
                    recorded = coordinator.record_output(job.id, chunk.response, 1, self.worker_id)
                    if not recorded.success:
                        logger.warning(f"Stopping stream for job {job.id}: {recorded.message}")
                        return None

                if chunk.done:
                    eval_count = chunk.eval_count
                    break
        finally:
            close = getattr(chunks, "close", None)
            if close:
                close()

        if self._cancel.is_set():
            return None
        return "".join(parts), eval_count


def worker_loop(stop_event=None):
    """Run worker loop (for use as background thread).

    Args:
        stop_event: Optional threading.Event to signal worker to stop
    """
    worker = Worker()
    worker.run(stop_event=stop_event)


def main():
    """Entry point for standalone worker."""
    worker = Worker()
    worker.run()


if __name__ == "__main__":
    main()
