"""FastAPI application entry point."""

import logging
import os
import threading

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.pipeline.errors import StoreUnavailableError
from app.routes import jobs, stats, workers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Inference Marketplace",
    description="Job lifecycle and claim coordination for a decentralized inference marketplace",
    version="0.1.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(jobs.router)
app.include_router(workers.router)
app.include_router(stats.router)

# Worker thread management
worker_thread = None
worker_stop_event = threading.Event()


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    logger.error(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def run_worker_loop():
    """Run the worker loop in a background thread."""
    from app.worker import worker_loop
    logger.info("Starting background worker thread")
    worker_loop(worker_stop_event)


def prepare_database():
    """Run migrations when the schema is missing."""
    import sqlalchemy

    from app.database import Base, engine

    try:
        if sqlalchemy.inspect(engine).has_table("jobs"):
            logger.info("Database tables already exist, skipping migrations")
            return

        logger.info("Running database migrations...")
        from alembic import command
        from alembic.config import Config

        alembic_cfg = Config(os.path.join(os.path.dirname(os.path.dirname(__file__)), "alembic.ini"))
        command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations completed successfully")
    except Exception as e:
        logger.error(f"Startup database check/migration error: {e}")
        logger.info("Creating tables from models instead")
        Base.metadata.create_all(bind=engine)


@app.on_event("startup")
async def startup_event():
    """Prepare the database and start the background worker if enabled."""
    global worker_thread
    logger.info("Starting application...")

    prepare_database()

    if not settings.WORKER_ENABLED:
        logger.info("Background worker disabled")
        return

    logger.info("Starting background worker thread...")
    worker_thread = threading.Thread(target=run_worker_loop, daemon=True)
    worker_thread.start()
    logger.info("Background worker thread started")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the background worker when the app shuts down."""
    logger.info("Shutting down application...")

    # Signal worker to stop
    worker_stop_event.set()

    # Wait for worker thread to finish (with timeout)
    if worker_thread and worker_thread.is_alive():
        worker_thread.join(timeout=10)
        logger.info("Background worker thread stopped")


@app.get("/health")
def health():
    """Health check endpoint, including inference backend reachability."""
    from app.services.inference_client import InferenceClient

    backend_ok = InferenceClient().check_health()
    return {
        "status": "healthy",
        "inference_backend": "reachable" if backend_ok else "unreachable",
        "worker_enabled": settings.WORKER_ENABLED,
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "name": "Inference Marketplace",
        "version": "0.1.0",
        "status": "running",
    }
