"""Application configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./marketplace.db"

    # Inference backend (Ollama-compatible)
    OLLAMA_URL: str = "http://localhost:11434"
    INFERENCE_TIMEOUT: float = 120.0
    INFERENCE_MAX_RETRIES: int = 3

    # Worker
    WORKER_ENABLED: bool = False
    WORKER_ID: str = "worker-local"
    WORKER_POLL_INTERVAL: int = 5

    # Client-side sync
    JOB_POLL_INTERVAL: float = 2.0  # seconds
    SYNC_BASE_URL: str = "http://localhost:8000"
    SYNC_MAX_RETRIES: int = 3

    # Jobs
    DEFAULT_MAX_TOKENS: int = 500
    OUTPUT_PREVIEW_CHARS: int = 100

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


# Global settings instance
settings = Settings()
