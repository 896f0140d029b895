"""Configuration settings for the training planner service."""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.database import DEFAULT_DATABASE_URL


class Settings(BaseSettings):
    """Application settings loaded from PLANNER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PLANNER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: List[str] = [
        "http://localhost:3000",  # React dev server
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]

    # Database
    database_url: str = DEFAULT_DATABASE_URL

    # Broker and job registry
    broker_url: str = "redis://localhost:6379/0"
    result_backend: str = "redis://localhost:6379/0"
    redis_url: str = "redis://localhost:6379/0"
    task_always_eager: bool = False  # run jobs inline, without a broker
    completed_job_marker_seconds: float = Field(default=24 * 60 * 60, gt=0)

    # Generation worker
    worker_concurrency: int = Field(default=5, ge=1)
    rate_limit_max: int = Field(default=10, ge=1)
    rate_limit_duration_seconds: float = Field(default=1.0, gt=0)

    # Generation jobs: single attempt, failed jobs kept 5 minutes
    job_attempts: int = Field(default=1, ge=1)
    job_backoff_seconds: float = Field(default=1.0, ge=0)
    failed_job_retention_seconds: float = Field(default=300.0, ge=0)

    # Status polling
    status_poll_attempts: int = Field(default=20, ge=1)
    status_poll_interval_seconds: float = Field(default=0.5, ge=0)

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
