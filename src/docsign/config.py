"""Application settings."""

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration, read from DOCSIGN_* environment variables."""

    # Application
    app_name: str = "Document Signing Service"
    app_version: str = "1.0.0"
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "text"  # "text" | "json"

    # Persistence
    database_url: str = "sqlite:///./docsign.db"
    upload_dir: str = "uploads"
    max_file_size: int = 10 * 1024 * 1024  # 10 MB
    require_pdf: bool = True

    # Auth
    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Signing
    signing_policy: str = "SEQUENTIAL"  # "SEQUENTIAL" | "PARALLEL"
    primitive_timeout_seconds: float = 10.0
    primitive_workers: int = 4

    # Store reads
    read_retries: int = 3
    read_retry_delay: float = 0.2

    # Background jobs
    enable_background_jobs: bool = True
    finalize_interval_seconds: int = 60
    cleanup_interval_hours: int = 24
    rejected_retention_days: int = 30

    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"]
    )

    model_config = SettingsConfigDict(
        env_prefix="DOCSIGN_",
        env_file=str(Path(__file__).resolve().parent.parent.parent / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
