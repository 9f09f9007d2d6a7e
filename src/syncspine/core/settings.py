"""Environment-driven settings for SyncSpine services.

Every tunable of the scheduler, the consumer pool, the error monitor and the
ingestion sink lives here. Components take plain constructor arguments;
only ``SyncService`` and the CLI read settings.

Examples:
    >>> from syncspine.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.poll_interval
    3.0

    Override via environment::

        SYNCSPINE_MAX_THREADS=10 SYNCSPINE_LOG_LEVEL=DEBUG syncspine run
"""

from __future__ import annotations

import socket
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from syncspine.core.models import DEFAULT_REQUEST_PIPELINE

MiB = 1024 * 1024


class SyncSpineSettings(BaseSettings):
    """SyncSpine configuration, read from ``SYNCSPINE_*`` env vars and ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="SYNCSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Service ──────────────────────────────────────────────────
    service_name: str = "syncspine"
    log_level: str = "INFO"
    log_json: bool | None = None
    worker_hostname: str = Field(default_factory=socket.gethostname)

    # ── Storage ──────────────────────────────────────────────────
    database_path: str = Field(
        default="syncspine.db",
        description="SQLite file holding connectors and sync jobs",
    )

    # ── Search engine ────────────────────────────────────────────
    elasticsearch_url: str | None = Field(
        default=None,
        description="Elasticsearch endpoint; documents stay in memory when unset",
    )
    elasticsearch_api_key: str | None = None
    request_pipeline: str = DEFAULT_REQUEST_PIPELINE

    # ── Job consumer ─────────────────────────────────────────────
    poll_interval: float = Field(default=3.0, gt=0)
    termination_timeout: float = Field(default=60.0, ge=0)
    max_threads: int = Field(default=5, ge=1)
    max_queue: int = Field(default=100, ge=0)

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_poll_interval: float = Field(default=60.0, gt=0)
    heartbeat_interval: float = Field(default=1800.0, gt=0)
    stuck_job_threshold: float = Field(default=300.0, gt=0)

    # ── Error monitor ────────────────────────────────────────────
    max_errors: int = Field(default=1000, ge=0)
    max_consecutive_errors: int = Field(default=10, ge=0)
    max_error_ratio: float = Field(default=0.15, ge=0, le=1)
    error_window_size: int = Field(default=100, ge=1)
    error_queue_size: int = Field(default=20, ge=1)

    # ── Ingestion ────────────────────────────────────────────────
    bulk_max_items: int = Field(default=500, ge=1)
    bulk_max_bytes: int = Field(default=5 * MiB, ge=1)
    max_allowed_document_size: int = Field(default=5 * MiB, ge=1)
    check_interval: int = Field(
        default=100,
        ge=1,
        description="Documents between cancellation checks and progress updates",
    )
    progress_interval: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between progress updates of a running job; keep well under stuck_job_threshold",
    )

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    def error_monitor_options(self) -> dict[str, int | float]:
        return {
            "max_errors": self.max_errors,
            "max_consecutive_errors": self.max_consecutive_errors,
            "max_error_ratio": self.max_error_ratio,
            "window_size": self.error_window_size,
            "error_queue_size": self.error_queue_size,
        }


@lru_cache
def get_settings() -> SyncSpineSettings:
    return SyncSpineSettings()
