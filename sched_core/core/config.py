from functools import lru_cache
from typing import Dict, List
from pydantic_settings import BaseSettings
from pydantic import ConfigDict


class Settings(BaseSettings):
    API_V1_STR: str = "/api/v1"
    VERSION: str = "0.1.0"
    PROJECT_NAME: str = "sched_core"

    # Application
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    APP_BASE_URL: str = "http://localhost:3001"
    CORS_ORIGINS: List[str] = ["*"]

    # Database settings
    DB_URL: str = "postgres:postgres@localhost:5432/sched_core"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # Security
    CRON_SECRET: str = ""
    WEBHOOK_SECRET: str = ""
    WEBHOOK_SIGNATURE_HEADER: str = "x-icims-signature"
    WEBHOOK_PROVIDER: str = "icims"

    # Retry policy
    NOTIFICATION_MAX_ATTEMPTS: int = 5
    WEBHOOK_MAX_ATTEMPTS: int = 3
    RECONCILIATION_MAX_ATTEMPTS: int = 3
    BACKOFF_BASE_SECONDS: float = 60.0
    BACKOFF_CAP_SECONDS: float = 3600.0
    BACKOFF_JITTER_RATIO: float = 0.25

    # Locks and runs
    LOCK_TTL_SECONDS: int = 120
    LOCK_TTL_OVERRIDES: Dict[str, int] = {}
    JOB_RUN_STALE_SECONDS: int = 900

    # Batch processing
    BATCH_SIZE: int = 10
    CLAIM_STALE_SECONDS: int = 300
    EXTERNAL_CALL_TIMEOUT_SECONDS: float = 10.0

    # Outbound mail
    EMAIL_MODE: str = "console"
    MAIL_API_URL: str = ""
    MAIL_API_KEY: str = ""
    MAIL_FROM: str = "noreply@sched.local"

    # External collaborators
    CALENDAR_MODE: str = "mock"
    ATS_MODE: str = "mock"

    # Reconciliation
    RECONCILIATION_GRACE_MINUTES: int = 1440
    RECONCILIATION_SCAN_LIMIT: int = 200

    # Coordinator escalation
    ESCALATION_NO_RESPONSE_HOURS: int = 120
    ESCALATION_REPEAT_HOURS: int = 24
    ESCALATION_SCAN_LIMIT: int = 200

    # Periodic runner (command line)
    POLL_INTERVAL: float = 60.0
    MAX_POLL_INTERVAL: float = 300.0
    BACKOFF_FACTOR: float = 1.5
    WORKER_JOBS: List[str] = ["notify", "webhook", "reconcile", "escalate"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = True

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def async_database_url(self) -> str:
        """Async URL for the engine; a full URL in DB_URL is used as-is."""
        if "://" in self.DB_URL:
            return self.DB_URL
        return f"postgresql+asyncpg://{self.DB_URL}"

    def lock_ttl_for(self, job_name: str) -> int:
        return self.LOCK_TTL_OVERRIDES.get(job_name, self.LOCK_TTL_SECONDS)


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
