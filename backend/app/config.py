"""Application configuration. All sensitive config from .env."""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """App settings from environment."""

    # Database - default SQLite for easy local dev; use DATABASE_URL for PostgreSQL
    database_url: str = "sqlite:///./support_desk.db"

    # Optional: explicit CA bundle for Supabase (asyncpg SSL verification).
    # If set to a relative path, it's resolved relative to backend/.
    supabase_ssl_ca_file: Optional[str] = None

    # SQLAlchemy pooling (Postgres only). When using Supabase pooler/transaction URL,
    # keep these modest to avoid opening too many server connections.
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout_s: int = 30
    db_pool_recycle_s: int = 1800

    # SQLite concurrency tuning (used when DATABASE_URL starts with sqlite://)
    sqlite_busy_timeout_ms: int = 5000

    # Auth - service role key for function-to-function calls, anon key for the frontend,
    # JWT secret for user tokens (at least one required)
    secret_key: str = ""
    jwt_algorithm: str = "HS256"
    service_role_key: str = ""
    anon_key: str = ""

    # Function chaining: base URL the functions use to call each other
    functions_base_url: str = "http://localhost:8000/api/functions"
    # Deadline for every delegated call (worker -> processor, queue -> capability).
    # Never shorter than one full sync batch: see function_call_deadline_s.
    function_call_timeout_s: Optional[float] = None
    function_call_margin_s: float = 10.0

    # Job worker budgets (per invocation)
    worker_max_jobs_per_run: int = 5
    worker_timeout_s: float = 50.0
    worker_pause_s: float = 0.1
    # Celery beat interval for the scheduled worker/queue runs
    worker_schedule_interval_s: float = 60.0
    # Celery beat interval for queueing incremental syncs of every active mailbox
    sync_schedule_interval_s: float = 900.0

    # Sync jobs
    sync_default_batch_size: int = 20
    sync_max_batch_size: int = 50
    sync_execution_timeout_s: float = 50.0
    imap_connect_timeout_s: float = 30.0
    sync_job_max_retries: int = 3
    # Jobs stuck in "processing" longer than this are reclaimed
    sync_job_stale_after_s: int = 600
    sync_default_job_type: str = "incremental_sync"
    # Enqueue AI work for freshly synced mail
    auto_classify_new_emails: bool = True
    auto_draft_new_tickets: bool = False

    # Classification / draft queues
    classification_queue_batch_size: int = 10
    draft_queue_batch_size: int = 5
    queue_default_max_retries: int = 3
    queue_default_priority: int = 5

    # AI - set OPENAI_API_KEY for LLM classification and drafts
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.3
    draft_temperature: float = 0.7
    response_language: str = "French"

    # Credential encryption. When ENCRYPTION_KEY is unset the crypto gate refuses to run
    # unless ALLOW_FALLBACK_ENCRYPTION_KEY derives one from SERVICE_ROLE_KEY.
    encryption_key: Optional[str] = None
    allow_fallback_encryption_key: bool = False

    # Rate limiting: action -> [max_attempts, window_seconds]; "default" applies to the rest
    rate_limit_rules: dict[str, list[int]] = {
        "login": [5, 900],
        "send_email": [50, 3600],
        "default": [100, 60],
    }

    # CORS
    cors_origins: list[str] = ["*"]

    # Redis (for Celery)
    redis_url: str = "redis://localhost:6379/0"

    # Celery
    celery_broker_url: Optional[str] = None  # defaults to redis_url if not set

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def celery_broker(self) -> str:
        return self.celery_broker_url or self.redis_url

    @property
    def function_call_deadline_s(self) -> float:
        """Configured deadline, raised to cover an IMAP connect plus a full sync batch."""
        batch_budget = self.imap_connect_timeout_s + self.sync_execution_timeout_s + self.function_call_margin_s
        return max(self.function_call_timeout_s or 0.0, batch_budget)


settings = Settings()
