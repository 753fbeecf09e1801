from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "Approval Workflows"
    app_env: str = "development"  # development, testing, production
    debug: bool = False

    # Logging
    log_user_ids: bool = True  # Bind acting user ids to log context

    # Database
    database_url: str = "sqlite+aiosqlite:///./approvals.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_echo: bool = False

    # Engine
    auto_chain_max_length: int = 100  # Max auto-executed hops per chain
    join_lock_ttl_seconds: int = 30  # Redis lock TTL for the parallel join barrier
    parallel_group_prefix: str = "parallel_"

    # Temporal
    temporal_host: str = "localhost:7233"
    temporal_namespace: str = "default"
    temporal_task_queue: str = "approvals-queue"

    # Email (Resend)
    resend_api_key: str | None = None  # If not set, emails are logged but not sent
    email_from: str = "noreply@example.com"
    email_send_timeout_seconds: int = 10  # Timeout for email API calls

    # HTTP action handler
    http_default_timeout_seconds: float = 30.0
    http_max_retries: int = 3

    # Redis (optional - join lock falls back to row locks without it)
    redis_url: str | None = None  # e.g., "redis://localhost:6379/0"
    redis_pool_size: int = 10

    @field_validator("auto_chain_max_length")
    @classmethod
    def validate_chain_length(cls, v: int) -> int:
        if v < 1:
            raise ValueError("AUTO_CHAIN_MAX_LENGTH must be at least 1")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    return Settings()
