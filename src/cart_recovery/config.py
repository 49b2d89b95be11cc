"""Application configuration management."""

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_name: str = "cart-recovery"
    app_env: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # API Settings
    # -------------------------------------------------------------------------
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 4
    cors_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["http://localhost:3000"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    # -------------------------------------------------------------------------
    # E-Commerce Gateway (catalog, identity, coupons)
    # -------------------------------------------------------------------------
    ecommerce_api_base_url: str = "https://gateway-ecommerce.example.com"
    ecommerce_api_key: str = ""
    ecommerce_api_timeout: int = 30

    # -------------------------------------------------------------------------
    # PostgreSQL Database
    # -------------------------------------------------------------------------
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "carts"
    postgres_password: str = ""
    postgres_db: str = "cart_recovery"
    database_url_override: str = ""

    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800

    @property
    def database_url(self) -> str:
        """Construct async database connection URL."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def database_url_sync(self) -> str:
        """Construct synchronous PostgreSQL connection URL (for Alembic)."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # -------------------------------------------------------------------------
    # Redis
    # -------------------------------------------------------------------------
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0

    @property
    def redis_url(self) -> str:
        """Construct Redis connection URL."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # -------------------------------------------------------------------------
    # Celery
    # -------------------------------------------------------------------------
    celery_broker_url: str = ""
    celery_result_backend: str = ""

    @property
    def celery_broker(self) -> str:
        """Get Celery broker URL, defaulting to Redis URL."""
        return self.celery_broker_url or self.redis_url

    @property
    def celery_backend(self) -> str:
        """Get Celery result backend URL, defaulting to Redis URL."""
        return self.celery_result_backend or self.redis_url

    # -------------------------------------------------------------------------
    # Email Service
    # -------------------------------------------------------------------------
    email_service: Literal["mock", "sendgrid"] = "mock"
    email_from_address: str = "noreply@example.com"
    email_from_name: str = "The Shop"
    sendgrid_api_key: str = ""
    sendgrid_api_url: str = "https://api.sendgrid.com/v3/mail/send"
    mock_email_storage_path: str = "/tmp/cart_recovery_mock_emails"

    # -------------------------------------------------------------------------
    # Security
    # -------------------------------------------------------------------------
    secret_key: str = "change-me-in-production"
    api_key_header: str = "X-API-Key"
    admin_api_key: str = ""
    user_id_header: str = "X-User-Id"

    # -------------------------------------------------------------------------
    # Abandonment Lifecycle
    # -------------------------------------------------------------------------
    abandoned_stale_minutes: int = 15
    abandoned_mark_minutes: int = 60
    abandoned_reminder_schedule: Annotated[list[int], NoDecode] = Field(default_factory=lambda: [60, 1440])
    abandoned_max_reminders: int = 2
    # 0 disables the cut-off
    abandoned_max_cart_age_minutes: int = 4320
    abandoned_final_discount_code: str = ""

    @field_validator("abandoned_reminder_schedule", mode="before")
    @classmethod
    def parse_reminder_schedule(cls, v: str | int | list[int]) -> list[int]:
        if isinstance(v, int):
            return [v]
        if isinstance(v, str):
            return [int(part) for part in v.strip("[] ").split(",") if part.strip()]
        return v

    # -------------------------------------------------------------------------
    # Reminder Scheduler
    # -------------------------------------------------------------------------
    reminder_scheduler_enabled: bool = True
    reminder_interval_seconds: int = 3600
    # Unset: wait one full interval before the first in-process tick
    reminder_initial_delay_seconds: float | None = None
    reminder_dispatch_timeout_seconds: float = 10.0
    reminder_dispatch_concurrency: int = 5
    suppress_test_recipients: bool | None = None

    @property
    def should_suppress_test_recipients(self) -> bool:
        """Skip QA/demo recipients; on by default in production only."""
        if self.suppress_test_recipients is None:
            return self.app_env == "production"
        return self.suppress_test_recipients

    # -------------------------------------------------------------------------
    # Recovery Links
    # -------------------------------------------------------------------------
    frontend_url: str = "http://localhost:3000"
    recovery_token_ttl_hours: int = 72


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
