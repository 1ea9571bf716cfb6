"""Configuration settings for Roster Sync."""

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthConfig(BaseModel):
    """Configuration for OAuth2 client-credentials token handling.

    Controls the token endpoint, the proactive refresh threshold and the
    retry policy used when requesting a new token.
    """

    token_endpoint: str = Field(
        default="https://clever.com/oauth/tokens",
        description="OAuth2 token endpoint",
    )
    refresh_threshold_pct: float = Field(
        default=75.0,
        gt=0.0,
        le=100.0,
        description="% of token lifetime elapsed after which it is refreshed",
    )
    max_attempts: int = Field(
        default=5,
        ge=1,
        le=10,
        description="Token request attempts before giving up",
    )
    base_delay_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Base delay for exponential backoff between token attempts",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="HTTP timeout for the token request",
    )


class ApiConfig(BaseModel):
    """Configuration for the source roster API.

    Controls base URL, page size and the transient-fault retry policy.
    """

    base_url: str = Field(
        default="https://api.clever.com/v3.0",
        description="Base URL for data endpoints",
    )
    page_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Records requested per page",
    )

    # Retry policy
    max_retries: int = Field(
        default=5,
        ge=1,
        le=10,
        description="Retries after the first attempt for network errors and 5xx responses",
    )
    base_delay_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="First backoff delay; doubles on each attempt",
    )
    rate_limit_margin_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Safety margin added to a 429 Retry-After hint",
    )
    max_rate_limit_waits: int = Field(
        default=20,
        ge=1,
        description="Consecutive 429 responses tolerated for one request",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="HTTP timeout per request",
    )

    def backoff_delays(self) -> list[float]:
        """Delays slept after each failed attempt (2, 4, 8, 16, 32 by default)."""
        return [self.base_delay_seconds * 2**n for n in range(self.max_retries)]


class SyncConfig(BaseModel):
    """Configuration for sync orchestration.

    Controls fan-out concurrency, lock lifetime and batch commits.
    """

    max_concurrent_schools: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Schools synced in parallel within one district run",
    )
    lock_ttl_minutes: int = Field(
        default=60,
        ge=1,
        description="Lifetime of a sync lock before it may be reclaimed",
    )
    heartbeat_interval_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="How often a running sync extends its lock",
    )
    require_all_children_success: bool = Field(
        default=False,
        description="Mark a district run failed (not partial) if any school fails",
    )
    commit_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Applied events per commit during incremental sync",
    )
    max_event_pages: int = Field(
        default=50,
        ge=1,
        description="Change-feed pages read per incremental run (the rest waits for the next run)",
    )

    @property
    def lock_ttl(self) -> timedelta:
        """Get the lock TTL as a timedelta."""
        return timedelta(minutes=self.lock_ttl_minutes)


class ScheduleConfig(BaseModel):
    """Configuration for the scheduled trigger."""

    window_minutes: int = Field(
        default=5,
        ge=1,
        le=60,
        description="A schedule is due if its local time fell within this window",
    )
    poll_interval_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds between schedule checks",
    )


class LoggingConfig(BaseModel):
    """Configuration for logging behavior.

    Controls file logging, rotation, and output format.
    """

    log_file: str | None = Field(
        default=None,
        description="Optional path for file logging (enables rotation)",
    )
    rotation: str = Field(
        default="10 MB",
        description="When to rotate log file (e.g., '10 MB', '1 day')",
    )
    retention: str = Field(
        default="7 days",
        description="How long to keep rotated logs",
    )
    serialize: bool = Field(
        default=False,
        description="If True, output JSON format to file",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # --------------------------------------------------------------------------
    # Database
    # --------------------------------------------------------------------------
    database_url: str = Field(
        default="sqlite+aiosqlite:///./roster_sync.db",
        description="Async SQLite database connection string",
    )

    # --------------------------------------------------------------------------
    # Clever credentials
    # --------------------------------------------------------------------------
    clever_client_id: str = Field(
        default="",
        description="OAuth2 client id for the district app",
    )
    clever_client_secret: str = Field(
        default="",
        description="OAuth2 client secret for the district app",
    )

    # --------------------------------------------------------------------------
    # Application
    # --------------------------------------------------------------------------
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # --------------------------------------------------------------------------
    # Source API
    # --------------------------------------------------------------------------
    auth: AuthConfig = Field(
        default_factory=AuthConfig,
        description="Token acquisition configuration",
    )
    api: ApiConfig = Field(
        default_factory=ApiConfig,
        description="Data API configuration",
    )

    # --------------------------------------------------------------------------
    # Sync Configuration
    # --------------------------------------------------------------------------
    sync: SyncConfig = Field(
        default_factory=SyncConfig,
        description="Sync orchestration configuration",
    )
    schedule: ScheduleConfig = Field(
        default_factory=ScheduleConfig,
        description="Scheduled trigger configuration",
    )

    # --------------------------------------------------------------------------
    # Logging Configuration
    # --------------------------------------------------------------------------
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration (file output, rotation)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
