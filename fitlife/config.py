"""
Runtime Configuration

All tunables for the personalization engine live here and can be
overridden through environment variables prefixed with FITLIFE_
(e.g. FITLIFE_CACHE_TTL_SECONDS=300) or a local .env file.

DEFAULTS:
=========
- Cache TTL: 10 minutes
- Durable fallback window: 10 minutes
- Candidate pool: 100 upcoming classes
- Batch refresh: every 10 minutes, active users of the last 7 days
- Segment refresh: every 30 minutes, 30 day lookback
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings (environment overridable)"""

    model_config = SettingsConfigDict(
        env_prefix="FITLIFE_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Storage
    database_url: str = "sqlite+aiosqlite:///data/fitlife.db"
    redis_url: Optional[str] = None

    # Cache-aside
    cache_ttl_seconds: int = Field(600, ge=1)
    cache_max_entries: int = Field(10000, ge=1)
    fallback_window_minutes: int = Field(10, ge=0)

    # Generation
    candidate_limit: int = Field(100, ge=1)
    default_limit: int = Field(10, ge=1)
    max_limit: int = Field(50, ge=1)
    interaction_lookback_days: int = Field(90, ge=1)
    generation_timeout_seconds: float = Field(5.0, gt=0)
    max_reasons: int = Field(3, ge=1)

    # Background jobs (run inside the API process unless disabled;
    # worker.py runs them standalone)
    api_background_jobs: bool = True

    # Batch refresh scheduler
    batch_refresh_enabled: bool = True
    batch_refresh_interval_seconds: float = Field(600, gt=0)
    batch_refresh_startup_delay_seconds: float = Field(30, ge=0)
    batch_refresh_error_backoff_seconds: float = Field(300, ge=0)
    batch_refresh_batch_size: int = Field(100, ge=1)
    batch_refresh_active_window_days: int = Field(7, ge=1)

    # Segment refresh job
    segment_refresh_enabled: bool = True
    segment_refresh_interval_seconds: float = Field(1800, gt=0)
    segment_refresh_startup_delay_seconds: float = Field(60, ge=0)
    segment_refresh_error_backoff_seconds: float = Field(600, ge=0)
    segment_lookback_days: int = Field(30, ge=1)

    # Logging
    log_level: str = "INFO"
    log_serialize: bool = False


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings instance"""
    return Settings()
