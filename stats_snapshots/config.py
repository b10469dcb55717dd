"""
Configuration settings for the statistics snapshot pipeline.
Uses Pydantic Settings for type-safe environment variable loading.
"""
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


class Settings(BaseSettings):
    """Application settings loaded from STATS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="STATS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # EXECUTION LEASE
    # ==========================================================================
    lock_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()),
        description="Directory holding calculation lease files",
    )

    # ==========================================================================
    # RETRY CONFIGURATION
    # ==========================================================================
    retry_max_attempts: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries per snapshot after the first attempt",
    )
    retry_delay_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=300.0,
        description="Base delay; attempt n waits base * n seconds",
    )

    # ==========================================================================
    # BACKFILL
    # ==========================================================================
    backfill_batch_size: int = Field(default=30, ge=1, le=365)
    backfill_default_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="Days covered when no start date is given",
    )

    # ==========================================================================
    # SNAPSHOTS & DATA
    # ==========================================================================
    timezone: str = Field(default="UTC", description="Zone used for period boundaries")
    snapshot_ttl_days: int = Field(
        default=0,
        ge=0,
        description="Days until a new snapshot expires (0 = never)",
    )
    activity_data_path: Optional[Path] = Field(
        default=None,
        description="JSON file with posts, users and activities for the in-memory sources",
    )
    snapshot_store_path: Optional[Path] = Field(
        default=None,
        description="JSON file persisting snapshots between runs",
    )

    # ==========================================================================
    # CACHE
    # ==========================================================================
    cache_default_ttl: int = Field(default=3600, ge=1)
    cache_max_entries: int = Field(default=1024, ge=1, le=1_000_000)

    # ==========================================================================
    # SCHEDULER
    # ==========================================================================
    schedule_enabled: bool = Field(default=True)
    daily_schedule_hour: int = Field(default=0, ge=0, le=23)
    weekly_schedule_day: str = Field(default="mon")
    monthly_schedule_day: int = Field(default=1, ge=1, le=28)
    cleanup_schedule_hour: int = Field(default=3, ge=0, le=23)

    # ==========================================================================
    # LOGGING
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="console")
    debug: bool = Field(default=False)

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("weekly_schedule_day")
    @classmethod
    def validate_weekday(cls, v: str) -> str:
        day = v.strip().lower()[:3]
        if day not in WEEKDAYS:
            raise ValueError(f"weekly_schedule_day must be one of {', '.join(WEEKDAYS)}")
        return day

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def retry_schedule(self) -> list[float]:
        """Delays (seconds) that a fully failing item waits between attempts."""
        return [self.retry_delay_seconds * n for n in range(1, self.retry_max_attempts + 1)]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
