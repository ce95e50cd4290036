"""
Configuration settings for the study-trail engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///studytrail.db",
        description="SQLAlchemy connection string for trail, completion and revision storage",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # Persistence outbox
    # ========================================
    trail_save_debounce_ms: int = Field(
        default=500,
        description="Delay before a weekly trail write is flushed (coalesces rapid edits)",
    )
    completion_save_debounce_ms: int = Field(
        default=500,
        description="Delay before a completion map write is flushed (coalesces rapid toggles)",
    )

    # ========================================
    # Revision scheduling (SRS)
    # ========================================
    revision_default_offsets: list[int] = Field(
        default=[1, 7, 15, 30],
        description="Day offsets used when the caller gives none (D+1, D+7, D+15, D+30)",
    )
    revision_proximity_hours: float = Field(
        default=12.0,
        description="Pending revisions closer than this to a target date cover it",
    )
    revision_default_origin: Literal["flashcard", "error", "manual", "theory"] = Field(
        default="theory",
        description="Origin tag for revisions created from a study session",
    )

    # ========================================
    # Plan generation
    # ========================================
    plan_max_topics_per_day: int = Field(
        default=4,
        description="Maximum topics the round-robin planner places on one day",
    )
    plan_default_days: list[str] = Field(
        default=["mon", "tue", "wed", "thu", "fri"],
        description="Days used by the planner when none are selected",
    )
    ai_planner_url: str | None = Field(
        default=None,
        description="Base URL of the remote AI planning service (None disables it)",
    )
    ai_planner_timeout_ms: int = Field(
        default=30000,
        description="Request timeout for the AI planner in milliseconds",
    )
    ai_planner_retry_attempts: int = Field(
        default=3,
        description="Retry attempts for AI planner timeouts and 5xx responses",
    )

    @field_validator("revision_default_offsets")
    @classmethod
    def _offsets_positive(cls, value: list[int]) -> list[int]:
        if not value or any(offset <= 0 for offset in value):
            raise ValueError("revision_default_offsets must be a non-empty list of positive integers")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
