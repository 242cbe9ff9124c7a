"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates required fields and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Required (unless DRY_RUN is set):
        ANTHROPIC_API_KEY: Anthropic API key for text generation

    Optional:
        MODEL_FAST / MODEL_BALANCED / MODEL_DEEP: Model per generation profile
        LLM_MAX_RETRIES: Retries after the first failed generation attempt
        LLM_BACKOFF_BASE_SECONDS: First backoff delay
        LLM_BACKOFF_MULTIPLIER: Backoff growth factor
        SEARCH_TIMEOUT_SECONDS: Per-request timeout for search providers
        CURATION_THRESHOLD: Article count that triggers curation
        REVIEW_TIMEOUT_SECONDS: Human article review timeout (0 disables)
        DATA_DIR: Directory for the workspace database
        LOG_LEVEL: Logging level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Text generation
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")
    DRY_RUN: bool = Field(
        default=False, description="Return canned generations without calling the API"
    )

    MODEL_FAST: str = Field(
        default="claude-haiku-4-5",
        description="Model for cheap classification/critique calls",
    )
    MODEL_BALANCED: str = Field(
        default="claude-sonnet-4-5-20250929",
        description="Model for batch categorization and summaries",
    )
    MODEL_DEEP: str = Field(
        default="claude-opus-4-5-20251101",
        description="Model for outlines, section analysis and synthesis",
    )

    LLM_MAX_RETRIES: int = Field(default=2, ge=0, le=10, description="Generation retries")
    LLM_BACKOFF_BASE_SECONDS: float = Field(
        default=3.0, ge=0.0, description="First retry delay in seconds"
    )
    LLM_BACKOFF_MULTIPLIER: float = Field(
        default=3.0, ge=1.0, description="Retry delay growth factor"
    )
    LLM_TIMEOUT_SECONDS: float = Field(
        default=600.0, gt=0.0, description="Per-call generation timeout"
    )

    # Search
    SEARCH_TIMEOUT_SECONDS: float = Field(
        default=15.0, gt=0.0, description="Per-request search timeout"
    )
    MAX_RESULTS_PER_QUERY: int = Field(
        default=20, ge=1, le=100, description="Maximum results per query per source"
    )

    # Fast pipeline
    CURATION_THRESHOLD: int = Field(
        default=50, ge=1, description="Article count at which curation kicks in"
    )
    ANALYSIS_BATCH_SIZE: int = Field(
        default=10, ge=1, le=50, description="Articles per categorize/summarize batch"
    )
    REPORT_WINDOW_DAYS: int = Field(default=7, ge=1, description="Digest report window")

    # Deep research
    REVIEW_TIMEOUT_SECONDS: float = Field(
        default=1800.0, ge=0.0, description="Article review timeout, 0 disables"
    )

    # Storage and logging
    DATA_DIR: Path = Field(default=Path("data"), description="Data directory")
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON lines log file")

    @property
    def anthropic_api_key(self) -> str | None:
        """Get Anthropic API key (lowercase alias)."""
        return self.ANTHROPIC_API_KEY

    @property
    def dry_run(self) -> bool:
        """Get dry run flag (lowercase alias)."""
        return self.DRY_RUN

    @property
    def review_timeout(self) -> float | None:
        """Review timeout in seconds, or None when disabled."""
        return self.REVIEW_TIMEOUT_SECONDS or None

    @property
    def workspace_db_path(self) -> Path:
        """Path of the workspace database."""
        return self.DATA_DIR / "workspace.db"

    @model_validator(mode="after")
    def validate_generation_backend(self) -> Settings:
        """Ensure a generation backend is reachable."""
        if not self.DRY_RUN and not self.ANTHROPIC_API_KEY:
            raise ValueError(
                "ANTHROPIC_API_KEY must be configured unless DRY_RUN is enabled"
            )
        return self

    def ensure_directories(self) -> None:
        """Create the data directory if it doesn't exist."""
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)

    def redacted_display(self) -> dict[str, str | int | float | bool | None]:
        """Return settings with API keys redacted for display."""
        def redact(value: str | None) -> str | None:
            if value is None:
                return None
            return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"

        return {
            "ANTHROPIC_API_KEY": redact(self.ANTHROPIC_API_KEY),
            "DRY_RUN": self.DRY_RUN,
            "MODEL_FAST": self.MODEL_FAST,
            "MODEL_BALANCED": self.MODEL_BALANCED,
            "MODEL_DEEP": self.MODEL_DEEP,
            "LLM_MAX_RETRIES": self.LLM_MAX_RETRIES,
            "LLM_BACKOFF_BASE_SECONDS": self.LLM_BACKOFF_BASE_SECONDS,
            "LLM_BACKOFF_MULTIPLIER": self.LLM_BACKOFF_MULTIPLIER,
            "SEARCH_TIMEOUT_SECONDS": self.SEARCH_TIMEOUT_SECONDS,
            "MAX_RESULTS_PER_QUERY": self.MAX_RESULTS_PER_QUERY,
            "CURATION_THRESHOLD": self.CURATION_THRESHOLD,
            "ANALYSIS_BATCH_SIZE": self.ANALYSIS_BATCH_SIZE,
            "REVIEW_TIMEOUT_SECONDS": self.REVIEW_TIMEOUT_SECONDS,
            "DATA_DIR": str(self.DATA_DIR),
            "LOG_LEVEL": self.LOG_LEVEL,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
