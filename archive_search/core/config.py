"""
Configuration management for the archive search index.

This module centralizes environment-driven configuration using Pydantic's
`BaseSettings`. The CLI, the HTTP surface and the indexing triggers consume the
shared `settings` instance; library components take explicit arguments and only
fall back to these values for their defaults.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, PositiveInt, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration sourced from environment variables."""

    # General application settings
    API_TITLE: str = "Archive Search API"
    API_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = Field("INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8080

    # Storage locations
    SEARCH_DB_PATH: Path = Field(default_factory=lambda: Path("data") / "search.db")
    INDEXING_STATE_PATH: Optional[Path] = None
    RESEARCH_ARCHIVE_PATH: Path = Field(default_factory=lambda: Path("research-archive"))
    URL_CONTENT_ARCHIVE_PATH: Path = Field(default_factory=lambda: Path("url-content-archive"))

    # Indexing triggers
    INDEX_SCHEDULE: Optional[str] = "0 * * * *"
    WATCH_FILES: bool = False
    WATCH_DEBOUNCE_SECONDS: float = Field(5.0, ge=0.0)

    # Pipeline tuning
    NORMALIZE_CONCURRENCY: PositiveInt = 5
    KEYWORD_LIMIT: PositiveInt = 20
    CITATION_CONTEXT_CHARS: PositiveInt = 100
    IMPLICIT_SIMILARITY_THRESHOLD: float = Field(0.7, ge=0.0, le=1.0)
    IMPLICIT_MIN_PARAGRAPH_LENGTH: PositiveInt = 100

    # Search tuning
    SNIPPET_WINDOW_CHARS: PositiveInt = 150
    SEARCH_DEFAULT_LIMIT: PositiveInt = 10
    SEARCH_MAX_LIMIT: PositiveInt = 50
    MAX_CITATION_DEPTH: PositiveInt = 3

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @field_validator("INDEX_SCHEDULE", mode="before")
    def _blank_schedule(cls, value: Optional[str]) -> Optional[str]:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def state_path(self) -> Path:
        """Location of the incremental-scan watermark file."""

        if self.INDEXING_STATE_PATH is not None:
            return self.INDEXING_STATE_PATH
        return Path(self.SEARCH_DB_PATH).parent / "indexing-state.json"


@lru_cache()
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()


# Singleton-style settings instance for modules that prefer direct access.
settings = get_settings()
