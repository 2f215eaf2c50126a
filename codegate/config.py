"""
Application configuration using pydantic-settings.
Loads from environment variables with .env file support.
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./codegate.db"

    # OpenAI (quiz generation and free-form grading)
    openai_api_key: str = ""
    quiz_model: str = "gpt-4o-mini"
    grading_model: str = "gpt-4o-mini"
    oracle_timeout_seconds: float = 30.0

    # Unlock engine
    default_total_gates: int = 3
    skip_allowed: bool = False
    version_progress_policy: str = "inherit"  # inherit | reset
    snapshot_debounce_seconds: float = 1.0
    truncation_sentinels: List[str] = [
        "[TRUNCATED]",
        "<!--TRUNCATED-->",
        "max_tokens",
    ]

    # Application
    debug: bool = False
    environment: str = "development"
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR

    # API Settings
    api_v1_prefix: str = "/api/v1"
    project_name: str = "Codegate Unlock Engine"
    version: str = "0.3.0"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
