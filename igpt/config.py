"""
Configuration for the iGPT client.

Settings are read from environment variables and an optional .env file.
Arguments passed explicitly to IGPT(...) take precedence over these values.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_BASE_URL = "https://api.igpt.ai/v1"


class Settings(BaseSettings):
    """
    Client settings.

    Environment variables are loaded from .env file and can be overridden
    by actual environment variables.
    """

    # Credentials
    IGPT_API_KEY: str = ""
    IGPT_USER: str | None = None

    # Endpoint
    IGPT_BASE_URL: str = DEFAULT_BASE_URL

    # Retry policy
    IGPT_RETRIES: int = 3
    IGPT_BACKOFF_BASE_MS: float = 100.0
    IGPT_BACKOFF_FACTOR: float = 2.0

    # Per-attempt budgets: connect + response, and long-lived streams
    IGPT_TIMEOUT_MS: float = 60_000.0
    IGPT_STREAM_TIMEOUT_MS: float = 10 * 60_000.0

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        extra="ignore"
    )


# Global settings instance
settings = Settings()  # type: ignore
