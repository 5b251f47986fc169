"""Configuration management for the Gemini Research Agent."""

from typing import Any

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

VERSION = "1.0.0"

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_UPLOAD_BASE_URL = "https://generativelanguage.googleapis.com/upload/v1beta"
DEFAULT_MODEL = "models/deep-research-pro-preview"

# Interactions are retained server-side for at most an hour; waiting longer
# than that can never observe a terminal state.
INTERACTION_EXPIRY_SECONDS = 3600.0


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    gemini_api_key: str = ""  # required by load_settings, not by the server
    base_url: str = DEFAULT_BASE_URL
    upload_base_url: str = DEFAULT_UPLOAD_BASE_URL
    model: str = DEFAULT_MODEL
    request_timeout: float = 60.0
    default_poll_interval: float = 10.0
    default_poll_timeout: float = 1800.0  # 30 minutes
    default_depth: str = "deep"
    default_format: str = "markdown"

    host: str = "localhost"
    port: int = 3000
    environment: str = Field(
        default="production",
        validation_alias=AliasChoices("APP_ENV", "NODE_ENV", "environment"),
    )
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


def load_settings(**overrides: Any) -> Settings:
    """Build a fresh settings object from the environment.

    Keyword overrides take precedence over environment variables. Nothing is
    cached: callers own the returned object and pass it on explicitly.

    Raises:
        ConfigurationError: if no API key is configured
    """
    settings = Settings(**overrides)
    if not settings.gemini_api_key.strip():
        raise ConfigurationError(
            "GEMINI_API_KEY environment variable is not set.\n\n"
            "Set it using one of:\n"
            "  export GEMINI_API_KEY='your-api-key'\n"
            "  echo 'GEMINI_API_KEY=your-key' > .env\n\n"
            "Get an API key at: https://aistudio.google.com/apikey"
        )
    return settings
