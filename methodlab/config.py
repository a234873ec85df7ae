"""
Configuration settings for methodlab.

Reads credentials from the project .env file and provides typed settings.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Resolve paths
PACKAGE_DIR = Path(__file__).parent
PROJECT_ROOT = PACKAGE_DIR.parent
ENV_FILE = PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Gemini API
    gemini_api_key: str = Field(
        default="",
        alias="GEMINI_API_KEY",
        description="Google Gemini API key"
    )
    gemini_model: str = Field(
        default="gemini-3-flash-preview",
        alias="GEMINI_MODEL",
        description="Gemini model used for every generation call"
    )
    gemini_temperature: float = Field(default=0.2, alias="GEMINI_TEMPERATURE")
    gemini_max_output_tokens: int = Field(
        default=8192,
        alias="GEMINI_MAX_OUTPUT_TOKENS",
        description="Max output tokens for Gemini"
    )

    # Application settings
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_allow_origins: List[str] = Field(default=["*"], alias="CORS_ALLOW_ORIGINS")

    # Generation behaviour
    output_language: str = Field(
        default="Vietnamese",
        alias="OUTPUT_LANGUAGE",
        description="Language generated method cards are written in"
    )
    parse_policy: Literal["strict", "lenient"] = Field(
        default="strict",
        alias="PARSE_POLICY",
        description=(
            "strict: empty or unparsable payloads are schema violations; "
            "lenient: they are read as an empty object with optional defaults"
        )
    )
    search_tool: str = Field(
        default="google_search_retrieval",
        alias="SEARCH_TOOL",
        description="Grounding tool attached to standards search calls"
    )
    expose_error_details: bool = Field(
        default=False,
        alias="EXPOSE_ERROR_DETAILS",
        description="Include the failure cause in workflow error snapshots"
    )

    # Session registry limits (only settled sessions are ever evicted)
    session_max_count: int = Field(
        default=1000,
        alias="SESSION_MAX_COUNT",
        description="Max session coordinators kept in memory"
    )
    session_idle_ttl_seconds: float = Field(
        default=3600.0,
        alias="SESSION_IDLE_TTL_SECONDS",
        description="Seconds after last use before a settled session is dropped"
    )

    # Per-call timeout
    request_timeout_seconds: float = Field(
        default=90.0,
        alias="REQUEST_TIMEOUT_SECONDS",
        description="Timeout in seconds for a single Gemini call"
    )

    # API retry settings (for transient errors like 503, 429, timeouts)
    api_retry_max_attempts: int = Field(
        default=3,
        alias="API_RETRY_MAX_ATTEMPTS",
        description="Max attempts for transient API errors"
    )
    api_retry_base_delay: float = Field(
        default=2.0,
        alias="API_RETRY_BASE_DELAY",
        description="Base delay in seconds for exponential backoff"
    )
    api_retry_max_delay: float = Field(
        default=30.0,
        alias="API_RETRY_MAX_DELAY",
        description="Maximum delay in seconds between retries"
    )
    api_retry_exponential_base: float = Field(
        default=2.0,
        alias="API_RETRY_EXPONENTIAL_BASE",
        description="Base for exponential backoff calculation"
    )

    @computed_field
    @property
    def prompts_dir(self) -> Path:
        """Path to prompts directory."""
        return PACKAGE_DIR / "prompts"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience accessors
settings = get_settings()
