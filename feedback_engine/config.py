"""
Configuration management for the feedback engine.

Uses Pydantic Settings for type-safe configuration loading from environment variables.
All configuration is validated at startup to fail fast on misconfiguration.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderId(str, Enum):
    """Identifiers of the supported LLM backends."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Provider credentials are optional: a missing key simply disables that
    provider. The gateway decides at construction which provider is active.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Provider Configuration
    # ==========================================================================
    anthropic_api_key: str | None = Field(
        default=None,
        description="API key for Anthropic Claude",
    )

    openai_api_key: str | None = Field(
        default=None,
        description="API key for OpenAI",
    )

    ai_model_preference: ProviderId = Field(
        default=ProviderId.ANTHROPIC,
        description="Preferred provider; the other one is used if this one has no key",
    )

    anthropic_model: str = Field(
        default="claude-3-5-sonnet-20241022",
        description="Claude model used for feedback generation",
    )

    openai_model: str = Field(
        default="gpt-4o",
        description="OpenAI model used for feedback generation",
    )

    # ==========================================================================
    # Generation Configuration
    # ==========================================================================
    max_tokens: int = Field(
        default=4000,
        ge=1,
        le=64000,
        description="Maximum tokens in a generated response",
    )

    temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Temperature for LLM generation",
    )

    retry_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per provider call before giving up",
    )

    retry_base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Backoff before the second attempt; doubles for each further attempt",
    )

    # ==========================================================================
    # Cache Configuration
    # ==========================================================================
    cache_ttl_seconds: int = Field(
        default=1800,
        ge=1,
        description="Lifetime of a cached feedback response",
    )

    cache_maxsize: int = Field(
        default=1000,
        ge=1,
        description="Maximum entries held by the in-memory cache",
    )

    redis_url: str | None = Field(
        default=None,
        description="Redis URL; when set, responses are cached in Redis instead of memory",
    )

    # ==========================================================================
    # Observability Configuration
    # ==========================================================================
    performance_target_ms: int = Field(
        default=100,
        ge=1,
        description="Latency target reported alongside the rolling metrics",
    )

    log_level: str = Field(
        default="INFO",
        description="Minimum level for the loguru stderr sink",
    )

    @field_validator("anthropic_api_key", "openai_api_key")
    @classmethod
    def blank_key_is_missing(cls, v: str | None) -> str | None:
        """Treat empty or whitespace-only keys as not configured."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise the log level name."""
        level = v.upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    def api_key_for(self, provider: ProviderId) -> str | None:
        """Return the configured credential for a provider, if any."""
        if provider == ProviderId.ANTHROPIC:
            return self.anthropic_api_key
        return self.openai_api_key

    def model_for(self, provider: ProviderId) -> str:
        """Return the configured model name for a provider."""
        if provider == ProviderId.ANTHROPIC:
            return self.anthropic_model
        return self.openai_model


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    """
    return Settings()
