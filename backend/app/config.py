"""Typed settings configuration - single source of truth."""

from functools import lru_cache

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Providers
    openai_api_key: SecretStr | None = None
    openai_model: str = "gpt-4o-2024-08-06"
    gemini_api_key: SecretStr | None = None
    gemini_model: str = "gemini-2.0-flash"
    anthropic_api_key: SecretStr | None = None
    anthropic_model: str = "claude-sonnet-4-20250514"

    # Feature flags
    multi_provider_enabled: bool = True
    multi_provider_free_tier: bool = False
    multi_provider_pro_tier: bool = True
    multi_provider_premium_tier: bool = True

    # Stage timeouts (milliseconds)
    drafting_timeout_ms: int = 60000
    validation_timeout_ms: int = 20000
    qa_timeout_ms: int = 30000
    request_budget_ms: int = 120000

    # Retry jitter (milliseconds)
    retry_jitter_min_ms: int = 200
    retry_jitter_max_ms: int = 500

    # Circuit breaker
    circuit_breaker_failures: int = 5
    circuit_breaker_window_sec: int = 60
    circuit_breaker_half_open_sec: int = 30
    circuit_breaker_half_open_calls: int = 1

    # Merge policy
    validation_confidence_threshold: float = 0.8

    # Response cache
    response_cache_enabled: bool = True
    response_cache_ttl_seconds: int = 3600
    redis_url: str | None = None

    # Streaming
    stream_timeout_ms: int = 5 * 60 * 1000
    stream_heartbeat_seconds: float = 30.0

    # Usage limits (itineraries per month)
    default_tier: str = "free"
    free_itineraries_per_month: int = 3
    pro_itineraries_per_month: int = 999
    premium_itineraries_per_month: int = 999

    # Pricing (monthly USD) for upgrade suggestions
    pro_price_usd: int = 9
    premium_price_usd: int = 19

    # Side effects
    gamification_award_url: str | None = None
    side_effect_timeout_seconds: float = 5.0

    @model_validator(mode="after")
    def _check_stage_budgets(self) -> "Settings":
        stage_total = self.drafting_timeout_ms + self.validation_timeout_ms + self.qa_timeout_ms
        if stage_total > self.request_budget_ms:
            raise ValueError(
                f"Stage timeouts ({stage_total}ms) exceed request budget "
                f"({self.request_budget_ms}ms)"
            )
        if self.retry_jitter_min_ms > self.retry_jitter_max_ms:
            raise ValueError("retry_jitter_min_ms must not exceed retry_jitter_max_ms")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
