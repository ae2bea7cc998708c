"""Typed settings configuration - single source of truth."""

from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str | None = None

    # Queue
    redis_url: str | None = None
    queue_name: str = "itinerary-jobs"
    processing_queue_name: str = "itinerary-jobs:processing"
    queue_visibility_timeout_seconds: int = 600

    # Job lifecycle
    job_ttl_hours: int = Field(24, ge=1, le=168)
    processing_retry_after_seconds: int = Field(3, ge=1, le=60)
    poll_interval_seconds: float = 1.0
    job_lease_seconds: int = 600

    # Itinerary planning
    max_pois: int = Field(5, ge=1, le=10)
    use_isochrone_if_available: bool = True
    strict_opening_hours: bool = True
    avg_speeds_kmh: dict[str, float] = {"walking": 4.5, "transit": 20.0, "driving": 30.0}
    default_radius_km: dict[str, float] = {"walking": 2.5, "transit": 8.0, "driving": 15.0}
    dwell_floor_minutes: int = 20
    dwell_ceiling_minutes: int = 180
    dwell_defaults: dict[str, int] = {
        "museum": 90,
        "landmark": 30,
        "park": 45,
        "gallery": 60,
        "food": 30,
        "cafe": 30,
        "church": 30,
        "default": 30,
    }
    max_pois_per_category: int = 10
    final_fallback_limit: int = 25
    transit_walking_fallback: bool = True
    transit_stop_category_id: str = "9942"

    # Map & routing provider
    azure_maps_base_url: str = "https://atlas.microsoft.com"
    azure_maps_subscription_key: SecretStr = SecretStr("")

    # Planning advisor
    openai_api_key: SecretStr | None = None
    openai_model: str = "gpt-4o-mini"
    openai_ranking_model: str = "gpt-4o"
    advisor_timeout_seconds: float = 30.0

    # Timeouts (milliseconds)
    tool_hard_timeout_ms: int = 8000

    # Retries
    tool_retry_count: int = 1
    retry_jitter_min_ms: int = 200
    retry_jitter_max_ms: int = 500

    # Circuit breaker
    circuit_breaker_failures: int = 5
    circuit_breaker_window_sec: int = 60

    # Request validation
    supported_languages: list[str] = ["en", "es", "fr", "de", "it", "pt", "ru", "ja", "ko", "zh"]
    min_duration_minutes: int = 60
    max_duration_minutes: int = 720
    max_interests_length: int = 500

    # Rate limiting (requests per client per window)
    rate_limit_post_per_minute: int = 20
    rate_limit_get_per_minute: int = 60
    rate_limit_geocode_per_minute: int = 60
    rate_limit_window_seconds: int = 60

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
