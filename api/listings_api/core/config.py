from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "listing-publication-api"
    environment: str = "dev"
    log_level: str = "INFO"
    api_key_header: str = "X-API-Key"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    transaction_max_attempts: int = 3
    transaction_retry_base_seconds: float = 1.0
    transaction_retry_max_seconds: float = 5.0
    feature_flag_cache_ttl_seconds: float = 300.0
    auto_publish_enabled_default: bool = False
    review_compensation_enabled_default: bool = False
    expiry_warning_days: int = 7
    sweep_timezone: str = "UTC"
    frontend_url: str = "https://app.example.com"
    notification_service_url: str | None = None
    notification_api_key: str | None = None
    notification_timeout_seconds: float = 10.0
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    otel_enabled: bool = True
    otel_service_name: str = "listing-publication-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0

    model_config = SettingsConfigDict(env_prefix="LP_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
