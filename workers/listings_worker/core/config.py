from functools import lru_cache

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class DailyJob(BaseModel):
    label: str
    hour: int
    minute: int = 0


class Settings(BaseSettings):
    environment: str = "dev"
    log_level: str = "INFO"
    api_base_url: str = "http://localhost:8000"
    module_id: str = "slot-sweeper"
    api_key: str = "local-sweeper-key"
    poll_interval_seconds: float = 30.0
    max_backoff_seconds: float = 300.0
    sweep_timeout_seconds: float = 120.0
    schedule_timezone: str = "UTC"
    warning_job_label: str = "EXPIRY_WARNING"
    warning_job_hour: int = 8
    warning_job_minute: int = 0
    expiry_job_label: str = "SLOT_EXPIRY"
    expiry_job_hour: int = 1
    expiry_job_minute: int = 0
    otel_enabled: bool = True
    otel_service_name: str = "listing-publication-worker"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="LP_WORKER_", extra="ignore")

    def daily_jobs(self) -> list[DailyJob]:
        return [
            DailyJob(label=self.expiry_job_label, hour=self.expiry_job_hour, minute=self.expiry_job_minute),
            DailyJob(label=self.warning_job_label, hour=self.warning_job_hour, minute=self.warning_job_minute),
        ]


@lru_cache
def get_settings() -> Settings:
    return Settings()
