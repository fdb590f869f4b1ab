from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 5
    database_command_timeout_seconds: float = 15.0
    database_search_path: str | None = None
    batch_size: int = Field(default=10, ge=1)
    concurrent_batches: bool = True
    poll_interval_seconds: float = 10.0
    max_backoff_seconds: float = 120.0
    start_edit_data_id: int | None = Field(default=None, ge=0)
    start_edit_note_id: int | None = Field(default=None, ge=0)
    otel_enabled: bool = True
    otel_service_name: str = "edit-url-poller"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True
    otel_metrics_push_timeout_millis: int = 5000

    model_config = SettingsConfigDict(env_prefix="EUP_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
