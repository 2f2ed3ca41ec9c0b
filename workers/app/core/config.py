from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    log_level: str = "INFO"
    service_api_key: str = "local-worker-key"
    http_timeout_seconds: float = 10.0

    reputation_poll_interval_seconds: float = 1.0
    reputation_max_attempts: int = 15
    malicious_url_poll_interval_seconds: float = 2.0
    malicious_url_max_attempts: int = 15
    warehouse_initial_backoff_seconds: float = 1.0
    warehouse_backoff_multiplier: float = 2.0
    warehouse_max_backoff_seconds: float | None = None
    warehouse_max_attempts: int = 10

    urlscan_hostname: str = "http://localhost:8100"
    urlscan_api_key: str = "local-urlscan-key"
    urlscan_source: str = "checkmate"
    cloudflare_radar_api_token: str | None = None
    cloudflare_account_id: str | None = None

    bigquery_project_id: str = "local-project"
    bigquery_location: str = "asia-southeast1"
    bigquery_access_token: str | None = None
    digest_dataset_id: str = "checkmate_export"
    digest_table_id: str = "messages_reporting_view"
    digest_window_days: int = 7

    database_service_url: str = "http://localhost:8200"
    notification_service_url: str = "http://localhost:8300"
    events_service_url: str = "http://localhost:8400"
    queue_service_url: str = "http://localhost:8500"
    jobs_service_url: str = "http://localhost:8000"
    jobs_batch_size: int = 5
    claim_lease_seconds: int = 120
    queue_name: str = "check-updates"
    queue_batch_size: int = 10
    queue_poll_interval_seconds: float = 2.0
    max_backoff_seconds: float = 15.0
    background_drain_timeout_seconds: float = 30.0

    screenshot_archive_dir: str = "./screenshots"

    otel_enabled: bool = True
    otel_service_name: str = "checkmate-workers"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="CM_WORKER_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
