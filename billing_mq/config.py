"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Redis
    redis_url: str | None = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_db: int = 0
    redis_socket_timeout_seconds: float | None = None

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Subscription defaults
    default_concurrency: int = 1
    default_max_retries: int = 3
    retry_base_delay_ms: int = 1000

    # Worker loop
    pop_timeout_seconds: float = 5.0
    pop_error_pause_seconds: float = 1.0
    dedup_ttl_seconds: int = 86400
    worker_handler_modules: list[str] = []  # imported so @register_handler runs

    # Promoter Configuration
    promoter_interval_seconds: float = 1.0
    promoter_batch_size: int = 10
    promoter_topics: list[str] = []  # standalone promoter only

    # Connection monitoring
    health_check_interval_seconds: float = 5.0

    # Observability
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "billing-mq"
    prometheus_port: int = 9090
    log_level: str = "INFO"
    log_format: str = "json"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
