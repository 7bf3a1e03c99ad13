from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration read from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="RAFFLE_", case_sensitive=False)

    app_name: str = Field(default="Pantry Raffle")
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="%(asctime)s %(levelname)s %(name)s %(message)s")

    # State storage
    storage_backend: Literal["file", "postgres"] = Field(default="file")
    data_dir: Path = Field(default=Path("data"))
    postgres_dsn: str | None = Field(default=None)
    postgres_pool_min_size: int = Field(default=1, ge=1)
    postgres_pool_max_size: int = Field(default=5, ge=1)
    query_timeout_ms: int = Field(default=5000, gt=0)
    snapshot_retention_days: int = Field(default=30, ge=1, le=365)

    # Mutation rate limiting (fixed window)
    rate_limit_requests: int = Field(default=30, ge=1)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)

    # Observability configuration
    otel_enabled: bool = Field(default=False)
    otel_service_name: str = Field(default="pantry-raffle")
    otel_exporter_otlp_endpoint: str | None = Field(default=None)


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the application settings."""

    return Settings()
