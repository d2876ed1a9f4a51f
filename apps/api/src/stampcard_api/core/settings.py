from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./stampcard.db"

    # Internal API security (queue trigger delivery)
    internal_api_key: str = ""

    # Unit of work retries
    loyalty_transaction_max_attempts: int = 5
    loyalty_transaction_backoff_seconds: float = 0.05

    # Expiration sweepers
    loyalty_expiration_max_docs_per_run: int = 10_000
    loyalty_expiration_batch_size: int = 500

    # Tracing
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None

    # Loyalty job scheduler
    loyalty_job_scheduler_enabled: bool = False
    loyalty_job_schedule_path: str = "config/schedules.toml"

    @field_validator("loyalty_transaction_max_attempts", mode="before")
    @classmethod
    def _parse_attempts(cls, value: object) -> int:
        try:
            parsed = int(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 5
        return max(parsed, 1)


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
