import json
import secrets
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CORS_ORIGINS = ["http://localhost:3000"]
ASYNC_DRIVERS = {
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def split_origins(raw: str | None) -> List[str]:
    """Accept CORS_ORIGINS as a JSON list or a comma separated string."""
    text = (raw or "").strip()
    items = text.split(",")
    if text.startswith("["):
        try:
            items = list(json.loads(text))
        except (json.JSONDecodeError, TypeError):
            items = text.strip("[]").split(",")
    return [str(item).strip().strip("\"'") for item in items if str(item).strip().strip("\"'")]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # service
    app_name: str = "CodeArena"
    api_prefix: str = "/api"
    log_level: str = "INFO"
    cors_origins_raw: str | None = Field(default=None, alias="CORS_ORIGINS")

    # auth
    secret_key: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    access_token_expire_minutes: int = 60 * 12

    # storage
    database_url: str = "sqlite+aiosqlite:///./codearena.db"
    db_init_max_retries: int = 5
    db_init_retry_interval_seconds: float = 2.0

    # judge
    judge_url: str = "http://localhost:8080"
    judge_timeout_seconds: float = 30.0
    default_language: str = "cpp"

    # lifecycle
    coding_phase_autosubmit_grace_ms: int = Field(default=20_000, ge=0, alias="CODING_PHASE_AUTOSUBMIT_GRACE_MS")
    phase_end_buffer_seconds: int = 5
    finalization_retry_seconds: float = 5.0
    restore_phase_timers: bool = True

    @field_validator("database_url")
    @classmethod
    def use_async_driver(cls, value: str) -> str:
        for prefix, replacement in ASYNC_DRIVERS.items():
            if value.startswith(prefix):
                return replacement + value[len(prefix) :]
        return value

    @property
    def cors_origins(self) -> List[str]:
        return split_origins(self.cors_origins_raw) or DEFAULT_CORS_ORIGINS


@lru_cache
def get_settings() -> Settings:
    return Settings()
