from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ─────────────────────────────────────────────
    # App Identity
    # ─────────────────────────────────────────────
    APP_NAME: str = "ReplayGuard"
    APP_ENV: str = "development"
    API_V1_PREFIX: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # ─────────────────────────────────────────────
    # Replay Protection
    # ─────────────────────────────────────────────
    NONCE_HEADER: str = "X-Request-Id"
    TIMESTAMP_HEADER: str = "X-Timestamp"
    ALLOWED_CLOCK_SKEW_SECONDS: int = 300
    NONCE_TTL_SECONDS: int = 600
    REJECT_IF_MISSING_HEADERS: bool = True
    FAIL_CLOSED_ON_STORE_ERROR: bool = True

    # ─────────────────────────────────────────────
    # Nonce Store
    # ─────────────────────────────────────────────
    NONCE_STORE_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    NONCE_KEY_PREFIX: str = "replay:"
    SWEEP_INTERVAL_SECONDS: int = 30

    # Pydantic v2 config
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="forbid",
    )


settings = Settings()
