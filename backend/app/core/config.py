"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development; push scheduling
stays disabled until VAPID keys are provided.

Usage:
    from backend.app.core.config import settings
    print(settings.REDIS_URL)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Chexmix Push Scheduler"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    RELOAD: bool = True  # auto-reload on file changes (dev only)

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:8080",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Auth ──
    SCHEDULE_API_KEY: Optional[str] = None  # unset → routes are open

    # ── Queue ──
    REDIS_URL: str = ""  # empty → no durable backend
    QUEUE_PREFIX: str = "chexmix-push"
    ALLOW_IN_MEMORY_QUEUE: bool = True  # best-effort fallback without Redis

    # ── Web Push ──
    VAPID_PUBLIC_KEY: Optional[str] = None
    VAPID_PRIVATE_KEY: Optional[str] = None
    VAPID_SUBJECT: str = "mailto:push@chexmix.local"
    PUSH_TTL_SECONDS: int = 180  # how long the push service holds the message
    PUSH_TIMEOUT_SECONDS: float = 10.0

    # ── Worker ──
    RUN_WORKER_IN_PROCESS: bool = True
    WORKER_CONCURRENCY: int = 1
    WORKER_POLL_INTERVAL_SECONDS: float = 1.0

    # ── Retry (transient delivery failures) ──
    RETRY_POLICY: str = "none"  # none | fixed | exponential
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BACKOFF_SECONDS: float = 30.0

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
