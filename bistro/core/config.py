"""
Bistro — Configuration
All settings are read from environment variables (or .env file).
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    SERVICE_NAME: str = "bistro"
    SERVICE_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    RESTAURANT_TIMEZONE: str = ""   # IANA name, e.g. "Europe/Rome"; empty = server local time

    # ── JWT (decode only, tokens are issued elsewhere) ────────
    JWT_SECRET_KEY: str = "CHANGE_ME_IN_PRODUCTION"
    JWT_ALGORITHM: str = "HS256"

    # ── PostgreSQL ────────────────────────────────────────────
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = "bistro-db"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "bistro_db"
    POSTGRES_USER: str = "bistro_user"
    POSTGRES_PASSWORD: str = "bistro_pass"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # ── Redis ─────────────────────────────────────────────────
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── Serialization-failure Retry ───────────────────────────
    TX_MAX_RETRIES: int = 5
    TX_BASE_DELAY_MS: int = 20       # base exponential backoff delay in ms
    TX_MAX_DELAY_MS: int = 1000      # max backoff cap in ms
    TX_JITTER_MS: int = 25           # random jitter range in ms

    # ── Order Locks ───────────────────────────────────────────
    LOCK_WAIT_TIMEOUT_SECONDS: float = 10.0
    LOCK_STALE_AFTER_SECONDS: float = 60.0
    LOCK_SWEEP_INTERVAL_SECONDS: float = 120.0
    LOCK_RETRY_AFTER_SECONDS: int = 2

    # ── Rate Limiting ─────────────────────────────────────────
    RATE_LIMIT_ENABLED: bool = True
    RESERVATION_CREATE_MAX_ATTEMPTS: int = 3
    RESERVATION_CREATE_WINDOW_SECONDS: int = 300
    AVAILABILITY_MAX_ATTEMPTS: int = 20
    AVAILABILITY_WINDOW_SECONDS: int = 60
    ORDER_CREATE_MAX_ATTEMPTS: int = 5
    ORDER_CREATE_WINDOW_SECONDS: int = 900

    # ── Notifications ─────────────────────────────────────────
    NOTIFIER_BACKEND: str = "redis"  # redis | log
    NOTIFICATION_CHANNEL_PREFIX: str = "notifications:"
    SSE_KEEPALIVE_INTERVAL_SECONDS: int = 15
    SSE_RETRY_MILLISECONDS: int = 3000

    # ── Observability ─────────────────────────────────────────
    METRICS_ENABLED: bool = True
    HEALTH_CHECK_TIMEOUT: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()
