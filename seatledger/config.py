"""Application configuration settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "SeatLedger API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "root"
    DB_PASSWORD: str = "password"
    DB_NAME: str = "seatledger"
    DATABASE_URL: str | None = None

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str | None = None
    REDIS_DB: int = 0

    # Hold windows
    BOOKING_HOLD_MINUTES: int = 15
    PAYMENT_HOLD_MINUTES: int = 5
    MAX_SEATS_PER_LINE: int = 50

    # Distributed Lock settings
    LOCK_TIMEOUT_SECONDS: int = 30
    LOCK_RETRY_DELAY_MS: int = 100
    LOCK_MAX_RETRIES: int = 50

    # Payment gateway
    GATEWAY_MERCHANT_ID: str = "1211149"
    GATEWAY_MERCHANT_SECRET: str = "change-me"
    GATEWAY_CURRENCY: str = "LKR"
    GATEWAY_SANDBOX: bool = True
    GATEWAY_NOTIFY_URL: str = "http://localhost:8000/api/v1/payments/notify"
    GATEWAY_RETURN_URL: str = "http://localhost:3000/payment/success"
    GATEWAY_CANCEL_URL: str = "http://localhost:3000/payment/cancel"
    # Applies notifications that fail signature verification. Diagnostics only.
    GATEWAY_ACCEPT_UNVERIFIED: bool = False

    # Reconciliation worker
    RECONCILE_MAX_ATTEMPTS: int = 5
    RECONCILE_BACKOFF_SECONDS: float = 2.0
    NOTIFICATION_REQUEUE_AFTER_SECONDS: int = 120
    # Unacknowledged stream entries idle this long are taken over by another worker
    RECONCILE_CLAIM_IDLE_MS: int = 60000

    # Tickets
    TICKET_OUTPUT_DIR: str = "var/tickets"
    TICKET_EVENT_NAME: str = "Event Pass"

    # Expiry sweep
    EXPIRY_SWEEP_ENABLED: bool = False
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 60

    @property
    def database_url(self) -> str:
        """Get async database URL."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @property
    def redis_url(self) -> str:
        """Get Redis URL."""
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
