"""
Application Configuration — Environment & Settings
Centralizes all config from .env with Pydantic Settings for validation.
"""
from pathlib import Path
from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent

CASHFREE_BASE_URLS = {
    "sandbox": "https://sandbox.cashfree.com/pg",
    "production": "https://api.cashfree.com/pg",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --- Core ---
    APP_NAME: str = "Investor Payments API"
    APP_VERSION: str = "1.4.0"
    DEBUG: bool = False
    CORS_ORIGINS: list[str] = ["*"]
    PUBLIC_BASE_URL: str = "http://localhost:3000"

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'investor_payments.db'}"

    # --- Cashfree ---
    CASHFREE_CLIENT_ID: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CASHFREE_CLIENT_ID", "CASHFREE_APP_ID"),
    )
    CASHFREE_SECRET_KEY: Optional[str] = None
    CASHFREE_ENVIRONMENT: str = "sandbox"
    CASHFREE_API_VERSION: str = "2025-01-01"
    CASHFREE_WEBHOOK_SECRET: Optional[str] = None
    GATEWAY_TIMEOUT_SECONDS: float = 30.0
    GATEWAY_MAX_RETRIES: int = 3
    GATEWAY_BACKOFF_SECONDS: float = 0.5

    # --- Reconciliation ---
    SYNC_DELAY_SECONDS: float = 0.2
    SYNC_RATE_LIMIT_REQUESTS: int = 10
    SYNC_RATE_LIMIT_WINDOW: int = 60

    # --- Notifications ---
    NOTIFICATIONS_ENABLED: bool = False
    SMTP_SERVER: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    EMAIL_FROM: str = "payments@qodeinvest.com"
    PAYMENT_ALERT_RECIPIENTS: list[str] = ["payments@qodeinvest.com"]

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")
    LOG_LEVEL: str = "INFO"

    @property
    def cashfree_base_url(self) -> str:
        return CASHFREE_BASE_URLS.get(
            self.CASHFREE_ENVIRONMENT.lower(), CASHFREE_BASE_URLS["sandbox"]
        )

    @property
    def webhook_secret(self) -> Optional[str]:
        """Webhooks are signed with the API secret unless a dedicated one is set."""
        return self.CASHFREE_WEBHOOK_SECRET or self.CASHFREE_SECRET_KEY

    @property
    def gateway_configured(self) -> bool:
        return bool(self.CASHFREE_CLIENT_ID and self.CASHFREE_SECRET_KEY)


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
