"""
Application configuration using pydantic-settings.
Loads from environment variables / .env file.
"""

from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


MPESA_BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "aquabeacon"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    secret_key: str = "aquabeacon-dev-secret"

    # API Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = ["http://localhost:5173"]

    # Postgres
    database_url: str = ""

    # Redis (token cache, rate limits, Celery broker)
    redis_url: str = ""

    # Admin
    admin_api_key: str = ""

    # M-Pesa Daraja
    mpesa_environment: Literal["sandbox", "production"] = "sandbox"
    mpesa_consumer_key: str = ""
    mpesa_consumer_secret: str = ""
    mpesa_shortcode: str = "174379"
    mpesa_passkey: str = ""
    mpesa_callback_base_url: str = "http://localhost:8000"
    mpesa_transaction_type: str = "CustomerPayBillOnline"
    mpesa_timeout_seconds: float = 30.0
    # Safaricom callback origins, enforced when mpesa_environment is production
    mpesa_callback_allowed_ips: List[str] = [
        "196.201.214.200",
        "196.201.214.206",
        "196.201.214.207",
        "196.201.214.208",
        "196.201.214.136",
        "196.201.214.137",
    ]

    # Payments
    payment_expiry_minutes: int = 15
    payment_rate_limit: int = 5
    payment_rate_window_seconds: int = 900
    subscription_period_days: int = 30

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def mpesa_base_url(self) -> str:
        return MPESA_BASE_URLS[self.mpesa_environment]

    @property
    def mpesa_callback_url(self) -> str:
        return f"{self.mpesa_callback_base_url.rstrip('/')}/api/mpesa/stkcallback"

    @property
    def verify_mpesa_callback_origin(self) -> bool:
        return self.mpesa_environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
