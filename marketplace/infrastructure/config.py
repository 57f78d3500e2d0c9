"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Database
    database_url: str = (
        "postgresql+asyncpg://marketplace:marketplace_dev_password@db:5432/marketplace"
    )

    # Authentication
    api_key: str = "dev-api-key-change-in-production"

    # Money
    default_currency: str = "INR"

    # Payments
    payment_gateway: Literal["sandbox", "stripe"] = "sandbox"
    stripe_secret_key: str = ""
    payment_gateway_timeout_seconds: float = 10.0
    payment_webhook_secret: str = "dev-webhook-secret-change-in-production"
    webhook_tolerance_seconds: int = 300

    # Collaborators
    address_book_url: str | None = None

    # Order policy
    return_window_days: int = 7
    pending_order_ttl_minutes: int = 60

    # Guest carts
    guest_cart_ttl_minutes: int = 24 * 60
    guest_cart_max_entries: int = 10_000

    # Logging
    log_level: str = "INFO"


settings = Settings()
