"""
Configuration settings for the Storefront backend.
Loads from environment variables with validation.
"""

from decimal import Decimal

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Storefront"
    DEBUG: bool = False
    FRONTEND_URL: str = "http://localhost:3000"
    SECRET_KEY: str

    # Database
    DATABASE_URL: str
    REDIS_URL: str = "redis://localhost:6379"

    # Rate limiting (requests per window, per client key)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WINDOW_SIZE_SECONDS: int = 60
    RATE_LIMIT_CART_OPERATIONS_PER_MINUTE: int = 30
    RATE_LIMIT_ORDER_CREATION_PER_MINUTE: int = 5
    RATE_LIMIT_PAYMENT_OPERATIONS_PER_MINUTE: int = 10
    RATE_LIMIT_PRODUCT_BROWSING_PER_MINUTE: int = 100
    RATE_LIMIT_SEARCH_OPERATIONS_PER_MINUTE: int = 50
    RATE_LIMIT_ADMIN_OPERATIONS_PER_MINUTE: int = 200
    # Comma-separated proxy addresses whose X-Forwarded-For header is honoured
    TRUSTED_PROXIES: str = ""

    # Cart
    CART_TAX_RATE: Decimal = Decimal("0.08")
    CART_EXPIRATION_DAYS: int = 7
    DEFAULT_CURRENCY: str = "USD"

    # PayPal
    PAYPAL_BASE_URL: str = "https://api-m.sandbox.paypal.com"
    PAYPAL_CLIENT_ID: str | None = None
    PAYPAL_CLIENT_SECRET: str | None = None
    PAYPAL_BRAND_NAME: str = "Storefront"

    # Transactional email
    EMAIL_API_URL: str | None = None
    EMAIL_API_KEY: str | None = None
    EMAIL_FROM: str = "orders@storefront.local"

    # Housekeeping
    MAINTENANCE_INTERVAL_SECONDS: int = 300

    def validate_production_settings(self):
        """Validate critical settings for production deployment."""
        if not self.DEBUG and not (self.PAYPAL_CLIENT_ID and self.PAYPAL_CLIENT_SECRET):
            raise ValueError(
                "PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET are required in production."
            )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings loader with production validation."""
    settings = Settings()
    # Validate critical settings when not in debug mode
    if not settings.DEBUG:
        settings.validate_production_settings()
    return settings
